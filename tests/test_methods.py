"""Tests for method aliases and compound request classification."""

import pytest

from permproxy.methods import ALIASES, WEBSOCKET, Check, classify_request, expand_alias, is_read_only


class TestAliases:
    def test_ro(self):
        assert expand_alias("ro") == {"GET", "HEAD", "PROPFIND", "OPTIONS", "LOCK", "UNLOCK"}

    def test_rw_extends_ro(self):
        rw = expand_alias("rw")
        assert expand_alias("ro") < rw
        assert rw - expand_alias("ro") == {"POST", "PUT", "DELETE", "MKCOL", "PROPPATCH"}

    def test_any_is_rw_and_ws(self):
        assert expand_alias("any") == expand_alias("rw") | {WEBSOCKET}
        assert expand_alias("ws") == {WEBSOCKET}

    def test_unknown_token_passes_through(self):
        assert expand_alias("CRAZY") == {"CRAZY"}

    def test_expansion_is_stable(self):
        assert expand_alias("rw") == expand_alias("rw")
        assert set(ALIASES) == {"ro", "rw", "ws", "any"}


@pytest.mark.parametrize(
    "method,expected",
    [("GET", True), ("HEAD", True), ("PROPFIND", True), ("OPTIONS", True), ("LOCK", False), ("POST", False)],
)
def test_is_read_only(method, expected):
    assert is_read_only(method) is expected


class TestClassifyRequest:
    def test_plain_read(self):
        assert classify_request("GET", "/a", {}) == (Check("GET", "/a", True),)

    def test_plain_write(self):
        assert classify_request("PUT", "/a", {}) == (Check("PUT", "/a", False),)

    def test_move(self):
        checks = classify_request("MOVE", "/a", {"location": "/b"})
        assert checks == (Check("DELETE", "/a"), Check("PUT", "/b"))

    def test_move_without_location(self):
        checks = classify_request("MOVE", "/a", {})
        assert checks == (Check("DELETE", "/a"), Check("PUT", None))

    def test_copy(self):
        checks = classify_request("COPY", "/a", {"location": "/b"})
        assert checks == (Check("GET", "/a"), Check("PUT", "/b"))

    def test_copy_without_location(self):
        assert classify_request("COPY", "/a", {})[1].path is None

    def test_patch_move(self):
        checks = classify_request("PATCH", "/a", {"destination": "/b"})
        assert checks == (Check("DELETE", "/a"), Check("PUT", "/b"))

    def test_patch_copy_is_case_insensitive(self):
        checks = classify_request("PATCH", "/a", {"destination": "/b", "action": "CoPy"})
        assert checks == (Check("GET", "/a"), Check("PUT", "/b"))

    def test_patch_without_destination_is_plain(self):
        assert classify_request("PATCH", "/a", {"action": "copy"}) == (Check("PATCH", "/a", False),)

    def test_websocket_upgrade(self):
        checks = classify_request("GET", "/ws", {"upgrade": "WebSocket"})
        assert checks == (Check(WEBSOCKET, "/ws", False),)

    def test_other_upgrade_is_ignored(self):
        assert classify_request("GET", "/a", {"upgrade": "h2c"})[0].method == "GET"

    def test_absolute_destination_is_reduced_to_path(self):
        checks = classify_request("MOVE", "/a", {"location": "https://example.org/b/c?x=1"})
        assert checks[1] == Check("PUT", "/b/c?x=1")
