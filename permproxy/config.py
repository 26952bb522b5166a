from dataclasses import dataclass
import os
from dotenv import load_dotenv


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Config:
    listen_host: str
    listen_port: int
    upstream_host: str
    upstream_port: int
    permissions_path: str
    use_tls: bool
    tls_cert: str
    tls_key: str
    tls_client_ca: str
    log_path: str
    debug: bool


def load_config():
    load_dotenv(override=True)
    return Config(
        listen_host=os.getenv("PROXY_LISTEN_HOST", "0.0.0.0"),
        listen_port=int(os.getenv("PROXY_LISTEN_PORT", 8080)),
        upstream_host=os.getenv("PROXY_UPSTREAM_HOST", "127.0.0.1"),
        upstream_port=int(os.getenv("PROXY_UPSTREAM_PORT", 8000)),
        permissions_path=os.getenv("PROXY_PERMISSIONS_PATH", "permissions.conf"),
        use_tls=_flag("PROXY_USE_TLS"),
        tls_cert=os.getenv("PROXY_TLS_CERT", "server.pem"),
        tls_key=os.getenv("PROXY_TLS_KEY", "server.key"),
        tls_client_ca=os.getenv("PROXY_TLS_CLIENT_CA", ""),
        log_path=os.getenv("PROXY_LOG_PATH", "permproxy.log"),
        debug=_flag("PROXY_DEBUG"),
    )
