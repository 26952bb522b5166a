import sys
from dotenv import load_dotenv

load_dotenv(override=True)

from permproxy.config import load_config
from permproxy.core import run_proxy
from permproxy.directives import ConfigError

def main():
    config = load_config()
    try:
        run_proxy(config)
    except ConfigError as e:
        sys.exit(f"{config.permissions_path}: {e}")

if __name__ == "__main__":
    main()
