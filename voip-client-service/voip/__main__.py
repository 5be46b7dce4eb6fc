"""
Entrypoint do cliente VoIP.

Uso:
    python -m voip

Variáveis de ambiente:
    VOIP_CLIENT_OPTIONS   arquivo de opções (default /data/options.json)
    BARESIP_CTRL_HOST     host do ctrl_tcp do baresip (default 127.0.0.1)
    BARESIP_CTRL_PORT     porta do ctrl_tcp (default 4444)
    HTTP_HOST / HTTP_PORT gateway HTTP (default 0.0.0.0:80)
    LOG_LEVEL / LOG_JSON  logging
"""

import asyncio
import logging
import os
import sys

from .config_loader import ConfigError, read_addon_options
from .core.errors import BaresipError
from .logging_config import configure_logging
from .server import run_server

logger = logging.getLogger("voip")


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def main() -> None:
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_format=_env_flag("LOG_JSON", False),
    )

    try:
        options = read_addon_options()
    except ConfigError as e:
        logger.critical(f"Cannot start: {e}")
        sys.exit(1)

    try:
        asyncio.run(run_server(
            options,
            baresip_host=os.getenv("BARESIP_CTRL_HOST", "127.0.0.1"),
            baresip_port=int(os.getenv("BARESIP_CTRL_PORT", "4444")),
            http_host=os.getenv("HTTP_HOST", "0.0.0.0"),
            http_port=int(os.getenv("HTTP_PORT", "80")),
        ))
    except BaresipError as e:
        logger.critical(f"Exiting: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
