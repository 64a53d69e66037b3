"""Command-line entrypoint for running the object proxy."""

from __future__ import annotations

import sys

import structlog
import uvicorn

from ..common.observability import configure_logging
from ..common.settings import ConfigurationError, load_settings
from .app import create_app


LOGGER = structlog.get_logger("s3proxy.main")


def main() -> int:
    try:
        settings = load_settings()
        app = create_app(settings)
    except ConfigurationError as exc:
        configure_logging("s3proxy")
        LOGGER.error("startup_failed", error=str(exc))
        return 1

    LOGGER.info("proxy_listening", host=settings.host, port=settings.port)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=settings.log_level.lower(),
    )
    uvicorn.Server(config).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
