"""
Server launcher.

Starts the FastAPI application with uvicorn using the host, port and log level
from settings. Exits with status 1 when the server cannot start.
"""

import sys

import uvicorn

from lakitu_ai.core.logging_config import get_logger
from lakitu_ai.server.core.config import settings

logger = get_logger(__name__)


def main() -> None:
    try:
        uvicorn.run(
            "lakitu_ai.server.main:app",
            host=settings.server_host,
            port=settings.server_port,
            log_level=settings.log_level.lower(),
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
