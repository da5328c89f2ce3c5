"""Launch the relay with uvicorn using the configured host, port and log level."""
from __future__ import annotations
import logging
import sys

import uvicorn
from pydantic import ValidationError

from gemini_relay.common.logging_setup import setup_logging
from gemini_relay.common.settings import get_settings

LOGGER = logging.getLogger("gemini_relay.server")


def main() -> None:
    try:
        settings = get_settings()
    except ValidationError:
        setup_logging()
        LOGGER.error("GEMINI_API_KEY is missing! Add it to the environment or a .env file.")
        sys.exit(1)

    setup_logging(settings.log_level)
    LOGGER.info("Server running on http://%s:%s", settings.host, settings.port)
    uvicorn.run(
        "gemini_relay.serve.fastapi_app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
