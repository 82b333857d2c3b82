"""Run the webhook receiver under uvicorn."""

import uvicorn

from ..utils.config import get_settings
from ..utils.logging import configure_logging

APP_PATH = "list_mirror.api.main:app"


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        APP_PATH,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
