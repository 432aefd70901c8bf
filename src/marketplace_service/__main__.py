"""Entry point for the marketplace service.

Usage::

    CONFIG_PATH=config.yaml python -m marketplace_service
"""

from __future__ import annotations

import uvicorn

from marketplace_service.app import create_app
from marketplace_service.config import get_settings


def main() -> None:
    """Serve the API with the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        create_app(),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()
