"""Module entrypoint for running the API service with shared settings."""

import uvicorn

from price_tracker.core.config import get_settings


def main() -> int:
    """Run the API service using configured host and port."""

    settings = get_settings()
    uvicorn.run(
        "price_tracker.services.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
