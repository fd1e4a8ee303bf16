"""Command line entrypoint that serves the API with uvicorn."""

import uvicorn

from rtmp_monitor.config import Settings


def main() -> None:
    """Run the RTMP monitor service."""
    settings = Settings()
    uvicorn.run(
        "rtmp_monitor.api.asgi:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
