"""Entry point for the standalone session server."""

import uvicorn

from shore.config import settings
from shore.main import app


def main() -> None:
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
