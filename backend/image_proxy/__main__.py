"""
Run the image proxy with uvicorn.

    python -m image_proxy
"""

import os

import uvicorn

from .main import setup_logging


def main() -> None:
    setup_logging()
    uvicorn.run(
        "image_proxy.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
