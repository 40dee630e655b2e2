"""
Run the API server: python -m feedsync
"""

import uvicorn

from .config import config


def main():
    uvicorn.run(
        "feedsync.server:app",
        host="127.0.0.1",
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
