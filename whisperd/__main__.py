"""
Entry point for running whisperd via `python -m whisperd`.

Starts the FastAPI server with uvicorn.
"""

import uvicorn

from .config import config


def main():
    """Run the whisperd control API."""
    uvicorn.run(
        "whisperd.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
