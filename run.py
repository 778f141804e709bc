"""Run the whisperd control API."""

import uvicorn

from whisperd.config import config

if __name__ == "__main__":
    uvicorn.run(
        "whisperd.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )
