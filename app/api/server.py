from __future__ import annotations

import logging
import os
import sys

import uvicorn

from app.api.main import create_app
from app.config import ConfigError


def run() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
    try:
        app = create_app()
    except ConfigError as exc:
        logging.getLogger(__name__).error("%s", exc)
        return 1

    host = os.getenv("AI_NOTES_HOST", "127.0.0.1")
    port = int(os.getenv("AI_NOTES_PORT", "8765"))
    uvicorn.run(app, host=host, port=port, log_level="info")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
