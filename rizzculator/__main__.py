"""
rizzculator.__main__ — Entry point
====================================
Run with::

    python -m rizzculator
"""

from __future__ import annotations

import logging
import os

import uvicorn
from dotenv import load_dotenv

from rizzculator.config import load_config
from rizzculator.logging_setup import configure_logging

logger = logging.getLogger("rizzculator")


def main() -> None:
    """Load settings and serve the API."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Non-secret config.
    cfg = load_config()
    configure_logging(cfg.log_level)

    # 3. Serve.
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting %s on %s:%d", cfg.app_name, host, port)
    uvicorn.run(
        "rizzculator.api.main:app",
        host=host,
        port=port,
        log_level=cfg.log_level.lower(),
        reload=cfg.debug,
    )


if __name__ == "__main__":
    main()
