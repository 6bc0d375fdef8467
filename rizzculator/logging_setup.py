"""
rizzculator.logging_setup — Root logger configuration
=======================================================
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install the console handler once; later calls only adjust the level."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    logging.getLogger("rizzculator").setLevel(level.upper())
    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
