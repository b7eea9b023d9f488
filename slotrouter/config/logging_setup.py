"""Logging configuration for applications embedding the slot router."""

import logging
import sys
from typing import Optional

from .settings import settings


def setup_logging(debug: Optional[bool] = None) -> None:
    """Configure logging based on debug flag (defaults to SLOTROUTER_DEBUG)."""
    if debug is None:
        debug = settings.DEBUG
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )
