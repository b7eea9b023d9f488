"""
Slot Router Configuration Settings

This module contains all configuration constants for the slot router.
Every value can be overridden through a SLOTROUTER_* environment variable.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Router configuration settings."""

    # Cluster settings
    HASH_SLOTS: int = 16384
    NODES: str = os.environ.get("SLOTROUTER_NODES", "")

    # Dispatch settings
    DISPATCH_TIMEOUT: float = float(os.environ.get("SLOTROUTER_DISPATCH_TIMEOUT", "5.0"))
    GROUP_BY: str = os.environ.get("SLOTROUTER_GROUP_BY", "node")
    REFRESH_ATTEMPTS: int = int(os.environ.get("SLOTROUTER_REFRESH_ATTEMPTS", "2"))
    DEFAULT_COMMAND: str = "MSET"

    # Logging settings
    DEBUG: bool = os.environ.get("SLOTROUTER_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("SLOTROUTER_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
