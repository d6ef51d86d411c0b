"""
config.py
- Defines global configuration values derived from environment variables.
- Used by all runners and logic modules for shared behavior control.
"""

import os
import sys

from loguru import logger

from node_metadata.core.constants import DEFAULT_NAMESPACE, DEFAULT_RESYNC_INTERVAL

# --- Runtime Behavior Flags ---
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"
RUN_ONCE = os.getenv("RUN_ONCE", "false").lower() == "true"
EVENT_MODE = os.getenv("EVENT_MODE", "false").lower() == "true"
POLLING_MODE = os.getenv("POLLING_MODE", "true").lower() == "true"
IN_CLUSTER = os.getenv("IN_CLUSTER", "false").lower() == "true"

# --- Scope ---
WATCH_NAMESPACES = [
    ns.strip() for ns in os.getenv("WATCH_NAMESPACES", DEFAULT_NAMESPACE).split(",") if ns.strip()
]
RESYNC_INTERVAL = int(os.getenv("RESYNC_INTERVAL", str(DEFAULT_RESYNC_INTERVAL)))

# --- API & Logging ---
API_PORT = int(os.getenv("API_PORT", "6060"))
LOG_LEVEL = "DEBUG" if DEBUG else "INFO"
LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# --- Config Paths ---
OPERATOR_CONFIG = os.getenv("OPERATOR_CONFIG", "/etc/managed-node-metadata/config.yml")


def configure_logging(level=LOG_LEVEL):
    """Replace loguru's default sink with the operator's stderr format."""
    logger.remove()
    logger.add(sink=sys.stderr, level=level, format=LOG_FORMAT, colorize=True)
