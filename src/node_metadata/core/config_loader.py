"""
config_loader.py
- Loads and previews the YAML operator settings file.
- Merges file values over the environment-derived defaults from config.py.
"""

import os

import yaml
from loguru import logger

from node_metadata.core import config
from node_metadata.core.constants import (
    DEFAULT_PROTECTED_NODE_LABEL_PREFIXES,
    PROPAGATED_LABELS_ANNOTATION,
)

SETTING_KEYS = {
    "namespaces",
    "resync_interval",
    "protected_node_label_prefixes",
    "propagated_labels_annotation",
    "dry_run",
}


def load_yaml(path):
    """Safely load a YAML file and return a parsed dict. Returns {} on failure."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"[load_yaml] Failed to load {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"[load_yaml] Expected a mapping at the top of {path}, got {type(data).__name__}")
        return {}
    return data


def preview_yaml(path, name=None):
    """
    Log a human-readable preview of the YAML file contents.
    Typically used during startup to verify config presence and structure.
    """
    if not os.path.exists(path):
        logger.warning(f"[config] File not found: {path}")
        return

    try:
        with open(path, "r") as f:
            contents = f.read()
    except OSError as e:
        logger.error(f"[config] Could not preview {path}: {e}")
        return
    logger.info(f"Loaded {name or path}:\n" + "\n".join(f"| {line}" for line in contents.strip().splitlines()))


def default_settings():
    return {
        "namespaces": list(config.WATCH_NAMESPACES),
        "resync_interval": config.RESYNC_INTERVAL,
        "protected_node_label_prefixes": list(DEFAULT_PROTECTED_NODE_LABEL_PREFIXES),
        "propagated_labels_annotation": PROPAGATED_LABELS_ANNOTATION,
        "dry_run": config.DRY_RUN,
    }


def load_operator_settings(path=None):
    """
    Build the effective operator settings.

    Args:
        path (str): Optional YAML file; defaults to OPERATOR_CONFIG.

    Returns:
        dict: Defaults from the environment, overridden by any keys present in the file.
    """
    settings = default_settings()
    path = path or config.OPERATOR_CONFIG
    if not os.path.exists(path):
        logger.debug(f"[config] No settings file at {path}, using environment defaults.")
        return settings

    overrides = load_yaml(path)
    for key, value in overrides.items():
        if key not in SETTING_KEYS:
            logger.warning(f"[config] Ignoring unknown setting '{key}' in {path}")
            continue
        settings[key] = value

    if isinstance(settings["namespaces"], str):
        settings["namespaces"] = [settings["namespaces"]]
    settings["resync_interval"] = int(settings["resync_interval"])
    settings["dry_run"] = bool(settings["dry_run"])
    return settings
