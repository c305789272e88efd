"""Configuration manager for the code graph core using TOML files."""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import toml

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.environ.get("CODEGRAPH_HOME", str(Path.home() / ".codegraph"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"


DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "ingest": {
        "workers": 4,
        "languages": ["python", "rust", "javascript", "typescript", "go", "java"],
        "skip_dirs": [],
    },
    "store": {
        "path": "",
    },
    "validator": {
        "workers": 4,
    },
}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections) without defaults."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", CONFIG_FILE, exc)
        return {}


def load_config() -> Dict[str, Dict[str, Any]]:
    """Load configuration, falling back to defaults for missing keys.

    Returns:
        Mapping of section name to settings.  Unknown sections in the file
        are passed through untouched.
    """
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for section, values in load_full_config().items():
        if isinstance(values, dict):
            merged.setdefault(section, {}).update(values)
    return merged


def save_config(section: str, values: Dict[str, Any]) -> bool:
    """Update one section of the TOML file, preserving the others.

    Returns:
        True if saved successfully, False otherwise
    """
    config = load_full_config()
    config.setdefault(section, {}).update(values)
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(CONFIG_FILE, "w", encoding="utf-8") as f:
            toml.dump(config, f)
    except OSError as exc:
        logger.warning("Could not write config %s: %s", CONFIG_FILE, exc)
        return False
    return True
