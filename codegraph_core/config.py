"""Configuration paths and ingestion defaults for the local code graph."""

from __future__ import annotations

from pathlib import Path

from .config_manager import BASE_DIR, load_config

DEFAULT_DB_PATH = BASE_DIR / "graph.db"

SKIP_DIRS = frozenset({
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs", "target",
    "egg-info", ".codegraph",
})

# Load configuration from TOML file (if available)
_toml_config = load_config()

INGEST_WORKERS = int(_toml_config["ingest"].get("workers", 4))
INGEST_LANGUAGES = tuple(_toml_config["ingest"].get("languages", ()))
EXTRA_SKIP_DIRS = frozenset(_toml_config["ingest"].get("skip_dirs", ()))
VALIDATOR_WORKERS = int(_toml_config["validator"].get("workers", 4))
STORE_PATH = Path(_toml_config["store"]["path"]).expanduser() if _toml_config["store"].get("path") else DEFAULT_DB_PATH


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)


def skip_dirs() -> frozenset:
    return SKIP_DIRS | EXTRA_SKIP_DIRS
