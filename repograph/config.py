"""Configuration paths for local repograph storage."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("REPOGRAPH_HOME", str(Path.home() / ".repograph"))).expanduser()
DATA_DIR = BASE_DIR / "data"
GRAPH_DIR = DATA_DIR / "graphs"
VECTOR_DIR = DATA_DIR / "vectors"
JOBS_DB = DATA_DIR / "jobs.db"
CONFIG_FILE = BASE_DIR / "config.toml"

DEFAULT_EMBEDDING_DIM = 256

# Directories never worth walking when snapshotting a working tree
SKIP_DIRS = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs", "target",
    ".repograph", "vendor",
}


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    for path in (BASE_DIR, DATA_DIR, GRAPH_DIR, VECTOR_DIR):
        path.mkdir(parents=True, exist_ok=True)
