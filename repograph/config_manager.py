"""Configuration manager for repograph using TOML files."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

import toml

from .config import BASE_DIR, CONFIG_FILE

logger = logging.getLogger(__name__)


@dataclass
class SyncSettings:
    """Tunables for the sync orchestrator and worker pool."""

    max_workers: int = 4
    batch_size: int = 50
    job_timeout_seconds: float = 1800.0
    graph_write_retries: int = 3
    embed_retries: int = 3
    embed_timeout_seconds: float = 30.0
    retry_backoff_seconds: float = 0.5
    max_file_errors: int = 100
    max_commits: int = 500
    max_chunk_chars: int = 1500
    embedding_model: str = "hash"


# Default sections written by ``repograph config init``
DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "sync": {
        "max_workers": SyncSettings.max_workers,
        "batch_size": SyncSettings.batch_size,
        "job_timeout_seconds": SyncSettings.job_timeout_seconds,
        "graph_write_retries": SyncSettings.graph_write_retries,
        "embed_retries": SyncSettings.embed_retries,
        "embed_timeout_seconds": SyncSettings.embed_timeout_seconds,
        "max_file_errors": SyncSettings.max_file_errors,
        "max_commits": SyncSettings.max_commits,
    },
    "embeddings": {"model": SyncSettings.embedding_model},
    "chunks": {"max_chunk_chars": SyncSettings.max_chunk_chars},
}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    A missing or unreadable file yields an empty dict so every caller
    falls back to built-in defaults.
    """
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", CONFIG_FILE, exc)
        return {}


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)
    try:
        with open(CONFIG_FILE, "w") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config %s: %s", CONFIG_FILE, exc)
        return False


def init_config() -> bool:
    """Write the default config file unless one already exists."""
    if CONFIG_FILE.exists():
        return False
    return _save_full_config({k: dict(v) for k, v in DEFAULT_CONFIG.items()})


def load_sync_settings(overrides: Optional[Dict[str, Any]] = None) -> SyncSettings:
    """Build :class:`SyncSettings` from ``[sync]``, ``[chunks]`` and ``[embeddings]``.

    Unknown keys are ignored.  Values from *overrides* win over the file.
    """
    full = load_full_config()
    known = {f.name for f in fields(SyncSettings)}
    values: Dict[str, Any] = {}

    for key, value in full.get("sync", {}).items():
        if key in known:
            values[key] = value
    chunks = full.get("chunks", {})
    if "max_chunk_chars" in chunks:
        values["max_chunk_chars"] = chunks["max_chunk_chars"]
    embeddings = full.get("embeddings", {})
    if "model" in embeddings:
        values["embedding_model"] = embeddings["model"]

    for key, value in (overrides or {}).items():
        if key in known and value is not None:
            values[key] = value

    return SyncSettings(**values)


def save_sync_setting(key: str, value: Any) -> bool:
    """Persist one ``[sync]`` key, preserving other sections."""
    if key not in asdict(SyncSettings()):
        raise KeyError(f"Unknown sync setting: {key}")
    config = load_full_config()
    config.setdefault("sync", {})[key] = value
    return _save_full_config(config)


# ------------------------------------------------------------------
# Embedding configuration
# ------------------------------------------------------------------

def load_embedding_config() -> Dict[str, Any]:
    """Load the ``[embeddings]`` section, or an empty dict."""
    return load_full_config().get("embeddings", {})


def save_embedding_config(model_key: str) -> bool:
    """Save the embedding model choice, preserving other sections."""
    config = load_full_config()
    config["embeddings"] = {"model": model_key}
    return _save_full_config(config)
