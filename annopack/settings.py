"""Runtime settings read from the environment."""

import logging
import os
from pathlib import Path

from rich.logging import RichHandler


def get_remote_dir() -> Path:
    """Get the remote storage root from environment or default."""
    env_path = os.environ.get("ANNOPACK_REMOTE_DIR")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "remote"


def get_cache_dir() -> Path:
    """Get the local cache directory from environment or default."""
    env_path = os.environ.get("ANNOPACK_CACHE_DIR")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "cache"


def get_sync_workers(default: int = 4) -> int:
    """Read the sync parallelism with safe fallback."""
    raw = os.getenv("ANNOPACK_SYNC_WORKERS")
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    return value


def get_auto_download() -> bool:
    """Whether selecting a remote package starts its download right away."""
    return os.getenv("ANNOPACK_AUTO_DOWNLOAD", "").strip().lower() in {"1", "true", "yes"}


def get_rate_limit() -> str:
    """Rate limit for download and sync requests of the API."""
    return os.environ.get("ANNOPACK_RATE_LIMIT", "60/minute")


def get_log_level() -> str:
    return os.environ.get("ANNOPACK_LOG_LEVEL", "WARNING").upper()


def configure_logging(level: str | None = None) -> None:
    """Route log records of every module through rich."""
    logging.basicConfig(
        level=(level or get_log_level()).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
