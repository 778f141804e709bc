"""PID file for the managed whisper server, readable by external tooling."""

import logging
from pathlib import Path
from typing import Optional

import psutil

logger = logging.getLogger(__name__)


def write_pid(path: Path, pid: int):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{pid}\n")


def read_pid(path: Path) -> Optional[int]:
    """Read the PID stored in path, or None if missing or unreadable."""
    try:
        return int(Path(path).read_text().strip())
    except (OSError, ValueError):
        return None


def remove_pid(path: Path):
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass


def clear_stale(path: Path) -> bool:
    """Remove the PID file if its process is gone. Returns True if removed."""
    path = Path(path)
    if not path.exists():
        return False

    pid = read_pid(path)
    if pid is not None and psutil.pid_exists(pid):
        return False

    logger.warning(f"Removing stale PID file {path} (pid {pid})")
    remove_pid(path)
    return True
