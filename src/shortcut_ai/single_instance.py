from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import IO

from shortcut_ai.config import APP_DIR

LOGGER = logging.getLogger(__name__)

LOCK_PATH = APP_DIR / "shortcut_ai.lock"
_held: IO[str] | None = None


def acquire_single_instance_lock(path: Path = LOCK_PATH) -> bool:
    """Take the per-user app lock; False when another process holds it."""
    global _held

    if _held is not None:
        return True

    path.parent.mkdir(parents=True, exist_ok=True)
    handle = path.open("a+", encoding="utf-8")
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        handle.close()
        LOGGER.info("Lock %s held by pid %s", path, lock_owner_pid(path))
        return False

    handle.seek(0)
    handle.truncate(0)
    handle.write(str(os.getpid()))
    handle.flush()
    _held = handle
    return True


def lock_owner_pid(path: Path = LOCK_PATH) -> int | None:
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return int(raw) if raw.isdigit() else None


def release_single_instance_lock() -> None:
    global _held

    handle, _held = _held, None
    if handle is None:
        return
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    except OSError:
        LOGGER.debug("Unlock failed", exc_info=True)
    finally:
        handle.close()


__all__ = ["LOCK_PATH", "acquire_single_instance_lock", "lock_owner_pid", "release_single_instance_lock"]
