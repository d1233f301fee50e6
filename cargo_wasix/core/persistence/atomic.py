"""
Atomic file persistence — write-to-temp-then-rename helpers.

Every mutation of the cache root and every post-processing stage goes
through here, so a crash or signal mid-write never leaves a partially
written file or directory at its final path.  The temp file always
lives in the same directory as the target so the final ``os.replace``
is a single rename on the same filesystem.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def sibling_temp(path: Path, tag: str = "tmp") -> Path:
    """Reserve a unique temp file next to ``path`` and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=f".{tag}",
    )
    os.close(fd)
    return Path(tmp_path)


def commit(tmp: Path, path: Path) -> None:
    """Atomically move ``tmp`` over ``path``."""
    os.replace(tmp, path)
    logger.debug("Committed %s → %s", tmp.name, path)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write bytes to ``path`` atomically."""
    tmp = sibling_temp(path)
    try:
        tmp.write_bytes(data)
        commit(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def atomic_write_text(path: Path, content: str) -> None:
    """Write text to ``path`` atomically (UTF-8)."""
    atomic_write_bytes(path, content.encode("utf-8"))


def atomic_write_json(path: Path, data: Any) -> None:
    """Serialize ``data`` as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def read_json(path: Path) -> Any | None:
    """Load JSON from ``path``; ``None`` if missing or corrupt."""
    if not path.is_file():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.warning("Ignoring unreadable %s: %s", path, e)
        return None


def replace_dir(tmp_dir: Path, final_dir: Path) -> None:
    """Move a fully populated directory into place with one rename.

    An existing ``final_dir`` is removed first; callers must hold the
    lock that serializes writers of ``final_dir``.
    """
    if final_dir.exists():
        logger.debug("Removing stale %s", final_dir)
        shutil.rmtree(final_dir)
    os.replace(tmp_dir, final_dir)
