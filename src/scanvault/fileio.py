"""Atomic text writes used for every file scanvault puts in the vault."""

import os
from pathlib import Path


def atomic_write_text(path: Path, content: str) -> None:
    """Write content through a hidden temp file and os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


def write_if_changed(path: Path, content: str) -> bool:
    """Atomically write content unless the file already holds exactly it.

    Returns:
        True if the file was written
    """
    if path.is_file() and path.read_bytes() == content.encode("utf-8"):
        return False
    atomic_write_text(path, content)
    return True
