from __future__ import annotations

import hashlib
import os
import shutil
from pathlib import Path


def write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())


def safe_name(name: str) -> str:
    return "".join(ch if ch.isalnum() or ch in (".", "_", "-", "+") else "_" for ch in name)


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def remove_tree(path: Path) -> None:
    """Remove a file or directory tree; a missing path is not an error."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)


def count_entries(root: Path) -> int:
    if not root.exists():
        return 0
    return sum(1 for _ in root.rglob("*"))
