"""Content-addressed file storage for downloaded documents.

PDFs are written once under ``<base_dir>/<sha[:2]>/<sha>.pdf`` so repeated
downloads of the same file (e.g. the same preprint listed by two journals)
share one copy on disk.
"""

from __future__ import annotations

import hashlib
from pathlib import Path


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_content_path(base_dir: Path, digest: str, suffix: str = ".pdf") -> Path:
    """Return the storage path for a digest, sharded by its first two chars."""
    return base_dir / digest[:2] / f"{digest}{suffix}"


def store_content(base_dir: Path, data: bytes, suffix: str = ".pdf") -> Path:
    """Write ``data`` to its content-addressed location if not already present.

    Args:
        base_dir: Storage root.
        data: File contents.
        suffix: File extension including the dot.

    Returns:
        Path: Location of the stored file.
    """
    path = build_content_path(base_dir, content_hash(data), suffix)
    if path.exists():
        return path
    ensure_dir(path.parent)
    # 先写临时文件再重命名，避免并发写入产生半截文件
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_bytes(data)
    tmp_path.replace(path)
    return path
