"""
Probes — filesystem state.

Pure reads: hashing, existence and marker lookups. No process calls.
"""

from __future__ import annotations

import hashlib
from pathlib import Path


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def file_matches_content(path: Path, expected_hash: str) -> bool:
    """Whether ``path`` exists and its bytes hash to ``expected_hash``."""
    try:
        data = path.read_bytes()
    except OSError:
        return False
    return hashlib.sha256(data).hexdigest() == expected_hash


def file_exists(path: Path) -> bool:
    return path.exists()


def dir_populated(path: Path) -> bool:
    """Whether ``path`` is a directory with at least one entry."""
    try:
        return path.is_dir() and any(path.iterdir())
    except OSError:
        return False


def block_markers(marker: str) -> tuple[str, str]:
    return f"# >>> {marker} >>>", f"# <<< {marker} <<<"


def block_present(path: Path, marker: str, body_hash: str | None = None) -> bool:
    """Whether a managed block delimited by ``marker`` is in ``path``.

    With ``body_hash`` the block content must also match.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return False
    begin, end = block_markers(marker)
    start = text.find(begin)
    if start < 0:
        return False
    stop = text.find(end, start)
    if stop < 0:
        return False
    if body_hash is None:
        return True
    body = text[start + len(begin) : stop].strip("\n")
    return content_hash(body) == body_hash


def symlink_points_to(link: Path, target: Path) -> bool:
    return link.is_symlink() and link.resolve() == target.resolve()
