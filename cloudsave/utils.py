"""Shared utility functions."""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path
from typing import Callable

from loguru import logger

UNKNOWN_GAME = "Unknown_Game"

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_+")

FileVisitor = Callable[[Path, Path], None]
DirVisitor = Callable[[Path, Path], None]


def format_size(size_bytes: int) -> str:
    """Format byte count to human-readable string."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.2f} GB"


def normalize_game_name(name: str) -> str:
    """Turn a game identifier into a name safe for folders, locally and in the cloud.

    Illegal characters and whitespace runs become underscores, repeated
    underscores collapse to one, and leading/trailing underscores are
    stripped.  An empty result falls back to ``Unknown_Game``.
    """
    name = _ILLEGAL_CHARS.sub("_", name)
    name = _WHITESPACE.sub("_", name)
    name = _UNDERSCORES.sub("_", name)
    name = name.strip("_").strip()
    return name or UNKNOWN_GAME


def walk_tree(
    root: Path,
    on_file: FileVisitor,
    on_dir: DirVisitor | None = None,
) -> None:
    """
    Walk *root* top-down in name order.

    ``on_dir(path, relative)`` is called for every sub-directory before its
    contents; ``on_file(path, relative)`` for every regular file.
    """
    _walk(root, root, on_file, on_dir)


def _walk(root: Path, current: Path, on_file: FileVisitor, on_dir: DirVisitor | None) -> None:
    with os.scandir(current) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        path = Path(entry.path)
        if entry.is_dir(follow_symlinks=False):
            if on_dir is not None:
                on_dir(path, path.relative_to(root))
            _walk(root, path, on_file, on_dir)
        elif entry.is_file():
            on_file(path, path.relative_to(root))


def directory_size(root: Path) -> int:
    """Sum of the sizes of all files below *root*."""
    total = 0

    def _add(path: Path, _rel: Path) -> None:
        nonlocal total
        total += path.stat().st_size

    walk_tree(root, _add)
    return total


def count_files(root: Path) -> int:
    """Number of regular files below *root*."""
    count = 0

    def _inc(_path: Path, _rel: Path) -> None:
        nonlocal count
        count += 1

    walk_tree(root, _inc)
    return count


def remove_tree(path: Path) -> None:
    """Recursively delete *path*; a missing path is not an error."""
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
        logger.debug(f"Removed {path}")
    except OSError as e:
        logger.error(f"Failed to remove {path}: {e}")
        raise
