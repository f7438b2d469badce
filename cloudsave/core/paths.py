"""Backup folder naming and payload path resolution.

Backups live at ``root/CloudSaves/{shop}-{normalized}/{backupId}/`` with the
tool's payload one level deeper, in a directory named like the game folder.
Older versions named folders after the raw object id, so every lookup also
considers that legacy name.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

from loguru import logger

from cloudsave.exceptions import BackupNotFoundError
from cloudsave.utils import normalize_game_name

BACKUP_SUBDIR = "CloudSaves"
METADATA_FILE = "metadata.json"
ACHIEVEMENTS_FILE = "achievements.json"
CLOUD_ONLY_MARKER = ".cloud-only"
RESTORE_SCRATCH_DIR = "temp-restore"


def game_folder_name(shop: str, object_id: str) -> str:
    return f"{shop}-{normalize_game_name(object_id)}"


def is_safe_component(name: str) -> bool:
    if not name or name in (".", ".."):
        return False
    return not any(ch in name for ch in ("/", "\\", "\x00"))


def legacy_game_folder_name(shop: str, object_id: str) -> str | None:
    """``{shop}-{object_id}`` when it differs from the normalized name and is a usable folder name."""
    legacy = f"{shop}-{object_id}"
    if legacy == game_folder_name(shop, object_id) or not is_safe_component(legacy):
        return None
    return legacy


def game_folder_names(shop: str, object_id: str) -> list[str]:
    """Normalized folder name first, then the legacy one if it exists."""
    names = [game_folder_name(shop, object_id)]
    legacy = legacy_game_folder_name(shop, object_id)
    if legacy:
        names.append(legacy)
    return names


# ── Restore candidates ──


def _alternate_root_candidates(
    alt_root: Path, names: list[str], backup_id: str
) -> Iterator[Path]:
    norm = names[0]
    for name in names:
        yield alt_root / name
    if is_safe_component(backup_id):
        for name in names:
            yield alt_root / backup_id / name
        for name in names:
            yield alt_root / BACKUP_SUBDIR / norm / backup_id / name


def _local_candidates(backup_root: Path, names: list[str], backup_id: str) -> Iterator[Path]:
    norm = names[0]
    base = backup_root / BACKUP_SUBDIR
    yield base / norm / backup_id / norm
    for legacy in names[1:]:
        yield base / norm / backup_id / legacy
        yield base / legacy / backup_id / legacy
        yield base / legacy / backup_id / norm


def restore_candidates(
    backup_root: Path,
    shop: str,
    object_id: str,
    backup_id: str,
    alternate_root: Path | None = None,
) -> Iterator[Path]:
    """Yield the possible payload locations of a backup, most likely first."""
    names = game_folder_names(shop, object_id)
    if alternate_root is not None:
        yield from _alternate_root_candidates(alternate_root, names, backup_id)
    else:
        yield from _local_candidates(backup_root, names, backup_id)


def resolve_payload_dir(
    backup_root: Path,
    shop: str,
    object_id: str,
    backup_id: str,
    alternate_root: Path | None = None,
) -> Path:
    """Return the first existing candidate, or raise naming the last path checked."""
    last: Path | None = None
    for candidate in restore_candidates(backup_root, shop, object_id, backup_id, alternate_root):
        logger.debug(f"Checking payload path: {candidate}")
        if candidate.is_dir():
            return candidate
        last = candidate
    raise BackupNotFoundError(path=last)
