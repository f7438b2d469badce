"""Local backup store: per-game backup directories under the backup root.

Layout::

    root/CloudSaves/{shop}-{game}/{backupId}/
        {shop}-{game}/        payload written by the save tool
        metadata.json
        achievements.json     optional
        .cloud-only           optional, payload intentionally not kept
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from loguru import logger

from cloudsave.core.paths import (
    ACHIEVEMENTS_FILE,
    BACKUP_SUBDIR,
    CLOUD_ONLY_MARKER,
    METADATA_FILE,
    game_folder_name,
    game_folder_names,
    resolve_payload_dir,
)
from cloudsave.exceptions import BackupNotFoundError
from cloudsave.models.backup_record import (
    LOCAL_HOSTNAME,
    BackupMetadata,
    BackupRecord,
    EphemeralBackup,
    LocalBackupRef,
    normalize_label,
    parse_timestamp,
)
from cloudsave.models.detection import ScanResult
from cloudsave.utils import directory_size, remove_tree


class SaveTool(Protocol):
    """The part of the save tool the stores depend on."""

    def backup(
        self, shop: str, object_id: str, target_dir: Path | None, wine_prefix: str | None = None
    ) -> ScanResult: ...

    def restore(
        self, shop: str, object_id: str, source_dir: Path, wine_prefix: str | None = None
    ) -> None: ...


def _birth_time(path: Path) -> datetime:
    st = path.stat()
    ts = getattr(st, "st_birthtime", None) or st.st_ctime
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class LocalBackupStore:
    """Creates, lists, restores and deletes backups on the local disk."""

    def __init__(self, backup_root: Path, tool: SaveTool) -> None:
        self._root = backup_root
        self._tool = tool

    @property
    def backup_root(self) -> Path:
        return self._root

    def ensure_layout(self) -> Path:
        base = self._root / BACKUP_SUBDIR
        base.mkdir(parents=True, exist_ok=True)
        return base

    # ── Paths ──

    def game_dir(self, shop: str, object_id: str) -> Path:
        return self._root / BACKUP_SUBDIR / game_folder_name(shop, object_id)

    def backup_dir(self, shop: str, object_id: str, backup_id: str) -> Path:
        return self.game_dir(shop, object_id) / backup_id

    def payload_dir(self, shop: str, object_id: str, backup_id: str) -> Path:
        return self.backup_dir(shop, object_id, backup_id) / game_folder_name(shop, object_id)

    def _existing_backup_dirs(self, shop: str, object_id: str, backup_id: str) -> list[Path]:
        base = self._root / BACKUP_SUBDIR
        dirs = [base / name / backup_id for name in game_folder_names(shop, object_id)]
        return [d for d in dirs if d.is_dir()]

    # ── Create ──

    def _bundle(
        self, shop: str, object_id: str, backup_dir: Path, wine_prefix: str | None
    ) -> Path:
        """Run the save tool into a fresh payload directory inside *backup_dir*."""
        payload = backup_dir / game_folder_name(shop, object_id)
        # Never merge with a previous run's leftovers
        remove_tree(payload)
        self._tool.backup(shop, object_id, payload, wine_prefix)
        return payload

    def create_backup(
        self,
        shop: str,
        object_id: str,
        label: str | None = None,
        achievements: list[dict[str, Any]] | None = None,
        download_option_title: str | None = None,
        wine_prefix: str | None = None,
    ) -> BackupRecord:
        """Back up a game into a new directory and write its ``metadata.json``."""
        backup_id = str(uuid4())
        backup_dir = self.backup_dir(shop, object_id, backup_id)
        backup_dir.mkdir(parents=True, exist_ok=True)

        try:
            payload = self._bundle(shop, object_id, backup_dir, wine_prefix)
        except Exception:
            logger.error(f"Backup of {shop}/{object_id} failed, removing {backup_dir}")
            remove_tree(backup_dir)
            raise

        if achievements:
            with open(backup_dir / ACHIEVEMENTS_FILE, "w", encoding="utf-8") as f:
                json.dump(achievements, f, ensure_ascii=False)

        created_at = datetime.now(tz=timezone.utc)
        size = directory_size(payload) if payload.is_dir() else 0
        metadata = BackupMetadata(
            id=backup_id,
            label=normalize_label(label, created_at),
            created_at=created_at.isoformat(),
            download_option_title=download_option_title,
            artifact_length_in_bytes=size,
            hostname=LOCAL_HOSTNAME,
        )
        self._write_metadata(backup_dir, metadata)

        logger.info(f"Created local backup {backup_id} for {shop}/{object_id} ({size} bytes)")
        return self._to_record(metadata, created_at)

    def create_ephemeral_backup(
        self, shop: str, object_id: str, wine_prefix: str | None = None
    ) -> EphemeralBackup:
        """Back up into a temp directory outside the backup root; caller removes ``root``."""
        root = Path(tempfile.mkdtemp(prefix="cloudsave-ephemeral-"))
        backup_id = str(uuid4())
        backup_dir = root / game_folder_name(shop, object_id) / backup_id
        backup_dir.mkdir(parents=True, exist_ok=True)
        try:
            payload = self._bundle(shop, object_id, backup_dir, wine_prefix)
        except Exception:
            remove_tree(root)
            raise
        logger.debug(f"Ephemeral backup {backup_id} for {shop}/{object_id} at {payload}")
        return EphemeralBackup(backup_id=backup_id, payload_path=payload, root=root)

    # ── Restore ──

    def restore_backup(
        self,
        shop: str,
        object_id: str,
        backup_id: str,
        wine_prefix: str | None = None,
        alternate_root: Path | None = None,
    ) -> list[dict[str, Any]]:
        """Restore a backup through the save tool; returns its saved achievements."""
        payload = resolve_payload_dir(self._root, shop, object_id, backup_id, alternate_root)
        logger.info(f"Restoring {shop}/{object_id} from {payload}")
        self._tool.restore(shop, object_id, payload, wine_prefix)
        return self._read_achievements(payload.parent / ACHIEVEMENTS_FILE)

    def _read_achievements(self, path: Path) -> list[dict[str, Any]]:
        if not path.is_file():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable achievements file {path}: {e}")
            return []
        return data if isinstance(data, list) else []

    # ── Delete / mark ──

    def delete_backup(self, shop: str, object_id: str, backup_id: str) -> None:
        """Remove a backup directory; a missing backup is not an error."""
        for backup_dir in self._existing_backup_dirs(shop, object_id, backup_id):
            remove_tree(backup_dir)
            logger.info(f"Deleted local backup {backup_dir}")

    def mark_cloud_only(self, shop: str, object_id: str, backup_id: str) -> None:
        dirs = self._existing_backup_dirs(shop, object_id, backup_id)
        if not dirs:
            raise BackupNotFoundError(path=self.backup_dir(shop, object_id, backup_id))
        (dirs[0] / CLOUD_ONLY_MARKER).touch()
        logger.info(f"Marked backup {backup_id} of {shop}/{object_id} as cloud-only")

    # ── List ──

    def list_backups(self, shop: str, object_id: str) -> list[BackupRecord]:
        """All local backups of a game, newest first."""
        names = game_folder_names(shop, object_id)
        records: dict[str, BackupRecord] = {}
        base = self._root / BACKUP_SUBDIR
        for folder in names:
            game_dir = base / folder
            if not game_dir.is_dir():
                continue
            with os.scandir(game_dir) as it:
                entries = sorted((e for e in it if e.is_dir()), key=lambda e: e.name)
            for entry in entries:
                if entry.name in records:
                    continue
                record = self._read_backup(Path(entry.path), names)
                if record is not None:
                    records[entry.name] = record
        return sorted(records.values(), key=lambda r: r.created_at, reverse=True)

    def _read_backup(self, backup_dir: Path, names: list[str]) -> BackupRecord | None:
        if (backup_dir / CLOUD_ONLY_MARKER).exists():
            logger.debug(f"Skipping cloud-only backup {backup_dir.name}")
            return None

        meta_path = backup_dir / METADATA_FILE
        if not meta_path.exists():
            metadata = self._heal_metadata(backup_dir, names)
            if metadata is None:
                return None
        else:
            try:
                with open(meta_path, encoding="utf-8") as f:
                    metadata = BackupMetadata.from_dict(json.load(f))
            except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping backup with unreadable metadata {meta_path}: {e}")
                return None

        created_at = parse_timestamp(metadata.created_at) or _birth_time(backup_dir)
        metadata.id = backup_dir.name
        return self._to_record(metadata, created_at)

    def _heal_metadata(self, backup_dir: Path, names: list[str]) -> BackupMetadata | None:
        """Rebuild a missing ``metadata.json`` from the payload directory."""
        payload = next((backup_dir / n for n in names if (backup_dir / n).is_dir()), None)
        if payload is None:
            logger.debug(f"Skipping {backup_dir}: no metadata and no payload")
            return None

        created_at = _birth_time(payload)
        try:
            size = directory_size(payload)
        except OSError as e:
            logger.warning(f"Could not size {payload}: {e}")
            size = 0
        metadata = BackupMetadata(
            id=backup_dir.name,
            label=normalize_label(None, created_at),
            created_at=created_at.isoformat(),
            artifact_length_in_bytes=size,
        )
        try:
            self._write_metadata(backup_dir, metadata)
            logger.info(f"Recreated missing metadata for backup {backup_dir.name}")
        except OSError as e:
            logger.warning(f"Could not write metadata for {backup_dir}: {e}")
        return metadata

    # ── Helpers ──

    def _write_metadata(self, backup_dir: Path, metadata: BackupMetadata) -> None:
        with open(backup_dir / METADATA_FILE, "w", encoding="utf-8") as f:
            json.dump(metadata.to_dict(), f, ensure_ascii=False, indent=2)

    def _to_record(self, metadata: BackupMetadata, created_at: datetime) -> BackupRecord:
        return BackupRecord(
            ref=LocalBackupRef(metadata.id),
            label=normalize_label(metadata.label, created_at),
            created_at=created_at,
            size_bytes=metadata.artifact_length_in_bytes,
            source_hostname=metadata.hostname or LOCAL_HOSTNAME,
            download_option_title=metadata.download_option_title,
        )
