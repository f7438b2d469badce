"""Cloud backup store: the local backup layout mirrored as a folder tree.

``MainFolder/{shop}-{game}/{backupId}/<payload contents>``
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Iterator, Protocol

from loguru import logger

from cloudsave.config import DEFAULT_MAIN_FOLDER
from cloudsave.core.drive_client import FilePage
from cloudsave.core.paths import (
    BACKUP_SUBDIR,
    game_folder_name,
    is_safe_component,
    legacy_game_folder_name,
)
from cloudsave.exceptions import BackupNotFoundError, DriveApiError
from cloudsave.models.backup_record import CloudFolder
from cloudsave.models.progress import TransferCallback
from cloudsave.utils import count_files, walk_tree

ROOT_ID = "root"
PAGE_SIZE = 1000
_NEWEST_FIRST = "createdTime desc"


class CloudDrive(Protocol):
    """Object store operations used by :class:`CloudBackupStore`."""

    def query_files(
        self,
        parent_id: str | None = None,
        name: str | None = None,
        folders: bool | None = None,
        order_by: str | None = None,
        page_size: int = PAGE_SIZE,
        page_token: str | None = None,
    ) -> FilePage: ...

    def get_file(self, file_id: str) -> CloudFolder | None: ...

    def create_folder(self, name: str, parent_id: str | None = None) -> CloudFolder: ...

    def upload_file(self, path: Path, name: str, parent_id: str) -> CloudFolder: ...

    def download_file(self, file_id: str, dest: Path) -> None: ...

    def delete_file(self, file_id: str) -> None: ...

    def trash_file(self, file_id: str) -> None: ...

    def is_authenticated(self) -> bool: ...


class CloudBackupStore:
    """Uploads, downloads, lists and purges backups in the cloud object store."""

    def __init__(self, drive: CloudDrive, main_folder_name: str = DEFAULT_MAIN_FOLDER) -> None:
        self._drive = drive
        self._main_folder_name = main_folder_name
        self._folder_cache: dict[tuple[str, str], str] = {}
        self._cache_lock = threading.Lock()

    @property
    def drive(self) -> CloudDrive:
        return self._drive

    def is_authenticated(self) -> bool:
        return self._drive.is_authenticated()

    # ── Listing helpers ──

    def _iter_files(
        self,
        parent_id: str | None = None,
        name: str | None = None,
        folders: bool | None = None,
        order_by: str | None = None,
    ) -> Iterator[CloudFolder]:
        page_token: str | None = None
        while True:
            page = self._drive.query_files(
                parent_id=parent_id,
                name=name,
                folders=folders,
                order_by=order_by,
                page_size=PAGE_SIZE,
                page_token=page_token,
            )
            yield from page.files
            page_token = page.next_page_token
            if not page_token:
                return

    def _newest_folder(self, name: str, parent_id: str | None = None) -> CloudFolder | None:
        matches = list(self._iter_files(parent_id, name, folders=True, order_by=_NEWEST_FIRST))
        if not matches:
            return None
        # Several folders with one name: the most recently created wins
        return max(matches, key=lambda f: f.created_time or "")

    # ── Folders ──

    def ensure_folder(self, parent_id: str, name: str) -> str:
        """Return the id of folder *name* under *parent_id*, creating it if needed."""
        key = (parent_id, name)
        with self._cache_lock:
            cached = self._folder_cache.get(key)
        if cached:
            return cached

        existing = self._newest_folder(name, parent_id)
        folder_id = existing.id if existing else self._drive.create_folder(name, parent_id).id
        if not existing:
            logger.info(f"Created cloud folder '{name}' ({folder_id})")
        with self._cache_lock:
            self._folder_cache[key] = folder_id
        return folder_id

    def _forget_folder(self, folder_id: str) -> None:
        with self._cache_lock:
            for key in [k for k, v in self._folder_cache.items() if v == folder_id]:
                del self._folder_cache[key]

    def list_folders(self, parent_id: str = ROOT_ID) -> list[CloudFolder]:
        return list(self._iter_files(parent_id, folders=True, order_by="name"))

    def list_root_folders(self) -> list[CloudFolder]:
        return self.list_folders(ROOT_ID)

    def create_folder(self, name: str, parent_id: str = ROOT_ID) -> CloudFolder:
        folder = self._drive.create_folder(name, parent_id)
        logger.info(f"Created cloud folder '{name}' ({folder.id})")
        return folder

    # ── Upload ──

    def upload_backup(
        self,
        shop: str,
        object_id: str,
        payload_dir: Path,
        backup_id: str,
        main_folder_name: str | None = None,
        on_progress: TransferCallback | None = None,
        main_folder_id: str | None = None,
    ) -> str:
        """Mirror *payload_dir* into ``main/{game}/{backup_id}``; returns the backup folder id.

        The main folder is *main_folder_name* under the drive root, or the
        existing folder *main_folder_id* when no name is given.
        """
        if not payload_dir.is_dir():
            raise BackupNotFoundError(f"Backup path not found: {payload_dir}", path=payload_dir)

        if main_folder_id and not main_folder_name:
            main_id = main_folder_id
        else:
            main_id = self.ensure_folder(ROOT_ID, main_folder_name or self._main_folder_name)
        game_id = self.ensure_folder(main_id, game_folder_name(shop, object_id))
        backup_folder_id = self.ensure_folder(game_id, backup_id)

        total = count_files(payload_dir)
        uploaded = 0
        folder_ids: dict[Path, str] = {Path("."): backup_folder_id}

        def _on_dir(path: Path, rel: Path) -> None:
            folder_ids[rel] = self.ensure_folder(folder_ids[rel.parent], path.name)

        def _on_file(path: Path, rel: Path) -> None:
            nonlocal uploaded
            self._drive.upload_file(path, path.name, folder_ids[rel.parent])
            uploaded += 1
            logger.debug(f"Uploaded {rel} ({uploaded}/{total})")
            if on_progress:
                on_progress(uploaded, total)

        walk_tree(payload_dir, _on_file, _on_dir)
        logger.info(f"Uploaded {uploaded} file(s) of {shop}/{object_id} to cloud backup {backup_folder_id}")
        return backup_folder_id

    # ── Download ──

    def _resolve_backup_folder(self, remote_backup_id: str) -> CloudFolder | None:
        try:
            folder = self._drive.get_file(remote_backup_id)
        except DriveApiError as e:
            logger.debug(f"Lookup of {remote_backup_id} by id failed: {e}")
            folder = None
        if folder is not None and folder.is_folder:
            return folder
        return self._newest_folder(remote_backup_id)

    def download_backup(
        self, shop: str, object_id: str, remote_backup_id: str, dest_root: Path
    ) -> Path:
        """Download into ``dest_root/CloudSaves/{game}/{id}/{game}``; returns that path."""
        folder = self._resolve_backup_folder(remote_backup_id)
        if folder is None:
            raise BackupNotFoundError(f"Cloud backup folder not found: {remote_backup_id}")

        name = game_folder_name(shop, object_id)
        leaf = dest_root / BACKUP_SUBDIR / name / remote_backup_id / name
        leaf.mkdir(parents=True, exist_ok=True)
        count = self._download_dir(folder.id, leaf)
        logger.info(f"Downloaded {count} file(s) of cloud backup {remote_backup_id} to {leaf}")
        return leaf

    def _download_dir(self, folder_id: str, local_dir: Path) -> int:
        count = 0
        for item in self._iter_files(folder_id):
            if not is_safe_component(item.name):
                logger.warning(f"Skipping cloud entry with unusable name: {item.name!r}")
                continue
            target = local_dir / item.name
            if item.is_folder:
                target.mkdir(parents=True, exist_ok=True)
                count += self._download_dir(item.id, target)
            else:
                self._drive.download_file(item.id, target)
                count += 1
        return count

    # ── Delete ──

    def _delete_or_trash(self, file_id: str) -> None:
        try:
            self._drive.delete_file(file_id)
        except DriveApiError as e:
            logger.warning(f"Delete of {file_id} rejected ({e}), moving to trash")
            self._drive.trash_file(file_id)

    def _purge(self, folder_id: str) -> None:
        """Delete everything below *folder_id*, files first, then sub-folders bottom-up."""
        for f in list(self._iter_files(folder_id, folders=False)):
            self._delete_or_trash(f.id)
        for d in list(self._iter_files(folder_id, folders=True)):
            self._purge(d.id)
            self._delete_or_trash(d.id)
            self._forget_folder(d.id)

    def delete_backup(self, shop: str, object_id: str, remote_backup_id: str) -> None:
        """Purge a cloud backup folder; a backup that no longer exists is skipped."""
        folder = self._resolve_backup_folder(remote_backup_id)
        if folder is None:
            logger.warning(f"Cloud backup {remote_backup_id} of {shop}/{object_id} not found")
            return
        self._purge(folder.id)
        self._delete_or_trash(folder.id)
        self._forget_folder(folder.id)
        logger.info(f"Deleted cloud backup {remote_backup_id} of {shop}/{object_id}")

    # ── Listing ──

    def find_game_folder(
        self, shop: str, object_id: str, preferred_parent_id: str | None = None
    ) -> CloudFolder | None:
        """Locate a game's folder: in the preferred parent, then anywhere, then by legacy name."""
        name = game_folder_name(shop, object_id)
        if preferred_parent_id:
            folder = self._newest_folder(name, preferred_parent_id)
            if folder:
                return folder
        folder = self._newest_folder(name)
        if folder:
            return folder
        legacy = legacy_game_folder_name(shop, object_id)
        if legacy:
            folder = self._newest_folder(legacy)
            if folder:
                logger.debug(f"Found cloud folder of {shop}/{object_id} by legacy name {legacy}")
        return folder

    def list_backups(
        self, shop: str, object_id: str, preferred_parent_id: str | None = None
    ) -> list[CloudFolder]:
        """Backup folders of a game, newest first; empty when the game has none."""
        game = self.find_game_folder(shop, object_id, preferred_parent_id)
        if game is None:
            return []
        backups = list(self._iter_files(game.id, folders=True, order_by=_NEWEST_FIRST))
        backups.sort(key=lambda f: f.created_time or f.modified_time or "", reverse=True)
        return backups
