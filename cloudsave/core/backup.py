"""Backup orchestration over the local store, the cloud store and the game registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from cloudsave.core.paths import RESTORE_SCRATCH_DIR, resolve_payload_dir
from cloudsave.exceptions import CloudNotEnabledError, CloudSaveError
from cloudsave.models.backup_record import (
    BackupRecord,
    CloudBackupRef,
    CloudFolder,
    GameBackups,
    cloud_folder_label,
    default_label,
    parse_backup_ref,
    parse_timestamp,
)
from cloudsave.models.detection import ScanResult
from cloudsave.models.game import Game, ScannedGame
from cloudsave.models.progress import (
    BackupProgress,
    BackupStatus,
    PercentCallback,
    ProgressCallback,
    TransferCallback,
)
from cloudsave.utils import remove_tree

if TYPE_CHECKING:
    from cloudsave.config import Config
    from cloudsave.core.cloud_store import CloudBackupStore
    from cloudsave.core.ludusavi import Ludusavi
    from cloudsave.core.local_store import LocalBackupStore
    from cloudsave.data.game_registry import GameRegistry


_Reporter = Callable[[BackupStatus, int, str], None]


@dataclass
class BatchResult:
    """Outcome of a bulk operation: game names that worked and errors per game."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def _cloud_record(folder: CloudFolder) -> BackupRecord:
    created_at = (
        parse_timestamp(folder.created_time)
        or parse_timestamp(folder.modified_time)
        or datetime.now(tz=timezone.utc)
    )
    return BackupRecord(
        ref=CloudBackupRef(folder.id),
        label=cloud_folder_label(folder.name, created_at),
        created_at=created_at,
        size_bytes=0,
    )


class BackupManager:
    """Create, restore, delete and list backups of registered games."""

    def __init__(
        self,
        config: Config,
        registry: GameRegistry,
        local_store: LocalBackupStore,
        tool: Ludusavi,
        cloud_store: CloudBackupStore | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._local = local_store
        self._tool = tool
        self._cloud = cloud_store

    @property
    def cloud_store(self) -> CloudBackupStore | None:
        return self._cloud

    # ── Games ──

    def get_games(self) -> list[Game]:
        return self._registry.all()

    def add_game(
        self,
        name: str,
        custom_save_path: str | None = None,
        cover_url: str | None = None,
        game_id: str | None = None,
        platform: str | None = None,
        display_name: str | None = None,
    ) -> Game:
        game = self._registry.add(
            name,
            game_id=game_id,
            platform=platform,
            custom_save_path=custom_save_path,
            display_name=display_name,
            cover_url=cover_url,
        )
        if custom_save_path:
            try:
                self._tool.add_custom_game(name, custom_save_path)
            except (OSError, CloudSaveError) as e:
                logger.warning(f"Could not register save path of {name} with the save tool: {e}")
        return game

    def remove_game(self, id: str) -> Game:
        game = self._registry.remove(id)
        if game.custom_save_path:
            try:
                self._tool.remove_custom_game(game.name)
            except (OSError, CloudSaveError) as e:
                logger.warning(f"Could not unregister {game.name} from the save tool: {e}")
        return game

    def add_scanned_games(self, scanned: list[ScannedGame]) -> list[Game]:
        """Register scan results, skipping games that are already tracked."""
        added: list[Game] = []
        for item in scanned:
            if self._registry.find(item.platform, item.game_id):
                logger.debug(f"Skipping already registered game {item.name}")
                continue
            try:
                added.append(
                    self._registry.add(
                        item.name,
                        game_id=item.game_id,
                        platform=str(item.platform),
                        display_name=item.display_name or item.name,
                    )
                )
            except CloudSaveError as e:
                logger.warning(f"Skipping scanned game {item.name}: {e}")
        logger.info(f"Added {len(added)} scanned game(s)")
        return added

    def get_backup_preview(self, game_id: str) -> ScanResult:
        game = self._registry.get(game_id)
        return self._tool.preview(game.shop, game.object_id)

    # ── Create ──

    def create_local_backup(
        self,
        game_id: str,
        label: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BackupRecord:
        """Back up one game locally and bump its backup count."""
        game = self._registry.get(game_id)

        def _report(status: BackupStatus, progress: int, message: str) -> None:
            if on_progress:
                on_progress(BackupProgress(game.id, status, progress, message))

        _report(BackupStatus.DETECTING, 0, "Detecting save files...")
        _report(BackupStatus.BACKING_UP, 30, "Creating backup...")
        try:
            record = self._local.create_backup(game.shop, game.object_id, label=label)
        except Exception as e:
            _report(BackupStatus.ERROR, 100, str(e))
            raise

        game.backup_count += 1
        game.last_backup = datetime.now(tz=timezone.utc).isoformat()
        self._registry.update(game)
        _report(BackupStatus.COMPLETE, 100, "Backup completed successfully")
        return record

    def _upload_target(self, folder_name: str | None) -> dict[str, Any]:
        if folder_name:
            return {"main_folder_name": folder_name}
        default = self._config.default_folder
        if default:
            return {"main_folder_id": default[0]}
        return {"main_folder_name": self._config.main_folder_name}

    def create_ephemeral_and_upload_to_cloud(
        self,
        game_id: str,
        label: str | None = None,
        on_progress: PercentCallback | None = None,
        folder_name: str | None = None,
    ) -> str:
        """Back up one game into a temp directory, upload it and discard the temp copy.

        Cloud backups are named after their backup id; *label* only shows up
        in the log, the listed label is derived from the creation time.
        """
        cloud = self._require_cloud()
        game = self._registry.get(game_id)
        if on_progress:
            on_progress(0)

        ephemeral = self._local.create_ephemeral_backup(game.shop, game.object_id)
        try:
            remote_id = cloud.upload_backup(
                game.shop,
                game.object_id,
                ephemeral.payload_path,
                ephemeral.backup_id,
                on_progress=_percent_of(on_progress),
                **self._upload_target(folder_name),
            )
        finally:
            remove_tree(ephemeral.root)

        logger.info(f"Uploaded {label or ephemeral.backup_id} of {game.name} to cloud ({remote_id})")
        game.last_backup = datetime.now(tz=timezone.utc).isoformat()
        self._refresh_count(game, cloud)
        if on_progress:
            on_progress(100)
        return remote_id

    def upload_local_backup_to_cloud(
        self,
        backup_id: str,
        shop: str,
        object_id: str,
        on_progress: PercentCallback | None = None,
        folder_name: str | None = None,
    ) -> str:
        """Upload the payload of an existing local backup."""
        cloud = self._require_cloud()
        payload = resolve_payload_dir(self._local.backup_root, shop, object_id, backup_id)
        if on_progress:
            on_progress(0)
        remote_id = cloud.upload_backup(
            shop,
            object_id,
            payload,
            backup_id,
            on_progress=_percent_of(on_progress),
            **self._upload_target(folder_name),
        )
        game = self._registry.find(shop, object_id)
        if game:
            self._refresh_count(game, cloud)
        if on_progress:
            on_progress(100)
        return remote_id

    # ── Restore / delete ──

    def restore_backup(
        self,
        backup_id: str,
        shop: str,
        object_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> list[dict[str, Any]]:
        """Restore a local or cloud backup; returns the achievements stored with it."""
        ref = parse_backup_ref(backup_id)
        game = self._registry.find(shop, object_id)
        progress_id = game.id if game else ""

        def _report(status: BackupStatus, progress: int, message: str) -> None:
            if on_progress:
                on_progress(BackupProgress(progress_id, status, progress, message))

        _report(BackupStatus.RESTORING, 0, "Preparing restore...")
        try:
            if isinstance(ref, CloudBackupRef):
                achievements = self._restore_from_cloud(ref, shop, object_id, _report)
            else:
                _report(BackupStatus.RESTORING, 50, "Restoring files...")
                achievements = self._local.restore_backup(shop, object_id, ref.backup_id)
        except Exception as e:
            _report(BackupStatus.ERROR, 100, str(e))
            raise

        _report(BackupStatus.COMPLETE, 100, "Restore completed successfully")
        return achievements

    def _restore_from_cloud(
        self, ref: CloudBackupRef, shop: str, object_id: str, report: _Reporter
    ) -> list[dict[str, Any]]:
        cloud = self._require_cloud()
        scratch = self._local.backup_root / RESTORE_SCRATCH_DIR
        remove_tree(scratch)
        scratch.mkdir(parents=True, exist_ok=True)
        try:
            report(BackupStatus.DOWNLOADING, 20, "Downloading backup from cloud...")
            cloud.download_backup(shop, object_id, ref.folder_id, scratch)
            report(BackupStatus.RESTORING, 50, "Restoring files...")
            return self._local.restore_backup(
                shop, object_id, ref.folder_id, alternate_root=scratch
            )
        finally:
            remove_tree(scratch)

    def delete_backup(self, backup_id: str, shop: str, object_id: str) -> None:
        """Delete a local or cloud backup, then recount the game's backups."""
        ref = parse_backup_ref(backup_id)
        if isinstance(ref, CloudBackupRef):
            self._require_cloud().delete_backup(shop, object_id, ref.folder_id)
        else:
            self._local.delete_backup(shop, object_id, ref.backup_id)

        game = self._registry.find(shop, object_id)
        if game:
            self._refresh_count(game, self._cloud_for_listing())

    def mark_backup_as_cloud_only(self, backup_id: str, shop: str, object_id: str) -> None:
        self._local.mark_cloud_only(shop, object_id, backup_id)

    # ── Listing ──

    def _require_cloud(self) -> CloudBackupStore:
        if self._cloud is None or not self._config.cloud_enabled:
            raise CloudNotEnabledError()
        return self._cloud

    def _cloud_for_listing(self) -> CloudBackupStore | None:
        """The cloud store if it is enabled and authenticated, else None."""
        if self._cloud is None or not self._config.cloud_enabled:
            return None
        try:
            if self._cloud.is_authenticated():
                return self._cloud
        except CloudSaveError as e:
            logger.warning(f"Cloud authentication check failed: {e}")
        return None

    def _preferred_parent(self) -> str | None:
        default = self._config.default_folder
        return default[0] if default else None

    def get_local_backups(self, shop: str, object_id: str) -> list[BackupRecord]:
        return self._local.list_backups(shop, object_id)

    def _list_cloud(self, cloud: CloudBackupStore, shop: str, object_id: str) -> list[BackupRecord]:
        folders = cloud.list_backups(shop, object_id, self._preferred_parent())
        return [_cloud_record(f) for f in folders]

    def get_cloud_backups(self, shop: str, object_id: str) -> list[BackupRecord]:
        """Cloud backups of a game; empty when cloud is off or unreachable."""
        cloud = self._cloud_for_listing()
        if cloud is None:
            return []
        try:
            return self._list_cloud(cloud, shop, object_id)
        except CloudSaveError as e:
            logger.warning(f"Could not list cloud backups of {shop}/{object_id}: {e}")
            return []

    def get_all_backups(self) -> list[GameBackups]:
        """Local and cloud backups per game, newest first; games without backups are left out."""
        cloud = self._cloud_for_listing()
        result: list[GameBackups] = []
        for game in self._registry.all():
            backups: list[BackupRecord] = []
            try:
                backups.extend(self._local.list_backups(game.shop, game.object_id))
            except Exception as e:
                logger.warning(f"Could not list local backups of {game.name}: {e}")
            if cloud is not None:
                try:
                    backups.extend(self._list_cloud(cloud, game.shop, game.object_id))
                except Exception as e:
                    logger.warning(f"Could not list cloud backups of {game.name}: {e}")
            if backups:
                backups.sort(key=lambda b: b.created_at, reverse=True)
                result.append(GameBackups(game=game, backups=backups))
        return result

    # ── Counts ──

    def _count_backups(self, game: Game, cloud: CloudBackupStore | None) -> int:
        count = len(self._local.list_backups(game.shop, game.object_id))
        if cloud is not None:
            count += len(cloud.list_backups(game.shop, game.object_id, self._preferred_parent()))
        return count

    def _refresh_count(self, game: Game, cloud: CloudBackupStore | None) -> None:
        try:
            game.backup_count = self._count_backups(game, cloud)
        except CloudSaveError as e:
            logger.warning(f"Could not recount backups of {game.name}: {e}")
            game.backup_count = len(self._local.list_backups(game.shop, game.object_id))
        self._registry.update(game)

    def sync_backup_counts(self) -> int:
        """Recompute every game's local + cloud backup count; returns how many changed."""
        cloud = self._cloud_for_listing()
        updated = 0
        for game in self._registry.all():
            try:
                count = self._count_backups(game, cloud)
            except Exception as e:
                logger.warning(f"Skipping backup count of {game.name}: {e}")
                continue
            if count != game.backup_count:
                game.backup_count = count
                self._registry.update(game)
                updated += 1
        logger.info(f"Synced backup counts: {updated} game(s) updated")
        return updated

    # ── Bulk ──

    def create_all_games_local_backup(
        self, on_progress: ProgressCallback | None = None
    ) -> BatchResult:
        """Back up every registered game locally; one failure does not stop the batch."""
        games = self._registry.all()
        result = BatchResult()
        for i, game in enumerate(games):
            if on_progress:
                on_progress(
                    BackupProgress(
                        game.id,
                        BackupStatus.DETECTING,
                        round(i / len(games) * 100),
                        f"Processing {i + 1}/{len(games)}: {game.name}",
                    )
                )
            try:
                label = f"{default_label(datetime.now(tz=timezone.utc))} - {game.name}"
                self.create_local_backup(game.id, label)
                result.succeeded.append(game.name)
            except Exception as e:
                logger.error(f"Backup of {game.name} failed: {e}")
                result.failed[game.name] = str(e)

        if on_progress:
            on_progress(BackupProgress("", BackupStatus.COMPLETE, 100, "All games backed up"))
        logger.info(f"Local backup of all games: {len(result.succeeded)} ok, {len(result.failed)} failed")
        return result

    def create_all_games_cloud_backup(
        self,
        on_progress: ProgressCallback | None = None,
        folder_name: str | None = None,
    ) -> BatchResult:
        """Upload a fresh backup of every registered game; one failure does not stop the batch."""
        self._require_cloud()
        games = self._registry.all()
        total = len(games)
        result = BatchResult()
        for i, game in enumerate(games):

            def _game_progress(percent: int, i: int = i, game: Game = game) -> None:
                if on_progress:
                    overall = round(i / total * 100 + percent / total)
                    on_progress(
                        BackupProgress(game.id, BackupStatus.UPLOADING, overall, game.name)
                    )

            try:
                self.create_ephemeral_and_upload_to_cloud(
                    game.id, on_progress=_game_progress, folder_name=folder_name
                )
                result.succeeded.append(game.name)
            except Exception as e:
                logger.error(f"Cloud backup of {game.name} failed: {e}")
                result.failed[game.name] = str(e)

        if on_progress:
            on_progress(BackupProgress("", BackupStatus.COMPLETE, 100, "All games uploaded"))
        logger.info(f"Cloud backup of all games: {len(result.succeeded)} ok, {len(result.failed)} failed")
        return result

    # ── Default cloud folder ──

    def set_default_folder(self, folder_id: str, folder_name: str) -> None:
        self._config.set_default_folder(folder_id, folder_name)
        logger.info(f"Default cloud folder set to {folder_name} ({folder_id})")

    def get_default_folder(self) -> tuple[str, str] | None:
        return self._config.default_folder

    def clear_default_folder(self) -> None:
        self._config.clear_default_folder()


def _percent_of(on_progress: PercentCallback | None) -> TransferCallback | None:
    """Adapt a ``(done, total)`` transfer callback onto a 0-100 percent callback."""
    if on_progress is None:
        return None

    def _transfer(done: int, total: int) -> None:
        on_progress(round(done / total * 100) if total else 100)

    return _transfer
