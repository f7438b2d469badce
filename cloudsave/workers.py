"""Qt background workers for long-running backup, restore and scan calls."""

from __future__ import annotations

from typing import TYPE_CHECKING

from PySide6.QtCore import QThread, Signal

from cloudsave.exceptions import ScanCancelledError
from cloudsave.models.progress import BackupProgress

if TYPE_CHECKING:
    from cloudsave.context import AppContext


class BackupWorker(QThread):
    """Backs up every registered game, locally or straight to the cloud."""

    progress = Signal(int, str)  # percent, message
    finished = Signal(int, int)  # succeeded, failed
    error = Signal(str)

    def __init__(
        self, ctx: AppContext, cloud: bool = False, folder_name: str | None = None, parent=None
    ) -> None:
        super().__init__(parent)
        self._ctx = ctx
        self._cloud = cloud
        self._folder_name = folder_name

    def _on_progress(self, p: BackupProgress) -> None:
        self.progress.emit(p.progress, p.message)

    def run(self) -> None:
        manager = self._ctx.backup_manager
        try:
            if self._cloud:
                result = manager.create_all_games_cloud_backup(
                    self._on_progress, folder_name=self._folder_name
                )
            else:
                result = manager.create_all_games_local_backup(self._on_progress)
        except Exception as e:
            self.error.emit(str(e))
            self.finished.emit(0, 0)
            return
        for name, message in result.failed.items():
            self.error.emit(f"{name}: {message}")
        self.finished.emit(len(result.succeeded), len(result.failed))


class RestoreWorker(QThread):
    """Restores one local or cloud backup."""

    progress = Signal(int, str)
    finished = Signal(list)  # achievements
    error = Signal(str)

    def __init__(
        self, ctx: AppContext, backup_id: str, shop: str, object_id: str, parent=None
    ) -> None:
        super().__init__(parent)
        self._ctx = ctx
        self._backup_id = backup_id
        self._shop = shop
        self._object_id = object_id

    def run(self) -> None:
        try:
            achievements = self._ctx.backup_manager.restore_backup(
                self._backup_id,
                self._shop,
                self._object_id,
                on_progress=lambda p: self.progress.emit(p.progress, p.message),
            )
        except Exception as e:
            self.error.emit(str(e))
            return
        self.finished.emit(achievements)


class ScanWorker(QThread):
    """Scans the system for games with save files."""

    progress = Signal(int)
    finished = Signal(list)  # list[ScannedGame]
    cancelled = Signal()
    error = Signal(str)

    def __init__(self, ctx: AppContext, parent=None) -> None:
        super().__init__(parent)
        self._ctx = ctx

    def cancel(self) -> None:
        self._ctx.scanner.cancel()

    def run(self) -> None:
        try:
            games = self._ctx.scanner.scan_installed_games(self.progress.emit)
        except ScanCancelledError:
            self.cancelled.emit()
            return
        except Exception as e:
            self.error.emit(str(e))
            return
        self.finished.emit(games)


class SyncCountsWorker(QThread):
    """Recomputes backup counts of every game."""

    finished = Signal(int)  # games updated
    error = Signal(str)

    def __init__(self, ctx: AppContext, parent=None) -> None:
        super().__init__(parent)
        self._ctx = ctx

    def run(self) -> None:
        try:
            updated = self._ctx.backup_manager.sync_backup_counts()
        except Exception as e:
            self.error.emit(str(e))
            return
        self.finished.emit(updated)
