"""Application context: service container for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloudsave.config import Config
    from cloudsave.core.backup import BackupManager
    from cloudsave.core.cloud_store import CloudBackupStore
    from cloudsave.core.local_store import LocalBackupStore
    from cloudsave.core.ludusavi import Ludusavi
    from cloudsave.core.scanner import GameScanner
    from cloudsave.data.game_registry import GameRegistry


@dataclass
class AppContext:
    """
    Central service container.

    Built once by ``create_context()``; the CLI and the background workers
    receive it instead of constructing services themselves.
    """

    config: Config
    registry: GameRegistry
    ludusavi: Ludusavi
    local_store: LocalBackupStore
    backup_manager: BackupManager
    scanner: GameScanner

    # None when cloud storage is disabled or has no credentials
    cloud_store: CloudBackupStore | None = None
