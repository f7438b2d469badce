"""Application entry point: service wiring and the command line interface.

Usage:
    python main.py games
    python main.py add-game "Hollow Knight" --game-id 367520 --platform steam
    python main.py backup <game-id> [--label LABEL] [--cloud] [--folder NAME]
    python main.py list [--game <game-id>]
    python main.py restore <backup-id> <shop> <object-id>
"""

from __future__ import annotations

import argparse
import sys

from loguru import logger

from cloudsave.config import Config, get_config
from cloudsave.context import AppContext
from cloudsave.core.backup import BackupManager
from cloudsave.core.cloud_store import CloudBackupStore
from cloudsave.core.drive_client import DriveClient, OAuthCredentials
from cloudsave.core.local_store import LocalBackupStore
from cloudsave.core.ludusavi import Ludusavi, LudusaviPaths
from cloudsave.core.scanner import GameScanner
from cloudsave.data.game_registry import GameRegistry
from cloudsave.exceptions import CloudSaveError
from cloudsave.logger import setup_logger
from cloudsave.models.progress import BackupProgress
from cloudsave.utils import format_size


def _create_cloud_store(config: Config) -> CloudBackupStore | None:
    """Cloud store when cloud is enabled and some credentials are configured."""
    if not config.cloud_enabled:
        return None
    credentials = OAuthCredentials.from_files(
        config.cloud_credentials_path,
        config.cloud_token_path,
        access_token=config.cloud_access_token,
        refresh_token=config.cloud_refresh_token,
    )
    if not credentials.has_tokens:
        logger.warning("Cloud storage enabled but no credentials found; cloud features disabled")
        return None
    drive = DriveClient(credentials, token_path=config.cloud_token_path)
    return CloudBackupStore(drive, config.main_folder_name)


def create_context(config: Config | None = None) -> AppContext:
    """Wire all services and return an AppContext."""
    config = config or get_config()

    # Logger
    setup_logger(config.data_dir / "logs")

    # Data
    registry = GameRegistry(config.data_dir)
    registry.load()

    # Save tool
    ludusavi = Ludusavi(LudusaviPaths.from_config(config))
    if not ludusavi.is_available():
        logger.warning(f"Ludusavi binary not found at {ludusavi.paths.binary}")
    try:
        ludusavi.ensure_config()
    except OSError as e:
        logger.error(f"Could not create save tool config: {e}")

    # Stores
    local_store = LocalBackupStore(config.backup_path, ludusavi)
    local_store.ensure_layout()
    cloud_store = _create_cloud_store(config)

    # Core services
    backup_manager = BackupManager(config, registry, local_store, ludusavi, cloud_store)
    scanner = GameScanner(ludusavi)

    if config.sync_counts_on_start:
        backup_manager.sync_backup_counts()

    return AppContext(
        config=config,
        registry=registry,
        ludusavi=ludusavi,
        local_store=local_store,
        backup_manager=backup_manager,
        scanner=scanner,
        cloud_store=cloud_store,
    )


# ── Commands ──


def _print_progress(p: BackupProgress) -> None:
    print(f"  [{p.progress:3d}%] {p.message}")


def _print_percent(percent: int) -> None:
    print(f"  [{percent:3d}%]", end="\r", flush=True)


def _cmd_games(ctx: AppContext, args: argparse.Namespace) -> int:
    for game in ctx.backup_manager.get_games():
        print(f"{game.id}  {game.shop}-{game.object_id}  {game.display_name}  ({game.backup_count} backups)")
    return 0


def _cmd_add_game(ctx: AppContext, args: argparse.Namespace) -> int:
    game = ctx.backup_manager.add_game(
        args.name,
        custom_save_path=args.save_path,
        game_id=args.game_id,
        platform=args.platform,
    )
    print(f"Added {game.name} ({game.id})")
    return 0


def _cmd_remove_game(ctx: AppContext, args: argparse.Namespace) -> int:
    game = ctx.backup_manager.remove_game(args.game)
    print(f"Removed {game.name}")
    return 0


def _cmd_scan(ctx: AppContext, args: argparse.Namespace) -> int:
    scanned = ctx.scanner.scan_installed_games(_print_percent)
    print()
    for item in scanned:
        print(f"{item.platform}-{item.game_id}  {item.saves_count} file(s)")
    if args.add:
        added = ctx.backup_manager.add_scanned_games(scanned)
        print(f"Added {len(added)} game(s)")
    return 0


def _cmd_backup(ctx: AppContext, args: argparse.Namespace) -> int:
    manager = ctx.backup_manager
    if args.all:
        if args.cloud:
            result = manager.create_all_games_cloud_backup(_print_progress, args.folder)
        else:
            result = manager.create_all_games_local_backup(_print_progress)
        for name, error in result.failed.items():
            print(f"  FAILED {name}: {error}")
        return 0 if result.ok else 1
    if not args.game:
        print("Error: a game id or --all is required")
        return 2

    if args.cloud:
        remote_id = manager.create_ephemeral_and_upload_to_cloud(
            args.game, args.label, _print_percent, args.folder
        )
        print(f"\nUploaded cloud backup {remote_id}")
    else:
        record = manager.create_local_backup(args.game, args.label, _print_progress)
        print(f"Created {record.id} ({format_size(record.size_bytes)})")
    return 0


def _cmd_upload(ctx: AppContext, args: argparse.Namespace) -> int:
    remote_id = ctx.backup_manager.upload_local_backup_to_cloud(
        args.backup_id, args.shop, args.object_id, _print_percent, args.folder
    )
    print(f"\nUploaded cloud backup {remote_id}")
    return 0


def _cmd_restore(ctx: AppContext, args: argparse.Namespace) -> int:
    achievements = ctx.backup_manager.restore_backup(
        args.backup_id, args.shop, args.object_id, _print_progress
    )
    if achievements:
        print(f"{len(achievements)} achievement(s) stored with this backup")
    return 0


def _cmd_delete(ctx: AppContext, args: argparse.Namespace) -> int:
    ctx.backup_manager.delete_backup(args.backup_id, args.shop, args.object_id)
    print(f"Deleted {args.backup_id}")
    return 0


def _cmd_list(ctx: AppContext, args: argparse.Namespace) -> int:
    manager = ctx.backup_manager
    for entry in manager.get_all_backups():
        if args.game and entry.game.id != args.game:
            continue
        print(f"{entry.game.display_name} ({entry.game.shop}-{entry.game.object_id})")
        for b in entry.backups:
            size = "" if b.is_cloud else f"  {format_size(b.size_bytes)}"
            print(f"  {b.source:<5}  {b.id}  {b.created_at:%Y-%m-%d %H:%M}  {b.label}{size}")
    return 0


def _cmd_sync_counts(ctx: AppContext, args: argparse.Namespace) -> int:
    print(f"Updated {ctx.backup_manager.sync_backup_counts()} game(s)")
    return 0


def _cmd_folders(ctx: AppContext, args: argparse.Namespace) -> int:
    manager = ctx.backup_manager
    if args.clear_default:
        manager.clear_default_folder()
        print("Default folder cleared")
        return 0
    if args.set_default:
        folder_id, _, name = args.set_default.partition(":")
        manager.set_default_folder(folder_id, name or folder_id)
        print(f"Default folder set to {name or folder_id}")
        return 0

    cloud = manager.cloud_store
    if cloud is None:
        print("Cloud storage is not enabled")
        return 1
    if args.create:
        folder = cloud.create_folder(args.create, args.parent)
        print(f"Created {folder.name} ({folder.id})")
        return 0
    default = manager.get_default_folder()
    for folder in cloud.list_folders(args.parent):
        marker = "*" if default and default[0] == folder.id else " "
        print(f"{marker} {folder.id}  {folder.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Back up and restore game saves locally and in the cloud.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("games", help="List registered games").set_defaults(func=_cmd_games)

    p = sub.add_parser("add-game", help="Register a game")
    p.add_argument("name")
    p.add_argument("--game-id", help="Store id (e.g. Steam app id)")
    p.add_argument("--platform", choices=["steam", "gog", "epic", "custom", "unknown"])
    p.add_argument("--save-path", help="Save directory of a custom game")
    p.set_defaults(func=_cmd_add_game)

    p = sub.add_parser("remove-game", help="Unregister a game")
    p.add_argument("game", help="Registry id of the game")
    p.set_defaults(func=_cmd_remove_game)

    p = sub.add_parser("scan", help="Find installed games with save files")
    p.add_argument("--add", action="store_true", help="Register the games found")
    p.set_defaults(func=_cmd_scan)

    p = sub.add_parser("backup", help="Create a backup")
    p.add_argument("game", nargs="?", help="Registry id of the game")
    p.add_argument("--all", action="store_true", help="Back up every registered game")
    p.add_argument("--label")
    p.add_argument("--cloud", action="store_true", help="Upload to the cloud without keeping a local copy")
    p.add_argument("--folder", help="Cloud main folder name")
    p.set_defaults(func=_cmd_backup)

    for name, func, help_text in (
        ("upload", _cmd_upload, "Upload an existing local backup"),
        ("restore", _cmd_restore, "Restore a local or cloud backup"),
        ("delete", _cmd_delete, "Delete a local or cloud backup"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("backup_id")
        p.add_argument("shop")
        p.add_argument("object_id")
        if name == "upload":
            p.add_argument("--folder", help="Cloud main folder name")
        p.set_defaults(func=func)

    p = sub.add_parser("list", help="List local and cloud backups")
    p.add_argument("--game", help="Only this registry id")
    p.set_defaults(func=_cmd_list)

    sub.add_parser("sync-counts", help="Recount backups of every game").set_defaults(
        func=_cmd_sync_counts
    )

    p = sub.add_parser("folders", help="Browse and manage cloud folders")
    p.add_argument("--parent", default="root")
    p.add_argument("--create", metavar="NAME")
    p.add_argument("--set-default", metavar="ID[:NAME]")
    p.add_argument("--clear-default", action="store_true")
    p.set_defaults(func=_cmd_folders)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)
    ctx = create_context()
    try:
        return args.func(ctx, args)
    except CloudSaveError as e:
        logger.error(str(e))
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
