"""Shared fixtures: an in-memory save tool, an in-memory cloud drive and service wiring."""

from __future__ import annotations

import json
import stat
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from cloudsave.config import Config, reset_config
from cloudsave.core.drive_client import FilePage
from cloudsave.core.local_store import LocalBackupStore
from cloudsave.data.game_registry import GameRegistry
from cloudsave.exceptions import DriveApiError, ToolInvocationError
from cloudsave.models.backup_record import CloudFolder
from cloudsave.models.detection import ScanResult

FOLDER_MIME = CloudFolder.FOLDER_MIME

SAMPLE_SCAN = {
    "overall": {"totalGames": 2},
    "games": {
        "367520": {
            "decision": "Processed",
            "files": {
                "/home/user/.local/share/Hollow Knight/user1.dat": {"change": "New", "bytes": 120},
                "/home/user/.local/share/Hollow Knight/user2.dat": {"change": "Same", "bytes": 80},
            },
        },
        "Celeste": {"files": {}},
    },
}


class FakeSaveTool:
    """Writes a small payload on backup and records what restore was given."""

    def __init__(self) -> None:
        self.fail_backup = False
        self.backups: list[Path | None] = []
        self.restores: list[tuple[str, str, Path, dict[str, bytes]]] = []
        self.custom_games: dict[str, str] = {}

    def backup(
        self, shop: str, object_id: str, target_dir: Path | None, wine_prefix: str | None = None
    ) -> ScanResult:
        if self.fail_backup:
            raise ToolInvocationError("Save tool exited with code 1", returncode=1)
        self.backups.append(target_dir)
        assert target_dir is not None
        (target_dir / "profile").mkdir(parents=True, exist_ok=True)
        (target_dir / "save.dat").write_bytes(f"{shop}:{object_id}".encode())
        (target_dir / "profile" / "settings.ini").write_text("volume=7", encoding="utf-8")
        return ScanResult.from_dict(SAMPLE_SCAN)

    def restore(
        self, shop: str, object_id: str, source_dir: Path, wine_prefix: str | None = None
    ) -> None:
        files = {
            p.relative_to(source_dir).as_posix(): p.read_bytes()
            for p in source_dir.rglob("*")
            if p.is_file()
        }
        self.restores.append((shop, object_id, source_dir, files))

    def preview(self, shop: str, object_id: str, wine_prefix: str | None = None) -> ScanResult:
        return ScanResult.from_dict(SAMPLE_SCAN)

    def add_custom_game(self, name: str, save_path: str | None) -> None:
        if save_path:
            self.custom_games[name] = save_path

    def remove_custom_game(self, name: str) -> None:
        self.custom_games.pop(name, None)


class FakeDrive:
    """In-memory object store with Drive-like folders, trash and pagination."""

    ROOT = "root"

    def __init__(self, max_page: int = 1000) -> None:
        self.items: dict[str, CloudFolder] = {}
        self.content: dict[str, bytes] = {}
        self.trashed: set[str] = set()
        self.max_page = max_page
        self.authenticated = True
        self.fail_uploads = False
        self.reject_delete: set[str] = set()
        self.created_folders: list[str] = []
        self._seq = 0
        self._epoch = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _add(self, name: str, parent_id: str | None, mime: str) -> CloudFolder:
        self._seq += 1
        stamp = (self._epoch + timedelta(minutes=self._seq)).strftime("%Y-%m-%dT%H:%M:%S.000Z")
        item = CloudFolder(
            id=f"id{self._seq}",
            name=name,
            mime_type=mime,
            created_time=stamp,
            modified_time=stamp,
            parents=[parent_id or self.ROOT],
        )
        self.items[item.id] = item
        return item

    # ── Helpers for assertions ──

    def children(self, parent_id: str) -> list[CloudFolder]:
        return [
            i for i in self.items.values() if parent_id in i.parents and i.id not in self.trashed
        ]

    def child(self, parent_id: str, name: str) -> CloudFolder:
        return next(i for i in self.children(parent_id) if i.name == name)

    def tree(self, folder_id: str, prefix: str = "") -> dict[str, bytes]:
        out: dict[str, bytes] = {}
        for item in self.children(folder_id):
            if item.is_folder:
                out.update(self.tree(item.id, f"{prefix}{item.name}/"))
            else:
                out[f"{prefix}{item.name}"] = self.content[item.id]
        return out

    # ── Drive operations ──

    def query_files(
        self,
        parent_id: str | None = None,
        name: str | None = None,
        folders: bool | None = None,
        order_by: str | None = None,
        page_size: int = 1000,
        page_token: str | None = None,
    ) -> FilePage:
        matches = [
            i
            for i in self.items.values()
            if i.id not in self.trashed
            and (parent_id is None or parent_id in i.parents)
            and (name is None or i.name == name)
            and (folders is None or i.is_folder == folders)
        ]
        if order_by == "name":
            matches.sort(key=lambda i: i.name)
        elif order_by == "createdTime desc":
            matches.sort(key=lambda i: i.created_time or "", reverse=True)
        start = int(page_token or 0)
        size = min(page_size, self.max_page)
        end = start + size
        return FilePage(
            files=matches[start:end],
            next_page_token=str(end) if end < len(matches) else None,
        )

    def get_file(self, file_id: str) -> CloudFolder | None:
        if file_id in self.trashed:
            return None
        return self.items.get(file_id)

    def create_folder(self, name: str, parent_id: str | None = None) -> CloudFolder:
        self.created_folders.append(name)
        return self._add(name, parent_id, FOLDER_MIME)

    def upload_file(self, path: Path, name: str, parent_id: str) -> CloudFolder:
        if self.fail_uploads:
            raise DriveApiError("Cloud request failed (500): backend error", status_code=500)
        item = self._add(name, parent_id, "application/octet-stream")
        self.content[item.id] = path.read_bytes()
        return item

    def download_file(self, file_id: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.content[file_id])

    def delete_file(self, file_id: str) -> None:
        if file_id in self.reject_delete:
            raise DriveApiError("Cloud request failed (403): insufficient permissions", 403)
        self.items.pop(file_id, None)
        self.content.pop(file_id, None)

    def trash_file(self, file_id: str) -> None:
        self.trashed.add(file_id)

    def is_authenticated(self) -> bool:
        return self.authenticated


def make_tool_script(path: Path, body: str) -> Path:
    """Write an executable POSIX shell script standing in for the save tool binary."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


posix_only = pytest.mark.skipif(sys.platform == "win32", reason="shell script stand-in")


def sample_scan_json() -> str:
    return json.dumps(SAMPLE_SCAN)


@pytest.fixture(autouse=True)
def _clean_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(data_dir=tmp_path / "data")


@pytest.fixture
def save_tool() -> FakeSaveTool:
    return FakeSaveTool()


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def local_store(tmp_path: Path, save_tool: FakeSaveTool) -> LocalBackupStore:
    store = LocalBackupStore(tmp_path / "backups", save_tool)
    store.ensure_layout()
    return store


@pytest.fixture
def registry(config: Config) -> GameRegistry:
    reg = GameRegistry(config.data_dir)
    reg.load()
    return reg


def write_backup(
    root: Path,
    folder: str,
    backup_id: str,
    metadata: dict[str, Any] | None = None,
    payload_name: str | None = None,
) -> Path:
    """Lay out a backup directory by hand, as an older version would have."""
    backup_dir = root / "CloudSaves" / folder / backup_id
    payload = backup_dir / (payload_name or folder)
    payload.mkdir(parents=True)
    (payload / "save.dat").write_bytes(b"12345")
    if metadata is not None:
        (backup_dir / "metadata.json").write_text(json.dumps(metadata), encoding="utf-8")
    return backup_dir
