"""Tests for the CloudBackupStore against an in-memory drive."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeDrive

from cloudsave.core.cloud_store import CloudBackupStore
from cloudsave.exceptions import BackupNotFoundError


@pytest.fixture
def store(drive: FakeDrive) -> CloudBackupStore:
    return CloudBackupStore(drive, "CloudSaves")


@pytest.fixture
def payload(tmp_path: Path) -> Path:
    root = tmp_path / "payload"
    (root / "profile").mkdir(parents=True)
    (root / "save.dat").write_bytes(b"slot-1")
    (root / "profile" / "settings.ini").write_bytes(b"volume=7")
    return root


class TestUpload:
    def test_mirrors_payload_under_folder_chain(
        self, store: CloudBackupStore, drive: FakeDrive, payload: Path
    ) -> None:
        progress: list[tuple[int, int]] = []
        backup_id = store.upload_backup(
            "steam", "367520", payload, "b1", on_progress=lambda d, t: progress.append((d, t))
        )

        main = drive.child("root", "CloudSaves")
        game = drive.child(main.id, "steam-367520")
        backup = drive.child(game.id, "b1")
        assert backup.id == backup_id
        assert drive.tree(backup_id) == {"profile/settings.ini": b"volume=7", "save.dat": b"slot-1"}
        assert progress == [(1, 2), (2, 2)]

    def test_reuses_existing_folders(
        self, store: CloudBackupStore, drive: FakeDrive, payload: Path
    ) -> None:
        store.upload_backup("steam", "367520", payload, "b1")
        fresh = CloudBackupStore(drive, "CloudSaves")
        fresh.upload_backup("steam", "367520", payload, "b2")
        assert drive.created_folders.count("CloudSaves") == 1
        assert drive.created_folders.count("steam-367520") == 1

    def test_folder_name_override(
        self, store: CloudBackupStore, drive: FakeDrive, payload: Path
    ) -> None:
        store.upload_backup("steam", "367520", payload, "b1", main_folder_name="Elsewhere")
        assert drive.child("root", "Elsewhere")
        assert not [f for f in drive.children("root") if f.name == "CloudSaves"]

    def test_into_existing_folder_by_id(
        self, store: CloudBackupStore, drive: FakeDrive, payload: Path
    ) -> None:
        parent = drive.create_folder("Parent")
        nested = drive.create_folder("Saves", parent.id)
        store.upload_backup("steam", "367520", payload, "b1", main_folder_id=nested.id)
        assert drive.child(nested.id, "steam-367520")
        assert [f.name for f in drive.children("root")] == ["Parent"]

    def test_missing_payload(self, store: CloudBackupStore, tmp_path: Path) -> None:
        with pytest.raises(BackupNotFoundError):
            store.upload_backup("steam", "367520", tmp_path / "nope", "b1")


class TestDownload:
    def test_downloads_into_backup_layout(
        self, store: CloudBackupStore, payload: Path, tmp_path: Path
    ) -> None:
        folder_id = store.upload_backup("steam", "367520", payload, "b1")
        dest = tmp_path / "scratch"
        leaf = store.download_backup("steam", "367520", folder_id, dest)
        assert leaf == dest / "CloudSaves" / "steam-367520" / folder_id / "steam-367520"
        assert (leaf / "save.dat").read_bytes() == b"slot-1"
        assert (leaf / "profile" / "settings.ini").read_bytes() == b"volume=7"

    def test_resolves_by_folder_name(
        self, store: CloudBackupStore, payload: Path, tmp_path: Path
    ) -> None:
        store.upload_backup("steam", "367520", payload, "b1")
        leaf = store.download_backup("steam", "367520", "b1", tmp_path / "scratch")
        assert (leaf / "save.dat").exists()

    def test_skips_unsafe_names(
        self, store: CloudBackupStore, drive: FakeDrive, payload: Path, tmp_path: Path
    ) -> None:
        folder_id = store.upload_backup("steam", "367520", payload, "b1")
        evil = tmp_path / "evil"
        evil.write_bytes(b"x")
        drive.upload_file(evil, "..", folder_id)
        leaf = store.download_backup("steam", "367520", folder_id, tmp_path / "scratch")
        assert sorted(p.name for p in leaf.iterdir()) == ["profile", "save.dat"]

    def test_missing_backup(self, store: CloudBackupStore, tmp_path: Path) -> None:
        with pytest.raises(BackupNotFoundError):
            store.download_backup("steam", "367520", "nope", tmp_path)


class TestDelete:
    def test_purges_folder(
        self, store: CloudBackupStore, drive: FakeDrive, payload: Path
    ) -> None:
        folder_id = store.upload_backup("steam", "367520", payload, "b1")
        store.delete_backup("steam", "367520", folder_id)
        assert folder_id not in drive.items
        assert store.list_backups("steam", "367520") == []
        assert [f.name for f in drive.items.values() if not f.is_folder] == []

    def test_falls_back_to_trash(
        self, store: CloudBackupStore, drive: FakeDrive, payload: Path
    ) -> None:
        folder_id = store.upload_backup("steam", "367520", payload, "b1")
        drive.reject_delete.add(folder_id)
        store.delete_backup("steam", "367520", folder_id)
        assert folder_id in drive.trashed
        assert store.list_backups("steam", "367520") == []

    def test_missing_is_noop(self, store: CloudBackupStore) -> None:
        store.delete_backup("steam", "367520", "nope")

    def test_reupload_after_delete_recreates_folder(
        self, store: CloudBackupStore, drive: FakeDrive, payload: Path
    ) -> None:
        folder_id = store.upload_backup("steam", "367520", payload, "b1")
        store.delete_backup("steam", "367520", folder_id)
        again = store.upload_backup("steam", "367520", payload, "b1")
        assert again != folder_id
        assert again in drive.items


class TestListing:
    def test_newest_first(self, store: CloudBackupStore, payload: Path) -> None:
        store.upload_backup("steam", "367520", payload, "first")
        store.upload_backup("steam", "367520", payload, "second")
        assert [f.name for f in store.list_backups("steam", "367520")] == ["second", "first"]

    def test_unknown_game(self, store: CloudBackupStore) -> None:
        assert store.list_backups("steam", "999") == []

    def test_legacy_folder_name(self, store: CloudBackupStore, drive: FakeDrive) -> None:
        main = drive.create_folder("CloudSaves", "root")
        legacy = drive.create_folder("steam-Hollow Knight", main.id)
        drive.create_folder("old-backup", legacy.id)
        assert [f.name for f in store.list_backups("steam", "Hollow Knight")] == ["old-backup"]

    def test_preferred_parent_wins(self, store: CloudBackupStore, drive: FakeDrive) -> None:
        preferred = drive.create_folder("Mine", "root")
        in_preferred = drive.create_folder("steam-367520", preferred.id)
        drive.create_folder("from-preferred", in_preferred.id)
        elsewhere = drive.create_folder("steam-367520", "root")
        drive.create_folder("from-root", elsewhere.id)

        assert [f.name for f in store.list_backups("steam", "367520", preferred.id)] == [
            "from-preferred"
        ]
        # Without a preference the newest game folder is used
        assert [f.name for f in store.list_backups("steam", "367520")] == ["from-root"]

    def test_paginates(self, payload: Path) -> None:
        drive = FakeDrive(max_page=1)
        store = CloudBackupStore(drive)
        for name in ("a", "b", "c"):
            store.upload_backup("steam", "367520", payload, name)
        assert [f.name for f in store.list_backups("steam", "367520")] == ["c", "b", "a"]
        assert [f.name for f in store.list_root_folders()] == ["CloudSaves"]

    def test_create_and_list_folders(self, store: CloudBackupStore) -> None:
        store.create_folder("Zeta")
        store.create_folder("Alpha")
        assert [f.name for f in store.list_folders()] == ["Alpha", "Zeta"]
