"""Tests for backup folder naming and payload resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from cloudsave.core.paths import (
    game_folder_name,
    game_folder_names,
    legacy_game_folder_name,
    resolve_payload_dir,
    restore_candidates,
)
from cloudsave.exceptions import BackupNotFoundError


class TestFolderNames:
    def test_normalized(self) -> None:
        assert game_folder_name("steam", "Hollow Knight") == "steam-Hollow_Knight"

    def test_legacy_only_when_different(self) -> None:
        assert legacy_game_folder_name("steam", "367520") is None
        assert legacy_game_folder_name("steam", "Hollow Knight") == "steam-Hollow Knight"

    def test_unsafe_legacy_dropped(self) -> None:
        assert legacy_game_folder_name("custom", "../escape") is None
        assert game_folder_names("custom", "../escape") == ["custom-.._escape"]

    def test_normalized_first(self) -> None:
        assert game_folder_names("steam", "Hollow Knight") == [
            "steam-Hollow_Knight",
            "steam-Hollow Knight",
        ]


class TestRestoreCandidates:
    def test_local_order(self, tmp_path: Path) -> None:
        base = tmp_path / "CloudSaves"
        got = list(restore_candidates(tmp_path, "steam", "Hollow Knight", "b1"))
        assert got == [
            base / "steam-Hollow_Knight" / "b1" / "steam-Hollow_Knight",
            base / "steam-Hollow_Knight" / "b1" / "steam-Hollow Knight",
            base / "steam-Hollow Knight" / "b1" / "steam-Hollow Knight",
            base / "steam-Hollow Knight" / "b1" / "steam-Hollow_Knight",
        ]

    def test_alternate_root_order(self, tmp_path: Path) -> None:
        alt = tmp_path / "scratch"
        got = list(restore_candidates(tmp_path, "steam", "367520", "f1", alternate_root=alt))
        assert got == [
            alt / "steam-367520",
            alt / "f1" / "steam-367520",
            alt / "CloudSaves" / "steam-367520" / "f1" / "steam-367520",
        ]

    def test_unsafe_backup_id_limits_alternate_candidates(self, tmp_path: Path) -> None:
        alt = tmp_path / "scratch"
        got = list(restore_candidates(tmp_path, "steam", "367520", "../x", alternate_root=alt))
        assert got == [alt / "steam-367520"]


class TestResolvePayloadDir:
    def test_first_existing_wins(self, tmp_path: Path) -> None:
        legacy = tmp_path / "CloudSaves" / "steam-Hollow Knight" / "b1" / "steam-Hollow Knight"
        legacy.mkdir(parents=True)
        assert resolve_payload_dir(tmp_path, "steam", "Hollow Knight", "b1") == legacy

        normalized = tmp_path / "CloudSaves" / "steam-Hollow_Knight" / "b1" / "steam-Hollow_Knight"
        normalized.mkdir(parents=True)
        assert resolve_payload_dir(tmp_path, "steam", "Hollow Knight", "b1") == normalized

    def test_missing_names_last_candidate(self, tmp_path: Path) -> None:
        with pytest.raises(BackupNotFoundError) as exc:
            resolve_payload_dir(tmp_path, "steam", "367520", "nope")
        assert exc.value.path == tmp_path / "CloudSaves" / "steam-367520" / "nope" / "steam-367520"
