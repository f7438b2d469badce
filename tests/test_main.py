"""Tests for service wiring and the command line entry point."""

from __future__ import annotations

import pytest

import main
from cloudsave.config import Config


@pytest.fixture
def cli_config(config: Config, monkeypatch: pytest.MonkeyPatch) -> Config:
    monkeypatch.setattr(main, "get_config", lambda: config)
    return config


class TestCreateContext:
    def test_local_only(self, config: Config) -> None:
        ctx = main.create_context(config)
        assert ctx.cloud_store is None
        assert ctx.backup_manager.cloud_store is None
        assert (config.backup_path / "CloudSaves").is_dir()
        assert ctx.ludusavi.paths.config_file.exists()

    def test_cloud_needs_credentials(self, config: Config) -> None:
        config.cloud_enabled = True
        config.sync_counts_on_start = False
        assert main.create_context(config).cloud_store is None

        config.set("cloud.refresh_token", "r")
        ctx = main.create_context(config)
        assert ctx.cloud_store is not None
        assert ctx.backup_manager.cloud_store is ctx.cloud_store


class TestCli:
    def test_add_and_list_games(self, cli_config: Config, capsys: pytest.CaptureFixture) -> None:
        assert main.main(["add-game", "Hollow Knight", "--game-id", "367520", "--platform", "steam"]) == 0
        assert main.main(["games"]) == 0
        out = capsys.readouterr().out
        assert "Added Hollow Knight" in out
        assert "steam-367520" in out

    def test_errors_return_one(self, cli_config: Config, capsys: pytest.CaptureFixture) -> None:
        assert main.main(["remove-game", "missing"]) == 1
        assert "Game not found" in capsys.readouterr().out

    def test_backup_needs_target(self, cli_config: Config) -> None:
        assert main.main(["backup"]) == 2

    def test_folders_without_cloud(self, cli_config: Config, capsys: pytest.CaptureFixture) -> None:
        assert main.main(["folders"]) == 1
        assert main.main(["folders", "--set-default", "fid:Games"]) == 0
        assert cli_config.default_folder == ("fid", "Games")
