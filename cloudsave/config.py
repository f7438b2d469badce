"""Persistent settings for cloudsave.

Settings live in ``config.json`` inside the data directory. Missing keys fall
back to :attr:`Config._DEFAULTS`, so an old or partial file keeps working
after new settings are added. Nested keys are addressed with dots, e.g.
``config.get("cloud.main_folder_name")``.
"""

from __future__ import annotations

import copy
import json
import os
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

DEFAULT_MAIN_FOLDER = "CloudSaves"

_DATA_DIR_ENV = "CLOUDSAVE_DATA_DIR"
_CONFIG_FILE = "config.json"

_global_config: Config | None = None


def _default_data_dir() -> Path:
    override = os.environ.get(_DATA_DIR_ENV)
    if override:
        return Path(override)
    return Path.home() / "Documents" / "CloudSave"


def _merge_into(target: dict[str, Any], incoming: dict[str, Any]) -> None:
    """Overlay *incoming* onto *target*, descending into shared sub-dicts."""
    for key, value in incoming.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge_into(current, value)
        else:
            target[key] = value


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.is_file():
        return None
    try:
        content = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return None
    if not isinstance(content, dict):
        logger.warning(f"Ignoring config {path}: top level is not an object")
        return None
    return content


def _write_json_atomic(path: Path, content: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(path.name + ".tmp")
    try:
        staging.write_text(json.dumps(content, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(staging, path)
    except OSError as e:
        logger.error(f"Could not write config {path}: {e}")
        staging.unlink(missing_ok=True)


def get_config() -> Config:
    """Shared Config, created on first use."""
    global _global_config
    if _global_config is None:
        _global_config = Config()
    return _global_config


def reset_config() -> None:
    """Forget the shared Config so the next get_config() reloads it."""
    global _global_config
    _global_config = None


class Config:
    """Settings store backed by ``config.json``."""

    _DEFAULTS: dict[str, Any] = {
        "backup_path": "",
        "sync_counts_on_start": True,
        "ludusavi": {
            "binary_path": "",
            "config_dir": "",
        },
        "cloud": {
            "enabled": False,
            "credentials_path": "",
            "token_path": "",
            "access_token": "",
            "refresh_token": "",
            "main_folder_name": DEFAULT_MAIN_FOLDER,
            # Folder picked by the user, possibly nested; uploads target it by id
            "default_folder_id": "",
            "default_folder_name": "",
        },
    }

    def __init__(self, data_dir: Path | None = None) -> None:
        self._dir = Path(data_dir) if data_dir else _default_data_dir()
        self._file = self._dir / _CONFIG_FILE
        self._write_lock = threading.Lock()
        self._batch_depth = 0
        self._values = copy.deepcopy(self._DEFAULTS)
        stored = _read_json(self._file)
        if stored:
            _merge_into(self._values, stored)

    def _persist(self) -> None:
        if self._batch_depth:
            return
        with self._write_lock:
            _write_json_atomic(self._file, self._values)

    @contextmanager
    def batch_update(self) -> Iterator[None]:
        """Group several ``set`` calls; the file is written once on exit."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            self._persist()

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self._values
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        *parents, leaf = key.split(".")
        node = self._values
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value
        self._persist()

    def _optional_path(self, key: str) -> Path | None:
        raw = self.get(key, "")
        return Path(raw) if raw else None

    # ── Paths ──

    @property
    def data_dir(self) -> Path:
        return self._dir

    @property
    def backup_path(self) -> Path:
        return self._optional_path("backup_path") or self._dir / "backups"

    @backup_path.setter
    def backup_path(self, value: Path | None) -> None:
        self.set("backup_path", str(value) if value else "")

    @property
    def ludusavi_config_dir(self) -> Path:
        return self._optional_path("ludusavi.config_dir") or self._dir / "ludusavi"

    @property
    def ludusavi_binary(self) -> Path:
        configured = self._optional_path("ludusavi.binary_path")
        if configured:
            return configured
        name = "ludusavi.exe" if sys.platform == "win32" else "ludusavi"
        return self._dir / "ludusavi" / name

    # ── Behaviour ──

    @property
    def sync_counts_on_start(self) -> bool:
        return bool(self.get("sync_counts_on_start", True))

    @sync_counts_on_start.setter
    def sync_counts_on_start(self, value: bool) -> None:
        self.set("sync_counts_on_start", bool(value))

    # ── Cloud ──

    @property
    def cloud_enabled(self) -> bool:
        return bool(self.get("cloud.enabled", False))

    @cloud_enabled.setter
    def cloud_enabled(self, value: bool) -> None:
        self.set("cloud.enabled", bool(value))

    @property
    def cloud_credentials_path(self) -> Path | None:
        return self._optional_path("cloud.credentials_path")

    @property
    def cloud_token_path(self) -> Path:
        return self._optional_path("cloud.token_path") or self._dir / "cloud_token.json"

    @property
    def cloud_access_token(self) -> str:
        return self.get("cloud.access_token") or ""

    @property
    def cloud_refresh_token(self) -> str:
        return self.get("cloud.refresh_token") or ""

    @property
    def main_folder_name(self) -> str:
        return self.get("cloud.main_folder_name") or DEFAULT_MAIN_FOLDER

    @main_folder_name.setter
    def main_folder_name(self, value: str) -> None:
        self.set("cloud.main_folder_name", value)

    @property
    def default_folder(self) -> tuple[str, str] | None:
        """``(folder_id, folder_name)`` of the remembered cloud folder, if any."""
        folder_id = self.get("cloud.default_folder_id")
        if not folder_id:
            return None
        return folder_id, self.get("cloud.default_folder_name") or ""

    def set_default_folder(self, folder_id: str, folder_name: str) -> None:
        with self.batch_update():
            self.set("cloud.default_folder_id", folder_id)
            self.set("cloud.default_folder_name", folder_name)

    def clear_default_folder(self) -> None:
        self.set_default_folder("", "")
