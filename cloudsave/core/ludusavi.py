"""Ludusavi adapter: runs the save tool as a subprocess and parses its ``--api`` JSON.

Every invocation is first made with ``--config <config.yaml>``; if that fails
in any way (spawn error, non-zero exit, timeout, unparseable output) the same
operation is retried once with the tool's defaults, and only the fallback's
failure is reported.
"""

from __future__ import annotations

import json
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import yaml
from loguru import logger

from cloudsave.exceptions import BackupNotFoundError, ScanCancelledError, ToolInvocationError
from cloudsave.models.detection import ScanResult
from cloudsave.models.progress import PercentCallback

if TYPE_CHECKING:
    from cloudsave.config import Config

DEFAULT_SCAN_TIMEOUT = 120.0
DEFAULT_TICK = 0.2

_SCAN_START = 10
_SCAN_STEP = 2
_SCAN_CAP = 90
_SCAN_EXITED = 95

T = TypeVar("T")

_DEFAULT_TOOL_CONFIG: dict[str, Any] = {
    "manifest": {
        "enable": False,
        "secondary": [
            {"url": "https://cdn.losbroxas.org/manifest.yaml", "enable": True},
        ],
    },
    "customGames": [],
}


@dataclass(frozen=True)
class LudusaviPaths:
    """Where the tool binary and its configuration directory live."""

    binary: Path
    config_dir: Path

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.yaml"

    @classmethod
    def from_config(cls, config: Config) -> LudusaviPaths:
        return cls(binary=config.ludusavi_binary, config_dir=config.ludusavi_config_dir)


def _parse_result(stdout: str) -> ScanResult:
    try:
        return ScanResult.from_dict(json.loads(stdout))
    except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
        raise ToolInvocationError(f"Could not parse save tool output: {e}") from e


def _ignore_output(_stdout: str) -> None:
    return None


class Ludusavi:
    """Save detection, backup and restore through the Ludusavi CLI."""

    def __init__(
        self,
        paths: LudusaviPaths,
        scan_timeout: float = DEFAULT_SCAN_TIMEOUT,
        tick: float = DEFAULT_TICK,
    ) -> None:
        self._paths = paths
        self._scan_timeout = scan_timeout
        self._tick = tick
        # The tool's config file is shared state; one invocation at a time
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._scan_proc: subprocess.Popen[str] | None = None

    @property
    def paths(self) -> LudusaviPaths:
        return self._paths

    def is_available(self) -> bool:
        return self._paths.binary.is_file()

    # ── Invocation ──

    def _argv(self, args: list[str], with_config: bool) -> list[str]:
        argv = [str(self._paths.binary)]
        if with_config:
            argv += ["--config", str(self._paths.config_file)]
        return argv + args

    def _invoke(self, argv: list[str]) -> str:
        """Run *argv* to completion and return stdout; raise on any failure."""
        logger.debug(f"Running save tool: {' '.join(argv)}")
        try:
            proc = subprocess.run(  # noqa: S603
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise ToolInvocationError(f"Failed to start save tool: {e}") from e
        if proc.returncode != 0:
            raise ToolInvocationError(
                f"Save tool exited with code {proc.returncode}",
                stderr=proc.stderr,
                returncode=proc.returncode,
            )
        if proc.stderr:
            logger.debug(f"Save tool stderr: {proc.stderr.strip()}")
        return proc.stdout

    def _run(self, args: list[str], handle: Callable[[str], T]) -> T:
        """Invoke with the config file, then once more with tool defaults."""
        with self._lock:
            try:
                return handle(self._invoke(self._argv(args, with_config=True)))
            except ToolInvocationError as e:
                logger.warning(f"Save tool failed with config, retrying with defaults: {e}")
            return handle(self._invoke(self._argv(args, with_config=False)))

    # ── Operations ──

    def preview(self, shop: str, object_id: str, wine_prefix: str | None = None) -> ScanResult:
        """Dry-run backup of one game: which files would be copied."""
        args = ["backup", object_id, "--api", "--force", "--preview"]
        if wine_prefix:
            args += ["--wine-prefix", wine_prefix]
        result = self._run(args, _parse_result)
        result.custom_backup_path = self._custom_save_path(object_id)
        logger.debug(f"Preview for {shop}/{object_id}: {len(result.games)} game(s)")
        return result

    def backup(
        self,
        shop: str,
        object_id: str,
        target_dir: Path | None,
        wine_prefix: str | None = None,
    ) -> ScanResult:
        """Copy the game's detected save files into *target_dir*."""
        args = ["backup", object_id, "--api", "--force"]
        if target_dir:
            args += ["--path", str(target_dir)]
        if wine_prefix:
            args += ["--wine-prefix", wine_prefix]
        result = self._run(args, _parse_result)
        logger.info(f"Save tool backed up {shop}/{object_id} into {target_dir}")
        return result

    def restore(
        self,
        shop: str,
        object_id: str,
        source_dir: Path,
        wine_prefix: str | None = None,
    ) -> None:
        """Copy files from *source_dir* back to the game's save locations."""
        if not self.is_available():
            raise ToolInvocationError(f"Save tool not found: {self._paths.binary}")
        if not source_dir.is_dir():
            raise BackupNotFoundError(f"Backup path not found: {source_dir}", path=source_dir)
        args = ["restore", object_id, "--path", str(source_dir), "--force"]
        if wine_prefix:
            args += ["--wine-prefix", wine_prefix]
        self._run(args, _ignore_output)
        logger.info(f"Save tool restored {shop}/{object_id} from {source_dir}")

    def find_installed_games(self) -> list[str]:
        """Names of every game the tool finds save files for; empty on failure."""
        try:
            result = self._run(["backup", "--preview", "--api"], _parse_result)
        except ToolInvocationError as e:
            logger.error(f"Installed game lookup failed: {e}")
            return []
        return [g.name for g in result.games_with_files()]

    # ── Whole-system scan ──

    def scan_all(self, on_progress: PercentCallback | None = None) -> ScanResult:
        """Preview every game the tool knows about.

        The tool reports no progress of its own, so progress is synthetic:
        10 at start, +2 per tick while running (capped at 90), 95 when the
        process exits and 100 once the output has been parsed.
        """
        self._cancel.clear()
        reported = 0

        # A fallback run restarts at 10; never report going backwards
        def _report(value: int) -> None:
            nonlocal reported
            if value > reported:
                reported = value
                if on_progress:
                    on_progress(value)

        args = ["backup", "--preview", "--api"]
        with self._lock:
            try:
                result = self._scan(self._argv(args, with_config=True), _report)
            except ToolInvocationError as e:
                logger.warning(f"Scan failed with config, retrying with defaults: {e}")
                result = self._scan(self._argv(args, with_config=False), _report)
        logger.info(f"Scan complete: {len(result.games)} game(s) reported")
        _report(100)
        return result

    def cancel_scan(self) -> None:
        """Kill a running :meth:`scan_all`; it raises :class:`ScanCancelledError`."""
        self._cancel.set()
        proc = self._scan_proc
        if proc is not None and proc.poll() is None:
            logger.info("Cancelling save scan")
            proc.kill()

    def _scan(self, argv: list[str], on_progress: PercentCallback | None) -> ScanResult:
        if self._cancel.is_set():
            raise ScanCancelledError("Scan cancelled")

        logger.debug(f"Running save scan: {' '.join(argv)}")
        creationflags = subprocess.CREATE_NO_WINDOW if sys.platform == "win32" else 0
        try:
            proc = subprocess.Popen(  # noqa: S603
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                creationflags=creationflags,
            )
        except OSError as e:
            raise ToolInvocationError(f"Failed to start save tool: {e}") from e

        self._scan_proc = proc
        progress = _SCAN_START
        if on_progress:
            on_progress(progress)
        deadline = time.monotonic() + self._scan_timeout
        try:
            while True:
                try:
                    stdout, stderr = proc.communicate(timeout=self._tick)
                    break
                except subprocess.TimeoutExpired:
                    if self._cancel.is_set():
                        proc.kill()
                        proc.communicate()
                        raise ScanCancelledError("Scan cancelled") from None
                    if time.monotonic() >= deadline:
                        proc.kill()
                        proc.communicate()
                        raise ToolInvocationError(
                            f"Save scan timed out after {self._scan_timeout:.0f}s"
                        ) from None
                    if progress < _SCAN_CAP:
                        progress += _SCAN_STEP
                        if on_progress:
                            on_progress(progress)
        finally:
            self._scan_proc = None

        if self._cancel.is_set():
            raise ScanCancelledError("Scan cancelled")
        if proc.returncode != 0:
            raise ToolInvocationError(
                f"Save scan exited with code {proc.returncode}",
                stderr=stderr,
                returncode=proc.returncode,
            )
        if on_progress:
            on_progress(_SCAN_EXITED)
        return _parse_result(stdout)

    # ── Tool configuration ──

    def ensure_config(self) -> Path:
        """Write a default ``config.yaml`` if there is none yet."""
        path = self._paths.config_file
        if not path.exists():
            self._write_config(json.loads(json.dumps(_DEFAULT_TOOL_CONFIG)))
            logger.info(f"Created default save tool config: {path}")
        return path

    def get_config(self) -> dict[str, Any]:
        self.ensure_config()
        with open(self._paths.config_file, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        data.setdefault("customGames", [])
        return data

    def _write_config(self, data: dict[str, Any]) -> None:
        path = self._paths.config_file
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            tmp_path.replace(path)
        finally:
            tmp_path.unlink(missing_ok=True)

    def add_custom_game(self, name: str, save_path: str | None) -> None:
        """Register (or replace) a custom game; a falsy *save_path* only removes it."""
        data = self.get_config()
        games = [g for g in data["customGames"] if g.get("name") != name]
        if save_path:
            games.append({"name": name, "files": [save_path], "registry": []})
        data["customGames"] = games
        self._write_config(data)
        logger.info(f"Custom game updated: {name}")

    def remove_custom_game(self, name: str) -> None:
        data = self.get_config()
        data["customGames"] = [g for g in data["customGames"] if g.get("name") != name]
        self._write_config(data)
        logger.info(f"Custom game removed: {name}")

    def _custom_save_path(self, name: str) -> str | None:
        try:
            games = self.get_config()["customGames"]
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read save tool config: {e}")
            return None
        for game in games:
            if game.get("name") == name and game.get("files"):
                return game["files"][0]
        return None
