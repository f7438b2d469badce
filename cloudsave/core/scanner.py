"""Find installed games that have save files, using a whole-system preview."""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from cloudsave.models.detection import ScanResult
from cloudsave.models.game import GameShop, ScannedGame
from cloudsave.models.progress import PercentCallback

MAX_SCANNED_GAMES = 150


class ScanTool(Protocol):
    def scan_all(self, on_progress: PercentCallback | None = None) -> ScanResult: ...

    def cancel_scan(self) -> None: ...


def detect_shop(game_id: str) -> GameShop:
    """Numeric identifiers are Steam app ids; anything else is unknown."""
    return GameShop.STEAM if game_id.isdigit() else GameShop.UNKNOWN


class GameScanner:
    """Turns a whole-system save scan into a list of importable games."""

    def __init__(self, tool: ScanTool) -> None:
        self._tool = tool

    def scan_installed_games(self, on_progress: PercentCallback | None = None) -> list[ScannedGame]:
        def _report(value: int) -> None:
            if on_progress:
                on_progress(value)

        _report(10)
        result = self._tool.scan_all(lambda p: _report(min(p, 90)))
        _report(90)

        found = result.games_with_files()[:MAX_SCANNED_GAMES]
        _report(92)

        scanned: list[ScannedGame] = []
        for i, game in enumerate(found, start=1):
            scanned.append(
                ScannedGame(
                    name=game.name,
                    game_id=game.name,
                    platform=detect_shop(game.name),
                    saves_count=game.file_count,
                    display_name=game.name,
                )
            )
            _report(92 + (i * 7) // len(found))

        _report(99)
        _report(100)
        logger.info(f"Scan found {len(scanned)} game(s) with saves")
        return scanned

    def cancel(self) -> None:
        self._tool.cancel_scan()
