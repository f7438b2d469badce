"""Game registry: JSON-based list of tracked games."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from uuid import uuid4

from loguru import logger

from cloudsave.exceptions import GameAlreadyExistsError, GameNotFoundError
from cloudsave.models.game import Game, GameShop


class GameRegistry:
    """
    Tracked games: reads/writes games.json.

    Games are keyed by a random id; ``(shop, object_id)`` identifies the
    backups that belong to a game.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._path = data_dir / "games.json"
        self._games: dict[str, Game] = {}
        self._version = 1
        self._lock = threading.RLock()

    def load(self) -> None:
        """Load the registry from disk."""
        with self._lock:
            self._games.clear()
            if not self._path.exists():
                return
            try:
                with open(self._path, encoding="utf-8") as f:
                    data = json.load(f)
                self._version = data.get("version", 1)
                for raw in data.get("games", []):
                    try:
                        game = Game.from_dict(raw)
                        self._games[game.id] = game
                    except (TypeError, KeyError) as e:
                        logger.warning(f"Skipping malformed game entry: {e}")
            except (json.JSONDecodeError, OSError) as e:
                logger.error(f"Failed to load game registry: {e}")

    def save(self) -> None:
        """Persist the registry to disk."""
        with self._lock:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            data = {
                "version": self._version,
                "games": [g.to_dict() for g in self._games.values()],
            }
            tmp = self._path.with_suffix(".tmp")
            try:
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
                tmp.replace(self._path)
            except OSError as e:
                logger.error(f"Failed to save game registry: {e}")
                tmp.unlink(missing_ok=True)

    def add(
        self,
        name: str,
        game_id: str | None = None,
        platform: str | None = None,
        custom_save_path: str | None = None,
        display_name: str | None = None,
        cover_url: str | None = None,
    ) -> Game:
        """Register a new game; names and platform ids must be unique."""
        with self._lock:
            for existing in self._games.values():
                if existing.name == name:
                    raise GameAlreadyExistsError(f"Game already registered: {name}")
                if game_id and existing.game_id == game_id:
                    raise GameAlreadyExistsError(f"Game id already registered: {game_id}")

            game = Game(
                id=uuid4().hex,
                name=name,
                display_name=display_name or name,
                game_id=game_id,
                platform=platform,
                custom_save_path=custom_save_path,
                cover_url=cover_url,
            )
            self._games[game.id] = game
            self.save()
        logger.info(f"Registered game: {name}")
        return game

    def remove(self, id: str) -> Game:
        with self._lock:
            game = self._games.pop(id, None)
            if game is None:
                raise GameNotFoundError(f"Game not found: {id}")
            self.save()
        logger.info(f"Removed game: {game.name}")
        return game

    def get(self, id: str) -> Game:
        game = self._games.get(id)
        if game is None:
            raise GameNotFoundError(f"Game not found: {id}")
        return game

    def find(self, shop: str, object_id: str) -> Game | None:
        """The registered game addressed by ``(shop, object_id)``, if any."""
        shop = GameShop.parse(shop)
        for game in self._games.values():
            if game.shop == shop and game.object_id == object_id:
                return game
        return None

    def update(self, game: Game) -> None:
        with self._lock:
            if game.id not in self._games:
                raise GameNotFoundError(f"Game not found: {game.id}")
            game.touch()
            self._games[game.id] = game
            self.save()

    def all(self) -> list[Game]:
        return list(self._games.values())

    @property
    def count(self) -> int:
        return len(self._games)
