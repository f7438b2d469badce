"""Tracked game models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class GameShop(StrEnum):
    """Storefront a game identifier belongs to."""

    STEAM = "steam"
    GOG = "gog"
    EPIC = "epic"
    CUSTOM = "custom"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None, default: GameShop | None = None) -> GameShop:
        """Parse a shop tag, falling back to *default* (steam) when unknown."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return default or cls.STEAM


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@dataclass
class Game:
    """Registry entry: stored in games.json."""

    id: str
    name: str
    display_name: str = ""
    game_id: str | None = None  # Steam ID / GOG ID / free-text name
    platform: str | None = None
    custom_save_path: str | None = None
    cover_url: str | None = None
    backup_count: int = 0
    last_backup: str | None = None  # ISO datetime
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def shop(self) -> GameShop:
        return GameShop.parse(self.platform)

    @property
    def object_id(self) -> str:
        return self.game_id or self.name

    def touch(self) -> None:
        self.updated_at = _now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "game_id": self.game_id,
            "platform": self.platform,
            "custom_save_path": self.custom_save_path,
            "cover_url": self.cover_url,
            "backup_count": self.backup_count,
            "last_backup": self.last_backup,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Game:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class ScannedGame:
    """A game with saves found by a whole-system scan."""

    name: str
    game_id: str
    platform: GameShop
    saves_count: int = 0
    display_name: str = ""
