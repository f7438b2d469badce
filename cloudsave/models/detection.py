"""Save-tool detection result models (the tool's ``--api`` JSON output)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class DetectedFile:
    """A single save file reported by the tool."""

    change: str = "Unknown"  # New / Different / Same / Removed / Unknown
    bytes: int = 0


@dataclass
class DetectedGame:
    """Per-game section of a detection result."""

    name: str
    files: dict[str, DetectedFile] = field(default_factory=dict)
    registry: dict[str, Any] = field(default_factory=dict)
    decision: str | None = None
    change: str | None = None

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_bytes(self) -> int:
        return sum(f.bytes for f in self.files.values())


@dataclass
class ScanResult:
    """Parsed ``backup --api`` output."""

    overall: dict[str, Any] = field(default_factory=dict)
    games: dict[str, DetectedGame] = field(default_factory=dict)
    custom_backup_path: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanResult:
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        games: dict[str, DetectedGame] = {}
        for name, raw in (data.get("games") or {}).items():
            raw = raw or {}
            files = {
                path: DetectedFile(
                    change=str(info.get("change", "Unknown")),
                    bytes=int(info.get("bytes", 0) or 0),
                )
                for path, info in (raw.get("files") or {}).items()
            }
            games[name] = DetectedGame(
                name=name,
                files=files,
                registry=raw.get("registry") or {},
                decision=raw.get("decision"),
                change=raw.get("change"),
            )
        return cls(overall=data.get("overall") or {}, games=games)

    def games_with_files(self) -> list[DetectedGame]:
        return [g for g in self.games.values() if g.files]
