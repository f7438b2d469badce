"""Backup record models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cloudsave.models.game import Game

LOCAL_HOSTNAME = "local"
CLOUD_PREFIX = "cloud-"
_LEGACY_CLOUD_PREFIXES = ("gdrive-",)

# Labels written by older versions (or by buggy callers) that carry no meaning
_PLACEHOLDER_LABELS = {"", "null", "undefined", "Backup sem nome"}

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def default_label(created_at: datetime) -> str:
    """Human-readable label derived from the creation time."""
    return f"Backup of {created_at.astimezone():%Y-%m-%d %H:%M}"


def normalize_label(label: str | None, created_at: datetime) -> str:
    """Replace empty or placeholder labels with :func:`default_label`."""
    if label is None or label.strip() in _PLACEHOLDER_LABELS:
        return default_label(created_at)
    return label


def cloud_folder_label(name: str, created_at: datetime) -> str:
    """Cloud backups named after a UUID get a date label, others keep their name."""
    if _UUID_RE.match(name):
        return default_label(created_at)
    return name


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ── Backup references ──


@dataclass(frozen=True)
class LocalBackupRef:
    """A backup stored under the local backup root."""

    backup_id: str

    def __str__(self) -> str:
        return self.backup_id


@dataclass(frozen=True)
class CloudBackupRef:
    """A backup folder in the cloud object store."""

    folder_id: str

    def __str__(self) -> str:
        return f"{CLOUD_PREFIX}{self.folder_id}"


BackupRef = LocalBackupRef | CloudBackupRef


def parse_backup_ref(value: str | BackupRef) -> BackupRef:
    """Decide once whether an id string names a local or a cloud backup."""
    if isinstance(value, (LocalBackupRef, CloudBackupRef)):
        return value
    for prefix in (CLOUD_PREFIX, *_LEGACY_CLOUD_PREFIXES):
        if value.startswith(prefix):
            return CloudBackupRef(value[len(prefix) :])
    return LocalBackupRef(value)


# ── Records ──


class BackupSource(StrEnum):
    LOCAL = "local"
    CLOUD = "cloud"


@dataclass
class BackupMetadata:
    """The metadata.json sidecar written next to every local backup payload."""

    id: str
    label: str | None
    created_at: str  # ISO datetime
    download_option_title: str | None = None
    artifact_length_in_bytes: int = 0
    hostname: str = LOCAL_HOSTNAME

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "createdAt": self.created_at,
            "downloadOptionTitle": self.download_option_title,
            "artifactLengthInBytes": self.artifact_length_in_bytes,
            "hostname": self.hostname,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupMetadata:
        label = data.get("label")
        return cls(
            id=str(data["id"]),
            label=label if isinstance(label, str) else None,
            created_at=str(data.get("createdAt") or ""),
            download_option_title=data.get("downloadOptionTitle"),
            artifact_length_in_bytes=int(data.get("artifactLengthInBytes") or 0),
            hostname=data.get("hostname") or LOCAL_HOSTNAME,
        )


@dataclass
class BackupRecord:
    """In-memory representation of a discovered backup, local or cloud."""

    ref: BackupRef
    label: str
    created_at: datetime
    size_bytes: int = 0
    source_hostname: str | None = None
    download_option_title: str | None = None

    @property
    def id(self) -> str:
        return str(self.ref)

    @property
    def is_cloud(self) -> bool:
        return isinstance(self.ref, CloudBackupRef)

    @property
    def source(self) -> BackupSource:
        return BackupSource.CLOUD if self.is_cloud else BackupSource.LOCAL


@dataclass
class CloudFolder:
    """A file or folder entry returned by the cloud object store."""

    id: str
    name: str
    mime_type: str = ""
    created_time: str | None = None
    modified_time: str | None = None
    parents: list[str] = field(default_factory=list)

    FOLDER_MIME = "application/vnd.google-apps.folder"

    @property
    def is_folder(self) -> bool:
        return self.mime_type == self.FOLDER_MIME

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> CloudFolder:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            mime_type=data.get("mimeType", ""),
            created_time=data.get("createdTime"),
            modified_time=data.get("modifiedTime"),
            parents=list(data.get("parents") or []),
        )


@dataclass
class EphemeralBackup:
    """A backup materialized in a temp directory, owned by the caller."""

    backup_id: str
    payload_path: Path
    root: Path


@dataclass
class GameBackups:
    """All backups of one game, local and cloud, newest first."""

    game: Game
    backups: list[BackupRecord] = field(default_factory=list)
