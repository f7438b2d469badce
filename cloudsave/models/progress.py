"""Progress reporting models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Callable


class BackupStatus(StrEnum):
    DETECTING = "detecting"
    BACKING_UP = "backing-up"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    RESTORING = "restoring"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class BackupProgress:
    """One step of a backup or restore, reported to the caller."""

    game_id: str
    status: BackupStatus
    progress: int  # 0-100
    message: str = ""


# Progress sinks
ProgressCallback = Callable[[BackupProgress], None]
PercentCallback = Callable[[int], None]
TransferCallback = Callable[[int, int], None]  # (done, total)
