from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class ShowSkipped(str, Enum):
    NEVER = "never"
    SUMMARY = "summary"
    ALL = "all"


class RunState(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    DRAINING = "draining"
    COMPLETED = "completed"
    FATAL = "fatal"


@dataclass(slots=True, frozen=True)
class FileEntry:
    source: Path
    relative_path: Path
    size: int
    mtime_ns: int


@dataclass(slots=True, frozen=True)
class CopyOperation:
    entry: FileEntry
    destination: Path
    excluded_by: str | None = None


@dataclass(slots=True)
class MirrorPlan:
    operations: list[CopyOperation]
    delta: bool = False
    total_bytes: int = 0
    unchanged: int = 0


@dataclass(slots=True)
class MirrorStats:
    copied: int = 0
    unchanged: int = 0
    excluded: int = 0
    failed: int = 0
    bytes_copied: int = 0

    @property
    def skipped(self) -> int:
        return self.unchanged + self.excluded + self.failed

    @property
    def total(self) -> int:
        return self.copied + self.skipped
