"""Core deepgrep data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional, Sequence


class FileKind(str, Enum):
    """Kind of a file, derived from its name only."""

    PLAIN = "plain"
    GZIP = "gzip"
    ZIP = "zip"
    ZSTD = "zstd"
    TAR_GZIP = "tar-gzip"
    UNSUPPORTED = "unsupported"

    @property
    def is_compressed(self) -> bool:
        return self in (FileKind.GZIP, FileKind.ZIP, FileKind.ZSTD, FileKind.TAR_GZIP)


class ExitClass(str, Enum):
    """Classification of a search engine exit status."""

    MATCHED = "matched"
    NO_MATCH = "no-match"
    TOOL_ERROR = "tool-error"


@dataclass(slots=True)
class FileCandidate:
    """A file found by the walker, with its classified kind."""

    path: Path
    is_regular: bool
    kind: FileKind


@dataclass(slots=True)
class ContentUnit:
    """One self-contained byte stream to be searched."""

    logical_name: str
    stream: BinaryIO
    source_archive: Optional[FileCandidate] = None


@dataclass(slots=True)
class SearchInvocation:
    """Outcome of a single search engine run."""

    pattern: str
    options: Sequence[str]
    target_name: str
    exit_class: ExitClass
    output: bytes = b""
    return_code: Optional[int] = None

    @property
    def matched(self) -> bool:
        return self.exit_class is ExitClass.MATCHED


@dataclass(slots=True)
class LogFile:
    """A log file considered for rotation."""

    path: Path
    mtime: float

    def age(self, now: float) -> timedelta:
        return timedelta(seconds=now - self.mtime)

    def is_stale(self, retention: timedelta, now: float) -> bool:
        return self.age(now) > retention
