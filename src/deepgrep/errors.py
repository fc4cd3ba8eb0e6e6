"""Exceptions raised by deepgrep."""

from __future__ import annotations

from pathlib import Path


class DeepgrepError(Exception):
    """Base class for deepgrep errors."""


class RootNotReadableError(DeepgrepError):
    """The directory to search cannot be opened."""

    def __init__(self, root: Path, reason: str) -> None:
        super().__init__(f"Cannot read directory {root}: {reason}")
        self.root = root


class RotationError(DeepgrepError):
    """A log file could not be rotated; the original is left in place."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Failed to rotate {path}: {reason}")
        self.path = path
