"""Compression of stale log files.

A log older than the retention window is replaced by ``<name>.zstd``. The
original is only removed once the compressed copy has been fully written.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

import zstandard as zstd

from deepgrep.config import DEFAULT_RETENTION_HOURS
from deepgrep.errors import RotationError
from deepgrep.models import LogFile
from deepgrep.utils.files import iter_regular_files

LOGGER = logging.getLogger(__name__)

LOG_SUFFIX = ".log"
ROTATED_SUFFIX = ".zstd"


@dataclass(slots=True)
class RotationStats:
    examined: int = 0
    rotated: int = 0
    fresh: int = 0
    failed: int = 0
    rotated_files: list[Path] = field(default_factory=list)


class LogRotator:
    """Finds stale ``.log`` files under a directory and compresses them."""

    def __init__(
        self,
        retention: timedelta = timedelta(hours=DEFAULT_RETENTION_HOURS),
        *,
        level: int = 3,
        sort_entries: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retention = retention
        self.level = level
        self.sort_entries = sort_entries
        self.clock = clock

    def rotate_tree(self, root: Path, *, cancel: Optional[threading.Event] = None) -> RotationStats:
        stats = RotationStats()
        now = self.clock()

        def on_error(exc: OSError) -> None:
            LOGGER.error("Cannot access %s: %s", exc.filename or root, exc.strerror or exc)

        for path in iter_regular_files(root, sort_entries=self.sort_entries, on_error=on_error):
            if not path.name.endswith(LOG_SUFFIX):
                continue
            if cancel is not None and cancel.is_set():
                LOGGER.warning("Log rotation cancelled before %s", path)
                break

            stats.examined += 1
            try:
                log = LogFile(path=path, mtime=path.stat().st_mtime)
            except OSError as exc:
                LOGGER.error(f"Cannot stat {path}: {exc}")
                stats.failed += 1
                continue

            if not log.is_stale(self.retention, now):
                stats.fresh += 1
                continue

            LOGGER.info("Compressing and deleting old log file: %s", path)
            try:
                stats.rotated_files.append(self.rotate_file(path))
                stats.rotated += 1
            except RotationError as exc:
                LOGGER.error(str(exc))
                stats.failed += 1

        return stats

    def rotate_file(self, path: Path) -> Path:
        """Compress ``path`` to ``path.zstd`` and delete the original.

        Raises RotationError if any step fails. In that case the original is
        untouched and no partial output is left behind.
        """
        target = path.with_name(path.name + ROTATED_SUFFIX)
        try:
            source = path.open("rb")
        except OSError as exc:
            raise RotationError(path, f"cannot open: {exc}") from exc

        with source:
            try:
                output = target.open("xb")
            except FileExistsError as exc:
                raise RotationError(path, f"{target} already exists") from exc
            except OSError as exc:
                raise RotationError(path, f"cannot create {target}: {exc}") from exc

            try:
                with output:
                    cctx = zstd.ZstdCompressor(level=self.level)
                    cctx.copy_stream(source, output)
            except (OSError, zstd.ZstdError) as exc:
                target.unlink(missing_ok=True)
                raise RotationError(path, f"compression failed: {exc}") from exc

        try:
            path.unlink()
        except OSError as exc:
            # Keep the original as the source of truth; drop the copy.
            target.unlink(missing_ok=True)
            raise RotationError(path, f"cannot remove original: {exc}") from exc
        return target
