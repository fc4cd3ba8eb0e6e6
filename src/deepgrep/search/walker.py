"""Directory walk that routes every file to the search engine."""

from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from deepgrep.archive.expander import DECODE_ERRORS, ArchiveExpander, spool
from deepgrep.config import AppConfig
from deepgrep.errors import RootNotReadableError
from deepgrep.models import ContentUnit, ExitClass, FileCandidate, FileKind, SearchInvocation
from deepgrep.search.dispatcher import SearchDispatcher
from deepgrep.search.engine import SearchTarget
from deepgrep.utils.files import iter_regular_files, make_candidate

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class WalkStats:
    files: int = 0
    units: int = 0
    matched: int = 0
    no_match: int = 0
    tool_errors: int = 0
    decode_errors: int = 0
    traversal_errors: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False

    def record(self, invocation: SearchInvocation) -> None:
        self.units += 1
        if invocation.exit_class is ExitClass.MATCHED:
            self.matched += 1
        elif invocation.exit_class is ExitClass.NO_MATCH:
            self.no_match += 1
        else:
            self.tool_errors += 1

    @property
    def errors(self) -> int:
        return self.tool_errors + self.decode_errors + self.traversal_errors + self.failed


class DirectoryWalker:
    """Visits regular files under a root, expanding archives on the way."""

    def __init__(
        self,
        dispatcher: SearchDispatcher,
        expander: ArchiveExpander | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.config = config or AppConfig()
        self.expander = expander or ArchiveExpander(expand_tar=self.config.expand_tar)

    def walk(
        self,
        root: Path,
        pattern: str,
        options: Sequence[str] = (),
        *,
        cancel: Optional[threading.Event] = None,
    ) -> WalkStats:
        """Search every file under root and return the collected stats."""
        _check_root(root)
        stats = WalkStats()
        deadline = None
        if self.config.max_runtime is not None:
            deadline = time.monotonic() + self.config.max_runtime

        def on_error(exc: OSError) -> None:
            LOGGER.error("Cannot access %s: %s", exc.filename or root, exc.strerror or exc)
            stats.traversal_errors += 1

        for path in iter_regular_files(root, sort_entries=self.config.sort_entries, on_error=on_error):
            if cancel is not None and cancel.is_set():
                LOGGER.warning("Search cancelled before %s", path)
                stats.cancelled = True
                break
            if deadline is not None and time.monotonic() > deadline:
                LOGGER.warning("Search stopped after %ss before %s", self.config.max_runtime, path)
                stats.cancelled = True
                break

            stats.files += 1
            try:
                candidate = make_candidate(path, self.config.unsupported_suffixes)
            except OSError as exc:
                LOGGER.error(f"Cannot stat {path}: {exc}")
                stats.traversal_errors += 1
                continue

            if candidate.kind is FileKind.UNSUPPORTED:
                LOGGER.warning("Skipping unsupported file %s", path)
                stats.skipped += 1
                continue

            try:
                if candidate.kind.is_compressed:
                    self._search_archive(candidate, pattern, options, stats)
                else:
                    self._search_path(candidate, pattern, options, stats)
            except Exception as exc:
                LOGGER.error(f"Failed to process {path}: {exc}")
                stats.failed += 1

        return stats

    def _search_path(
        self, candidate: FileCandidate, pattern: str, options: Sequence[str], stats: WalkStats
    ) -> None:
        target = SearchTarget.for_path(candidate.path)
        stats.record(self.dispatcher.invoke(pattern, options, target))

    def _search_archive(
        self, candidate: FileCandidate, pattern: str, options: Sequence[str], stats: WalkStats
    ) -> None:
        LOGGER.info("Handling compressed file: %s", candidate.path)
        member = None
        try:
            with closing(self.expander.expand(candidate)) as units:
                for unit in units:
                    member = unit.logical_name
                    stats.record(self._search_unit(unit, pattern, options))
        except DECODE_ERRORS as exc:
            where = str(candidate.path)
            if member is not None and member != where:
                where = f"{member} in {candidate.path}"
            LOGGER.error(f"Failed to read {where}: {exc}")
            stats.decode_errors += 1

    def _search_unit(self, unit: ContentUnit, pattern: str, options: Sequence[str]) -> SearchInvocation:
        if self.config.streaming:
            target = SearchTarget.for_stream(unit.stream, unit.logical_name)
            return self.dispatcher.invoke(pattern, options, target)
        with spool(unit, self.config.spool_dir) as path:
            target = SearchTarget.for_path(path, name=unit.logical_name)
            return self.dispatcher.invoke(pattern, options, target)


def _check_root(root: Path) -> None:
    if not root.is_dir():
        raise RootNotReadableError(root, "not a directory")
    try:
        with os.scandir(root):
            pass
    except OSError as exc:
        raise RootNotReadableError(root, exc.strerror or str(exc)) from exc
