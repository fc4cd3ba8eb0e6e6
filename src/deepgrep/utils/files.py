"""File classification by name, and a regular-file tree walk."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from deepgrep.models import FileCandidate, FileKind

# Compound suffixes are checked before single ones.
SUFFIX_KINDS = (
    (".tar.gz", FileKind.TAR_GZIP),
    (".tgz", FileKind.TAR_GZIP),
    (".gz", FileKind.GZIP),
    (".zip", FileKind.ZIP),
    (".zstd", FileKind.ZSTD),
)


def classify_kind(path: Path | str, unsupported_suffixes: Iterable[str] = ()) -> FileKind:
    """Classify a file by its name. Content is never inspected."""
    name = os.path.basename(str(path)).lower()
    if any(name.endswith(suffix) for suffix in unsupported_suffixes):
        return FileKind.UNSUPPORTED
    for suffix, kind in SUFFIX_KINDS:
        if name.endswith(suffix):
            return kind
    return FileKind.PLAIN


def make_candidate(path: Path, unsupported_suffixes: Iterable[str] = ()) -> FileCandidate:
    """Build a FileCandidate from a path, using lstat for the regular-file check."""
    is_regular = stat.S_ISREG(path.lstat().st_mode)
    return FileCandidate(path=path, is_regular=is_regular, kind=classify_kind(path, unsupported_suffixes))


def iter_regular_files(
    root: Path,
    *,
    sort_entries: bool = True,
    on_error: Optional[Callable[[OSError], None]] = None,
) -> Iterator[Path]:
    """Yield every regular file under root, descending into directories.

    Symlinks are not followed. Listing and stat errors are passed to
    ``on_error`` and the walk carries on.
    """
    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        if sort_entries:
            dirnames.sort()
            filenames = sorted(filenames)
        for filename in filenames:
            path = Path(dirpath) / filename
            try:
                mode = path.lstat().st_mode
            except OSError as exc:
                if on_error is not None:
                    on_error(exc)
                continue
            if stat.S_ISREG(mode):
                yield path
