"""Archive expansion into searchable content units.

Compressed files are never extracted to disk as a whole. Each logical unit
(a zip member, or the single decompressed stream of a gzip/zstd file) is
yielded as an open stream, and is closed by the generator once the caller
moves on, or when the generator itself is closed.
"""

from __future__ import annotations

import gzip
import io
import logging
import os
import shutil
import tarfile
import tempfile
import zipfile
import zlib
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

import zstandard as zstd

from deepgrep.models import ContentUnit, FileCandidate, FileKind

LOGGER = logging.getLogger(__name__)

# Anything that signals a broken or truncated container.
DECODE_ERRORS = (
    gzip.BadGzipFile,
    EOFError,
    zlib.error,
    zipfile.BadZipFile,
    tarfile.TarError,
    zstd.ZstdError,
)

SPOOL_PREFIX = "deepgrep-"


class ZstdFrameReader(io.RawIOBase):
    """Decodes consecutive zstd frames from a raw file.

    Raises ZstdError when the input ends inside a frame, so a truncated file
    is reported instead of read as short content.
    """

    def __init__(self, raw: BinaryIO, read_size: int = zstd.DECOMPRESSION_RECOMMENDED_INPUT_SIZE) -> None:
        self._raw = raw
        self._read_size = read_size
        self._dctx = zstd.ZstdDecompressor()
        self._dobj = None
        self._pending = b""
        self._decoded = memoryview(b"")
        self._finished = False

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._decoded and not self._finished:
            self._decode_next()
        count = min(len(buffer), len(self._decoded))
        buffer[:count] = self._decoded[:count]
        self._decoded = self._decoded[count:]
        return count

    def _decode_next(self) -> None:
        data = self._pending or self._raw.read(self._read_size)
        self._pending = b""
        if not data:
            if self._dobj is not None and not self._dobj.eof:
                raise zstd.ZstdError("zstd input ended in the middle of a frame")
            self._finished = True
            return
        if self._dobj is None or self._dobj.eof:
            self._dobj = self._dctx.decompressobj()
        self._decoded = memoryview(self._dobj.decompress(data))
        if self._dobj.eof:
            # Bytes past the end of a frame start the next one.
            self._pending = self._dobj.unused_data


class ArchiveExpander:
    """Turns a compressed FileCandidate into a lazy sequence of ContentUnits."""

    def __init__(self, *, expand_tar: bool = False) -> None:
        self.expand_tar = expand_tar

    def expand(self, candidate: FileCandidate) -> Iterator[ContentUnit]:
        if not candidate.kind.is_compressed:
            raise ValueError(f"{candidate.path} is not a compressed file ({candidate.kind.value})")

        LOGGER.debug("Expanding %s as %s", candidate.path, candidate.kind.value)
        if candidate.kind is FileKind.ZIP:
            yield from self._expand_zip(candidate)
        elif candidate.kind is FileKind.ZSTD:
            yield from self._expand_zstd(candidate)
        elif candidate.kind is FileKind.TAR_GZIP and self.expand_tar:
            yield from self._expand_tar(candidate)
        else:
            # .gz, and .tgz without tar expansion: one decompressed stream
            yield from self._expand_gzip(candidate)

    def _expand_gzip(self, candidate: FileCandidate) -> Iterator[ContentUnit]:
        with gzip.open(candidate.path, "rb") as stream:
            yield ContentUnit(str(candidate.path), stream, candidate)

    def _expand_zip(self, candidate: FileCandidate) -> Iterator[ContentUnit]:
        with zipfile.ZipFile(candidate.path) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                with archive.open(info) as stream:
                    yield ContentUnit(info.filename, stream, candidate)

    def _expand_zstd(self, candidate: FileCandidate) -> Iterator[ContentUnit]:
        with candidate.path.open("rb") as raw:
            with io.BufferedReader(ZstdFrameReader(raw)) as stream:
                yield ContentUnit(str(candidate.path), stream, candidate)

    def _expand_tar(self, candidate: FileCandidate) -> Iterator[ContentUnit]:
        with tarfile.open(candidate.path, "r|gz") as archive:
            for member in archive:
                if not member.isfile():
                    continue
                stream = archive.extractfile(member)
                if stream is None:
                    continue
                with stream:
                    yield ContentUnit(member.name, stream, candidate)


def _spool_suffix(logical_name: str) -> str:
    """Keep the inner suffix so the engine's file-type filters still apply."""
    name = os.path.basename(logical_name)
    for outer in (".gz", ".tgz", ".zstd"):
        if name.lower().endswith(outer):
            name = name[: -len(outer)]
            break
    return Path(name).suffix


@contextmanager
def spool(unit: ContentUnit, directory: Optional[Path] = None) -> Iterator[Path]:
    """Copy a unit's stream into a temporary file and yield its path.

    The file is removed when the block exits, whether or not it raised.
    """
    handle = tempfile.NamedTemporaryFile(
        prefix=SPOOL_PREFIX,
        suffix=_spool_suffix(unit.logical_name),
        dir=directory,
        delete=False,
    )
    path = Path(handle.name)
    try:
        with handle:
            shutil.copyfileobj(unit.stream, handle)
        yield path
    finally:
        path.unlink(missing_ok=True)
