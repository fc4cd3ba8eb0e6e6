"""Tests for DirectoryWalker."""

from __future__ import annotations

import gzip
import io
import itertools
import logging
import threading
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest
import zstandard as zstd
from rich.console import Console

from deepgrep.config import AppConfig
from deepgrep.errors import RootNotReadableError
from deepgrep.models import ExitClass, SearchInvocation
from deepgrep.search.dispatcher import SearchDispatcher
from deepgrep.search.engine import FakeEngine
from deepgrep.search.walker import DirectoryWalker, WalkStats


def _walker(engine: FakeEngine, config: AppConfig | None = None) -> tuple[DirectoryWalker, io.StringIO]:
    output = io.StringIO()
    dispatcher = SearchDispatcher(engine, Console(file=output, width=200))
    return DirectoryWalker(dispatcher, config=config), output


def _write_zip(path: Path, members: dict[str, bytes]) -> None:
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in members.items():
            archive.writestr(name, data)


class TestWalkStats:
    """Test WalkStats tracking."""

    def test_init_defaults(self) -> None:
        stats = WalkStats()
        assert stats.files == 0
        assert stats.units == 0
        assert stats.errors == 0
        assert stats.cancelled is False

    def test_engine_output_not_retained(self) -> None:
        stats = WalkStats()
        invocation = SearchInvocation(
            pattern="needle",
            options=(),
            target_name="big.log",
            exit_class=ExitClass.MATCHED,
            output=b"needle\n" * 1000,
            return_code=0,
        )

        stats.record(invocation)

        assert stats.matched == 1
        assert not hasattr(stats, "invocations")
        assert not hasattr(stats, "__dict__")

    def test_errors_total(self) -> None:
        stats = WalkStats(tool_errors=1, decode_errors=2, traversal_errors=3, failed=4)
        assert stats.errors == 10


class TestDirectoryWalker:
    """Test routing of files to the engine."""

    def test_plain_file_searched_by_path(self, tmp_path: Path) -> None:
        notes = tmp_path / "notes.txt"
        notes.write_text("the needle is here\n")
        engine = FakeEngine()
        walker, output = _walker(engine)

        stats = walker.walk(tmp_path, "needle", ["--color"])

        assert stats.files == 1
        assert stats.matched == 1
        pattern, options, target, _ = engine.calls[0]
        assert (pattern, options) == ("needle", ("--color",))
        assert target.path == notes
        assert f"Results for {notes}:" in output.getvalue()

    def test_zip_members_each_searched(self, tmp_path: Path) -> None:
        _write_zip(tmp_path / "data.zip", {"a.txt": b"needle\n", "b.txt": b"hay\n", "c.txt": b"more hay\n"})
        engine = FakeEngine()
        walker, output = _walker(engine)

        stats = walker.walk(tmp_path, "needle")

        assert engine.names == ["a.txt", "b.txt", "c.txt"]
        assert stats.units == 3
        assert stats.matched == 1
        assert stats.no_match == 2
        assert "Results for a.txt:" in output.getvalue()
        assert "b.txt" not in output.getvalue()

    def test_spooled_files_removed(self, tmp_path: Path) -> None:
        data = tmp_path / "data"
        data.mkdir()
        (data / "a.gz").write_bytes(gzip.compress(b"needle\n"))
        _write_zip(data / "b.zip", {"m.txt": b"needle\n"})
        spool_dir = tmp_path / "spool"
        spool_dir.mkdir()
        engine = FakeEngine()
        walker, _ = _walker(engine, AppConfig(spool_dir=spool_dir))

        walker.walk(data, "needle")

        spooled = [target.path for _, _, target, _ in engine.calls]
        assert len(spooled) == 2
        assert all(path.parent == spool_dir for path in spooled)
        assert list(spool_dir.iterdir()) == []

    def test_stream_mode(self, tmp_path: Path) -> None:
        (tmp_path / "old.log.zstd").write_bytes(zstd.ZstdCompressor().compress(b"needle\n"))
        engine = FakeEngine()
        walker, output = _walker(engine, AppConfig(mode="stream"))

        stats = walker.walk(tmp_path, "needle")

        _, _, target, content = engine.calls[0]
        assert target.is_stream
        assert content == b"needle\n"
        assert stats.matched == 1
        assert f"Results for {tmp_path / 'old.log.zstd'} (from stream):" in output.getvalue()

    def test_round_trip_through_walk(self, tmp_path: Path) -> None:
        """Each container kind hands the engine exactly the original bytes."""
        content = b"line one\nline two\n"
        (tmp_path / "a.gz").write_bytes(gzip.compress(content))
        (tmp_path / "b.tgz").write_bytes(gzip.compress(content))
        _write_zip(tmp_path / "c.zip", {"inner.txt": content})
        (tmp_path / "d.zstd").write_bytes(zstd.ZstdCompressor().compress(content))
        engine = FakeEngine()
        walker, _ = _walker(engine)

        walker.walk(tmp_path, "needle")

        assert [data for _, _, _, data in engine.calls] == [content] * 4

    def test_decode_failure_isolated(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        (tmp_path / "a_broken.zip").write_bytes(b"not a zip")
        (tmp_path / "b_broken.gz").write_bytes(b"not gzip")
        (tmp_path / "c_notes.txt").write_text("needle\n")
        engine = FakeEngine()
        walker, _ = _walker(engine)

        with caplog.at_level(logging.ERROR):
            stats = walker.walk(tmp_path, "needle")

        assert stats.decode_errors == 2
        assert stats.matched == 1
        assert engine.names == [str(tmp_path / "c_notes.txt")]
        assert "a_broken.zip" in caplog.text
        assert "b_broken.gz" in caplog.text

    def test_tool_error_isolated(self, tmp_path: Path) -> None:
        (tmp_path / "a.txt").write_text("needle\n")
        (tmp_path / "b.txt").write_text("needle\n")

        def responder(pattern, options, name, content):
            return (2, b"boom") if name.endswith("a.txt") else (0, content)

        engine = FakeEngine(responder)
        walker, _ = _walker(engine)

        stats = walker.walk(tmp_path, "needle")

        assert stats.tool_errors == 1
        assert stats.matched == 1
        assert engine.names == [str(tmp_path / "a.txt"), str(tmp_path / "b.txt")]

    @pytest.mark.parametrize("mode", ["spool", "stream"])
    def test_truncated_zstd_counted(self, tmp_path: Path, mode: str) -> None:
        frame = zstd.ZstdCompressor().compress(bytes(range(256)) * 400)
        (tmp_path / "a_cut.log.zstd").write_bytes(frame[: len(frame) // 2])
        (tmp_path / "b_notes.txt").write_text("needle\n")
        engine = FakeEngine()
        walker, _ = _walker(engine, AppConfig(mode=mode))

        stats = walker.walk(tmp_path, "needle")

        assert stats.decode_errors == 1
        assert stats.failed == 0
        assert stats.matched == 1
        assert engine.names[-1] == str(tmp_path / "b_notes.txt")

    def test_missing_spool_dir_is_not_a_decode_error(self, tmp_path: Path) -> None:
        root = tmp_path / "tree"
        root.mkdir()
        (root / "a.log.gz").write_bytes(gzip.compress(b"needle\n"))
        (root / "b.txt").write_text("needle\n")
        engine = FakeEngine()
        walker, _ = _walker(engine, AppConfig(spool_dir=tmp_path / "missing"))

        stats = walker.walk(root, "needle")

        assert stats.failed == 1
        assert stats.decode_errors == 0
        assert engine.names == [str(root / "b.txt")]

    def test_unexpected_error_isolated(self, tmp_path: Path) -> None:
        (tmp_path / "a.txt").write_text("x")
        (tmp_path / "b.txt").write_text("needle")

        def responder(pattern, options, name, content):
            if name.endswith("a.txt"):
                raise RuntimeError("engine exploded")
            return 0, content

        walker, _ = _walker(FakeEngine(responder))

        stats = walker.walk(tmp_path, "needle")

        assert stats.failed == 1
        assert stats.matched == 1

    def test_unsupported_skipped(self, tmp_path: Path) -> None:
        (tmp_path / "dump.bz2").write_bytes(b"BZh")
        (tmp_path / "notes.txt").write_text("needle")
        engine = FakeEngine()
        walker, _ = _walker(engine, AppConfig(unsupported_suffixes=(".bz2",)))

        stats = walker.walk(tmp_path, "needle")

        assert stats.skipped == 1
        assert stats.files == 2
        assert engine.names == [str(tmp_path / "notes.txt")]

    def test_expand_tar(self, tmp_path: Path) -> None:
        import tarfile

        with tarfile.open(tmp_path / "bundle.tgz", "w:gz") as archive:
            for name in ("x.txt", "y.txt"):
                info = tarfile.TarInfo(name)
                info.size = 7
                archive.addfile(info, io.BytesIO(b"needle\n"))
        engine = FakeEngine()
        walker, _ = _walker(engine, AppConfig(expand_tar=True))

        stats = walker.walk(tmp_path, "needle")

        assert engine.names == ["x.txt", "y.txt"]
        assert stats.matched == 2

    def test_empty_directory(self, tmp_path: Path) -> None:
        engine = FakeEngine()
        walker, output = _walker(engine)

        stats = walker.walk(tmp_path, "needle")

        assert engine.calls == []
        assert stats.files == 0
        assert stats.errors == 0
        assert output.getvalue() == ""

    def test_missing_root_is_fatal(self, tmp_path: Path) -> None:
        walker, _ = _walker(FakeEngine())

        with pytest.raises(RootNotReadableError):
            walker.walk(tmp_path / "missing", "needle")

    def test_file_root_is_fatal(self, tmp_path: Path) -> None:
        notes = tmp_path / "notes.txt"
        notes.write_text("needle")
        walker, _ = _walker(FakeEngine())

        with pytest.raises(RootNotReadableError):
            walker.walk(notes, "needle")

    def test_cancel_between_files(self, tmp_path: Path) -> None:
        (tmp_path / "a.txt").write_text("needle")
        (tmp_path / "b.txt").write_text("needle")
        cancel = threading.Event()

        def responder(pattern, options, name, content):
            cancel.set()
            return 0, content

        engine = FakeEngine(responder)
        walker, _ = _walker(engine)

        stats = walker.walk(tmp_path, "needle", cancel=cancel)

        assert stats.cancelled
        assert len(engine.calls) == 1

    def test_max_runtime(self, tmp_path: Path) -> None:
        (tmp_path / "a.txt").write_text("needle")
        engine = FakeEngine()
        walker, _ = _walker(engine, AppConfig(max_runtime=1))

        with patch("deepgrep.search.walker.time.monotonic", side_effect=itertools.count(0, 100)):
            stats = walker.walk(tmp_path, "needle")

        assert stats.cancelled
        assert engine.calls == []
