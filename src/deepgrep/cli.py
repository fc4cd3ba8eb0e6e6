"""Command line interface for deepgrep."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from deepgrep.archive.expander import ArchiveExpander
from deepgrep.config import AppConfig
from deepgrep.errors import RootNotReadableError
from deepgrep.rotation.rotator import LogRotator, RotationStats
from deepgrep.search.dispatcher import SearchDispatcher
from deepgrep.search.engine import SearchEngine, SubprocessEngine
from deepgrep.search.walker import DirectoryWalker


console = Console()
err_console = Console(stderr=True)
app = typer.Typer(help="deepgrep - search directory trees, including compressed files")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_engine(config: AppConfig) -> SearchEngine:
    engine = SubprocessEngine(config.engine, timeout=config.engine_timeout)
    if not engine.is_available():
        raise typer.BadParameter(f"Search engine not found on PATH: {config.engine}")
    return engine


def _make_config(**values) -> AppConfig:
    try:
        return AppConfig(**values)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _print_rotation(stats: RotationStats) -> None:
    err_console.print(
        f"Logs rotated: {stats.rotated}, fresh: {stats.fresh}, failed: {stats.failed}",
        soft_wrap=True,
    )


@app.command()
def search(
    pattern: str = typer.Argument(..., help="Pattern passed to the search engine"),
    directory: Path = typer.Argument(..., help="Directory to search"),
    engine_options: Optional[List[str]] = typer.Argument(
        None, help="Options forwarded verbatim to the engine (put them after --)"
    ),
    engine: str = typer.Option(AppConfig().engine, "--engine", help="Search engine executable"),
    mode: str = typer.Option(AppConfig().mode, "--mode", help="How archive content reaches the engine: spool or stream"),
    timeout: float = typer.Option(AppConfig().engine_timeout, "--timeout", help="Seconds allowed per engine run"),
    max_runtime: Optional[float] = typer.Option(None, "--max-runtime", help="Stop searching after this many seconds"),
    retention_hours: float = typer.Option(
        AppConfig().retention_hours, "--retention-hours", help="Rotate .log files older than this"
    ),
    no_rotate: bool = typer.Option(False, "--no-rotate", help="Skip the log rotation pass"),
    expand_tar: bool = typer.Option(False, "--expand-tar", help="Search .tgz members one by one"),
    skip_suffix: Optional[List[str]] = typer.Option(None, "--skip-suffix", help="Treat files with this suffix as unsupported"),
    unsorted: bool = typer.Option(False, "--unsorted", help="Visit entries in filesystem order"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search PATTERN in every file under DIRECTORY, then rotate old logs."""
    _setup_logging(verbose)
    config = _make_config(
        engine=engine,
        engine_options=tuple(engine_options) if engine_options else AppConfig().engine_options,
        mode=mode,
        engine_timeout=timeout,
        max_runtime=max_runtime,
        retention_hours=retention_hours,
        expand_tar=expand_tar,
        sort_entries=not unsorted,
        unsupported_suffixes=tuple(skip_suffix or ()),
    )

    dispatcher = SearchDispatcher(_build_engine(config), console)
    walker = DirectoryWalker(dispatcher, ArchiveExpander(expand_tar=config.expand_tar), config)
    try:
        stats = walker.walk(directory, pattern, config.engine_options)
    except RootNotReadableError as exc:
        raise typer.BadParameter(str(exc)) from exc

    err_console.print(
        f"Searched: {stats.units} in {stats.files} files, matched: {stats.matched}, "
        f"skipped: {stats.skipped}, errors: {stats.errors}",
        soft_wrap=True,
    )

    if no_rotate:
        return
    rotator = LogRotator(config.retention, level=config.zstd_level, sort_entries=config.sort_entries)
    _print_rotation(rotator.rotate_tree(directory))


@app.command()
def rotate(
    directory: Path = typer.Argument(..., help="Directory holding log files"),
    retention_hours: float = typer.Option(
        AppConfig().retention_hours, "--retention-hours", help="Rotate .log files older than this"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Compress .log files older than the retention window."""
    _setup_logging(verbose)
    config = _make_config(retention_hours=retention_hours)
    if not directory.is_dir():
        raise typer.BadParameter(f"Not a directory: {directory}")

    rotator = LogRotator(config.retention, level=config.zstd_level)
    _print_rotation(rotator.rotate_tree(directory))
