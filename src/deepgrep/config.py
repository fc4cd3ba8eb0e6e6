"""Settings shared by the search walk, the engine and log rotation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional, Tuple

DEFAULT_ENGINE = "ag"
DEFAULT_ENGINE_OPTIONS: Tuple[str, ...] = ("--color",)
DEFAULT_RETENTION_HOURS = 168.0  # 7 days
MODES = ("spool", "stream")


@dataclass(slots=True)
class AppConfig:
    engine: str = DEFAULT_ENGINE
    engine_options: Tuple[str, ...] = DEFAULT_ENGINE_OPTIONS
    # "spool" hands archive content to the engine as a temp file path,
    # "stream" pipes it through the engine's standard input.
    mode: str = "spool"
    engine_timeout: Optional[float] = 300.0
    max_runtime: Optional[float] = None
    retention_hours: float = DEFAULT_RETENTION_HOURS
    zstd_level: int = 3
    expand_tar: bool = False
    sort_entries: bool = True
    unsupported_suffixes: Tuple[str, ...] = ()
    spool_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"Unknown mode {self.mode!r}, expected one of {', '.join(MODES)}")
        if self.retention_hours < 0:
            raise ValueError("retention_hours must not be negative")
        if self.engine_timeout is not None and self.engine_timeout <= 0:
            raise ValueError("engine_timeout must be positive")
        if self.max_runtime is not None and self.max_runtime <= 0:
            raise ValueError("max_runtime must be positive")
        self.engine_options = tuple(self.engine_options)
        self.unsupported_suffixes = tuple(s.lower() for s in self.unsupported_suffixes)

    @property
    def retention(self) -> timedelta:
        return timedelta(hours=self.retention_hours)

    @property
    def streaming(self) -> bool:
        return self.mode == "stream"
