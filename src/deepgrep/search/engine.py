"""Search engine backends.

The engine does the actual pattern matching. deepgrep only prepares its input
and reads its exit status: 0 means matches were found, 1 means none were,
anything else is an error.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Protocol, Sequence

from deepgrep.models import ExitClass, SearchInvocation

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SearchTarget:
    """What the engine searches: a filesystem path or a byte stream."""

    name: str
    path: Optional[Path] = None
    stream: Optional[BinaryIO] = None

    @classmethod
    def for_path(cls, path: Path, name: Optional[str] = None) -> "SearchTarget":
        return cls(name=name if name is not None else str(path), path=path)

    @classmethod
    def for_stream(cls, stream: BinaryIO, name: str) -> "SearchTarget":
        return cls(name=name, stream=stream)

    @property
    def is_stream(self) -> bool:
        return self.path is None

    @property
    def label(self) -> str:
        if self.is_stream:
            return f"{self.name} (from stream)"
        return self.name


def classify_exit(code: Optional[int]) -> ExitClass:
    if code == 0:
        return ExitClass.MATCHED
    if code == 1:
        return ExitClass.NO_MATCH
    return ExitClass.TOOL_ERROR


def build_command(executable: str, pattern: str, options: Sequence[str], target: SearchTarget) -> List[str]:
    command = [executable, *options, pattern]
    if not target.is_stream:
        command.append(str(target.path))
    return command


class SearchEngine(Protocol):
    def run(self, pattern: str, options: Sequence[str], target: SearchTarget) -> SearchInvocation:
        ...


class SubprocessEngine:
    """Runs an external search binary and waits for it to exit."""

    def __init__(self, executable: str = "ag", *, timeout: Optional[float] = 300.0) -> None:
        self.executable = executable
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def run(self, pattern: str, options: Sequence[str], target: SearchTarget) -> SearchInvocation:
        command = build_command(self.executable, pattern, options, target)
        LOGGER.debug("Running %s", command)
        try:
            if target.is_stream:
                code, output = self._run_stream(command, target.stream)
            else:
                code, output = self._run_path(command)
        except FileNotFoundError as exc:
            code, output = None, str(exc).encode()
        except subprocess.TimeoutExpired:
            code, output = None, f"timed out after {self.timeout} seconds".encode()

        return SearchInvocation(
            pattern=pattern,
            options=tuple(options),
            target_name=target.label,
            exit_class=classify_exit(code),
            output=output,
            return_code=code,
        )

    def _run_path(self, command: List[str]) -> tuple[int, bytes]:
        proc = subprocess.run(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=self.timeout,
        )
        return proc.returncode, proc.stdout

    def _run_stream(self, command: List[str], stream: BinaryIO) -> tuple[int, bytes]:
        proc = subprocess.Popen(
            command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        chunks: List[bytes] = []
        failures: List[BaseException] = []

        def feed() -> None:
            try:
                shutil.copyfileobj(stream, proc.stdin)
            except BrokenPipeError:
                LOGGER.debug("Engine closed its input early for %s", command)
            except Exception as exc:
                failures.append(exc)
            finally:
                try:
                    proc.stdin.close()
                except OSError:
                    pass

        # Feed stdin and drain stdout on their own threads; the timeout
        # covers the whole run, including time spent blocked on input.
        writer = threading.Thread(target=feed, daemon=True)
        reader = threading.Thread(target=lambda: chunks.append(proc.stdout.read()), daemon=True)
        writer.start()
        reader.start()
        try:
            writer.join(_remaining(deadline))
            if writer.is_alive():
                raise subprocess.TimeoutExpired(command, self.timeout)
            if failures:
                raise failures[0]
            proc.wait(timeout=_remaining(deadline))
        except BaseException:
            proc.kill()
            proc.wait()
            raise
        finally:
            writer.join()
            reader.join()
            proc.stdout.close()
        return proc.returncode, b"".join(chunks)


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


Responder = Callable[[str, Sequence[str], str, bytes], tuple[int, bytes]]


def _substring_responder(pattern: str, options: Sequence[str], name: str, content: bytes) -> tuple[int, bytes]:
    lines = [line for line in content.splitlines() if pattern.encode() in line]
    if not lines:
        return 1, b""
    return 0, b"\n".join(lines) + b"\n"


class FakeEngine:
    """In-process engine for tests: matches by plain substring, records calls."""

    def __init__(self, responder: Optional[Responder] = None) -> None:
        self.responder = responder or _substring_responder
        self.calls: List[tuple[str, tuple[str, ...], SearchTarget, bytes]] = []

    def run(self, pattern: str, options: Sequence[str], target: SearchTarget) -> SearchInvocation:
        if target.is_stream:
            content = target.stream.read()
        else:
            content = Path(target.path).read_bytes()
        self.calls.append((pattern, tuple(options), target, content))
        code, output = self.responder(pattern, options, target.name, content)
        return SearchInvocation(
            pattern=pattern,
            options=tuple(options),
            target_name=target.label,
            exit_class=classify_exit(code),
            output=output,
            return_code=code,
        )

    @property
    def names(self) -> List[str]:
        return [target.name for _, _, target, _ in self.calls]
