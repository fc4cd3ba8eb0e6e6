"""Invoke the search engine and report its result."""

from __future__ import annotations

import logging
from typing import Sequence

from rich.console import Console
from rich.text import Text

from deepgrep.models import ExitClass, SearchInvocation
from deepgrep.search.engine import SearchEngine, SearchTarget

LOGGER = logging.getLogger(__name__)


class SearchDispatcher:
    """Runs one search per target and prints the matches."""

    def __init__(self, engine: SearchEngine, console: Console | None = None) -> None:
        self.engine = engine
        self.console = console or Console()

    def invoke(self, pattern: str, options: Sequence[str], target: SearchTarget) -> SearchInvocation:
        invocation = self.engine.run(pattern, options, target)

        if invocation.exit_class is ExitClass.MATCHED:
            self.console.print(
                f"Results for {target.label}:",
                style="bold green",
                markup=False,
                highlight=False,
                soft_wrap=True,
            )
            self.console.print(Text.from_ansi(invocation.output.decode("utf-8", errors="replace")), soft_wrap=True)
        elif invocation.exit_class is ExitClass.TOOL_ERROR:
            LOGGER.error(
                "Error running search on %s (exit status %s): %s",
                target.label,
                invocation.return_code,
                invocation.output.decode("utf-8", errors="replace").strip(),
            )
        # NO_MATCH: nothing to print
        return invocation
