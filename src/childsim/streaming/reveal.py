"""
Paced reveal of streamed display text.

The scheduler keeps a displayed-length cursor behind the extracted text
and advances it a few characters at a time, preferring to stop on a word
or punctuation boundary, with a longer pause after punctuation.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable


logger = logging.getLogger(__name__)

BREAK_CHARS = re.compile(r"[\s，。！？：]")
PUNCTUATION = re.compile(r"[，。！？：.!?,:;]")
STRUCTURAL = re.compile(r"[\n*]")


@dataclass(frozen=True)
class RevealTiming:
    """Chunking and per-chunk delays (seconds)."""
    chunk_size: int = 10
    lookahead: int = 5
    default_delay: float = 0.08
    punctuation_delay: float = 0.15
    structural_delay: float = 0.05


def next_break(text: str, start: int, chunk_size: int = 10, lookahead: int = 5) -> int:
    """
    End index of the chunk beginning at ``start``.

    A chunk is ``chunk_size`` characters unless that would split a word,
    in which case it is extended to the next boundary found within
    ``lookahead`` characters.
    """
    end = min(start + chunk_size, len(text))
    if end >= len(text):
        return end

    at_break = text[end]
    before_break = text[end - 1]
    if BREAK_CHARS.match(at_break) or BREAK_CHARS.match(before_break):
        return end

    for i in range(1, lookahead + 1):
        if end + i >= len(text):
            break
        if BREAK_CHARS.match(text[end + i]):
            return end + i
    return end


def chunk_delay(chunk: str, timing: RevealTiming = RevealTiming()) -> float:
    if PUNCTUATION.search(chunk):
        return timing.punctuation_delay
    if STRUCTURAL.search(chunk):
        return timing.structural_delay
    return timing.default_delay


def common_prefix_length(a: str, b: str) -> int:
    n = min(len(a), len(b))
    i = 0
    while i < n and a[i] == b[i]:
        i += 1
    return i


class RevealScheduler:
    """
    Reveals text progressively on the running event loop.

    ``update()`` supersedes any in-flight run with the new text;
    ``complete()`` cancels the run, shows everything and fires
    ``on_complete`` exactly once.
    """

    def __init__(
        self,
        on_render: Callable[[str], None],
        on_complete: Callable[[], None] | None = None,
        timing: RevealTiming = RevealTiming(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.on_render = on_render
        self.on_complete = on_complete
        self.timing = timing
        self._sleep = sleep
        self.target = ""
        self.displayed = ""
        self._task: asyncio.Task | None = None
        self._completed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def completed(self) -> bool:
        return self._completed

    def update(self, text: str) -> None:
        """Set new target text, restarting the reveal from the shared prefix."""
        if self._completed or text == self.target:
            return
        self.target = text
        self._cancel()

        if len(text) <= len(self.displayed):
            # shrank or was reformatted: show it as-is
            self._render(text)
            return

        cursor = common_prefix_length(self.displayed, text)
        self._task = asyncio.get_running_loop().create_task(self._run(cursor))

    def complete(self, text: str | None = None) -> None:
        """Show the full text and fire the completion callback once."""
        if text is not None:
            self.target = text
        self._cancel()
        self._render(self.target)
        if self._completed:
            return
        self._completed = True
        if self.on_complete is not None:
            self.on_complete()

    def reset(self) -> None:
        self._cancel()
        self.target = ""
        self.displayed = ""
        self._completed = False

    async def wait(self) -> None:
        """Wait for the current run to finish revealing."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _run(self, cursor: int) -> None:
        text = self.target
        while cursor < len(text):
            end = next_break(text, cursor, self.timing.chunk_size, self.timing.lookahead)
            chunk = text[cursor:end]
            self._render(text[:end])
            cursor = end
            await self._sleep(chunk_delay(chunk, self.timing))

    def _render(self, text: str) -> None:
        self.displayed = text
        self.on_render(text)

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
