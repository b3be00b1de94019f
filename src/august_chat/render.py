"""Local typing animation over an already complete response."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
import math
from typing import Any

DEFAULT_STEPS = 120
DEFAULT_INTERVAL_SECONDS = 0.012


class ProgressiveRenderer:
    """Reveals a string in increasing prefixes at a fixed interval.

    Accepts an ``on_update`` callback per reveal to decouple from widgets.
    The revealed text never feeds persistence; callers keep the full reply.
    """

    def __init__(
        self,
        steps: int = DEFAULT_STEPS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self.steps = max(1, steps)
        self.interval_seconds = max(0.0, interval_seconds)
        self._sleep = sleep or asyncio.sleep
        self._skip_requested = False
        self.active = False

    def step_size(self, length: int) -> int:
        return max(1, math.ceil(length / self.steps))

    def slices(self, text: str) -> Iterator[str]:
        """Yield monotonically growing prefixes ending with ``text`` itself."""
        length = len(text)
        if length == 0:
            return
        size = self.step_size(length)
        for end in range(size, length + size, size):
            yield text[: min(end, length)]

    def skip(self) -> None:
        """Jump to the full text on the next step."""
        if self.active:
            self._skip_requested = True

    async def reveal(
        self,
        text: str,
        on_update: Callable[[str], Any],
    ) -> str:
        """Drive ``on_update`` through the reveal and return the full text."""
        self.active = True
        self._skip_requested = False
        try:
            for prefix in self.slices(text):
                if self._skip_requested:
                    break
                outcome = on_update(prefix)
                if asyncio.iscoroutine(outcome):
                    await outcome
                if len(prefix) < len(text):
                    await self._sleep(self.interval_seconds)
            else:
                return text
            outcome = on_update(text)
            if asyncio.iscoroutine(outcome):
                await outcome
            return text
        finally:
            self.active = False
            self._skip_requested = False
