"""Tick source on a dedicated thread.

The scheduler tick must keep firing even when the event loop is busy or the
host deprioritises it, so timing lives on its own thread and only signals
the loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class TickThread(threading.Thread):
    """Calls ``on_tick`` every *interval* seconds and ``on_second`` once per second.

    Callbacks run on *loop* via ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_tick: Callable[[], None],
        on_second: Callable[[], None],
        interval: float = 0.5,
    ) -> None:
        super().__init__(name="pipeline-tick", daemon=True)
        self._loop = loop
        self._on_tick = on_tick
        self._on_second = on_second
        self._interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        next_second = time.monotonic() + 1.0
        while not self._stop_event.wait(self._interval):
            if self._loop.is_closed():
                break
            try:
                self._loop.call_soon_threadsafe(self._on_tick)
                now = time.monotonic()
                while now >= next_second:
                    self._loop.call_soon_threadsafe(self._on_second)
                    next_second += 1.0
            except RuntimeError:
                # Loop closed between the check and the call.
                break
        logger.debug("Tick thread stopped")

    def stop(self) -> None:
        self._stop_event.set()
