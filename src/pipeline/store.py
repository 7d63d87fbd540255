"""Single current-state accessor for the pipeline."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from src.pipeline.events import Event
from src.pipeline.models import PipelineState
from src.pipeline.reducer import reduce
from src.pipeline_config import LogLevel

logger = logging.getLogger("src.pipeline")

_LOG_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

Listener = Callable[[PipelineState, Event], None]


class PipelineStore:
    """Holds the latest committed state; all changes go through :meth:`dispatch`.

    New pipeline log entries are mirrored to the Python logger.
    """

    def __init__(self, initial: PipelineState) -> None:
        self._state = initial
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> PipelineState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def dispatch(self, *events: Event) -> PipelineState:
        for event in events:
            with self._lock:
                before = self._state
                after = reduce(before, event)
                self._state = after

            if len(after.logs) > len(before.logs):
                for entry in after.logs[len(before.logs) :]:
                    logger.log(_LOG_LEVELS[entry.level], "%s", entry.message)

            for listener in list(self._listeners):
                listener(after, event)

        return self._state
