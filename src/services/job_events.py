"""Print job states and the observer registry used to report them."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from domain.models import JobOutcome

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """States of the print job lifecycle."""

    IDLE = 'idle'
    SUBMITTING = 'submitting'
    POLLING = 'polling'
    READY = 'ready'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    TIMED_OUT = 'timed_out'


TERMINAL_STATES = frozenset(
    {JobState.READY, JobState.FAILED, JobState.CANCELLED, JobState.TIMED_OUT}
)

# Состояние, в которое переводит каждый исход задания
OUTCOME_STATES: dict[str, JobState] = {
    'pending': JobState.POLLING,
    'ready': JobState.READY,
    'failed': JobState.FAILED,
    'cancelled': JobState.CANCELLED,
    'timed_out': JobState.TIMED_OUT,
}


class JobEvent(BaseModel):
    """Payload delivered with every state change."""

    model_config = ConfigDict(frozen=True)

    state: JobState
    generation: int
    ref: str | None = None
    outcome: JobOutcome | None = None
    timestamp: float = Field(default_factory=time.time)

    @property
    def message(self) -> str | None:
        """Human-readable message for terminal states."""
        return self.outcome.message if self.outcome is not None else None


JobListener = Callable[[JobState, JobEvent], None]


class JobEventEmitter:
    """Mixin class to notify listeners of job state changes."""

    def __init__(self) -> None:
        self._listeners: list[JobListener] = []

    def add_listener(self, listener: JobListener) -> None:
        """Add a listener called as ``listener(state, event)``."""
        if listener not in self._listeners:
            self._listeners.append(listener)
            logger.debug(f'Added listener: {listener!r}')

    def remove_listener(self, listener: JobListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
            logger.debug(f'Removed listener: {listener!r}')

    def notify_listeners(self, event: JobEvent) -> None:
        logger.debug(f'Notifying {len(self._listeners)} listeners of {event.state.value}')
        for listener in list(self._listeners):
            try:
                listener(event.state, event)
            except Exception:
                logger.exception(f'Error notifying listener {listener!r}')
