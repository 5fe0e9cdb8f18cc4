"""
OODA Events
===========

Phase-transition events emitted by the controller.

Every transition produces an ``OODAEvent`` delivered synchronously to all
registered listeners. A listener that raises is logged and skipped; it can
never break the cycle that emitted the event.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from forgeheal.models import now_ms


logger = logging.getLogger(__name__)


class OODAPhase(str, Enum):
    OBSERVE = "observe"
    ORIENT = "orient"
    DECIDE = "decide"
    ACT = "act"
    VERIFY = "verify"


class EventStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class OODAEvent:
    """A single phase transition of a task."""
    task_id: str
    phase: OODAPhase
    status: EventStatus
    message: str
    data: Optional[dict[str, Any]] = None
    timestamp: int = field(default_factory=now_ms)

    def __post_init__(self):
        self.phase = OODAPhase(self.phase)
        self.status = EventStatus(self.status)

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "phase": self.phase.value,
            "status": self.status.value,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OODAEvent":
        return cls(
            task_id=data["task_id"],
            phase=data["phase"],
            status=data["status"],
            message=data.get("message", ""),
            data=data.get("data"),
            timestamp=data.get("timestamp", now_ms()),
        )


EventListener = Callable[[OODAEvent], Any]


class EventBus:
    """Fan-out of OODA events to listeners."""

    def __init__(self):
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A zero-argument callable that unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: OODAEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("OODA event listener failed on %s/%s", event.phase.value, event.status.value)

    def __len__(self) -> int:
        return len(self._listeners)
