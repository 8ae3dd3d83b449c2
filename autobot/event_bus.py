import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

TASK_UPDATE = "task:update"
QA_UPDATE = "qa:update"
PLAN_RESUME = "plan:resume"


class ProgressEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    task_id: Optional[str] = None
    session_id: Optional[str] = None
    gate_name: Optional[str] = None
    plan_id: Optional[str] = None
    status: Optional[str] = None
    output: Optional[str] = None
    errors: Optional[List[str]] = None


class EventBus:
    """A lightweight, synchronous event bus for AUTOBOT progress notifications."""

    def __init__(self):
        self._subscribers: List[Callable[[ProgressEvent], None]] = []

    def subscribe(self, callback: Callable[[ProgressEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def emit(self, event_type: str, **payload) -> ProgressEvent:
        """Construct and broadcast a ProgressEvent to all subscribers."""
        event = ProgressEvent(event_type=event_type, **payload)

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                # A broken sink must not take the gate run down with it.
                logger.warning(f"[BUS] Subscriber failed on {event_type}: {e}")

        return event
