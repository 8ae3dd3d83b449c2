"""
AUTOBOT Audit Log

Append-only JSONL record of every progress event a run publishes:
task transitions, per-gate outcomes and plan resume requests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from autobot.event_bus import EventBus, ProgressEvent


class AuditLogger:
    """Subscribes to the bus and appends each event as one JSON line."""

    def __init__(
        self,
        file_path: str | Path,
        event_bus: EventBus,
        event_types: Iterable[str] | None = None,
    ):
        self.path = Path(file_path)
        self.event_types = set(event_types) if event_types else None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        event_bus.subscribe(self.log_event)

    def log_event(self, event: ProgressEvent) -> None:
        if self.event_types is not None and event.event_type not in self.event_types:
            return
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(event.model_dump_json(exclude_none=True) + "\n")


def read_audit_log(file_path: str | Path, task_id: str | None = None) -> list[ProgressEvent]:
    """Replay an audit log, optionally only the events of one task."""
    path = Path(file_path)
    if not path.exists():
        return []

    events = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            event = ProgressEvent.model_validate_json(line)
            if task_id is None or event.task_id == task_id:
                events.append(event)
    return events
