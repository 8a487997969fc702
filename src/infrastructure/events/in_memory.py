from copy import deepcopy
from threading import Lock
from typing import Optional

from src.core.workflow.events import EventPublisher
from src.core.workflow.models import WorkflowEvent


class InMemoryEventPublisher(EventPublisher):
    def __init__(self) -> None:
        self._lock = Lock()
        self._events: list[WorkflowEvent] = []

    def publish(self, event: WorkflowEvent) -> None:
        with self._lock:
            self._events.append(deepcopy(event))

    def list_events(
        self,
        *,
        request_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> list[WorkflowEvent]:
        with self._lock:
            rows = list(self._events)
        if request_id is not None:
            rows = [row for row in rows if row.request_id == request_id]
        if event_type is not None:
            rows = [row for row in rows if row.event_type == event_type]
        return [deepcopy(row) for row in rows]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
