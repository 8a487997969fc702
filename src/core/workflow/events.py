import uuid
from datetime import datetime
from typing import Optional, Protocol

from src.core.workflow.models import (
    NotificationTopic,
    RequestStatus,
    UserRole,
    WorkflowEvent,
)

STATUS_TOPICS: dict[str, NotificationTopic] = {
    "novaya": "request_created",
    "sklad_review": "sklad_needed",
    "sklad_partial": "sklad_needed",
    "nachalnik_review": "nachalnik_needed",
    "nachalnik_approved": "nachalnik_approved",
    "finansist_review": "finansist_needed",
    "finansist_approved": "finansist_approved",
    "snab_process": "snab_needed",
    "zakupleno": "zakupleno",
    "v_puti": "v_puti",
    "vydano": "vydano",
    "polucheno": "polucheno",
    "otkloneno": "otkloneno",
}

URGENT_LEVELS = frozenset({"high", "critical"})


class EventPublisher(Protocol):
    def publish(self, event: WorkflowEvent) -> None: ...


def new_event(
    *,
    event_type: str,
    request_id: str,
    occurred_at: datetime,
    actor_id: Optional[str] = None,
    actor_role: Optional[UserRole] = None,
    from_status: Optional[RequestStatus] = None,
    to_status: Optional[RequestStatus] = None,
    **fields,
) -> WorkflowEvent:
    return WorkflowEvent(
        event_id=f"wev_{uuid.uuid4().hex[:12]}",
        event_type=event_type,
        request_id=request_id,
        occurred_at=occurred_at,
        actor_id=actor_id,
        actor_role=actor_role,
        from_status=from_status,
        to_status=to_status,
        **fields,
    )
