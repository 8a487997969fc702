import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from src.core.workflow.chains import default_chain, get_chain
from src.core.workflow.errors import (
    ForbiddenActionError,
    RequestNotFoundError,
    RequestTerminalError,
    VersionConflictError,
    WorkflowError,
    WorkflowValidationError,
)
from src.core.workflow.events import STATUS_TOPICS, URGENT_LEVELS, EventPublisher, new_event
from src.core.workflow.models import (
    FinancialsEditRequest,
    HistoryEntry,
    LineItem,
    LineItemInput,
    RequestActionRequest,
    RequestActionResponse,
    RequestCreateRequest,
    RequestDetailResponse,
    RequestListResponse,
    RequestRecord,
    RequestStatus,
    RequestSummary,
    SlaScanResponse,
    SlaStatusResponse,
    SpecificationEditRequest,
    UserRole,
    WorkflowEvent,
)
from src.core.workflow.permissions import ROLE_CAPABILITIES, authorize, can_view
from src.core.workflow.repository import RequestRepository
from src.core.workflow.sla import deadline_for, is_breached, scan_breaches
from src.core.workflow.state_machine import TransitionOutcome, apply_transition

logger = logging.getLogger(__name__)

SPECIFICATION_EDITABLE_STATUSES = frozenset({"novaya", "sklad_review", "nachalnik_review"})


class RequestWorkflowService:
    def __init__(
        self,
        *,
        repository: RequestRepository,
        event_publisher: EventPublisher,
        require_expected_version: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._event_publisher = event_publisher
        self._require_expected_version = require_expected_version
        self._clock = clock or _utc_now

    def create_request(
        self, *, actor_id: str, actor_role: UserRole, payload: RequestCreateRequest
    ) -> RequestDetailResponse:
        if not authorize(actor_role, "create"):
            raise ForbiddenActionError("FORBIDDEN")
        if not payload.items:
            raise WorkflowValidationError("SPECIFICATION_REQUIRED")

        now = self._clock()
        request = RequestRecord(
            request_id=f"sr_{uuid.uuid4().hex[:12]}",
            request_type=payload.request_type,
            chain=payload.chain_override or default_chain(payload.request_type),
            current_status="novaya",
            created_by=actor_id,
            created_at=now,
            stage_entered_at=now,
            title=payload.title,
            object_name=payload.object_name,
            urgency=payload.urgency,
            specification=_to_line_items(payload.items, existing=[]),
        )
        self._repository.create_request(request)

        events = [
            new_event(
                event_type="STATUS_CHANGED",
                request_id=request.request_id,
                occurred_at=now,
                actor_id=actor_id,
                actor_role=actor_role,
                to_status="novaya",
                deadline=deadline_for(request),
            ),
            self._notification(request, occurred_at=now, actor_role=actor_role),
        ]
        if request.urgency in URGENT_LEVELS:
            events.append(
                new_event(
                    event_type="NOTIFICATION_REQUESTED",
                    request_id=request.request_id,
                    occurred_at=now,
                    actor_role=actor_role,
                    to_status="novaya",
                    recipient_role="admin",
                    topic="urgent_created",
                )
            )
        self._publish(events)
        logger.info(
            "Request created. RequestID=%s Type=%s Chain=%s",
            request.request_id,
            request.request_type,
            request.chain,
        )
        return self._to_detail(request, actor_role=actor_role)

    def get_request(
        self, *, request_id: str, actor_id: str, actor_role: UserRole
    ) -> RequestDetailResponse:
        request = self._load(request_id)
        if not can_view(actor_role, request, actor_id=actor_id):
            raise ForbiddenActionError("FORBIDDEN")
        return self._to_detail(request, actor_role=actor_role)

    def list_requests(
        self,
        *,
        actor_id: str,
        actor_role: UserRole,
        status: Optional[RequestStatus] = None,
        pending_only: bool = False,
    ) -> RequestListResponse:
        if authorize(actor_role, "view_all"):
            created_by = None
        elif "view_own" in ROLE_CAPABILITIES.get(actor_role, frozenset()):
            created_by = actor_id
        else:
            raise ForbiddenActionError("FORBIDDEN")

        rows = self._repository.list_requests(
            created_by=created_by,
            status=status,
            include_terminal=not pending_only,
        )
        if pending_only and actor_role != "admin":
            rows = [row for row in rows if _responsible_role(row) == actor_role]
        return RequestListResponse(items=[self._to_summary(row) for row in rows])

    def apply_action(
        self,
        *,
        request_id: str,
        actor_id: str,
        actor_role: UserRole,
        payload: RequestActionRequest,
    ) -> RequestActionResponse:
        request = self._load(request_id)
        self._validate_expected_version(request.version, payload.expected_version)

        now = self._clock()
        try:
            outcome = apply_transition(
                request,
                actor_id=actor_id,
                actor_role=actor_role,
                to_status=payload.to_status,
                now=now,
                comment=payload.comment,
                fulfilled_quantities=payload.fulfilled_quantities,
            )
        except WorkflowError as exc:
            logger.warning(
                "Transition rejected. RequestID=%s From=%s To=%s Role=%s Reason=%s",
                request_id,
                request.current_status,
                payload.to_status,
                actor_role,
                exc,
            )
            raise

        self._save(
            outcome.request,
            expected_version=request.version,
            derived=outcome.derived_request,
        )
        events = self._transition_events(
            outcome, actor_id=actor_id, actor_role=actor_role, now=now
        )
        self._publish(events)
        logger.info(
            "Transition applied. RequestID=%s From=%s To=%s Role=%s Version=%s",
            request_id,
            outcome.from_status,
            outcome.request.current_status,
            actor_role,
            outcome.request.version,
        )
        return RequestActionResponse(
            request=self._to_summary(outcome.request),
            history_entry=outcome.history_entry,
            derived_request=(
                self._to_summary(outcome.derived_request)
                if outcome.derived_request is not None
                else None
            ),
            events=events,
        )

    def edit_specification(
        self,
        *,
        request_id: str,
        actor_id: str,
        actor_role: UserRole,
        payload: SpecificationEditRequest,
    ) -> RequestDetailResponse:
        request = self._load(request_id)
        self._validate_expected_version(request.version, payload.expected_version)
        if not authorize(actor_role, "edit_specification", request):
            raise ForbiddenActionError("FORBIDDEN")
        if request.is_terminal:
            raise RequestTerminalError("REQUEST_TERMINAL")
        if request.current_status not in SPECIFICATION_EDITABLE_STATUSES:
            raise WorkflowValidationError("SPECIFICATION_LOCKED")
        if not payload.items:
            raise WorkflowValidationError("SPECIFICATION_REQUIRED")

        updated = request.model_copy(deep=True)
        updated.specification = _to_line_items(payload.items, existing=request.specification)
        updated.history.append(
            self._audit_entry(
                updated,
                action="SPECIFICATION_EDITED",
                actor_id=actor_id,
                actor_role=actor_role,
                comment=payload.comment,
            )
        )
        self._save(updated, expected_version=request.version)
        logger.info("Specification edited. RequestID=%s Role=%s", request_id, actor_role)
        return self._to_detail(updated, actor_role=actor_role)

    def update_financials(
        self,
        *,
        request_id: str,
        actor_id: str,
        actor_role: UserRole,
        payload: FinancialsEditRequest,
    ) -> RequestDetailResponse:
        request = self._load(request_id)
        self._validate_expected_version(request.version, payload.expected_version)
        if not authorize(actor_role, "edit_financials", request):
            raise ForbiddenActionError("FORBIDDEN")
        if request.is_terminal:
            raise RequestTerminalError("REQUEST_TERMINAL")

        updated = request.model_copy(deep=True)
        if payload.estimated_cost is not None:
            updated.estimated_cost = payload.estimated_cost
        if payload.budget_code is not None:
            updated.budget_code = payload.budget_code
        updated.history.append(
            self._audit_entry(
                updated,
                action="FINANCIALS_EDITED",
                actor_id=actor_id,
                actor_role=actor_role,
                comment=payload.comment,
            )
        )
        self._save(updated, expected_version=request.version)
        return self._to_detail(updated, actor_role=actor_role)

    def delete_request(self, *, request_id: str, actor_id: str, actor_role: UserRole) -> None:
        if not authorize(actor_role, "force_delete"):
            raise ForbiddenActionError("FORBIDDEN")
        request = self._load(request_id)
        if not self._repository.delete_request(request_id=request_id):
            raise RequestNotFoundError("REQUEST_NOT_FOUND")
        logger.warning(
            "Request force-deleted. RequestID=%s Status=%s ActorID=%s",
            request_id,
            request.current_status,
            actor_id,
        )

    def get_sla_status(
        self,
        *,
        request_id: str,
        actor_id: str,
        actor_role: UserRole,
        now: Optional[datetime] = None,
    ) -> SlaStatusResponse:
        request = self._load(request_id)
        if not can_view(actor_role, request, actor_id=actor_id):
            raise ForbiddenActionError("FORBIDDEN")
        deadline = deadline_for(request)
        return SlaStatusResponse(
            request_id=request.request_id,
            current_status=request.current_status,
            stage_entered_at=request.stage_entered_at.isoformat(),
            deadline=deadline.isoformat() if deadline is not None else None,
            is_breached=is_breached(request, _as_utc(now or self._clock())),
        )

    def scan_sla_breaches(
        self, *, previous_scan_at: datetime, now: Optional[datetime] = None
    ) -> SlaScanResponse:
        sweep_at = _as_utc(now or self._clock())
        previous_scan_at = _as_utc(previous_scan_at)
        requests = self._repository.list_requests(
            created_by=None, status=None, include_terminal=False
        )
        breaches = scan_breaches(requests, now=sweep_at, previous_scan_at=previous_scan_at)
        events: list[WorkflowEvent] = []
        for breach in breaches:
            events.append(
                new_event(
                    event_type="SLA_BREACHED",
                    request_id=breach.request_id,
                    occurred_at=sweep_at,
                    to_status=breach.status,
                    deadline=breach.deadline,
                    recipient_role=breach.responsible_role,
                )
            )
            recipients = [breach.responsible_role, "admin"]
            for recipient in dict.fromkeys(role for role in recipients if role is not None):
                events.append(
                    new_event(
                        event_type="NOTIFICATION_REQUESTED",
                        request_id=breach.request_id,
                        occurred_at=sweep_at,
                        to_status=breach.status,
                        deadline=breach.deadline,
                        recipient_role=recipient,
                        topic="sla_breached",
                    )
                )
        self._publish(events)
        if breaches:
            logger.warning("SLA sweep found %s newly breached requests", len(breaches))
        return SlaScanResponse(breaches=breaches)

    def _load(self, request_id: str) -> RequestRecord:
        request = self._repository.get_request(request_id=request_id)
        if request is None:
            raise RequestNotFoundError("REQUEST_NOT_FOUND")
        return request

    def _save(
        self,
        request: RequestRecord,
        *,
        expected_version: int,
        derived: Optional[RequestRecord] = None,
    ) -> None:
        request.version = expected_version + 1
        saved = self._repository.save_request(
            request=request,
            expected_version=expected_version,
            derived_request=derived,
        )
        if not saved:
            logger.warning(
                "Version conflict. RequestID=%s ExpectedVersion=%s",
                request.request_id,
                expected_version,
            )
            raise VersionConflictError("VERSION_CONFLICT")

    def _validate_expected_version(self, current: int, expected: Optional[int]) -> None:
        if expected is None and self._require_expected_version:
            raise VersionConflictError("VERSION_CONFLICT: expected_version is required")
        if expected is not None and expected != current:
            raise VersionConflictError("VERSION_CONFLICT")

    def _audit_entry(
        self,
        request: RequestRecord,
        *,
        action: str,
        actor_id: str,
        actor_role: UserRole,
        comment: Optional[str],
    ) -> HistoryEntry:
        return HistoryEntry(
            entry_id=f"rhe_{uuid.uuid4().hex[:12]}",
            action=action,
            from_status=request.current_status,
            to_status=request.current_status,
            actor_role=actor_role,
            actor_id=actor_id,
            occurred_at=self._clock(),
            comment=comment,
        )

    def _transition_events(
        self,
        outcome: TransitionOutcome,
        *,
        actor_id: str,
        actor_role: UserRole,
        now: datetime,
    ) -> list[WorkflowEvent]:
        request = outcome.request
        events = [
            new_event(
                event_type="STATUS_CHANGED",
                request_id=request.request_id,
                occurred_at=now,
                actor_id=actor_id,
                actor_role=actor_role,
                from_status=outcome.from_status,
                to_status=request.current_status,
                deadline=deadline_for(request),
            )
        ]
        for decrement in outcome.stock_decrements:
            events.append(
                new_event(
                    event_type="STOCK_DECREMENT_REQUESTED",
                    request_id=request.request_id,
                    occurred_at=now,
                    actor_id=actor_id,
                    actor_role=actor_role,
                    to_status=request.current_status,
                    item_name=decrement.item_name,
                    unit=decrement.unit,
                    quantity=decrement.quantity,
                )
            )
        if _enters_purchase_path(request, from_status=outcome.from_status):
            events.append(
                new_event(
                    event_type="PURCHASE_ORDER_ELIGIBLE",
                    request_id=request.request_id,
                    occurred_at=now,
                    actor_id=actor_id,
                    actor_role=actor_role,
                    from_status=outcome.from_status,
                    to_status=request.current_status,
                )
            )
        events.append(self._notification(request, occurred_at=now, actor_role=actor_role))

        derived = outcome.derived_request
        if derived is not None:
            events.append(
                new_event(
                    event_type="STATUS_CHANGED",
                    request_id=derived.request_id,
                    occurred_at=now,
                    actor_id=actor_id,
                    actor_role=actor_role,
                    to_status=derived.current_status,
                    deadline=deadline_for(derived),
                )
            )
            events.append(self._notification(derived, occurred_at=now, actor_role=actor_role))
        return events

    def _notification(
        self, request: RequestRecord, *, occurred_at: datetime, actor_role: UserRole
    ) -> WorkflowEvent:
        if request.current_status == "otkloneno":
            recipient = "prorab"
        else:
            recipient = _responsible_role(request)
        return new_event(
            event_type="NOTIFICATION_REQUESTED",
            request_id=request.request_id,
            occurred_at=occurred_at,
            actor_role=actor_role,
            to_status=request.current_status,
            deadline=deadline_for(request),
            recipient_role=recipient,
            topic=STATUS_TOPICS[request.current_status],
        )

    def _publish(self, events: Iterable[WorkflowEvent]) -> None:
        for event in events:
            try:
                self._event_publisher.publish(event)
            except Exception:
                logger.exception(
                    "Event publication failed; queued for reconciliation. "
                    "EventID=%s Type=%s RequestID=%s",
                    event.event_id,
                    event.event_type,
                    event.request_id,
                )

    def _to_summary(self, request: RequestRecord) -> RequestSummary:
        deadline = deadline_for(request)
        return RequestSummary(
            request_id=request.request_id,
            request_type=request.request_type,
            chain=request.chain,
            current_status=request.current_status,
            responsible_role=_responsible_role(request),
            created_by=request.created_by,
            created_at=request.created_at.isoformat(),
            stage_entered_at=request.stage_entered_at.isoformat(),
            deadline=deadline.isoformat() if deadline is not None else None,
            version=request.version,
            title=request.title,
            object_name=request.object_name,
            urgency=request.urgency,
            parent_request_id=request.parent_request_id,
        )

    def _to_detail(self, request: RequestRecord, *, actor_role: UserRole) -> RequestDetailResponse:
        show_financials = authorize(actor_role, "view_financials", request)
        return RequestDetailResponse(
            request=self._to_summary(request),
            specification=[item.model_copy() for item in request.specification],
            history=list(request.history),
            child_request_ids=list(request.child_request_ids),
            estimated_cost=request.estimated_cost if show_financials else None,
            budget_code=request.budget_code if show_financials else None,
            closed_at=request.closed_at.isoformat() if request.closed_at is not None else None,
        )


def _responsible_role(request: RequestRecord) -> Optional[UserRole]:
    return get_chain(request.chain).stage_for(request.current_status).required_role


def _enters_purchase_path(request: RequestRecord, *, from_status: RequestStatus) -> bool:
    chain = get_chain(request.chain)
    if chain.stage_for(request.current_status).required_role != "snab":
        return False
    if not chain.has_stage(from_status):
        return True
    return chain.stage_for(from_status).required_role != "snab"


def _to_line_items(
    inputs: list[LineItemInput], *, existing: list[LineItem]
) -> list[LineItem]:
    fulfilled_by_id = {item.item_id: item.fulfilled_quantity for item in existing}
    items: list[LineItem] = []
    seen: set[str] = set()
    for entry in inputs:
        item_id = entry.item_id or f"li_{uuid.uuid4().hex[:8]}"
        if item_id in seen:
            raise WorkflowValidationError("DUPLICATE_LINE_ITEM_ID")
        seen.add(item_id)
        fulfilled = fulfilled_by_id.get(item_id)
        if fulfilled is not None and fulfilled > entry.quantity:
            raise WorkflowValidationError("QUANTITY_BELOW_FULFILLED")
        items.append(
            LineItem(
                item_id=item_id,
                name=entry.name,
                unit=entry.unit,
                quantity=entry.quantity,
                fulfilled_quantity=fulfilled if fulfilled is not None else 0,
            )
        )
    return items


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
