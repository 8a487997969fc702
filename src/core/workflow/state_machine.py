import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional

from src.core.workflow.chains import REJECTED_STAGE, derived_chain_for, get_chain
from src.core.workflow.errors import (
    ForbiddenActionError,
    InvalidTransitionError,
    RequestTerminalError,
    WorkflowValidationError,
)
from src.core.workflow.models import (
    TERMINAL_STATUSES,
    HistoryEntry,
    LineItem,
    RequestRecord,
    RequestStatus,
    UserRole,
)
from src.core.workflow.permissions import SUPERUSER_ROLES, authorize

INITIAL_STATUS: RequestStatus = "novaya"
PARTIAL_STATUS: RequestStatus = "sklad_partial"
ISSUED_STATUS: RequestStatus = "vydano"
REMAINDER_ENTRY_STATUS: RequestStatus = "nachalnik_review"


@dataclass(frozen=True)
class StockDecrement:
    item_id: str
    item_name: str
    unit: str
    quantity: Decimal


@dataclass
class TransitionOutcome:
    request: RequestRecord
    history_entry: HistoryEntry
    from_status: RequestStatus
    derived_request: Optional[RequestRecord] = None
    stock_decrements: list[StockDecrement] = field(default_factory=list)


def legal_successors(request: RequestRecord, actor_role: UserRole) -> tuple[str, ...]:
    chain = get_chain(request.chain)
    if actor_role in SUPERUSER_ROLES:
        members = [stage.status for stage in chain.stages + chain.side_stages]
        members.append(REJECTED_STAGE.status)
        return tuple(status for status in members if status != request.current_status)
    return chain.successors(request.current_status)


def apply_transition(
    request: RequestRecord,
    *,
    actor_id: str,
    actor_role: UserRole,
    to_status: RequestStatus,
    now: datetime,
    comment: Optional[str] = None,
    fulfilled_quantities: Optional[Mapping[str, Decimal]] = None,
) -> TransitionOutcome:
    """Validate and apply one status change on a copy of ``request``.

    Checks run in a fixed order: terminal state, chain legality, permission,
    payload. The caller's record is never mutated; persisting the returned
    outcome is the orchestrator's job.
    """
    if request.current_status in TERMINAL_STATUSES:
        raise RequestTerminalError("REQUEST_TERMINAL")
    if to_status not in legal_successors(request, actor_role):
        raise InvalidTransitionError("INVALID_TRANSITION")
    if not authorize(actor_role, "transition", request, to_status=to_status, actor_id=actor_id):
        raise ForbiddenActionError("FORBIDDEN")

    updated = request.model_copy(deep=True)
    from_status = updated.current_status
    outcome = TransitionOutcome(
        request=updated,
        history_entry=_history_entry(
            action="STATUS_CHANGED",
            from_status=from_status,
            to_status=to_status,
            actor_role=actor_role,
            actor_id=actor_id,
            now=now,
            comment=comment,
        ),
        from_status=from_status,
    )

    if to_status == PARTIAL_STATUS:
        _split_partial_fulfillment(
            outcome,
            fulfilled_quantities=fulfilled_quantities,
            actor_id=actor_id,
            actor_role=actor_role,
            now=now,
            comment=comment,
        )
    elif to_status == ISSUED_STATUS and not updated.stock_decremented:
        outcome.stock_decrements.extend(_issue_remaining_stock(updated))
        updated.stock_decremented = True

    updated.history.append(outcome.history_entry)
    updated.current_status = to_status
    updated.stage_entered_at = now
    if to_status in TERMINAL_STATUSES:
        updated.closed_at = now
    return outcome


def replay_history(history: list[HistoryEntry]) -> RequestStatus:
    status: RequestStatus = INITIAL_STATUS
    for entry in history:
        if entry.from_status is not None and entry.from_status != status:
            raise WorkflowValidationError("HISTORY_REPLAY_MISMATCH")
        status = entry.to_status
    return status


def _split_partial_fulfillment(
    outcome: TransitionOutcome,
    *,
    fulfilled_quantities: Optional[Mapping[str, Decimal]],
    actor_id: str,
    actor_role: UserRole,
    now: datetime,
    comment: Optional[str],
) -> None:
    parent = outcome.request
    fulfilled = _validate_partial_payload(parent.specification, fulfilled_quantities)

    remainder_items: list[LineItem] = []
    for item in parent.specification:
        issued = fulfilled[item.item_id]
        newly_issued = issued - item.fulfilled_quantity
        if newly_issued > Decimal("0"):
            outcome.stock_decrements.append(
                StockDecrement(
                    item_id=item.item_id,
                    item_name=item.name,
                    unit=item.unit,
                    quantity=newly_issued,
                )
            )
        item.fulfilled_quantity = issued
        remaining = item.quantity - issued
        if remaining > Decimal("0"):
            remainder_items.append(
                LineItem(
                    item_id=item.item_id,
                    name=item.name,
                    unit=item.unit,
                    quantity=remaining,
                )
            )

    derived_id = f"sr_{uuid.uuid4().hex[:12]}"
    derived = RequestRecord(
        request_id=derived_id,
        request_type=parent.request_type,
        chain=derived_chain_for(parent.chain),
        current_status=REMAINDER_ENTRY_STATUS,
        created_by=parent.created_by,
        created_at=now,
        stage_entered_at=now,
        title=f"[Purchase] {parent.title}".strip(),
        object_name=parent.object_name,
        urgency=parent.urgency,
        specification=remainder_items,
        parent_request_id=parent.request_id,
        history=[
            _history_entry(
                action="SPLIT_CREATED",
                from_status=None,
                to_status=REMAINDER_ENTRY_STATUS,
                actor_role=actor_role,
                actor_id=actor_id,
                now=now,
                comment=comment,
            )
        ],
    )
    parent.child_request_ids.append(derived_id)
    parent.stock_decremented = True
    outcome.derived_request = derived


def _validate_partial_payload(
    items: list[LineItem], fulfilled_quantities: Optional[Mapping[str, Decimal]]
) -> dict[str, Decimal]:
    if not fulfilled_quantities:
        raise WorkflowValidationError("PARTIAL_FULFILLMENT_QUANTITIES_REQUIRED")
    known_ids = {item.item_id for item in items}
    unknown = set(fulfilled_quantities) - known_ids
    if unknown:
        raise WorkflowValidationError("PARTIAL_FULFILLMENT_UNKNOWN_ITEM")
    missing = known_ids - set(fulfilled_quantities)
    if missing:
        raise WorkflowValidationError("PARTIAL_FULFILLMENT_ITEM_MISSING")

    resolved: dict[str, Decimal] = {}
    for item in items:
        quantity = Decimal(fulfilled_quantities[item.item_id])
        if quantity < item.fulfilled_quantity:
            raise WorkflowValidationError("PARTIAL_FULFILLMENT_BELOW_ISSUED")
        if quantity > item.quantity:
            raise WorkflowValidationError("PARTIAL_FULFILLMENT_EXCEEDS_QUANTITY")
        resolved[item.item_id] = quantity

    if all(resolved[item.item_id] == item.quantity for item in items):
        raise WorkflowValidationError("PARTIAL_FULFILLMENT_COMPLETE")
    if all(resolved[item.item_id] == Decimal("0") for item in items):
        raise WorkflowValidationError("PARTIAL_FULFILLMENT_EMPTY")
    return resolved


def _issue_remaining_stock(request: RequestRecord) -> list[StockDecrement]:
    decrements: list[StockDecrement] = []
    for item in request.specification:
        outstanding = item.quantity - item.fulfilled_quantity
        if outstanding > Decimal("0"):
            decrements.append(
                StockDecrement(
                    item_id=item.item_id,
                    item_name=item.name,
                    unit=item.unit,
                    quantity=outstanding,
                )
            )
        item.fulfilled_quantity = item.quantity
    return decrements


def _history_entry(
    *,
    action: str,
    from_status: Optional[RequestStatus],
    to_status: RequestStatus,
    actor_role: UserRole,
    actor_id: str,
    now: datetime,
    comment: Optional[str],
) -> HistoryEntry:
    return HistoryEntry(
        entry_id=f"rhe_{uuid.uuid4().hex[:12]}",
        action=action,
        from_status=from_status,
        to_status=to_status,
        actor_role=actor_role,
        actor_id=actor_id,
        occurred_at=now,
        comment=comment,
    )
