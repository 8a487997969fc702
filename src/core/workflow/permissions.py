"""Role-based access control for procurement requests.

The matrix below is the single source of truth: non-transition capabilities
per role, explicit transition grants for roles that do not own stages, and
the set of roles that may move a request out of any stage they own.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from src.core.workflow.chains import get_chain
from src.core.workflow.models import (
    RequestRecord,
    RequestStatus,
    UserRole,
    WorkflowAction,
)

ROLE_CAPABILITIES: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        "prorab": frozenset({"create", "view_own"}),
        "sklad": frozenset({"view_all", "manage_warehouse_stock", "split_request"}),
        "nachalnik": frozenset({"view_all", "view_financials", "edit_specification"}),
        "finansist": frozenset(
            {
                "view_all",
                "view_financials",
                "edit_financials",
                "attach_file",
                "download_invoice",
            }
        ),
        "snab": frozenset({"view_all", "create_purchase_order", "attach_file"}),
        "admin": frozenset(),
    }
)


@dataclass(frozen=True)
class TransitionGrant:
    to_status: RequestStatus
    from_status: RequestStatus
    creator_only: bool = False


EXPLICIT_TRANSITIONS: Mapping[str, tuple[TransitionGrant, ...]] = MappingProxyType(
    {
        "prorab": (
            TransitionGrant(to_status="polucheno", from_status="vydano"),
            TransitionGrant(to_status="otkloneno", from_status="novaya", creator_only=True),
        ),
    }
)

STAGE_OWNER_ROLES: frozenset[str] = frozenset({"sklad", "nachalnik", "finansist", "snab"})

SUPERUSER_ROLES: frozenset[str] = frozenset({"admin"})


def authorize(
    role: UserRole,
    action: WorkflowAction,
    request: Optional[RequestRecord] = None,
    *,
    to_status: Optional[RequestStatus] = None,
    actor_id: Optional[str] = None,
) -> bool:
    if role in SUPERUSER_ROLES:
        return True
    if action == "transition":
        return _authorize_transition(
            role=role, request=request, to_status=to_status, actor_id=actor_id
        )
    if action == "view_own":
        return (
            "view_own" in ROLE_CAPABILITIES.get(role, frozenset())
            and request is not None
            and actor_id is not None
            and request.created_by == actor_id
        )
    return action in ROLE_CAPABILITIES.get(role, frozenset())


def can_view(role: UserRole, request: RequestRecord, *, actor_id: str) -> bool:
    return authorize(role, "view_all", request) or authorize(
        role, "view_own", request, actor_id=actor_id
    )


def allowed_transitions(
    role: UserRole, request: RequestRecord, *, actor_id: Optional[str] = None
) -> list[str]:
    """Legal successors of the current stage that ``role`` may apply."""
    if request.is_terminal:
        return []
    chain = get_chain(request.chain)
    return [
        status
        for status in chain.successors(request.current_status)
        if authorize(role, "transition", request, to_status=status, actor_id=actor_id)
    ]


def _authorize_transition(
    *,
    role: str,
    request: Optional[RequestRecord],
    to_status: Optional[str],
    actor_id: Optional[str],
) -> bool:
    if request is None or to_status is None:
        return False
    for grant in EXPLICIT_TRANSITIONS.get(role, ()):
        if grant.to_status != to_status or grant.from_status != request.current_status:
            continue
        if grant.creator_only and (actor_id is None or actor_id != request.created_by):
            continue
        return True
    if role not in STAGE_OWNER_ROLES:
        return False
    chain = get_chain(request.chain)
    if not chain.has_stage(request.current_status):
        return False
    return chain.stage_for(request.current_status).required_role == role
