from datetime import datetime, timedelta
from typing import Iterable, Optional

from src.core.workflow.chains import get_chain
from src.core.workflow.models import RequestRecord, SlaBreach


def deadline_for(request: RequestRecord) -> Optional[datetime]:
    if request.is_terminal:
        return None
    stage = get_chain(request.chain).stage_for(request.current_status)
    if stage.sla_hours is None:
        return None
    return request.stage_entered_at + timedelta(hours=stage.sla_hours)


def is_breached(request: RequestRecord, now: datetime) -> bool:
    deadline = deadline_for(request)
    if deadline is None:
        return False
    return now > deadline


def scan_breaches(
    requests: Iterable[RequestRecord],
    *,
    now: datetime,
    previous_scan_at: datetime,
) -> list[SlaBreach]:
    """Requests whose deadline passed after ``previous_scan_at`` and before ``now``.

    A breach is reported by exactly one sweep as long as sweeps are chained
    through ``previous_scan_at``; requests breached earlier are skipped.
    """
    breaches: list[SlaBreach] = []
    for request in requests:
        deadline = deadline_for(request)
        if deadline is None:
            continue
        if not (previous_scan_at <= deadline < now):
            continue
        breaches.append(
            SlaBreach(
                request_id=request.request_id,
                status=request.current_status,
                responsible_role=get_chain(request.chain)
                .stage_for(request.current_status)
                .required_role,
                stage_entered_at=request.stage_entered_at,
                deadline=deadline,
            )
        )
    breaches.sort(key=lambda breach: (breach.deadline, breach.request_id))
    return breaches
