from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from src.core.workflow.models import ChainId, RequestStatus, RequestType, UserRole

SLA_HOURS: Mapping[str, int] = MappingProxyType(
    {
        "sklad_review": 8,
        "nachalnik_review": 24,
        "finansist_review": 48,
        "snab_process": 72,
        "zakupleno": 24,
        "v_puti": 48,
    }
)

STAGE_ROLES: Mapping[str, str] = MappingProxyType(
    {
        "sklad_review": "sklad",
        "sklad_partial": "sklad",
        "nachalnik_review": "nachalnik",
        "nachalnik_approved": "snab",
        "finansist_review": "finansist",
        "finansist_approved": "snab",
        "snab_process": "snab",
        "zakupleno": "snab",
        "v_puti": "sklad",
        "vydano": "prorab",
    }
)

DEFAULT_CHAINS: Mapping[str, str] = MappingProxyType(
    {
        "materials": "full",
        "tools": "warehouse_only",
        "heavy_equipment": "full_finance",
        "services": "finance_only",
        "other": "full",
    }
)


@dataclass(frozen=True)
class StageSpec:
    status: RequestStatus
    required_role: Optional[UserRole]
    sla_hours: Optional[int] = None
    is_terminal: bool = False


@dataclass(frozen=True)
class ChainDefinition:
    """Ordered stage path of one approval chain.

    ``stages`` is the main path from ``novaya`` to ``polucheno``. ``side_stages``
    are off-path stages (``sklad_partial``) and ``branches`` lists the extra
    edges beyond the next stage in sequence. ``otkloneno`` is implicit: every
    non-terminal stage may be rejected.
    """

    chain_id: ChainId
    stages: tuple[StageSpec, ...]
    side_stages: tuple[StageSpec, ...] = ()
    branches: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def has_stage(self, status: str) -> bool:
        return any(stage.status == status for stage in self.stages + self.side_stages)

    def stage_for(self, status: str) -> StageSpec:
        if status == REJECTED_STAGE.status:
            return REJECTED_STAGE
        for stage in self.stages + self.side_stages:
            if stage.status == status:
                return stage
        raise KeyError(f"{status} is not a stage of chain {self.chain_id}")

    def next_in_sequence(self, status: str) -> Optional[str]:
        statuses = self.statuses()
        if status not in statuses:
            return None
        position = statuses.index(status)
        if position + 1 >= len(statuses):
            return None
        return statuses[position + 1]

    def successors(self, status: str) -> tuple[str, ...]:
        stage = self.stage_for(status)
        if stage.is_terminal:
            return ()
        result: list[str] = []
        next_status = self.next_in_sequence(status)
        if next_status is not None:
            result.append(next_status)
        for branch in self.branches.get(status, ()):
            if branch not in result:
                result.append(branch)
        result.append(REJECTED_STAGE.status)
        return tuple(result)

    def statuses(self) -> list[str]:
        return [stage.status for stage in self.stages]


REJECTED_STAGE = StageSpec(status="otkloneno", required_role=None, is_terminal=True)


def _stage(status: RequestStatus) -> StageSpec:
    return StageSpec(
        status=status,
        required_role=STAGE_ROLES[status],
        sla_hours=SLA_HOURS.get(status),
    )


def _chain(
    chain_id: ChainId,
    *,
    first_role: UserRole,
    path: tuple[RequestStatus, ...],
) -> ChainDefinition:
    stages = (
        (StageSpec(status="novaya", required_role=first_role),)
        + tuple(_stage(status) for status in path)
        + (_stage("vydano"), StageSpec(status="polucheno", required_role=None, is_terminal=True))
    )
    if "sklad_review" not in path:
        return ChainDefinition(chain_id=chain_id, stages=stages)
    return ChainDefinition(
        chain_id=chain_id,
        stages=stages,
        side_stages=(_stage("sklad_partial"),),
        branches=MappingProxyType(
            {
                "sklad_review": ("vydano", "sklad_partial"),
                "sklad_partial": ("vydano",),
            }
        ),
    )


_PURCHASE_PATH: tuple[RequestStatus, ...] = ("snab_process", "zakupleno", "v_puti")

_CHAINS: Mapping[str, ChainDefinition] = MappingProxyType(
    {
        "warehouse_only": _chain(
            "warehouse_only",
            first_role="sklad",
            path=("sklad_review",),
        ),
        "full": _chain(
            "full",
            first_role="sklad",
            path=("sklad_review", "nachalnik_review", "nachalnik_approved") + _PURCHASE_PATH,
        ),
        "purchase_only": _chain(
            "purchase_only",
            first_role="nachalnik",
            path=("nachalnik_review", "nachalnik_approved") + _PURCHASE_PATH,
        ),
        "full_finance": _chain(
            "full_finance",
            first_role="sklad",
            path=(
                "sklad_review",
                "nachalnik_review",
                "finansist_review",
                "finansist_approved",
            )
            + _PURCHASE_PATH,
        ),
        "finance_only": _chain(
            "finance_only",
            first_role="nachalnik",
            path=("nachalnik_review", "finansist_review", "finansist_approved") + _PURCHASE_PATH,
        ),
    }
)


def get_chain(chain_id: ChainId) -> ChainDefinition:
    return _CHAINS[chain_id]


def default_chain(request_type: RequestType) -> ChainId:
    return DEFAULT_CHAINS[request_type]


def list_chains() -> list[ChainDefinition]:
    return list(_CHAINS.values())


def responsible_role(chain_id: ChainId, status: RequestStatus) -> Optional[UserRole]:
    return get_chain(chain_id).stage_for(status).required_role


def chain_steps(chain_id: ChainId) -> list[str]:
    return get_chain(chain_id).statuses()


def derived_chain_for(chain_id: ChainId) -> ChainId:
    """Chain used by the remainder request forked off a partial fulfillment."""
    if get_chain(chain_id).has_stage("nachalnik_review"):
        return chain_id
    return "purchase_only"
