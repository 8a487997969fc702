from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, status

from src.core.workflow.chains import (
    DEFAULT_CHAINS,
    ChainDefinition,
    StageSpec,
    get_chain,
    list_chains,
)
from src.core.workflow.models import ChainListResponse, ChainResponse, ChainStageResponse

router = APIRouter(tags=["Approval Chains"])


def _stage_response(chain: ChainDefinition, stage: StageSpec) -> ChainStageResponse:
    return ChainStageResponse(
        status=stage.status,
        responsible_role=stage.required_role,
        sla_hours=stage.sla_hours,
        is_terminal=stage.is_terminal,
        successors=list(chain.successors(stage.status)),
    )


def _chain_response(chain: ChainDefinition) -> ChainResponse:
    return ChainResponse(
        chain_id=chain.chain_id,
        default_for=sorted(
            request_type
            for request_type, chain_id in DEFAULT_CHAINS.items()
            if chain_id == chain.chain_id
        ),
        stages=[_stage_response(chain, stage) for stage in chain.stages],
        side_stages=[_stage_response(chain, stage) for stage in chain.side_stages],
    )


@router.get(
    "/chains",
    response_model=ChainListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Approval Chains",
    description="Returns every approval chain with stage roles, deadlines and legal successors.",
)
def list_approval_chains() -> ChainListResponse:
    return ChainListResponse(items=[_chain_response(chain) for chain in list_chains()])


@router.get(
    "/chains/{chain_id}",
    response_model=ChainResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Approval Chain",
)
def get_approval_chain(
    chain_id: Annotated[str, Path(description="Chain identifier.", examples=["full_finance"])],
) -> ChainResponse:
    try:
        chain = get_chain(chain_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="CHAIN_NOT_FOUND"
        ) from exc
    return _chain_response(chain)
