from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, Response, status

from src.api.persistence_profile import app_persistence_profile_name
from src.api.routers import requests_config
from src.api.routers.request_http_errors import raise_request_http_exception
from src.api.routers.runtime_utils import (
    assert_feature_enabled,
    env_flag,
    normalize_backend_init_error,
)
from src.core.workflow import (
    FinancialsEditRequest,
    RequestActionRequest,
    RequestActionResponse,
    RequestCreateRequest,
    RequestDetailResponse,
    RequestListResponse,
    RequestWorkflowService,
    SlaScanRequest,
    SlaScanResponse,
    SlaStatusResponse,
    SpecificationEditRequest,
    WorkflowError,
    authorize,
)
from src.core.workflow.models import (
    RequestStatus,
    RequestWorkflowConfigResponse,
    UserRole,
)

router = APIRouter(tags=["Supply Requests"])

_SERVICE: Optional[RequestWorkflowService] = None


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: UserRole


def current_actor(
    actor_id: Annotated[
        str,
        Header(
            alias="X-Actor-Id",
            description="Authenticated user id resolved by the gateway.",
            examples=["user_prorab_1"],
        ),
    ],
    actor_role: Annotated[
        UserRole,
        Header(
            alias="X-Actor-Role",
            description="Role of the authenticated user.",
            examples=["prorab"],
        ),
    ],
) -> Actor:
    return Actor(actor_id=actor_id, role=actor_role)


def get_request_workflow_service() -> RequestWorkflowService:
    global _SERVICE
    if _SERVICE is None:
        try:
            repository = requests_config.build_repository()
        except RuntimeError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=normalize_backend_init_error(
                    detail=str(exc),
                    known_details=requests_config.POSTGRES_INIT_ERRORS,
                    fallback_detail="REQUEST_POSTGRES_CONNECTION_FAILED",
                ),
            ) from exc
        _SERVICE = RequestWorkflowService(
            repository=repository,
            event_publisher=requests_config.build_event_publisher(),
            require_expected_version=env_flag("REQUEST_REQUIRE_EXPECTED_VERSION", False),
        )
    return _SERVICE


def reset_request_workflow_service_for_tests() -> None:
    global _SERVICE
    _SERVICE = None


def _assert_workflow_enabled() -> None:
    assert_feature_enabled(
        name="REQUEST_WORKFLOW_ENABLED",
        default=True,
        detail="REQUEST_WORKFLOW_DISABLED",
    )


_RequestId = Annotated[
    str,
    Path(description="Supply request identifier.", examples=["sr_0a1b2c3d4e5f"]),
]
_Service = Annotated[RequestWorkflowService, Depends(get_request_workflow_service)]
_Actor = Annotated[Actor, Depends(current_actor)]


@router.get(
    "/requests/config",
    response_model=RequestWorkflowConfigResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Request Workflow Configuration",
    description=(
        "Returns effective runtime configuration and store initialization status "
        "for operational diagnostics."
    ),
)
def get_request_workflow_config() -> RequestWorkflowConfigResponse:
    backend_error: Optional[str] = None
    backend_ready = True
    try:
        requests_config.build_repository()
    except RuntimeError as exc:
        backend_ready = False
        backend_error = str(exc)

    return RequestWorkflowConfigResponse(
        store_backend=requests_config.request_store_backend_name(),
        backend_ready=backend_ready,
        backend_init_error=backend_error,
        persistence_profile=app_persistence_profile_name(),
        workflow_enabled=env_flag("REQUEST_WORKFLOW_ENABLED", True),
        require_expected_version=env_flag("REQUEST_REQUIRE_EXPECTED_VERSION", False),
        event_publisher=requests_config.event_publisher_name(),
    )


@router.post(
    "/requests",
    response_model=RequestDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Supply Request",
    description=(
        "Creates a request in status `novaya`. The approval chain is resolved from the "
        "request type unless `chain_override` is supplied, and is fixed afterwards."
    ),
)
def create_request(
    payload: RequestCreateRequest,
    actor: _Actor,
    service: _Service,
) -> RequestDetailResponse:
    _assert_workflow_enabled()
    try:
        return service.create_request(
            actor_id=actor.actor_id, actor_role=actor.role, payload=payload
        )
    except WorkflowError as exc:
        raise_request_http_exception(exc)


@router.get(
    "/requests",
    response_model=RequestListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Supply Requests",
    description=(
        "Lists requests visible to the caller, newest first. `pending_only` narrows the "
        "list to open requests waiting on the caller's role."
    ),
)
def list_requests(
    actor: _Actor,
    service: _Service,
    request_status: Annotated[
        Optional[RequestStatus],
        Query(alias="status", description="Current status filter.", examples=["sklad_review"]),
    ] = None,
    pending_only: Annotated[
        bool,
        Query(description="Only requests whose current stage the caller's role owns."),
    ] = False,
) -> RequestListResponse:
    _assert_workflow_enabled()
    try:
        return service.list_requests(
            actor_id=actor.actor_id,
            actor_role=actor.role,
            status=request_status,
            pending_only=pending_only,
        )
    except WorkflowError as exc:
        raise_request_http_exception(exc)


@router.post(
    "/requests/sla/scan",
    response_model=SlaScanResponse,
    status_code=status.HTTP_200_OK,
    summary="Run SLA Breach Sweep",
    description=(
        "Reports requests whose stage deadline passed since `previous_scan_at` and emits "
        "breach notifications. Intended for a periodic scheduler."
    ),
)
def scan_sla_breaches(
    payload: SlaScanRequest,
    actor: _Actor,
    service: _Service,
) -> SlaScanResponse:
    _assert_workflow_enabled()
    if not authorize(actor.role, "view_all"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="FORBIDDEN")
    return service.scan_sla_breaches(previous_scan_at=payload.previous_scan_at, now=payload.now)


@router.get(
    "/requests/{request_id}",
    response_model=RequestDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Supply Request",
    description="Returns the request, its specification and full history.",
)
def get_request(request_id: _RequestId, actor: _Actor, service: _Service) -> RequestDetailResponse:
    _assert_workflow_enabled()
    try:
        return service.get_request(
            request_id=request_id, actor_id=actor.actor_id, actor_role=actor.role
        )
    except WorkflowError as exc:
        raise_request_http_exception(exc)


@router.post(
    "/requests/{request_id}/actions",
    response_model=RequestActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Apply Status Transition",
    description=(
        "Moves the request to `to_status`. Moving from `sklad_review` to `sklad_partial` "
        "requires `fulfilled_quantities` and forks a purchase request for the remainder."
    ),
)
def apply_request_action(
    request_id: _RequestId,
    payload: RequestActionRequest,
    actor: _Actor,
    service: _Service,
) -> RequestActionResponse:
    _assert_workflow_enabled()
    try:
        return service.apply_action(
            request_id=request_id,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            payload=payload,
        )
    except WorkflowError as exc:
        raise_request_http_exception(exc)


@router.put(
    "/requests/{request_id}/specification",
    response_model=RequestDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Edit Request Specification",
    description="Replaces line items while the request is still under review.",
)
def edit_specification(
    request_id: _RequestId,
    payload: SpecificationEditRequest,
    actor: _Actor,
    service: _Service,
) -> RequestDetailResponse:
    _assert_workflow_enabled()
    try:
        return service.edit_specification(
            request_id=request_id,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            payload=payload,
        )
    except WorkflowError as exc:
        raise_request_http_exception(exc)


@router.put(
    "/requests/{request_id}/financials",
    response_model=RequestDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Edit Request Financials",
    description="Sets estimated cost and budget code on an open request.",
)
def update_financials(
    request_id: _RequestId,
    payload: FinancialsEditRequest,
    actor: _Actor,
    service: _Service,
) -> RequestDetailResponse:
    _assert_workflow_enabled()
    try:
        return service.update_financials(
            request_id=request_id,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            payload=payload,
        )
    except WorkflowError as exc:
        raise_request_http_exception(exc)


@router.delete(
    "/requests/{request_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Force-Delete Supply Request",
    description="Administrative removal of a request in any status.",
)
def delete_request(request_id: _RequestId, actor: _Actor, service: _Service) -> Response:
    _assert_workflow_enabled()
    try:
        service.delete_request(
            request_id=request_id, actor_id=actor.actor_id, actor_role=actor.role
        )
    except WorkflowError as exc:
        raise_request_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/requests/{request_id}/sla",
    response_model=SlaStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Request SLA Status",
    description="Returns the current stage deadline and whether it has been breached.",
)
def get_sla_status(request_id: _RequestId, actor: _Actor, service: _Service) -> SlaStatusResponse:
    _assert_workflow_enabled()
    try:
        return service.get_sla_status(
            request_id=request_id, actor_id=actor.actor_id, actor_role=actor.role
        )
    except WorkflowError as exc:
        raise_request_http_exception(exc)
