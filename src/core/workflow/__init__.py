from src.core.workflow.chains import (
    ChainDefinition,
    StageSpec,
    chain_steps,
    default_chain,
    get_chain,
    list_chains,
    responsible_role,
)
from src.core.workflow.errors import (
    ForbiddenActionError,
    InvalidTransitionError,
    RequestNotFoundError,
    RequestTerminalError,
    VersionConflictError,
    WorkflowError,
    WorkflowValidationError,
)
from src.core.workflow.events import EventPublisher
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
    RequestSummary,
    SlaBreach,
    SlaScanRequest,
    SlaScanResponse,
    SlaStatusResponse,
    SpecificationEditRequest,
    WorkflowEvent,
)
from src.core.workflow.permissions import allowed_transitions, authorize, can_view
from src.core.workflow.repository import RequestRepository
from src.core.workflow.service import RequestWorkflowService

__all__ = [
    "ChainDefinition",
    "EventPublisher",
    "FinancialsEditRequest",
    "ForbiddenActionError",
    "HistoryEntry",
    "InvalidTransitionError",
    "LineItem",
    "LineItemInput",
    "RequestActionRequest",
    "RequestActionResponse",
    "RequestCreateRequest",
    "RequestDetailResponse",
    "RequestListResponse",
    "RequestNotFoundError",
    "RequestRecord",
    "RequestRepository",
    "RequestSummary",
    "RequestTerminalError",
    "RequestWorkflowService",
    "SlaBreach",
    "SlaScanRequest",
    "SlaScanResponse",
    "SlaStatusResponse",
    "SpecificationEditRequest",
    "StageSpec",
    "VersionConflictError",
    "WorkflowError",
    "WorkflowEvent",
    "WorkflowValidationError",
    "allowed_transitions",
    "authorize",
    "can_view",
    "chain_steps",
    "default_chain",
    "get_chain",
    "list_chains",
    "responsible_role",
]
