from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import AwareDatetime, BaseModel, Field, field_validator, model_validator

RequestStatus = Literal[
    "novaya",
    "sklad_review",
    "sklad_partial",
    "nachalnik_review",
    "nachalnik_approved",
    "finansist_review",
    "finansist_approved",
    "snab_process",
    "zakupleno",
    "v_puti",
    "vydano",
    "polucheno",
    "otkloneno",
]

UserRole = Literal["prorab", "sklad", "nachalnik", "finansist", "snab", "admin"]

RequestType = Literal["materials", "tools", "heavy_equipment", "services", "other"]

ChainId = Literal["warehouse_only", "full", "purchase_only", "full_finance", "finance_only"]

UrgencyLevel = Literal["low", "normal", "high", "critical"]

WorkflowAction = Literal[
    "create",
    "view_all",
    "view_own",
    "view_financials",
    "transition",
    "edit_specification",
    "edit_financials",
    "manage_warehouse_stock",
    "create_purchase_order",
    "attach_file",
    "download_invoice",
    "manage_users",
    "force_delete",
    "split_request",
]

HistoryAction = Literal[
    "STATUS_CHANGED",
    "SPLIT_CREATED",
    "SPECIFICATION_EDITED",
    "FINANCIALS_EDITED",
]

WorkflowEventType = Literal[
    "STATUS_CHANGED",
    "STOCK_DECREMENT_REQUESTED",
    "PURCHASE_ORDER_ELIGIBLE",
    "NOTIFICATION_REQUESTED",
    "SLA_BREACHED",
]

NotificationTopic = Literal[
    "request_created",
    "sklad_needed",
    "nachalnik_needed",
    "nachalnik_approved",
    "finansist_needed",
    "finansist_approved",
    "snab_needed",
    "zakupleno",
    "v_puti",
    "vydano",
    "polucheno",
    "otkloneno",
    "urgent_created",
    "sla_breached",
]

TERMINAL_STATUSES: frozenset[str] = frozenset({"polucheno", "otkloneno"})


class LineItem(BaseModel):
    item_id: str = Field(description="Stable line identifier.", examples=["li_001"])
    name: str = Field(description="Material or service name.", examples=["Cement M500"])
    unit: str = Field(description="Unit of measure.", examples=["bag"])
    quantity: Decimal = Field(description="Requested quantity.", examples=["50"])
    fulfilled_quantity: Decimal = Field(
        default=Decimal("0"),
        description="Quantity already issued from warehouse stock.",
        examples=["30"],
    )

    @field_validator("quantity")
    @classmethod
    def _quantity_must_be_positive(cls, value: Decimal) -> Decimal:
        if value <= Decimal("0"):
            raise ValueError("quantity must be greater than zero")
        return value

    @model_validator(mode="after")
    def _fulfilled_within_requested(self) -> "LineItem":
        if self.fulfilled_quantity < Decimal("0"):
            raise ValueError("fulfilled_quantity must not be negative")
        if self.fulfilled_quantity > self.quantity:
            raise ValueError("fulfilled_quantity must not exceed quantity")
        return self


class HistoryEntry(BaseModel):
    model_config = {"frozen": True}

    entry_id: str = Field(description="History entry identifier.", examples=["rhe_001"])
    action: HistoryAction = Field(description="Audit action kind.", examples=["STATUS_CHANGED"])
    from_status: Optional[RequestStatus] = Field(
        default=None, description="Status before the action.", examples=["novaya"]
    )
    to_status: RequestStatus = Field(
        description="Status after the action.", examples=["sklad_review"]
    )
    actor_role: UserRole = Field(description="Role of the acting user.", examples=["sklad"])
    actor_id: str = Field(description="Acting user id.", examples=["user_sklad_1"])
    occurred_at: datetime = Field(
        description="UTC timestamp of the action.", examples=["2026-03-01T08:00:00+00:00"]
    )
    comment: Optional[str] = Field(
        default=None, description="Optional free-text comment.", examples=["In stock"]
    )


class RequestRecord(BaseModel):
    request_id: str = Field(description="Internal request identifier.", examples=["sr_001"])
    request_type: RequestType = Field(description="Request type.", examples=["materials"])
    chain: ChainId = Field(description="Approval chain fixed at creation.", examples=["full"])
    current_status: RequestStatus = Field(description="Current status.", examples=["novaya"])
    created_by: str = Field(description="Creator actor id.", examples=["user_prorab_1"])
    created_at: datetime = Field(description="Creation timestamp.")
    stage_entered_at: datetime = Field(description="Timestamp the current stage was entered.")
    version: int = Field(default=1, description="Optimistic concurrency version.", examples=[1])
    title: str = Field(default="", description="Short request title.", examples=["Block A"])
    object_name: Optional[str] = Field(
        default=None, description="Construction object name.", examples=["Tower 2"]
    )
    urgency: UrgencyLevel = Field(default="normal", description="Urgency level.")
    history: List[HistoryEntry] = Field(default_factory=list)
    specification: List[LineItem] = Field(default_factory=list)
    parent_request_id: Optional[str] = Field(default=None)
    child_request_ids: List[str] = Field(default_factory=list)
    stock_decremented: bool = Field(
        default=False,
        description="Whether warehouse stock has already been decremented for this request.",
    )
    estimated_cost: Optional[Decimal] = Field(default=None)
    budget_code: Optional[str] = Field(default=None)
    closed_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATUSES


class LineItemInput(BaseModel):
    item_id: Optional[str] = Field(
        default=None,
        description="Optional caller-supplied line id; generated when omitted.",
        examples=["li_001"],
    )
    name: str = Field(min_length=1, description="Material or service name.", examples=["Rebar"])
    unit: str = Field(min_length=1, description="Unit of measure.", examples=["t"])
    quantity: Decimal = Field(gt=0, description="Requested quantity.", examples=["2.5"])


class RequestCreateRequest(BaseModel):
    request_type: RequestType = Field(description="Request type.", examples=["materials"])
    chain_override: Optional[ChainId] = Field(
        default=None,
        description="Manual chain choice; when omitted the default chain for the type is used.",
        examples=["purchase_only"],
    )
    title: str = Field(default="", description="Short request title.", examples=["Block A"])
    object_name: Optional[str] = Field(default=None, examples=["Tower 2"])
    urgency: UrgencyLevel = Field(default="normal", examples=["high"])
    items: List[LineItemInput] = Field(description="Requested line items.")


class RequestActionRequest(BaseModel):
    to_status: RequestStatus = Field(description="Target status.", examples=["sklad_review"])
    comment: Optional[str] = Field(default=None, examples=["Checked stock"])
    fulfilled_quantities: Optional[Dict[str, Decimal]] = Field(
        default=None,
        description="Per line item fulfilled quantity; required for sklad_partial.",
        examples=[{"li_001": "30"}],
    )
    expected_version: Optional[int] = Field(
        default=None,
        description="Optimistic concurrency check against the stored request version.",
        examples=[1],
    )


class SpecificationEditRequest(BaseModel):
    items: List[LineItemInput] = Field(description="Replacement line items.")
    comment: Optional[str] = Field(default=None)
    expected_version: Optional[int] = Field(default=None, examples=[2])


class FinancialsEditRequest(BaseModel):
    estimated_cost: Optional[Decimal] = Field(default=None, ge=0, examples=["1250000"])
    budget_code: Optional[str] = Field(default=None, examples=["BUD-07"])
    comment: Optional[str] = Field(default=None)
    expected_version: Optional[int] = Field(default=None, examples=[3])


class WorkflowEvent(BaseModel):
    event_id: str = Field(description="Event identifier.", examples=["wev_001"])
    event_type: WorkflowEventType = Field(description="Event type.", examples=["STATUS_CHANGED"])
    request_id: str = Field(description="Request the event refers to.", examples=["sr_001"])
    occurred_at: datetime = Field(description="UTC event timestamp.")
    actor_id: Optional[str] = Field(default=None)
    actor_role: Optional[UserRole] = Field(default=None)
    from_status: Optional[RequestStatus] = Field(default=None)
    to_status: Optional[RequestStatus] = Field(default=None)
    deadline: Optional[datetime] = Field(default=None)
    item_name: Optional[str] = Field(default=None)
    unit: Optional[str] = Field(default=None)
    quantity: Optional[Decimal] = Field(default=None)
    recipient_role: Optional[UserRole] = Field(default=None)
    topic: Optional[NotificationTopic] = Field(default=None)


class SlaBreach(BaseModel):
    request_id: str = Field(examples=["sr_001"])
    status: RequestStatus = Field(examples=["finansist_review"])
    responsible_role: Optional[UserRole] = Field(default=None, examples=["finansist"])
    stage_entered_at: datetime
    deadline: datetime


class RequestSummary(BaseModel):
    request_id: str = Field(examples=["sr_001"])
    request_type: RequestType
    chain: ChainId
    current_status: RequestStatus
    responsible_role: Optional[UserRole] = Field(
        default=None, description="Role expected to act on the current stage."
    )
    created_by: str
    created_at: str = Field(description="UTC ISO8601 creation timestamp.")
    stage_entered_at: str = Field(description="UTC ISO8601 stage-entry timestamp.")
    deadline: Optional[str] = Field(default=None, description="UTC ISO8601 SLA deadline.")
    version: int
    title: str
    object_name: Optional[str] = None
    urgency: UrgencyLevel
    parent_request_id: Optional[str] = None


class RequestDetailResponse(BaseModel):
    request: RequestSummary
    specification: List[LineItem] = Field(default_factory=list)
    history: List[HistoryEntry] = Field(default_factory=list)
    child_request_ids: List[str] = Field(default_factory=list)
    estimated_cost: Optional[Decimal] = Field(
        default=None, description="Masked unless the caller may view financials."
    )
    budget_code: Optional[str] = Field(default=None)
    closed_at: Optional[str] = Field(default=None)


class RequestListResponse(BaseModel):
    items: List[RequestSummary] = Field(default_factory=list)


class RequestActionResponse(BaseModel):
    request: RequestSummary
    history_entry: HistoryEntry
    derived_request: Optional[RequestSummary] = None
    events: List[WorkflowEvent] = Field(default_factory=list)


class SlaStatusResponse(BaseModel):
    request_id: str
    current_status: RequestStatus
    stage_entered_at: str
    deadline: Optional[str] = None
    is_breached: bool


class SlaScanRequest(BaseModel):
    previous_scan_at: AwareDatetime = Field(
        description="Timestamp of the previous sweep; breaches older than this are not re-raised."
    )
    now: Optional[AwareDatetime] = Field(
        default=None, description="Sweep timestamp; defaults to the current UTC time."
    )


class SlaScanResponse(BaseModel):
    breaches: List[SlaBreach] = Field(default_factory=list)


class ChainStageResponse(BaseModel):
    status: RequestStatus
    responsible_role: Optional[UserRole] = None
    sla_hours: Optional[int] = Field(default=None, description="Stage deadline in hours.")
    is_terminal: bool = False
    successors: List[RequestStatus] = Field(
        default_factory=list, description="Legal next statuses for stage-owning roles."
    )


class ChainResponse(BaseModel):
    chain_id: ChainId = Field(examples=["full"])
    default_for: List[RequestType] = Field(
        default_factory=list, description="Request types routed to this chain by default."
    )
    stages: List[ChainStageResponse] = Field(default_factory=list)
    side_stages: List[ChainStageResponse] = Field(default_factory=list)


class ChainListResponse(BaseModel):
    items: List[ChainResponse] = Field(default_factory=list)


class RequestWorkflowConfigResponse(BaseModel):
    store_backend: Literal["IN_MEMORY", "POSTGRES"] = Field(examples=["POSTGRES"])
    backend_ready: bool
    backend_init_error: Optional[str] = Field(
        default=None, examples=["REQUEST_POSTGRES_CONNECTION_FAILED"]
    )
    persistence_profile: Literal["LOCAL", "PRODUCTION"] = Field(examples=["LOCAL"])
    workflow_enabled: bool
    require_expected_version: bool
    event_publisher: Literal["LOGGING", "IN_MEMORY"] = Field(examples=["LOGGING"])
