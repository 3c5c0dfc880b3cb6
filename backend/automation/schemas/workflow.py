from typing import Dict, List, Optional, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from automation.models.workflow import DeliveryMethod, TriggerType


class WorkflowBase(BaseModel):
    """Base model for workflow operations."""
    name: str = Field(..., min_length=1, max_length=100, description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    trigger_type: TriggerType = Field(..., description="Lifecycle event the workflow reacts to")
    trigger_config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Delays (delay_days, delay_hours, delay_minutes), business_hours_only, webhook_keys",
    )
    actions: Optional[Dict[str, Any]] = Field(None, description="Named actions, each with its own config")
    conditions: Optional[Dict[str, Any]] = Field(None, description="Eligibility conditions, all must pass")
    delivery_method: Optional[DeliveryMethod] = Field(
        None, description="Single-channel shortcut; takes precedence over actions when set"
    )
    email_template_type: Optional[str] = Field(None, description="Email template used by the delivery method")
    business_id: Optional[str] = Field(None, description="Restrict the workflow to one business")


class WorkflowCreate(WorkflowBase):
    """Model for creating a workflow."""
    is_active: bool = Field(True, description="Whether the workflow is active")
    created_by: Optional[str] = Field(None, description="User that created the workflow")


class WorkflowUpdate(BaseModel):
    """Model for updating a workflow. Only the fields sent are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    trigger_type: Optional[TriggerType] = None
    trigger_config: Optional[Dict[str, Any]] = None
    actions: Optional[Dict[str, Any]] = None
    conditions: Optional[Dict[str, Any]] = None
    delivery_method: Optional[DeliveryMethod] = None
    email_template_type: Optional[str] = None
    business_id: Optional[str] = None
    is_active: Optional[bool] = None


class WorkflowStatusUpdate(BaseModel):
    is_active: bool


class WorkflowResponse(WorkflowBase):
    """Response model for workflow operations."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Workflow ID")
    organization_id: str = Field(..., description="Owning organization")
    is_active: bool = Field(..., description="Whether the workflow is active")
    execution_count: int = Field(0, description="Executions created for this workflow")
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WorkflowTriggerRequest(BaseModel):
    customer_id: str = Field(..., description="Customer to run the workflow for")
    trigger_event: str = Field("MANUAL_TRIGGER", description="Event name recorded on the execution")
    trigger_data: Dict[str, Any] = Field(default_factory=dict, description="Payload recorded on the execution")


class BulkTriggerRequest(BaseModel):
    customer_ids: List[str] = Field(..., min_length=1, description="Customers to run the workflow for")
    trigger_event: str = Field("BULK_TRIGGER", description="Event name recorded on each execution")


class BulkTriggerFailure(BaseModel):
    customer_id: str
    error: str


class BulkTriggerResponse(BaseModel):
    workflow_id: str
    requested: int
    scheduled: List[str] = Field(default_factory=list, description="IDs of executions created")
    failed: List[BulkTriggerFailure] = Field(default_factory=list)


class WorkflowTestRequest(BaseModel):
    customer_id: str


class WorkflowPreviewResponse(BaseModel):
    workflow_id: str
    customer_id: str
    would_send: bool = Field(..., description="Whether an automatic trigger would schedule this workflow now")
    eligible: bool = Field(..., description="Whether the workflow's conditions pass for the customer")
    ready_for_automation: bool
    automation_triggered: bool
    plan: Dict[str, Any] = Field(..., description="Delivery method or actions the run would use")
    scheduled_for: Optional[datetime] = Field(None, description="When the execution would run; null means immediately")
    trigger_config: Dict[str, Any] = Field(default_factory=dict)


class WorkflowMetricsResponse(BaseModel):
    workflow_id: str
    days: int
    total_executions: int
    completed: int
    failed: int
    pending: int
    cancelled: int
    success_rate: float
    average_duration_seconds: Optional[float] = None
    last_execution_at: Optional[datetime] = None
    execution_count: int
