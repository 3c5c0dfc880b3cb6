from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field


class TriggerFailure(BaseModel):
    workflow_id: str
    error: str


class TriggerResult(BaseModel):
    """Outcome of one lifecycle event."""
    success: bool = Field(..., description="False only when the event could not be processed at all")
    trigger_type: str = Field(..., description="Lifecycle event that was processed")
    customer_id: Optional[str] = Field(None, description="Customer the event concerned")
    reason: Optional[str] = Field(None, description="Human-readable explanation of the outcome")
    candidates: int = Field(0, description="Active workflows considered for the event")
    scheduled: List[str] = Field(default_factory=list, description="IDs of executions created")
    skipped: List[str] = Field(default_factory=list, description="Workflows whose conditions did not pass")
    failed: List[TriggerFailure] = Field(default_factory=list, description="Workflows that could not be scheduled")


class ServiceCompletedRequest(BaseModel):
    service_type: Optional[str] = Field(None, description="Service that was completed")


class WebhookTriggerRequest(BaseModel):
    customer_id: str = Field(..., description="Customer the inbound webhook concerns")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Inbound webhook body")
