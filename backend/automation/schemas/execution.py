from typing import Dict, List, Optional, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class ExecutionResponse(BaseModel):
    """Response model for workflow executions."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Execution ID")
    workflow_id: str = Field(..., description="ID of the associated workflow")
    customer_id: str = Field(..., description="Customer the execution runs for")
    business_id: str
    trigger_event: str = Field(..., description="Event that created the execution")
    trigger_data: Optional[Dict[str, Any]] = Field(None, description="Payload captured at trigger time")
    status: str = Field(..., description="PENDING, RUNNING, COMPLETED, FAILED or CANCELLED")
    current_step: int = 1
    scheduled_for: Optional[datetime] = Field(None, description="Due time; null means the next sweep")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = Field(None, description="Error message if execution failed")
    results: Optional[Dict[str, Any]] = Field(None, description="Per-action outcomes")
    execution_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class ExecutionListResponse(BaseModel):
    """One page of executions, newest first."""
    total: int = Field(..., description="Executions matching the filters, across all pages")
    items: List[ExecutionResponse]
    skip: int
    limit: int


class ExecutionCancelRequest(BaseModel):
    reason: str = Field("Cancelled by user", description="Recorded as the execution's error message")


class ExecutionLogResponse(BaseModel):
    """Response model for execution logs."""
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Log entry ID")
    execution_id: str = Field(..., description="ID of the associated execution")
    workflow_id: str
    timestamp: datetime = Field(..., description="Log timestamp")
    level: str = Field(..., description="Log level (INFO, WARN, ERROR)")
    step_number: Optional[int] = Field(None, description="Action step the entry belongs to")
    message: str = Field(..., description="Log message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional details")


class ExecutionLogsResponse(BaseModel):
    """Response model for listing execution logs."""
    total: int = Field(..., description="Total number of log entries")
    items: List[ExecutionLogResponse] = Field(..., description="List of log entries")
    skip: int = Field(..., description="Number of log entries skipped")
    limit: int = Field(..., description="Maximum number of log entries returned")
    execution_id: str = Field(..., description="ID of the associated execution")


class SchedulerStatusResponse(BaseModel):
    running: bool
    scan_interval_seconds: float
    max_workers: int
    last_sweep_at: Optional[datetime] = None
    last_cleanup_at: Optional[datetime] = None
    executions_by_status: Dict[str, int] = Field(default_factory=dict)
    log_queue_depth: int = 0
    logs_dropped: int = 0
