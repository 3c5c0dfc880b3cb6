# automation/models/__init__.py
from automation.models.customer import Business, Customer, ReviewRequest
from automation.models.workflow import (
    DeliveryMethod,
    ExecutionLog,
    ExecutionStatus,
    LogLevel,
    TriggerType,
    Workflow,
    WorkflowExecution,
    WorkflowTemplate,
)


# Re-export all models
__all__ = [
    "Business",
    "Customer",
    "ReviewRequest",
    "Workflow",
    "WorkflowExecution",
    "ExecutionLog",
    "WorkflowTemplate",
    "TriggerType",
    "DeliveryMethod",
    "ExecutionStatus",
    "LogLevel",
]
