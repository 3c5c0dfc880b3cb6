import enum
from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, DateTime, JSON, Index
from sqlalchemy.orm import relationship
from uuid import uuid4

from automation.core.clock import utcnow
from automation.db.base import Base


class TriggerType(str, enum.Enum):
    CUSTOMER_CREATED = "CUSTOMER_CREATED"
    SERVICE_COMPLETED = "SERVICE_COMPLETED"
    REVIEW_COMPLETED = "REVIEW_COMPLETED"
    WEBHOOK = "WEBHOOK"


class DeliveryMethod(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    BOTH = "BOTH"


class ExecutionStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value, ExecutionStatus.CANCELLED.value)


class LogLevel(str, enum.Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class Workflow(Base):
    """Automation workflow owned by an organization."""

    __tablename__ = "workflows"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    organization_id = Column(String, nullable=False, index=True)
    business_id = Column(String, ForeignKey("businesses.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    trigger_type = Column(String(50), nullable=False, index=True)
    trigger_config = Column(JSON, nullable=False, default=dict)
    actions = Column(JSON, nullable=True)
    conditions = Column(JSON, nullable=True)
    delivery_method = Column(String(20), nullable=True)
    email_template_type = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True)
    execution_count = Column(Integer, nullable=False, default=0)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Workflow {self.name}>"


class WorkflowExecution(Base):
    """One scheduled run of a workflow for one customer."""

    __tablename__ = "workflow_executions"
    __table_args__ = (
        Index("ix_workflow_executions_due", "status", "scheduled_for"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    organization_id = Column(String, nullable=False, index=True)
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(String, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    business_id = Column(String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    trigger_event = Column(String(100), nullable=False)
    trigger_data = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=ExecutionStatus.PENDING.value)
    current_step = Column(Integer, nullable=False, default=1)
    scheduled_for = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    results = Column(JSON, nullable=True)
    execution_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    workflow = relationship("Workflow", lazy="joined")
    customer = relationship("Customer", lazy="joined")
    business = relationship("Business", lazy="joined")

    def __repr__(self):
        return f"<WorkflowExecution {self.id} ({self.status})>"


class ExecutionLog(Base):
    """Execution-scoped, append-only log line."""

    __tablename__ = "execution_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String, ForeignKey("workflow_executions.id", ondelete="CASCADE"), nullable=False, index=True)
    workflow_id = Column(String, nullable=False, index=True)
    level = Column(String(10), nullable=False, default=LogLevel.INFO.value)
    step_number = Column(Integer, nullable=True)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    timestamp = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<ExecutionLog {self.id} [{self.level}]>"


class WorkflowTemplate(Base):
    """Reusable workflow definition that organizations copy into workflows."""

    __tablename__ = "workflow_templates"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), nullable=False, index=True)
    trigger_type = Column(String(50), nullable=False)
    template_config = Column(JSON, nullable=False, default=dict)
    default_actions = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_system_template = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<WorkflowTemplate {self.name}>"
