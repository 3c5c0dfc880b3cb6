"""
Workflow management: CRUD, templates, manual triggering and metrics.

Every query is scoped to the calling organization; a workflow, customer or
template outside it is reported as not found.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from automation.core.clock import utcnow
from automation.core.exceptions import ConfigurationError, NotFoundError
from automation.models import (
    Business,
    Customer,
    DeliveryMethod,
    ExecutionStatus,
    ReviewRequest,
    TriggerType,
    Workflow,
    WorkflowExecution,
    WorkflowTemplate,
)
from automation.schemas.template import TemplateCreate, TemplateWorkflowCreate
from automation.schemas.workflow import (
    BulkTriggerFailure,
    BulkTriggerResponse,
    WorkflowCreate,
    WorkflowMetricsResponse,
    WorkflowPreviewResponse,
    WorkflowUpdate,
)
from automation.services.actions import (
    ActionPlan,
    DeliveryPlan,
    UnknownAction,
    InvalidAction,
    action_problems,
    describe_plan,
    parse_trigger_config,
    resolve_plan,
    trigger_config_problems,
    validate_workflow_config,
)
from automation.services.conditions import EvaluationContext, eligible, requires_request_history
from automation.services.scheduler import WorkflowScheduler
from automation.services.triggers import is_ready_for_automation

logger = logging.getLogger(__name__)

GUARDED_TRIGGERS = (TriggerType.CUSTOMER_CREATED.value, TriggerType.SERVICE_COMPLETED.value)

DEFAULT_WORKFLOWS = [
    {
        "name": "24-Hour Review Request",
        "description": "Sends a review request 24 hours after service completion during business hours",
        "trigger_type": TriggerType.CUSTOMER_CREATED.value,
        "trigger_config": {"delay_hours": 24, "business_hours_only": True},
        "actions": {
            "send_review_request": {"delivery_method": "EMAIL", "enabled": True},
        },
        "conditions": {"has_email": True},
    },
    {
        "name": "Follow-up Sequence",
        "description": "Follows the initial review request with a reminder email 7 days later",
        "trigger_type": TriggerType.CUSTOMER_CREATED.value,
        # delay action steps do not wait; the 7 days come from the scheduled time
        "trigger_config": {"delay_days": 7, "business_hours_only": True},
        "actions": {
            "follow_up": {"type": "email", "template_type": "FOLLOW_UP_7_DAY", "enabled": True},
        },
        "conditions": {"has_email": True},
    },
    {
        "name": "Thank You Message",
        "description": "Sends a thank you email 30 minutes after a review is received",
        "trigger_type": TriggerType.REVIEW_COMPLETED.value,
        "trigger_config": {"delay_minutes": 30, "business_hours_only": False},
        "actions": {
            "send_thank_you": {"type": "email", "template_type": "THANK_YOU", "enabled": True},
        },
        "conditions": {"has_email": True},
    },
]


def _value(enum_or_str):
    return enum_or_str.value if hasattr(enum_or_str, "value") else enum_or_str


# --- Lookups -----------------------------------------------------------------

async def get_workflow(db: AsyncSession, organization_id: str, workflow_id: str) -> Workflow:
    result = await db.execute(
        select(Workflow).where(Workflow.id == workflow_id, Workflow.organization_id == organization_id)
    )
    workflow = result.scalars().first()
    if workflow is None:
        raise NotFoundError("Workflow", workflow_id)
    return workflow


async def get_customer(db: AsyncSession, organization_id: str, customer_id: str) -> Customer:
    result = await db.execute(
        select(Customer).where(Customer.id == customer_id, Customer.organization_id == organization_id)
    )
    customer = result.scalars().first()
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    return customer


async def _check_business(db: AsyncSession, organization_id: str, business_id: Optional[str]):
    if business_id is None:
        return
    found = await db.scalar(
        select(Business.id).where(Business.id == business_id, Business.organization_id == organization_id)
    )
    if found is None:
        raise NotFoundError("Business", business_id)


# --- CRUD ----------------------------------------------------------------------

async def list_workflows(
    db: AsyncSession,
    organization_id: str,
    business_id: Optional[str] = None,
    active_only: bool = True,
    skip: int = 0,
    limit: int = 100,
) -> List[Workflow]:
    query = select(Workflow).where(Workflow.organization_id == organization_id)
    if business_id is not None:
        query = query.where(Workflow.business_id == business_id)
    if active_only:
        query = query.where(Workflow.is_active.is_(True))
    result = await db.execute(query.order_by(Workflow.created_at.desc()).offset(skip).limit(limit))
    return list(result.scalars().all())


async def create_workflow(db: AsyncSession, organization_id: str, data: WorkflowCreate) -> Workflow:
    """
    Create a workflow after validating its whole configuration.

    Raises:
        ConfigurationError: if the trigger config, actions or conditions are invalid
        NotFoundError: if ``business_id`` is not a business of the organization
    """
    trigger_type = _value(data.trigger_type)
    delivery_method = _value(data.delivery_method) if data.delivery_method else None

    validate_workflow_config(trigger_type, data.trigger_config, data.actions, data.conditions, delivery_method)
    await _check_business(db, organization_id, data.business_id)

    workflow = Workflow(
        organization_id=organization_id,
        business_id=data.business_id,
        name=data.name,
        description=data.description,
        trigger_type=trigger_type,
        trigger_config=data.trigger_config or {},
        actions=data.actions,
        conditions=data.conditions,
        delivery_method=delivery_method,
        email_template_type=data.email_template_type,
        is_active=data.is_active,
        execution_count=0,
        created_by=data.created_by,
    )
    db.add(workflow)
    await db.flush()

    logger.info(f"Created workflow '{workflow.name}' ({workflow.id}) for organization {organization_id}")
    return workflow


async def update_workflow(db: AsyncSession, organization_id: str, workflow_id: str, data: WorkflowUpdate) -> Workflow:
    workflow = await get_workflow(db, organization_id, workflow_id)
    changes = data.model_dump(exclude_unset=True)

    merged = {
        "trigger_type": workflow.trigger_type,
        "trigger_config": workflow.trigger_config,
        "actions": workflow.actions,
        "conditions": workflow.conditions,
        "delivery_method": workflow.delivery_method,
    }
    merged.update({k: _value(v) for k, v in changes.items() if k in merged})
    validate_workflow_config(
        merged["trigger_type"],
        merged["trigger_config"],
        merged["actions"],
        merged["conditions"],
        merged["delivery_method"],
    )
    if "business_id" in changes:
        await _check_business(db, organization_id, changes["business_id"])

    for field, value in changes.items():
        setattr(workflow, field, _value(value))
    workflow.updated_at = utcnow()
    await db.flush()

    logger.info(f"Updated workflow {workflow_id}: {sorted(changes)}")
    return workflow


async def set_workflow_active(db: AsyncSession, organization_id: str, workflow_id: str, is_active: bool) -> Workflow:
    workflow = await get_workflow(db, organization_id, workflow_id)
    workflow.is_active = is_active
    workflow.updated_at = utcnow()
    await db.flush()

    logger.info(f"Updated workflow {workflow_id} status to: {is_active}")
    return workflow


# --- Templates -----------------------------------------------------------------

async def list_templates(db: AsyncSession, category: Optional[str] = None) -> List[WorkflowTemplate]:
    query = select(WorkflowTemplate).where(WorkflowTemplate.is_active.is_(True))
    if category:
        query = query.where(WorkflowTemplate.category == category)
    result = await db.execute(query.order_by(WorkflowTemplate.name))
    return list(result.scalars().all())


async def create_template(db: AsyncSession, data: TemplateCreate) -> WorkflowTemplate:
    problems = trigger_config_problems(data.template_config) + action_problems(data.default_actions)
    if problems:
        raise ConfigurationError("Invalid template configuration", problems)

    template = WorkflowTemplate(
        name=data.name,
        description=data.description,
        category=data.category,
        trigger_type=_value(data.trigger_type),
        template_config=data.template_config or {},
        default_actions=data.default_actions,
        is_active=True,
        is_system_template=False,
    )
    db.add(template)
    await db.flush()
    return template


async def create_workflow_from_template(
    db: AsyncSession,
    organization_id: str,
    template_id: str,
    customizations: Optional[TemplateWorkflowCreate] = None,
    created_by: Optional[str] = None,
) -> Workflow:
    """Copy a template into a new workflow, merging customizations over its config and actions."""
    logger.info(f"Creating workflow from template {template_id} for organization {organization_id}")

    template = await db.get(WorkflowTemplate, template_id)
    if template is None or not template.is_active:
        raise NotFoundError("Template", template_id)

    customizations = customizations or TemplateWorkflowCreate()
    trigger_config = dict(template.template_config or {})
    trigger_config.update(customizations.trigger_config or {})
    actions = dict(template.default_actions or {})
    actions.update(customizations.actions or {})

    data = WorkflowCreate(
        name=customizations.name or f"{template.name} (Copy)",
        description=customizations.description or template.description,
        trigger_type=template.trigger_type,
        trigger_config=trigger_config,
        actions=actions or None,
        conditions=customizations.conditions,
        delivery_method=customizations.delivery_method,
        business_id=customizations.business_id,
        created_by=created_by,
    )
    return await create_workflow(db, organization_id, data)


async def seed_default_workflows(
    db: AsyncSession,
    organization_id: str,
    business_id: Optional[str] = None,
    created_by: Optional[str] = None,
) -> List[Workflow]:
    """Create the default workflows for an organization that has no active workflows yet."""
    existing = await list_workflows(db, organization_id, limit=1)
    if existing:
        logger.info(f"Organization {organization_id} already has workflows, skipping defaults")
        return []

    created = []
    for definition in DEFAULT_WORKFLOWS:
        data = WorkflowCreate(business_id=business_id, created_by=created_by, **definition)
        created.append(await create_workflow(db, organization_id, data))

    logger.info(f"Created {len(created)} default workflows for organization {organization_id}")
    return created


# --- Manual triggering -----------------------------------------------------------

class WorkflowRunner:
    """Manual, bulk and test runs of a single workflow, plus dry-run previews."""

    def __init__(self, scheduler: WorkflowScheduler, timezone: str = "UTC"):
        self.scheduler = scheduler
        self.timezone = timezone

    async def trigger_workflow(
        self,
        db: AsyncSession,
        organization_id: str,
        workflow_id: str,
        customer_id: str,
        trigger_event: str = "MANUAL_TRIGGER",
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> WorkflowExecution:
        """
        Schedule one execution, timed by the workflow's trigger config.

        Conditions and the automation guard are not consulted.

        Raises:
            NotFoundError: if the workflow or customer is missing
            ConfigurationError: if the workflow's trigger config is invalid
        """
        logger.info(f"Triggering workflow {workflow_id} for customer {customer_id} with event {trigger_event}")
        workflow = await get_workflow(db, organization_id, workflow_id)
        customer = await get_customer(db, organization_id, customer_id)

        execution = await self.scheduler.schedule_from_trigger_config(
            db, workflow, customer, trigger_event, trigger_data or {}
        )
        await db.commit()
        if self.scheduler.is_due(execution):
            self.scheduler.wake()
        return execution

    async def bulk_trigger_workflow(
        self,
        db: AsyncSession,
        organization_id: str,
        workflow_id: str,
        customer_ids: List[str],
        trigger_event: str = "BULK_TRIGGER",
    ) -> BulkTriggerResponse:
        """Schedule the workflow for many customers; a customer that fails is reported and skipped."""
        logger.info(f"Bulk triggering workflow {workflow_id} for {len(customer_ids)} customers")
        workflow = await get_workflow(db, organization_id, workflow_id)
        response = BulkTriggerResponse(workflow_id=workflow.id, requested=len(customer_ids))
        due_now = False

        for customer_id in customer_ids:
            try:
                async with db.begin_nested():
                    customer = await get_customer(db, organization_id, customer_id)
                    execution = await self.scheduler.schedule_from_trigger_config(
                        db, workflow, customer, trigger_event, {"bulk_trigger": True}
                    )
                response.scheduled.append(execution.id)
                due_now = due_now or self.scheduler.is_due(execution)
            except Exception as e:
                logger.error(f"Failed to trigger workflow for customer {customer_id}: {str(e)}")
                response.failed.append(BulkTriggerFailure(customer_id=customer_id, error=str(e)))

        await db.commit()
        if due_now:
            self.scheduler.wake()
        return response

    async def test_workflow(
        self, db: AsyncSession, organization_id: str, workflow_id: str, customer_id: str
    ) -> WorkflowExecution:
        """Schedule an immediate TEST_EXECUTION, ignoring delays, conditions and the guard."""
        workflow = await get_workflow(db, organization_id, workflow_id)
        customer = await get_customer(db, organization_id, customer_id)

        execution = await self.scheduler.schedule_execution(
            db,
            workflow,
            customer,
            "TEST_EXECUTION",
            execute_at=None,
            trigger_data={"test_execution": True, "customer_name": customer.name},
        )
        await db.commit()
        self.scheduler.wake()

        logger.info(f"Test execution {execution.id} created for workflow {workflow_id}")
        return execution

    async def preview_workflow(
        self, db: AsyncSession, organization_id: str, workflow_id: str, customer_id: str
    ) -> WorkflowPreviewResponse:
        """Describe what triggering the workflow for the customer would do, without side effects."""
        workflow = await get_workflow(db, organization_id, workflow_id)
        customer = await get_customer(db, organization_id, customer_id)

        last_request_at = None
        if requires_request_history(workflow.conditions):
            last_request_at = await db.scalar(
                select(func.max(ReviewRequest.created_at)).where(ReviewRequest.customer_id == customer.id)
            )
        context = EvaluationContext.current(timezone=self.timezone, last_request_at=last_request_at)

        is_eligible = eligible(workflow, customer, {}, context)
        ready = is_ready_for_automation(customer)
        plan = resolve_plan(workflow)
        trigger_config = parse_trigger_config(workflow.trigger_config)

        would_send = bool(workflow.is_active and is_eligible and _has_channel(plan, customer))
        if workflow.trigger_type in GUARDED_TRIGGERS:
            would_send = would_send and ready

        return WorkflowPreviewResponse(
            workflow_id=workflow.id,
            customer_id=customer.id,
            would_send=would_send,
            eligible=is_eligible,
            ready_for_automation=bool(customer.ready_for_automation),
            automation_triggered=bool(customer.automation_triggered),
            plan=describe_plan(plan),
            scheduled_for=self.scheduler.calculate_execution_time(trigger_config),
            trigger_config=workflow.trigger_config or {},
        )


def _has_channel(plan, customer: Customer) -> bool:
    has_email = bool(customer.email and customer.email.strip())
    if isinstance(plan, DeliveryPlan):
        if plan.method == DeliveryMethod.EMAIL.value:
            return has_email
        if plan.method == DeliveryMethod.SMS.value:
            return customer.can_receive_sms
        if plan.method == DeliveryMethod.BOTH.value:
            return has_email or customer.can_receive_sms
        return False

    if isinstance(plan, ActionPlan):
        return any(
            action.enabled and not isinstance(action, (UnknownAction, InvalidAction))
            for action in plan.actions
        )
    return False


# --- Metrics -------------------------------------------------------------------

async def workflow_metrics(
    db: AsyncSession, organization_id: str, workflow_id: str, days: int = 30
) -> WorkflowMetricsResponse:
    workflow = await get_workflow(db, organization_id, workflow_id)
    since = utcnow() - timedelta(days=days)

    result = await db.execute(
        select(
            WorkflowExecution.status,
            WorkflowExecution.created_at,
            WorkflowExecution.started_at,
            WorkflowExecution.completed_at,
        ).where(
            WorkflowExecution.workflow_id == workflow_id,
            WorkflowExecution.organization_id == organization_id,
            WorkflowExecution.created_at >= since,
        )
    )
    rows = result.all()

    counts = {status.value: 0 for status in ExecutionStatus}
    durations = []
    last_execution_at = None
    for status, created_at, started_at, completed_at in rows:
        counts[status] = counts.get(status, 0) + 1
        if started_at and completed_at:
            durations.append((completed_at - started_at).total_seconds())
        if created_at and (last_execution_at is None or created_at > last_execution_at):
            last_execution_at = created_at

    finished = counts[ExecutionStatus.COMPLETED.value] + counts[ExecutionStatus.FAILED.value]
    return WorkflowMetricsResponse(
        workflow_id=workflow.id,
        days=days,
        total_executions=len(rows),
        completed=counts[ExecutionStatus.COMPLETED.value],
        failed=counts[ExecutionStatus.FAILED.value],
        pending=counts[ExecutionStatus.PENDING.value] + counts[ExecutionStatus.RUNNING.value],
        cancelled=counts[ExecutionStatus.CANCELLED.value],
        success_rate=counts[ExecutionStatus.COMPLETED.value] / finished if finished else 0.0,
        average_duration_seconds=sum(durations) / len(durations) if durations else None,
        last_execution_at=last_execution_at,
        execution_count=workflow.execution_count or 0,
    )
