"""
Trigger dispatcher: turns lifecycle events into scheduled executions.

For every event the dispatcher loads the organization's active workflows for
that trigger type, gates each through the condition evaluator and asks the
scheduler for an execution. Each workflow is scheduled inside its own
savepoint so one bad workflow cannot undo or block the others.

The dispatcher is the only writer of the customer's automation guard
(``automation_triggered``). CUSTOMER_CREATED and SERVICE_COMPLETED share
that guard, so a customer fires at most one of the two.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from automation.core.clock import utcnow
from automation.core.exceptions import NotFoundError
from automation.models import Customer, ReviewRequest, TriggerType, Workflow
from automation.schemas.trigger import TriggerFailure, TriggerResult
from automation.services import metrics as metric_names
from automation.services.conditions import (
    EvaluationContext,
    eligible,
    matches_webhook_key,
    requires_request_history,
)
from automation.services.metrics import MetricsRegistry
from automation.services.scheduler import WorkflowScheduler

logger = logging.getLogger(__name__)


def is_ready_for_automation(customer: Customer) -> bool:
    """A customer is ready once flagged, named, reachable and not yet triggered."""
    return bool(
        customer.ready_for_automation
        and customer.name
        and customer.name.strip()
        and customer.has_contact_details
        and not customer.automation_triggered
    )


def base_trigger_data(customer: Customer) -> Dict[str, Any]:
    return {
        "customer_name": customer.name,
        "customer_email": customer.email or "",
        "service_type": customer.service_type or "",
        "business_id": customer.business_id,
    }


class TriggerDispatcher:
    def __init__(
        self,
        scheduler: WorkflowScheduler,
        metrics: Optional[MetricsRegistry] = None,
        timezone: str = "UTC",
    ):
        self.scheduler = scheduler
        self.metrics = metrics or MetricsRegistry()
        self.timezone = timezone

    async def on_customer_created(self, db: AsyncSession, organization_id: str, customer_id: str) -> TriggerResult:
        """
        Fire CUSTOMER_CREATED workflows for a newly created customer.

        Nothing is scheduled when the customer is not ready for automation or
        the guard is already set. Otherwise the guard is set once every
        matching workflow has been attempted, however many of them failed.

        Raises:
            NotFoundError: if the customer does not exist for the organization
        """
        trigger_type = TriggerType.CUSTOMER_CREATED.value
        customer = await self._get_customer(db, organization_id, customer_id, lock=True)
        logger.info(f"Processing automation triggers for new customer: {customer.name} (ID: {customer.id})")

        if customer.automation_triggered:
            return self._skip(trigger_type, customer, "Automation already triggered for customer")
        if not is_ready_for_automation(customer):
            return self._skip(trigger_type, customer, "Customer is not ready for automation")

        trigger_data = base_trigger_data(customer)
        trigger_data["created_by"] = "customer_service"

        return await self._dispatch(db, trigger_type, trigger_type, customer, trigger_data, set_guard=True)

    async def on_service_completed(
        self,
        db: AsyncSession,
        organization_id: str,
        customer_id: str,
        service_type: Optional[str] = None,
    ) -> TriggerResult:
        """
        Record a completed service and fire SERVICE_COMPLETED workflows.

        The completion date is always recorded. Workflows only fire when the
        automation guard has not been set by an earlier trigger.

        Raises:
            NotFoundError: if the customer does not exist for the organization
        """
        trigger_type = TriggerType.SERVICE_COMPLETED.value
        customer = await self._get_customer(db, organization_id, customer_id, lock=True)
        logger.info(
            f"Processing automation triggers for service completion: customer {customer.name} "
            f"(service: {service_type or customer.service_type})"
        )

        now = utcnow()
        customer.service_completed_date = now
        customer.ready_for_automation = True
        customer.status = "COMPLETED"
        if service_type:
            customer.service_type = service_type

        if customer.automation_triggered:
            await db.commit()
            return self._skip(trigger_type, customer, "Automation already triggered for customer")
        if not is_ready_for_automation(customer):
            await db.commit()
            return self._skip(trigger_type, customer, "Customer is not ready for automation")

        trigger_data = base_trigger_data(customer)
        trigger_data["completion_date"] = now.isoformat()
        trigger_data["triggered_by"] = "service_completion"

        return await self._dispatch(db, trigger_type, trigger_type, customer, trigger_data, set_guard=True)

    async def on_review_request_completed(
        self, db: AsyncSession, organization_id: str, review_request_id: str
    ) -> TriggerResult:
        """
        Fire REVIEW_COMPLETED workflows. Not guarded; fires on every completion.

        Raises:
            NotFoundError: if the review request does not exist for the organization
        """
        trigger_type = TriggerType.REVIEW_COMPLETED.value
        result = await db.execute(
            select(ReviewRequest)
            .join(Customer, ReviewRequest.customer_id == Customer.id)
            .where(ReviewRequest.id == review_request_id, Customer.organization_id == organization_id)
        )
        review_request = result.scalars().first()
        if review_request is None:
            raise NotFoundError("ReviewRequest", review_request_id)

        customer = review_request.customer
        logger.info(
            f"Processing automation triggers for completed review: customer {customer.name} "
            f"(request: {review_request.id})"
        )

        now = utcnow()
        if review_request.completed_at is None:
            review_request.completed_at = now
        review_request.status = "COMPLETED"

        trigger_data = base_trigger_data(customer)
        trigger_data.update({
            "review_request_id": review_request.id,
            "delivery_method": review_request.delivery_method,
            "completion_date": review_request.completed_at.isoformat(),
            "triggered_by": "review_completion",
        })

        return await self._dispatch(db, trigger_type, trigger_type, customer, trigger_data)

    async def on_webhook_received(
        self,
        db: AsyncSession,
        organization_id: str,
        webhook_key: str,
        customer_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> TriggerResult:
        """
        Fire WEBHOOK workflows that declare ``webhook_key``.

        Raises:
            NotFoundError: if the customer does not exist for the organization
        """
        trigger_type = TriggerType.WEBHOOK.value
        customer = await self._get_customer(db, organization_id, customer_id)
        logger.info(f"Processing webhook automation trigger: {webhook_key} for customer {customer.id}")

        trigger_data = dict(payload or {})
        trigger_data.update(base_trigger_data(customer))
        trigger_data.update({
            "webhook_key": webhook_key,
            "triggered_by": "webhook",
        })

        return await self._dispatch(
            db,
            trigger_type,
            f"WEBHOOK_{webhook_key}",
            customer,
            trigger_data,
            workflow_filter=lambda workflow: matches_webhook_key(workflow.trigger_config, webhook_key),
        )

    async def _dispatch(
        self,
        db: AsyncSession,
        trigger_type: str,
        trigger_event: str,
        customer: Customer,
        trigger_data: Dict[str, Any],
        set_guard: bool = False,
        workflow_filter=None,
    ) -> TriggerResult:
        customer_id = customer.id
        result = TriggerResult(success=True, trigger_type=trigger_type, customer_id=customer_id)

        try:
            workflows = await self._get_candidate_workflows(db, customer, trigger_type)
            if workflow_filter is not None:
                workflows = [w for w in workflows if workflow_filter(w)]
            result.candidates = len(workflows)

            context = await self._evaluation_context(db, customer, workflows)
            due_now = False

            for workflow in workflows:
                workflow_id, workflow_name = workflow.id, workflow.name
                try:
                    if not eligible(workflow, customer, trigger_data, context):
                        result.skipped.append(workflow_id)
                        continue

                    async with db.begin_nested():
                        execution = await self.scheduler.schedule_from_trigger_config(
                            db, workflow, customer, trigger_event, dict(trigger_data)
                        )
                    result.scheduled.append(execution.id)
                    due_now = due_now or execution.scheduled_for is None
                    self._record_trigger(trigger_type, workflow_id, True)
                    logger.info(f"Triggered workflow '{workflow_name}' for customer {customer_id}")
                except Exception as e:
                    logger.error(f"Failed to trigger workflow {workflow_id} for customer {customer_id}: {str(e)}")
                    result.failed.append(TriggerFailure(workflow_id=workflow_id, error=str(e)))
                    self._record_trigger(trigger_type, workflow_id, False)

            if set_guard:
                customer.automation_triggered = True
                customer.automation_triggered_at = utcnow()

            await db.commit()
        except Exception as e:
            logger.exception(f"Error processing {trigger_type} triggers for customer {customer_id}: {str(e)}")
            await db.rollback()
            return TriggerResult(
                success=False,
                trigger_type=trigger_type,
                customer_id=customer_id,
                reason=f"Trigger processing failed: {str(e)}",
            )

        if due_now:
            self.scheduler.wake()

        result.reason = (
            f"Scheduled {len(result.scheduled)} of {result.candidates} workflows"
            + (f", {len(result.failed)} failed" if result.failed else "")
        )
        return result

    async def _get_customer(
        self, db: AsyncSession, organization_id: str, customer_id: str, lock: bool = False
    ) -> Customer:
        query = select(Customer).where(Customer.id == customer_id, Customer.organization_id == organization_id)
        if lock:
            query = query.with_for_update(of=Customer)
        customer = (await db.execute(query)).scalars().first()
        if customer is None:
            raise NotFoundError("Customer", customer_id)
        return customer

    async def _get_candidate_workflows(self, db: AsyncSession, customer: Customer, trigger_type: str) -> List[Workflow]:
        result = await db.execute(
            select(Workflow)
            .where(
                Workflow.organization_id == customer.organization_id,
                Workflow.trigger_type == trigger_type,
                Workflow.is_active.is_(True),
                or_(Workflow.business_id.is_(None), Workflow.business_id == customer.business_id),
            )
            .order_by(Workflow.created_at.desc())
        )
        return list(result.scalars().all())

    async def _evaluation_context(
        self, db: AsyncSession, customer: Customer, workflows: List[Workflow]
    ) -> EvaluationContext:
        last_request_at = None
        if any(requires_request_history(w.conditions) for w in workflows):
            last_request_at = await db.scalar(
                select(func.max(ReviewRequest.created_at)).where(ReviewRequest.customer_id == customer.id)
            )
        return EvaluationContext.current(timezone=self.timezone, last_request_at=last_request_at)

    def _skip(self, trigger_type: str, customer: Customer, reason: str) -> TriggerResult:
        logger.info(f"Skipping {trigger_type} triggers for customer {customer.id}: {reason}")
        return TriggerResult(success=True, trigger_type=trigger_type, customer_id=customer.id, reason=reason)

    def _record_trigger(self, trigger_type: str, workflow_id: str, success: bool):
        self.metrics.increment(
            metric_names.TRIGGERS_FIRED, trigger_type=trigger_type, workflow_id=workflow_id, success=success
        )
