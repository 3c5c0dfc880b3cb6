from typing import Dict, List, Any, Optional, Callable
import logging
import traceback
from dataclasses import dataclass, field

from automation.models.workflow import DeliveryMethod, LogLevel, WorkflowExecution
from automation.services import metrics as metric_names
from automation.services.actions import (
    ActionPlan,
    ActionSpec,
    DelayAction,
    DeliveryPlan,
    EmailAction,
    InvalidAction,
    ReviewRequestAction,
    SmsAction,
    UnknownAction,
    WebhookAction,
    resolve_plan,
)
from automation.services.delivery import EmailSender, SmsSender, WebhookCaller
from automation.services.log_sink import ExecutionLogSink
from automation.services.metrics import MetricsRegistry

# Set up logger for the execution engine
logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    name: str
    kind: str
    success: bool
    detail: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "kind": self.kind, "success": self.success, "detail": self.detail}


@dataclass
class ExecutionOutcome:
    success: bool
    mode: str
    actions: List[ActionResult] = field(default_factory=list)
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "mode": self.mode,
            "actions": [a.as_dict() for a in self.actions],
            "error": self.error,
        }


class ExecutionEngine:
    """
    Carries out one workflow execution.

    The workflow's plan is resolved once at the start of a run: either its
    delivery method (EMAIL, SMS or BOTH) or its action map. Each action is
    dispatched to a handler and judged on its own; an action that raises is
    a failed action, never a failed run. The run succeeds when at least one
    action succeeded.

    The engine does not touch the database. Log lines go to the log sink and
    the caller persists status and results.
    """

    def __init__(
        self,
        email_sender: EmailSender,
        sms_sender: SmsSender,
        webhook_caller: WebhookCaller,
        log_sink: Optional[ExecutionLogSink] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.webhook_caller = webhook_caller
        self.log_sink = log_sink
        self.metrics = metrics or MetricsRegistry()

    async def execute(self, execution: WorkflowExecution) -> bool:
        """Run an execution, returning True when at least one action succeeded."""
        outcome = await self.run(execution)
        return outcome.success

    async def run(self, execution: WorkflowExecution) -> ExecutionOutcome:
        workflow = execution.workflow
        customer = execution.customer

        try:
            self._log(execution, LogLevel.INFO, f"Starting workflow '{workflow.name}' for customer {customer.id}")
            plan = resolve_plan(workflow)

            if isinstance(plan, DeliveryPlan):
                success = await self._deliver(execution, plan.method, plan.email_template_type)
                outcome = ExecutionOutcome(
                    success=success,
                    mode="delivery_method",
                    actions=[ActionResult(name=plan.method.lower(), kind="delivery_method", success=success)],
                )
            else:
                outcome = await self._run_actions(execution, plan)

            status = "success" if outcome.success else "failure"
        except Exception as e:
            logger.exception(f"Error executing workflow for execution {execution.id}: {str(e)}")
            self._log(
                execution,
                LogLevel.ERROR,
                f"Workflow execution error: {str(e)}",
                details={"stack_trace": traceback.format_exc()},
            )
            outcome = ExecutionOutcome(success=False, mode="error", error=str(e))
            status = "error"

        self.metrics.increment(
            metric_names.WORKFLOW_EXECUTIONS, status=status, workflow_id=execution.workflow_id
        )
        return outcome

    async def _run_actions(self, execution: WorkflowExecution, plan: ActionPlan) -> ExecutionOutcome:
        if not plan.actions:
            self._log(execution, LogLevel.WARN, "No actions defined for workflow")
            return ExecutionOutcome(success=False, mode="actions", error="No actions defined")

        results: List[ActionResult] = []
        for step, action in enumerate(plan.actions, start=1):
            execution.current_step = step
            results.append(await self._run_action(execution, action, step))

        any_succeeded = any(r.success for r in results)
        if any_succeeded:
            self._log(execution, LogLevel.INFO, "Workflow execution completed successfully")
        else:
            self._log(execution, LogLevel.ERROR, "All workflow actions failed")

        return ExecutionOutcome(success=any_succeeded, mode="actions", actions=results)

    async def _run_action(self, execution: WorkflowExecution, action: ActionSpec, step: int) -> ActionResult:
        if not action.enabled:
            logger.debug(f"Action '{action.name}' is disabled, skipping")
            return ActionResult(name=action.name, kind=action.kind, success=True, detail="disabled")

        handler = self._get_action_handler(action)
        try:
            success = bool(await handler(execution, action, step))
            detail = None
        except Exception as e:
            logger.error(f"Failed to execute action '{action.name}' for execution {execution.id}: {str(e)}")
            self._log(execution, LogLevel.ERROR, f"Action '{action.name}' failed: {str(e)}", step_number=step)
            success = False
            detail = str(e)

        self.metrics.increment(metric_names.ACTIONS_EXECUTED, action=action.kind, success=success)
        return ActionResult(name=action.name, kind=action.kind, success=success, detail=detail)

    def _get_action_handler(self, action: ActionSpec) -> Callable:
        handlers = {
            EmailAction: self._handle_email_action,
            SmsAction: self._handle_sms_action,
            ReviewRequestAction: self._handle_review_request_action,
            DelayAction: self._handle_delay_action,
            WebhookAction: self._handle_webhook_action,
            UnknownAction: self._handle_unknown_action,
            InvalidAction: self._handle_invalid_action,
        }
        return handlers[type(action)]

    # --- Simple delivery method -------------------------------------------

    async def _deliver(self, execution: WorkflowExecution, method: str, email_template_type: Optional[str] = None) -> bool:
        if method == DeliveryMethod.EMAIL.value:
            return await self._send_email(execution, email_template_type)
        if method == DeliveryMethod.SMS.value:
            return await self._send_sms(execution)
        if method == DeliveryMethod.BOTH.value:
            if await self._send_email(execution, email_template_type):
                return True
            self._log(execution, LogLevel.WARN, "Email delivery failed, falling back to SMS")
            return await self._send_sms(execution)

        self._log(execution, LogLevel.WARN, f"Unknown delivery method: {method}")
        return False

    async def _send_email(self, execution: WorkflowExecution, template_type: Optional[str] = None) -> bool:
        customer = execution.customer
        try:
            if template_type:
                result = await self.email_sender.send_follow_up_email(customer, template_type.upper())
            else:
                result = await self.email_sender.send_review_request_with_template(customer)
        except Exception as e:
            self._log(execution, LogLevel.ERROR, f"Email delivery failed: {str(e)}")
            result = False

        self.metrics.increment(metric_names.EMAIL_SENT, success=bool(result), workflow_id=execution.workflow_id)
        return bool(result)

    async def _send_sms(self, execution: WorkflowExecution) -> bool:
        customer = execution.customer
        if not customer.can_receive_sms:
            self._log(execution, LogLevel.WARN, "Customer cannot receive SMS")
            return False

        try:
            result = await self.sms_sender.send_review_request_sms(customer)
            success = bool(result.success)
        except Exception as e:
            self._log(execution, LogLevel.ERROR, f"SMS delivery failed: {str(e)}")
            success = False

        self.metrics.increment(metric_names.SMS_SENT, success=success, workflow_id=execution.workflow_id)
        return success

    # --- Action handlers ----------------------------------------------------

    async def _handle_email_action(self, execution: WorkflowExecution, action: EmailAction, step: int) -> bool:
        customer = execution.customer
        if action.template_type:
            result = await self.email_sender.send_follow_up_email(customer, action.template_type.upper())
        elif action.template_name:
            result = await self.email_sender.send_template_by_name(customer, action.template_name)
        else:
            result = await self.email_sender.send_review_request_with_template(customer)

        self.metrics.increment(metric_names.EMAIL_SENT, success=bool(result), workflow_id=execution.workflow_id)
        return result

    async def _handle_sms_action(self, execution: WorkflowExecution, action: SmsAction, step: int) -> bool:
        customer = execution.customer
        eligibility = await self.sms_sender.get_eligibility(customer)
        if not eligibility.eligible:
            logger.info(f"Customer {customer.id} not eligible for SMS: {eligibility.reason}")
            self._log(
                execution, LogLevel.WARN, f"Customer not eligible for SMS: {eligibility.reason}", step_number=step
            )
            return False

        if action.message_type == "review_request":
            success = (await self.sms_sender.send_review_request_sms(customer)).success
        elif action.message_type == "follow_up":
            success = (await self.sms_sender.send_follow_up_sms(customer, action.follow_up_type)).success
        elif action.message_type == "thank_you":
            logger.info(f"Thank you SMS requested for customer {customer.id}, no template configured")
            return True
        else:
            logger.warning(f"Unknown SMS message type: {action.message_type}")
            return False

        self.metrics.increment(metric_names.SMS_SENT, success=bool(success), workflow_id=execution.workflow_id)
        return success

    async def _handle_review_request_action(
        self, execution: WorkflowExecution, action: ReviewRequestAction, step: int
    ) -> bool:
        return await self._deliver(execution, action.delivery_method.value)

    async def _handle_delay_action(self, execution: WorkflowExecution, action: DelayAction, step: int) -> bool:
        # Delays are applied when the execution is scheduled
        logger.debug(f"Delay action processed for customer {execution.customer_id}")
        return True

    async def _handle_webhook_action(self, execution: WorkflowExecution, action: WebhookAction, step: int) -> bool:
        payload = self.build_webhook_payload(execution, action.payload)

        try:
            result = await self.webhook_caller.call(
                action.webhook_url, method=action.method, headers=action.headers, payload=payload
            )
            success, error = result.success, result.error
            details = {"status_code": result.status_code, "attempts": result.attempts}
        except Exception as e:
            success, error, details = False, str(e), None

        self.metrics.increment(metric_names.WEBHOOK_CALLS, success=success, method=action.method)

        if success:
            logger.info(f"Successfully called webhook {action.method} {action.webhook_url} for customer {execution.customer_id}")
            self._log(
                execution,
                LogLevel.INFO,
                f"Webhook call successful: {action.method} {action.webhook_url}",
                step_number=step,
                details=details,
            )
        else:
            logger.error(f"Webhook call failed: {action.method} {action.webhook_url} - {error}")
            self._log(execution, LogLevel.ERROR, f"Webhook call failed: {error}", step_number=step, details=details)
        return success

    async def _handle_unknown_action(self, execution: WorkflowExecution, action: UnknownAction, step: int) -> bool:
        logger.warning(f"Unknown action type: {action.action_type}")
        self._log(execution, LogLevel.WARN, f"Unknown action type: {action.action_type}", step_number=step)
        return False

    async def _handle_invalid_action(self, execution: WorkflowExecution, action: InvalidAction, step: int) -> bool:
        logger.warning(f"Invalid action config for action '{action.name}': {action.error}")
        self._log(execution, LogLevel.WARN, f"Invalid action config: {action.error}", step_number=step)
        return False

    @staticmethod
    def build_webhook_payload(execution: WorkflowExecution, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Outbound webhook body, with any configured payload fields merged on top."""
        customer = execution.customer
        business = execution.business or customer.business
        created_at = execution.created_at

        payload = {
            "event": execution.trigger_event,
            "timestamp": created_at.isoformat() if created_at else None,
            "execution_id": execution.id,
            "workflow_id": execution.workflow_id,
            "customer": {
                "id": customer.id,
                "name": customer.name,
                "email": customer.email or "",
            },
            "business": {
                "id": business.id if business else None,
                "name": business.name if business else None,
            },
            "trigger_data": execution.trigger_data or {},
        }
        if extra:
            payload.update(extra)
        return payload

    def _log(
        self,
        execution: WorkflowExecution,
        level: LogLevel,
        message: str,
        step_number: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        log_method = getattr(logger, "warning" if level == LogLevel.WARN else level.value.lower(), logger.info)
        log_method(f"[Execution {execution.id}] {message}")

        if self.log_sink is None:
            return
        try:
            self.log_sink.log(
                execution.id,
                execution.workflow_id,
                level,
                message,
                step_number=step_number if step_number is not None else execution.current_step,
                details=details,
            )
        except Exception as e:
            logger.error(f"Error queueing execution log entry: {str(e)}")
