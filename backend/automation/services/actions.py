"""
Typed workflow configuration.

A workflow stores its trigger configuration and action map as JSON. This
module turns those maps into validated pydantic models once, at the edges
(API writes, execution start), so the engine works with a closed set of
variants instead of probing dictionaries.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from automation.core.exceptions import ConfigurationError
from automation.models.workflow import DeliveryMethod, TriggerType
from automation.services.conditions import condition_problems

logger = logging.getLogger(__name__)


# --- Trigger configuration -------------------------------------------------

class TriggerConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    delay_days: Optional[int] = Field(default=None, ge=0)
    delay_hours: Optional[int] = Field(default=None, ge=0)
    delay_minutes: Optional[int] = Field(default=None, ge=0)
    business_hours_only: bool = False
    webhook_keys: Optional[Union[str, List[str]]] = None

    @property
    def has_delay(self) -> bool:
        return any(v is not None for v in (self.delay_days, self.delay_hours, self.delay_minutes))

    def delay(self) -> Optional[timedelta]:
        """Cumulative delay, or None when no delay field is present."""
        if not self.has_delay:
            return None
        return timedelta(
            days=self.delay_days or 0,
            hours=self.delay_hours or 0,
            minutes=self.delay_minutes or 0,
        )


def _problems(prefix: str, exc: ValidationError) -> List[str]:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        label = f"{prefix}.{location}" if location else prefix
        problems.append(f"{label}: {error.get('msg')}")
    return problems


def trigger_config_problems(trigger_config: Optional[Mapping[str, Any]]) -> List[str]:
    if trigger_config is None:
        return []
    if not isinstance(trigger_config, Mapping):
        return ["trigger_config: must be a map"]
    try:
        TriggerConfig.model_validate(dict(trigger_config))
    except ValidationError as e:
        return _problems("trigger_config", e)
    return []


def parse_trigger_config(trigger_config: Optional[Mapping[str, Any]]) -> TriggerConfig:
    """Validate a raw trigger configuration, raising ConfigurationError when it is unusable."""
    problems = trigger_config_problems(trigger_config)
    if problems:
        raise ConfigurationError("Invalid trigger configuration", problems)
    return TriggerConfig.model_validate(dict(trigger_config or {}))


# --- Actions ---------------------------------------------------------------

class _Action(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    name: str
    enabled: bool = True


class EmailAction(_Action):
    kind: Literal["email"] = "email"
    template_type: Optional[str] = None
    template_name: Optional[str] = None


class SmsAction(_Action):
    kind: Literal["sms"] = "sms"
    message_type: str = "review_request"
    follow_up_type: str = "general"


class ReviewRequestAction(_Action):
    kind: Literal["review_request"] = "review_request"
    delivery_method: DeliveryMethod = DeliveryMethod.EMAIL

    @field_validator("delivery_method", mode="before")
    @classmethod
    def upper_delivery_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class DelayAction(_Action):
    kind: Literal["delay"] = "delay"


class WebhookAction(_Action):
    kind: Literal["webhook"] = "webhook"
    webhook_url: str = Field(..., min_length=1)
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.upper()


class UnknownAction(_Action):
    kind: Literal["unknown"] = "unknown"
    action_type: str


class InvalidAction(_Action):
    kind: Literal["invalid"] = "invalid"
    error: str


ActionSpec = Union[
    EmailAction,
    SmsAction,
    ReviewRequestAction,
    DelayAction,
    WebhookAction,
    UnknownAction,
    InvalidAction,
]

ACTION_TYPES = {
    "email": EmailAction,
    "send_email": EmailAction,
    "sms": SmsAction,
    "send_sms": SmsAction,
    "review_request": ReviewRequestAction,
    "send_review_request": ReviewRequestAction,
    "delay": DelayAction,
    "webhook": WebhookAction,
}


def parse_action(name: str, config: Any) -> ActionSpec:
    """Parse one entry of an action map."""
    if not isinstance(config, Mapping):
        return InvalidAction(name=name, error="action config must be a map")

    # Only an explicit false disables an action
    enabled = config.get("enabled") is not False
    action_type = str(config.get("type") or name).lower()
    action_cls = ACTION_TYPES.get(action_type)

    if action_cls is None:
        return UnknownAction(name=name, enabled=enabled, action_type=action_type)

    data = {k: v for k, v in config.items() if k not in ("type", "name", "kind")}
    data["name"] = name
    data["enabled"] = enabled
    try:
        return action_cls.model_validate(data)
    except ValidationError as e:
        return InvalidAction(name=name, enabled=enabled, error="; ".join(_problems(name, e)))


def parse_actions(actions: Optional[Mapping[str, Any]]) -> List[ActionSpec]:
    if not actions:
        return []
    if not isinstance(actions, Mapping):
        return [InvalidAction(name="actions", error="actions must be a map")]
    return [parse_action(name, config) for name, config in actions.items()]


def action_problems(actions: Optional[Mapping[str, Any]]) -> List[str]:
    return [
        f"actions.{action.name}: {action.error}"
        for action in parse_actions(actions)
        if isinstance(action, InvalidAction) and action.enabled
    ]


# --- Execution plan --------------------------------------------------------

@dataclass
class DeliveryPlan:
    """Single-channel shortcut: the workflow's delivery method drives the run."""

    method: str
    email_template_type: Optional[str] = None


@dataclass
class ActionPlan:
    """The workflow's action map drives the run."""

    actions: List[ActionSpec] = field(default_factory=list)


ExecutionPlan = Union[DeliveryPlan, ActionPlan]


def resolve_plan(workflow: Any) -> ExecutionPlan:
    """Pick the delivery method when one is set, the action map otherwise."""
    if workflow.delivery_method:
        return DeliveryPlan(
            method=str(workflow.delivery_method).upper(),
            email_template_type=getattr(workflow, "email_template_type", None),
        )
    return ActionPlan(actions=parse_actions(workflow.actions))


def describe_plan(plan: ExecutionPlan) -> Dict[str, Any]:
    if isinstance(plan, DeliveryPlan):
        return {"mode": "delivery_method", "delivery_method": plan.method}
    return {
        "mode": "actions",
        "actions": [
            {"name": action.name, "kind": action.kind, "enabled": action.enabled}
            for action in plan.actions
        ],
    }


# --- Boundary validation ---------------------------------------------------

def validate_workflow_config(
    trigger_type: Optional[str],
    trigger_config: Optional[Mapping[str, Any]],
    actions: Optional[Mapping[str, Any]],
    conditions: Optional[Mapping[str, Any]],
    delivery_method: Optional[str] = None,
) -> None:
    """
    Validate everything a workflow carries before it is stored.

    Raises:
        ConfigurationError: listing every problem found, not just the first
    """
    problems: List[str] = []

    if trigger_type is not None and trigger_type not in TriggerType.__members__:
        problems.append(f"trigger_type: unsupported value '{trigger_type}'")

    problems.extend(trigger_config_problems(trigger_config))

    if (
        trigger_type == TriggerType.WEBHOOK.value
        and not (trigger_config or {}).get("webhook_keys")
    ):
        problems.append("trigger_config.webhook_keys: required for WEBHOOK workflows")

    if delivery_method is not None and str(delivery_method).upper() not in DeliveryMethod.__members__:
        problems.append(f"delivery_method: unsupported value '{delivery_method}'")

    if not delivery_method and not actions:
        problems.append("actions: a workflow needs a delivery method or at least one action")

    problems.extend(action_problems(actions))
    problems.extend(condition_problems(conditions))

    if problems:
        logger.warning(f"Rejected workflow configuration: {problems}")
        raise ConfigurationError("Invalid workflow configuration", problems)
