"""
Condition evaluation for workflow eligibility.

Conditions arrive as a free-form map on the workflow. They are parsed into a
closed set of typed variants, one per recognized key, so evaluation never
has to guess at value types. Unrecognized keys become ``UnknownCondition``
and always pass; values that fail validation become ``MalformedCondition``
and never pass.

Everything here is side-effect free. Anything that needs the database
(the customer's most recent review request) is loaded by the caller and
handed in through ``EvaluationContext``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

import pytz
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from automation.core.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class EvaluationContext:
    """Inputs to condition evaluation that are not on the customer record."""

    now: datetime
    timezone: str = "UTC"
    last_request_at: Optional[datetime] = None

    @classmethod
    def current(cls, timezone: str = "UTC", last_request_at: Optional[datetime] = None) -> "EvaluationContext":
        return cls(now=utcnow(), timezone=timezone, last_request_at=last_request_at)

    def local_hour(self) -> int:
        local = pytz.utc.localize(self.now).astimezone(pytz.timezone(self.timezone))
        return local.hour


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    def evaluate(self, customer: Any, event_data: Mapping[str, Any], context: EvaluationContext) -> bool:
        raise NotImplementedError("Subclasses must implement evaluate")


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class HasEmailCondition(_Condition):
    kind: Literal["has_email"] = "has_email"
    value: bool

    def evaluate(self, customer, event_data, context):
        return not self.value or not _blank(customer.email)


class HasPhoneCondition(_Condition):
    kind: Literal["has_phone"] = "has_phone"
    value: bool

    def evaluate(self, customer, event_data, context):
        return not self.value or not _blank(customer.phone)


class ServiceTypesCondition(_Condition):
    kind: Literal["service_types"] = "service_types"
    value: List[str]

    def evaluate(self, customer, event_data, context):
        if not self.value:
            return True
        return customer.service_type in self.value


class IndustriesCondition(_Condition):
    kind: Literal["industries"] = "industries"
    value: List[str]

    def evaluate(self, customer, event_data, context):
        if not self.value:
            return True
        business = getattr(customer, "business", None)
        industry = business.industry if business is not None else None
        return industry in self.value


class HourWindow(BaseModel):
    start: int = Field(..., ge=0, le=23)
    end: int = Field(..., ge=0, le=23)


class ExecutionHoursCondition(_Condition):
    kind: Literal["execution_hours"] = "execution_hours"
    value: HourWindow

    def evaluate(self, customer, event_data, context):
        hour = context.local_hour()
        start, end = self.value.start, self.value.end
        if start <= end:
            return start <= hour <= end
        # Window wraps midnight, e.g. 22 -> 6
        return hour >= start or hour <= end


class MinDaysSinceCreatedCondition(_Condition):
    kind: Literal["min_days_since_created"] = "min_days_since_created"
    value: int = Field(..., ge=0)

    def evaluate(self, customer, event_data, context):
        if customer.created_at is None:
            return False
        return (context.now - customer.created_at).days >= self.value


class NoRecentRequestsCondition(_Condition):
    kind: Literal["no_recent_requests"] = "no_recent_requests"
    value: int = Field(..., ge=0)

    def evaluate(self, customer, event_data, context):
        if context.last_request_at is None:
            return True
        return context.last_request_at < context.now - timedelta(days=self.value)


class EventPropertiesCondition(_Condition):
    kind: Literal["event_properties"] = "event_properties"
    value: Dict[str, Any]

    def evaluate(self, customer, event_data, context):
        event_data = event_data or {}
        return all(key in event_data and event_data[key] == expected for key, expected in self.value.items())


class UnknownCondition(_Condition):
    kind: Literal["unknown"] = "unknown"
    key: str
    value: Any = None

    def evaluate(self, customer, event_data, context):
        return True


class MalformedCondition(_Condition):
    kind: Literal["malformed"] = "malformed"
    key: str
    error: str

    def evaluate(self, customer, event_data, context):
        return False


Condition = Union[
    HasEmailCondition,
    HasPhoneCondition,
    ServiceTypesCondition,
    IndustriesCondition,
    ExecutionHoursCondition,
    MinDaysSinceCreatedCondition,
    NoRecentRequestsCondition,
    EventPropertiesCondition,
    UnknownCondition,
    MalformedCondition,
]

CONDITION_TYPES = {
    "has_email": HasEmailCondition,
    "has_phone": HasPhoneCondition,
    "service_types": ServiceTypesCondition,
    "industries": IndustriesCondition,
    "execution_hours": ExecutionHoursCondition,
    "min_days_since_created": MinDaysSinceCreatedCondition,
    "no_recent_requests": NoRecentRequestsCondition,
    "event_properties": EventPropertiesCondition,
}


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(error.get("msg", "") for error in exc.errors())


def parse_conditions(conditions: Optional[Mapping[str, Any]]) -> List[Condition]:
    """Turn a raw condition map into typed condition variants."""
    if not conditions:
        return []

    if not isinstance(conditions, Mapping):
        return [MalformedCondition(key="conditions", error="conditions must be a map")]

    parsed: List[Condition] = []
    for key, raw_value in conditions.items():
        condition_type = CONDITION_TYPES.get(key)
        if condition_type is None:
            parsed.append(UnknownCondition(key=key, value=raw_value))
            continue
        try:
            parsed.append(condition_type(value=raw_value))
        except ValidationError as e:
            parsed.append(MalformedCondition(key=key, error=_validation_message(e)))
    return parsed


def condition_problems(conditions: Optional[Mapping[str, Any]]) -> List[str]:
    """Validation problems in a raw condition map, empty when it is usable."""
    return [
        f"conditions.{condition.key}: {condition.error}"
        for condition in parse_conditions(conditions)
        if isinstance(condition, MalformedCondition)
    ]


def requires_request_history(conditions: Optional[Mapping[str, Any]]) -> bool:
    return any(isinstance(c, NoRecentRequestsCondition) for c in parse_conditions(conditions))


def eligible(
    source: Any,
    customer: Any,
    event_data: Optional[Mapping[str, Any]] = None,
    context: Optional[EvaluationContext] = None,
) -> bool:
    """
    Decide whether ``customer`` is eligible for a workflow.

    Args:
        source: A workflow (anything with a ``conditions`` attribute) or a raw
            condition map
        customer: Customer record being evaluated
        event_data: Payload captured at trigger time
        context: Clock, timezone and request history; defaults to now in UTC

    Returns:
        True when every recognized condition passes. An absent or empty
        condition map is always eligible.
    """
    conditions = getattr(source, "conditions", source)
    parsed = parse_conditions(conditions)
    if not parsed:
        return True

    context = context or EvaluationContext.current()
    source_id = getattr(source, "id", None)

    for condition in parsed:
        if isinstance(condition, UnknownCondition):
            logger.debug(f"Ignoring unknown condition '{condition.key}' on workflow {source_id}")
            continue
        if isinstance(condition, MalformedCondition):
            logger.warning(
                f"Malformed condition '{condition.key}' on workflow {source_id}: {condition.error}"
            )
            return False
        if not condition.evaluate(customer, event_data or {}, context):
            logger.debug(
                f"Workflow {source_id} skipped - customer {getattr(customer, 'id', None)} "
                f"failed condition '{condition.kind}'"
            )
            return False

    return True


def matches_webhook_key(trigger_config: Optional[Mapping[str, Any]], webhook_key: str) -> bool:
    """A workflow declares either one webhook key or a list of them."""
    if not trigger_config:
        return False

    declared = trigger_config.get("webhook_keys")
    if isinstance(declared, str):
        return declared == webhook_key
    if isinstance(declared, (list, tuple, set)):
        return webhook_key in declared
    return False
