import threading
from collections import defaultdict
from typing import Any, Dict, List, Tuple

TagKey = Tuple[Tuple[str, str], ...]

TRIGGERS_FIRED = "automation.triggers.fired"
EXECUTIONS_SCHEDULED = "automation.executions.scheduled"
WORKFLOW_EXECUTIONS = "automation.workflow.executions"
EMAIL_SENT = "automation.email.sent"
SMS_SENT = "automation.sms.sent"
WEBHOOK_CALLS = "automation.webhook.calls"
ACTIONS_EXECUTED = "automation.actions.executed"
SCHEDULER_RUNS = "automation.scheduler.runs"
EXECUTIONS_STUCK = "automation.executions.stuck"
EXECUTIONS_CLEANED = "automation.executions.cleaned"
LOGS_DROPPED = "automation.logs.dropped"


def _tag_key(tags: Dict[str, Any]) -> TagKey:
    return tuple(sorted((str(k), str(v).lower() if isinstance(v, bool) else str(v)) for k, v in tags.items()))


class MetricsRegistry:
    """
    In-process counters keyed by name and tags.

    Counters are only ever incremented. Tag values are stringified, booleans
    as ``true``/``false``, so ``success=True`` and ``success="true"`` land on
    the same series.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, Dict[TagKey, float]] = defaultdict(lambda: defaultdict(float))

    def increment(self, name: str, amount: float = 1, **tags: Any) -> None:
        key = _tag_key(tags)
        with self._lock:
            self._counters[name][key] += amount

    def value(self, name: str, **tags: Any) -> float:
        """Sum of every series of ``name`` whose tags include ``tags``."""
        wanted = set(_tag_key(tags))
        with self._lock:
            series = self._counters.get(name, {})
            return sum(count for key, count in series.items() if wanted.issubset(key))

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        with self._lock:
            return {
                name: [{"tags": dict(key), "count": count} for key, count in series.items()]
                for name, series in self._counters.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
