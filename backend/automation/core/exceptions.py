from typing import List, Optional


class AutomationError(Exception):
    """Base class for errors raised by the automation engine."""


class NotFoundError(AutomationError):
    """A workflow, customer, business, template or execution is missing or
    not owned by the calling organization."""

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        message = f"{resource} not found" if resource_id is None else f"{resource} {resource_id} not found"
        super().__init__(message)


class ConfigurationError(AutomationError):
    """Workflow trigger config, actions or conditions failed validation."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or []
        super().__init__(message)


class InvalidStateError(AutomationError):
    """The requested transition is not allowed from the current state."""
