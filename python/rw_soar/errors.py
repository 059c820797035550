"""Error kinds raised inside the playbook engine.

Per-step errors are caught at the executor boundary and turned into
``StepState`` transitions; they never escape ``PlaybookExecutor.execute``.
"""

from __future__ import annotations

from typing import Any


class PlaybookEngineError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownAction(PlaybookEngineError):
    """A step references an action name that is not registered."""

    def __init__(self, action_name: str):
        super().__init__(f"Action '{action_name}' not found")
        self.action_name = action_name


class InvalidParameters(PlaybookEngineError):
    """Action parameters failed the action's declared schema."""

    def __init__(
        self,
        action_name: str,
        message: str,
        errors: list[dict[str, Any]] | None = None,
    ):
        super().__init__(f"Invalid parameters for action '{action_name}': {message}")
        self.action_name = action_name
        self.errors = errors or []


class ActionPermissionDenied(PlaybookEngineError):
    """The action refused to run in the given context."""

    def __init__(self, action_name: str):
        super().__init__(f"Insufficient permissions to execute action '{action_name}'")
        self.action_name = action_name


class ActionExecutionError(PlaybookEngineError):
    """The action body raised or reported failure. Retried per step policy."""

    def __init__(self, action_name: str, message: str):
        super().__init__(message)
        self.action_name = action_name


class StepTimeoutError(ActionExecutionError):
    """The action did not finish within the step's timeout window."""

    reason = "timeout"

    def __init__(self, action_name: str, timeout_ms: int):
        super().__init__(action_name, self.reason)
        self.timeout_ms = timeout_ms


class ConditionEvaluationError(PlaybookEngineError):
    """A condition expression could not be parsed or evaluated."""

    def __init__(self, expression: str, message: str):
        super().__init__(f"Cannot evaluate condition {expression!r}: {message}")
        self.expression = expression


class RollbackFailure(PlaybookEngineError):
    """A rollback step failed and there was no checkpoint to restore."""

    def __init__(self, step_id: str, message: str = "no checkpoint available"):
        super().__init__(f"rollback_failed: {message} (step '{step_id}')")
        self.step_id = step_id


class InvalidStateTransition(PlaybookEngineError):
    """A step state was asked to move backwards or sideways."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid step transition: {current} -> {target}")
        self.current = current
        self.target = target


class ExecutionNotFound(PlaybookEngineError):
    """No execution record exists for the given id."""

    def __init__(self, execution_id: str):
        super().__init__(f"Execution not found: {execution_id}")
        self.execution_id = execution_id


class PlaybookValidationError(PlaybookEngineError):
    """Raised when a playbook definition cannot be loaded."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class PlaybookNotFound(PlaybookEngineError):
    """No playbook definition exists for the given id."""

    def __init__(self, playbook_id: str):
        super().__init__(f"Playbook not found: {playbook_id}")
        self.playbook_id = playbook_id
