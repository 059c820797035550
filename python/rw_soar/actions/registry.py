"""Registry of named, pluggable playbook actions."""

from __future__ import annotations

import threading
from typing import Any

import structlog
from pydantic import BaseModel

from rw_soar.actions.base import (
    Action,
    ActionContext,
    ActionFunction,
    ActionResult,
    ActionSchema,
    BaseAction,
    FunctionAction,
    coerce_result,
)
from rw_soar.errors import (
    ActionExecutionError,
    ActionPermissionDenied,
    InvalidParameters,
    UnknownAction,
)

logger = structlog.get_logger()


class ActionRegistry:
    """Registry of actions available to playbook steps.

    Registration replaces the internal mapping under a lock (copy-on-write),
    so lookups during dispatch never observe a half-updated map.
    """

    def __init__(self) -> None:
        self._actions: dict[str, Action] = {}
        self._lock = threading.Lock()

    def register(self, action: Action, *, name: str | None = None, replace: bool = False) -> None:
        """Register an action.

        Raises:
            ValueError: If the name is empty or already registered and
                ``replace`` is False.
        """
        action_name = name or getattr(action, "name", "")
        if not action_name:
            raise ValueError("Action name cannot be empty")

        with self._lock:
            if action_name in self._actions and not replace:
                raise ValueError(f"Action with name '{action_name}' is already registered")
            actions = dict(self._actions)
            actions[action_name] = action
            self._actions = actions

        logger.debug("action_registered", name=action_name)

    def register_function(
        self,
        name: str,
        fn: ActionFunction,
        *,
        parameters_model: type[BaseModel] | None = None,
        description: str = "",
        category: str = "utility",
        replace: bool = False,
    ) -> FunctionAction:
        """Register a coroutine function ``fn(params, context)`` as an action."""
        action = FunctionAction(
            name,
            fn,
            parameters_model=parameters_model,
            description=description,
            category=category,
        )
        self.register(action, replace=replace)
        return action

    def unregister(self, name: str) -> None:
        """Remove an action; unknown names are ignored."""
        with self._lock:
            if name not in self._actions:
                return
            actions = dict(self._actions)
            del actions[name]
            self._actions = actions

    def get(self, name: str) -> Action | None:
        """Get an action by name."""
        return self._actions.get(name)

    def has(self, name: str) -> bool:
        return name in self._actions

    def list_actions(self) -> list[str]:
        """List all registered action names."""
        return list(self._actions.keys())

    def get_actions_by_category(self, category: str) -> list[Action]:
        return [a for a in self._actions.values() if getattr(a, "category", None) == category]

    def get_schema(self, name: str) -> ActionSchema:
        """Describe an action for UI generation.

        Raises:
            UnknownAction: If the action is not registered.
        """
        action = self._actions.get(name)
        if action is None:
            raise UnknownAction(name)
        return _describe(name, action)

    def get_all_schemas(self) -> list[ActionSchema]:
        return [_describe(name, action) for name, action in self._actions.items()]

    def copy(self) -> ActionRegistry:
        """Create an independent registry with the same actions."""
        clone = ActionRegistry()
        clone._actions = dict(self._actions)
        return clone

    async def execute(
        self,
        name: str,
        params: dict[str, Any],
        context: ActionContext,
    ) -> ActionResult:
        """Execute an action by name.

        Parameters are validated before the action body runs, so a
        validation failure has no side effects.

        Raises:
            UnknownAction: If the action is not registered.
            ActionPermissionDenied: If the action refuses the context.
            InvalidParameters: If parameters fail the action's schema.
            ActionExecutionError: If the action body raises.
        """
        action = self._actions.get(name)
        if action is None:
            raise UnknownAction(name)

        check_permissions = getattr(action, "check_permissions", None)
        if check_permissions is not None:
            try:
                allowed = await check_permissions(context)
            except Exception as e:
                raise ActionExecutionError(name, f"Permission check failed: {e}") from e
            if not allowed:
                raise ActionPermissionDenied(name)

        validate = getattr(action, "validate_parameters", None)
        if validate is not None:
            try:
                validated = validate(params)
            except InvalidParameters:
                raise
            except Exception as e:
                raise InvalidParameters(name, str(e)) from e
        else:
            validated = dict(params)

        logger.debug(
            "action_execute",
            name=name,
            execution_id=context.execution_id,
            step_id=context.step_id,
            attempt=context.attempt,
        )

        try:
            outcome = await action.execute(validated, context)
            return coerce_result(outcome)
        except Exception as e:
            raise ActionExecutionError(name, str(e) or type(e).__name__) from e


def _describe(name: str, action: Action) -> ActionSchema:
    if isinstance(action, BaseAction):
        parameters = action.parameters_schema()
    else:
        parameters = {"type": "object"}
    return ActionSchema(
        name=name,
        description=getattr(action, "description", ""),
        category=getattr(action, "category", "utility"),
        parameters=parameters,
    )
