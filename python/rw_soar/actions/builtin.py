"""Core actions shipped with the engine.

These touch nothing outside the execution: they log, wait, or publish
values for later steps. Integrations with external systems are registered
by the host application.
"""

from __future__ import annotations

import asyncio
from typing import Any

from pydantic import Field

from rw_soar.actions.base import ActionContext, ActionParameters, ActionResult, BaseAction
from rw_soar.actions.registry import ActionRegistry

MAX_DELAY_MS = 300_000


class LogMessageArgs(ActionParameters):
    """Arguments for log_message."""

    message: str = Field(default="No message provided", max_length=10000)
    level: str = Field(default="info", pattern=r"^(debug|info|warn|warning|error)$")


class LogMessageAction(BaseAction):
    name = "log_message"
    description = "Write a message to the execution audit log"
    category = "utility"
    parameters_model = LogMessageArgs

    async def execute(self, params: dict[str, Any], context: ActionContext) -> ActionResult:
        self.log(context, f"LOG: {params['message']}", params["level"])
        return self.success(params["message"], {"message": params["message"]})


class DelayArgs(ActionParameters):
    """Arguments for delay."""

    milliseconds: int = Field(default=1000, ge=0, le=MAX_DELAY_MS)


class DelayAction(BaseAction):
    name = "delay"
    description = "Pause the execution for a number of milliseconds"
    category = "utility"
    parameters_model = DelayArgs

    def __init__(self, max_ms: int = MAX_DELAY_MS) -> None:
        self._max_ms = max_ms

    async def execute(self, params: dict[str, Any], context: ActionContext) -> ActionResult:
        ms = min(params["milliseconds"], self._max_ms)
        self.log(context, f"Delaying for {ms}ms")
        await asyncio.sleep(ms / 1000)
        return self.success(f"Delayed {ms}ms", {"delayed": ms})


class SetVariablesArgs(ActionParameters):
    """Arguments for set_variables."""

    values: dict[str, Any] = Field(default_factory=dict)


class SetVariablesAction(BaseAction):
    name = "set_variables"
    description = "Publish values under the step id for later steps"
    category = "utility"
    parameters_model = SetVariablesArgs

    async def execute(self, params: dict[str, Any], context: ActionContext) -> ActionResult:
        values = params["values"]
        self.log(context, f"Setting {len(values)} variable(s)", "debug")
        return self.success(f"Set {len(values)} variable(s)", dict(values))


class SimulatedAction(BaseAction):
    """Stand-in used for dry runs: records the call and succeeds.

    Accepts any parameters, so dry runs never fail on a schema the real
    action would enforce.
    """

    category = "utility"

    def __init__(self, name: str) -> None:
        self.name = name  # type: ignore[misc]
        self.description = f"Simulated '{name}'"  # type: ignore[misc]

    async def execute(self, params: dict[str, Any], context: ActionContext) -> ActionResult:
        self.log(context, f"[TEST] Simulated action with {len(params)} parameter(s)")
        return self.success(
            f"Simulated {self.name}",
            {"action": self.name, "simulated": True, "input": params},
        )


def register_builtin_actions(registry: ActionRegistry, *, replace: bool = False) -> ActionRegistry:
    """Register the core actions on an existing registry."""
    for action in (LogMessageAction(), DelayAction(), SetVariablesAction()):
        registry.register(action, replace=replace)
    return registry


def create_default_registry() -> ActionRegistry:
    """Create a registry holding the core actions."""
    return register_builtin_actions(ActionRegistry())


def create_dry_run_registry(source: ActionRegistry) -> ActionRegistry:
    """Mirror a registry with simulated actions that keep its names.

    Safe built-ins stay real (so ``set_variables`` data still flows); the
    delay is capped at five seconds.
    """
    dry_run = ActionRegistry()
    for name in source.list_actions():
        dry_run.register(SimulatedAction(name))
    dry_run.register(LogMessageAction(), replace=True)
    dry_run.register(SetVariablesAction(), replace=True)
    dry_run.register(DelayAction(max_ms=5000), replace=True)
    return dry_run
