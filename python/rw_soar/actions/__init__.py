"""Pluggable action contract, registry and core actions."""

from rw_soar.actions.base import (
    Action,
    ActionContext,
    ActionParameters,
    ActionResult,
    ActionSchema,
    BaseAction,
    FunctionAction,
)
from rw_soar.actions.builtin import (
    DelayAction,
    LogMessageAction,
    SetVariablesAction,
    SimulatedAction,
    create_default_registry,
    create_dry_run_registry,
    register_builtin_actions,
)
from rw_soar.actions.registry import ActionRegistry

__all__ = [
    # Contract
    "Action",
    "ActionContext",
    "ActionParameters",
    "ActionResult",
    "ActionSchema",
    "BaseAction",
    "FunctionAction",
    # Registry
    "ActionRegistry",
    "create_default_registry",
    "create_dry_run_registry",
    "register_builtin_actions",
    # Core actions
    "LogMessageAction",
    "DelayAction",
    "SetVariablesAction",
    "SimulatedAction",
]
