"""
rw_soar - Playbook orchestration engine for Response Warden

Reacts to security events (new alert, incident status change) by running
automated, multi-step response playbooks composed of pluggable actions.

Core Components:
    - Event bus with ordered, fire-and-forget fan-out
    - Trigger matching of events to active playbooks
    - Step executor with timeouts, retries, conditions and rollback
    - Action registry and the action contract

Submodules:
    - rw_soar.events: Event model, event bus, durable sinks
    - rw_soar.actions: Action contract, registry, core actions
    - rw_soar.playbook: Models, loader, templating, conditions, executor, store
    - rw_soar.engine: Wiring of bus, matcher and executor

Example:
    Run playbooks when alerts are created::

        from rw_soar import Event, EventBus, PlaybookEngine, PlaybookLoader
        from rw_soar.playbook import InMemoryPlaybookSource

        bus = EventBus()
        playbook = PlaybookLoader().load("playbooks/critical-alert.yaml")
        engine = PlaybookEngine(bus=bus, source=InMemoryPlaybookSource([playbook]))
        engine.start()

        bus.publish(Event(
            type="alert.created",
            entity_type="alert",
            entity_id="42",
            organization_id="1",
            data={"severity": "critical"},
        ))
"""

__version__ = "0.1.0"

from rw_soar.actions import (
    ActionContext,
    ActionRegistry,
    ActionResult,
    BaseAction,
    create_default_registry,
)
from rw_soar.config import EngineConfig
from rw_soar.engine import PlaybookEngine
from rw_soar.errors import (
    ActionExecutionError,
    ActionPermissionDenied,
    ConditionEvaluationError,
    ExecutionNotFound,
    InvalidParameters,
    InvalidStateTransition,
    PlaybookEngineError,
    PlaybookNotFound,
    PlaybookValidationError,
    RollbackFailure,
    StepTimeoutError,
    UnknownAction,
)
from rw_soar.events import Event, EventBus, TriggerType, get_event_bus
from rw_soar.playbook import (
    ErrorPolicy,
    ExecutionRecord,
    ExecutionStatus,
    PlaybookDefinition,
    PlaybookExecutor,
    PlaybookLoader,
    Step,
    StepStatus,
)

__all__ = [
    "__version__",
    # Engine
    "PlaybookEngine",
    "EngineConfig",
    # Events
    "Event",
    "EventBus",
    "TriggerType",
    "get_event_bus",
    # Actions
    "ActionContext",
    "ActionRegistry",
    "ActionResult",
    "BaseAction",
    "create_default_registry",
    # Playbooks
    "PlaybookDefinition",
    "Step",
    "ErrorPolicy",
    "PlaybookLoader",
    "PlaybookExecutor",
    "ExecutionRecord",
    "ExecutionStatus",
    "StepStatus",
    # Errors
    "PlaybookEngineError",
    "UnknownAction",
    "InvalidParameters",
    "ActionPermissionDenied",
    "ActionExecutionError",
    "StepTimeoutError",
    "ConditionEvaluationError",
    "RollbackFailure",
    "InvalidStateTransition",
    "ExecutionNotFound",
    "PlaybookNotFound",
    "PlaybookValidationError",
]
