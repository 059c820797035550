"""Contract every playbook action implements.

Concrete actions (email, chat webhook, firewall block, host isolation,
ticketing) live outside the engine; they subclass :class:`BaseAction` or
provide any object satisfying the :class:`Action` protocol.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rw_soar.errors import InvalidParameters

logger = structlog.get_logger()

ActionLogger = Callable[..., None]


# =============================================================================
# Results and context
# =============================================================================


class ActionResult(BaseModel):
    """Result returned by an action execution."""

    success: bool
    message: str = ""
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def ok(cls, message: str = "", data: dict[str, Any] | None = None) -> ActionResult:
        """Create a successful result."""
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: str, data: dict[str, Any] | None = None) -> ActionResult:
        """Create a failed result."""
        return cls(success=False, message=error, error=error, data=data)


def _default_logger(message: str, level: str = "info") -> None:
    log_at(logger, level, "action_log", message=message)


def log_at(bound: Any, level: str, event: str, **kwargs: Any) -> None:
    level = "warning" if level == "warn" else level
    method = getattr(bound, level, None) or bound.info
    method(event, **kwargs)


@dataclass
class ActionContext:
    """Execution context passed to every action.

    ``playbook_id``, ``execution_id`` and ``organization_id`` are always set.
    ``data`` is a copy of the variables visible to the step; mutating it does
    not affect the execution.
    """

    playbook_id: str
    execution_id: str
    organization_id: str
    step_id: str = ""
    attempt: int = 1
    dry_run: bool = False
    data: dict[str, Any] = field(default_factory=dict)
    logger: ActionLogger = _default_logger

    def log(self, message: str, level: str = "info") -> None:
        """Write an audit log line for the current step."""
        self.logger(message, level)


# =============================================================================
# Action protocol and base class
# =============================================================================


@runtime_checkable
class Action(Protocol):
    """Anything with a name and an async execute method."""

    name: str

    async def execute(self, params: dict[str, Any], context: ActionContext) -> ActionResult:
        """Run the action with already-validated parameters."""
        ...


class ActionParameters(BaseModel):
    """Base model for action parameter schemas.

    Configuration:
    - extra='forbid': Reject unknown parameters
    - validate_default=True: Validate default values

    Coercion stays lax: resolved templates are strings, so ``"22"`` must be
    accepted for an integer port.
    """

    model_config = ConfigDict(extra="forbid", validate_default=True)


class BaseAction(ABC):
    """Base class for actions with a pydantic parameter schema."""

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    category: ClassVar[str] = "utility"  # notification, remediation, investigation, cloud, agent
    parameters_model: ClassVar[type[BaseModel] | None] = None

    def validate_parameters(self, params: dict[str, Any]) -> dict[str, Any]:
        """Validate parameters against the declared schema.

        Returns:
            Validated and normalized parameters.

        Raises:
            InvalidParameters: If validation fails.
        """
        if self.parameters_model is None:
            return dict(params)

        try:
            validated = self.parameters_model.model_validate(params)
        except ValidationError as e:
            error_details = e.errors(include_url=False)
            messages = []
            for error in error_details:
                loc = ".".join(str(x) for x in error["loc"])
                messages.append(f"{loc}: {error['msg']}" if loc else error["msg"])
            raise InvalidParameters(
                self.name,
                "; ".join(messages),
                errors=[dict(d) for d in error_details],
            ) from e

        return validated.model_dump()

    async def check_permissions(self, context: ActionContext) -> bool:
        """Whether the action may run in this context. Allows by default."""
        return True

    @abstractmethod
    async def execute(self, params: dict[str, Any], context: ActionContext) -> ActionResult:
        """Run the action with validated parameters."""

    def parameters_schema(self) -> dict[str, Any]:
        """JSON schema of the parameters, for UI generation."""
        if self.parameters_model is None:
            return {"type": "object"}
        return self.parameters_model.model_json_schema()

    def success(self, message: str = "", data: dict[str, Any] | None = None) -> ActionResult:
        return ActionResult.ok(message, data)

    def failure(self, error: str, data: dict[str, Any] | None = None) -> ActionResult:
        return ActionResult.fail(error, data)

    def log(self, context: ActionContext, message: str, level: str = "info") -> None:
        context.log(f"[{self.name}] {message}", level)


ActionFunction = Callable[[dict[str, Any], ActionContext], Awaitable[Any]]


class FunctionAction(BaseAction):
    """Adapts a plain coroutine function to the action contract."""

    def __init__(
        self,
        name: str,
        fn: ActionFunction,
        parameters_model: type[BaseModel] | None = None,
        description: str = "",
        category: str = "utility",
    ) -> None:
        self.name = name  # type: ignore[misc]
        self.description = description or (fn.__doc__ or "").strip()  # type: ignore[misc]
        self.category = category  # type: ignore[misc]
        self.parameters_model = parameters_model  # type: ignore[misc]
        self._fn = fn

    async def execute(self, params: dict[str, Any], context: ActionContext) -> ActionResult:
        return coerce_result(await self._fn(params, context))


def coerce_result(value: Any) -> ActionResult:
    """Normalize an action's return value into an ActionResult.

    Dicts are validated as ActionResult when they carry ``success``; any
    other keys are merged into ``data``. A dict without ``success`` is the
    data of a successful result. ``None`` is a success without data.
    """
    if isinstance(value, ActionResult):
        return value
    if value is None:
        return ActionResult.ok()
    if isinstance(value, dict):
        if "success" in value:
            fields = {k: v for k, v in value.items() if k in ActionResult.model_fields}
            extra = {k: v for k, v in value.items() if k not in ActionResult.model_fields}
            if extra:
                fields["data"] = {**extra, **(fields.get("data") or {})}
            return ActionResult.model_validate(fields)
        return ActionResult.ok(data=value)
    raise TypeError(f"Action returned unsupported result type {type(value).__name__}")


class ActionSchema(BaseModel):
    """Description of a registered action for UI and validation."""

    name: str
    description: str = ""
    category: str = "utility"
    parameters: dict[str, Any] = Field(default_factory=dict)
