"""Playbook definition models.

Definitions are owned by configuration storage and read-only to the engine.
Field names accept both the snake_case used in Python and the camelCase of
the JSON/YAML wire format (``timeoutMs``, ``errorPolicy``, ``isActive``).
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from rw_soar.events.models import TriggerType


class ErrorPolicy(str, Enum):
    """What happens when a step fails after exhausting its retries."""

    ABORT = "abort"
    CONTINUE = "continue"
    ROLLBACK = "rollback"


def _coerce_id(v: Any) -> Any:
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return v


class Step(BaseModel):
    """A single action invocation within a playbook."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(description="Step id, unique within the playbook")
    uses: str = Field(
        validation_alias=AliasChoices("uses", "action", "actionId"),
        description="Name of the registered action to run",
    )
    name: str = Field(default="", description="Human readable step name")
    description: str = Field(default="")
    with_: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("with", "with_", "params"),
        serialization_alias="with",
        description="Action parameters; strings may contain {{ placeholders }}",
    )
    if_: str | None = Field(
        default=None,
        validation_alias=AliasChoices("if", "if_", "condition"),
        serialization_alias="if",
        description="Condition expression; the step is skipped unless it is true",
    )
    timeout_ms: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("timeout_ms", "timeoutMs", "timeout"),
        serialization_alias="timeoutMs",
    )
    retries: int = Field(default=0, ge=0, le=100)
    error_policy: ErrorPolicy = Field(
        default=ErrorPolicy.ABORT,
        validation_alias=AliasChoices("error_policy", "errorPolicy", "onError"),
        serialization_alias="errorPolicy",
    )
    then_: list[Step] = Field(
        default_factory=list,
        validation_alias=AliasChoices("then", "then_", "onSuccess"),
        serialization_alias="then",
        description="Steps run after this step completes",
    )
    else_: list[Step] = Field(
        default_factory=list,
        validation_alias=AliasChoices("else", "else_", "onFailure"),
        serialization_alias="else",
        description="Steps run after this step fails under the continue policy",
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("id", "uses")
    @classmethod
    def not_empty(cls, v: str) -> str:
        """Ensure ids and action names are not empty."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("with_", mode="before")
    @classmethod
    def default_inputs(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("then_", "else_", mode="before")
    @classmethod
    def default_branches(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("if_")
    @classmethod
    def blank_condition_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def has_branches(self) -> bool:
        return bool(self.then_ or self.else_)


def walk_steps(steps: list[Step]) -> Iterator[Step]:
    """Yield steps depth-first: each step, then its ``then`` and ``else`` steps."""
    for step in steps:
        yield step
        yield from walk_steps(step.then_)
        yield from walk_steps(step.else_)


class PlaybookDefinition(BaseModel):
    """A named, ordered list of steps triggered by an event category."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    organization_id: str = Field(
        validation_alias=AliasChoices("organization_id", "organizationId", "ownerTenant"),
    )
    name: str
    description: str = ""
    version: int = Field(default=1, ge=1)
    is_active: bool = Field(
        default=True,
        validation_alias=AliasChoices("is_active", "isActive", "enabled"),
    )
    trigger_type: TriggerType = Field(
        validation_alias=AliasChoices("trigger_type", "triggerType"),
    )
    trigger_filter: dict[str, str | list[str]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("trigger_filter", "triggerFilter"),
        description="Event data values required for the playbook to trigger",
    )
    trigger_condition: str | None = Field(
        default=None,
        validation_alias=AliasChoices("trigger_condition", "triggerCondition"),
        description="Condition expression evaluated against event data",
    )
    steps: list[Step] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def flatten_trigger(cls, data: Any) -> Any:
        """Accept a nested ``trigger: {type, filter, condition}`` block."""
        if isinstance(data, dict) and isinstance(data.get("trigger"), dict):
            data = dict(data)
            trigger = data.pop("trigger")
            data.setdefault("trigger_type", trigger.get("type"))
            if trigger.get("filter") is not None:
                data.setdefault("trigger_filter", trigger["filter"])
            condition = trigger.get("condition") or trigger.get("if")
            if condition is not None:
                data.setdefault("trigger_condition", condition)
        return data

    @field_validator("id", "organization_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        """Ensure playbook name is not empty."""
        if not v or not v.strip():
            raise ValueError("Playbook name cannot be empty")
        return v.strip()

    @field_validator("steps")
    @classmethod
    def unique_step_ids(cls, v: list[Step]) -> list[Step]:
        """Step ids key the execution state, so they must be unique."""
        seen: set[str] = set()
        duplicates: list[str] = []
        for step in walk_steps(v):
            if step.id in seen:
                duplicates.append(step.id)
            seen.add(step.id)
        if duplicates:
            raise ValueError(f"Duplicate step ids: {sorted(set(duplicates))}")
        return v

    def all_steps(self) -> list[Step]:
        """Every step including branch steps, in depth-first order."""
        return list(walk_steps(self.steps))

    def get_step(self, step_id: str) -> Step | None:
        """Get a step by id, searching branches too."""
        for step in walk_steps(self.steps):
            if step.id == step_id:
                return step
        return None

    def step_index(self, step_id: str) -> int:
        """Position of a step in depth-first order, or -1."""
        for index, step in enumerate(walk_steps(self.steps)):
            if step.id == step_id:
                return index
        return -1
