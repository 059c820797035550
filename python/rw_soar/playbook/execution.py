"""Execution state for one run of a playbook."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from rw_soar.errors import InvalidStateTransition
from rw_soar.events.models import Event
from rw_soar.playbook.models import PlaybookDefinition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# Allowed forward moves; terminal states have none
_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.SKIPPED}),
    StepStatus.RUNNING: frozenset({StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}

TERMINAL_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED})


class StepState(BaseModel):
    """Progress of a single step within an execution."""

    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES

    def transition(self, target: StepStatus) -> None:
        """Move to a new status, stamping start/completion times.

        Raises:
            InvalidStateTransition: If the move is not allowed.
        """
        if target not in _TRANSITIONS[self.status]:
            raise InvalidStateTransition(self.status.value, target.value)

        now = utcnow()
        if target == StepStatus.RUNNING:
            self.started_at = now
        else:
            self.completed_at = now
        self.status = target


class Checkpoint(BaseModel):
    """Snapshot of execution variables taken before a rollback-policy step."""

    step_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    variables: dict[str, Any] = Field(default_factory=dict)


class AuditEntry(BaseModel):
    """One line of the per-execution audit trail."""

    timestamp: datetime = Field(default_factory=utcnow)
    level: str = "info"
    step_id: str | None = None
    message: str


class ExecutionRecord(BaseModel):
    """One run of a playbook against one triggering event.

    Mutated only by the task executing it; terminal once ``status`` leaves
    ``running``.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    playbook_id: str
    organization_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    steps: dict[str, StepState] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    checkpoints: list[Checkpoint] = Field(default_factory=list)
    trigger_event_id: str | None = None
    trigger_event_type: str | None = None
    error: str | None = None
    dry_run: bool = False
    audit_log: list[AuditEntry] = Field(default_factory=list)

    @classmethod
    def start(
        cls,
        definition: PlaybookDefinition,
        event: Event,
        *,
        dry_run: bool = False,
        execution_id: str | None = None,
    ) -> ExecutionRecord:
        """Create a running record with every step pending."""
        return cls(
            id=execution_id or uuid.uuid4().hex,
            playbook_id=definition.id,
            organization_id=event.organization_id,
            steps={step.id: StepState() for step in definition.all_steps()},
            trigger_event_id=event.id,
            trigger_event_type=event.type,
            dry_run=dry_run,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.RUNNING

    @property
    def duration_ms(self) -> int | None:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def finish(self, status: ExecutionStatus, error: str | None = None) -> None:
        """Mark the execution terminal."""
        self.status = status
        self.error = error
        self.completed_at = utcnow()

    def steps_with_status(self, status: StepStatus) -> list[str]:
        return [step_id for step_id, state in self.steps.items() if state.status == status]

    def summary(self) -> dict[str, Any]:
        """Compact per-step view for logs and API responses."""
        return {
            "id": self.id,
            "playbook_id": self.playbook_id,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "checkpoints": len(self.checkpoints),
            "steps": {
                step_id: {
                    "status": state.status.value,
                    "attempts": state.attempts,
                    "error": state.error,
                }
                for step_id, state in self.steps.items()
            },
        }
