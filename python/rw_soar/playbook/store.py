"""Persistence interface for execution records.

The engine only talks to :class:`ExecutionStore`. Every call is keyed by
execution id and made from the task that owns the execution.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

from rw_soar.errors import ExecutionNotFound
from rw_soar.playbook.execution import Checkpoint, ExecutionRecord, StepState


@runtime_checkable
class ExecutionStore(Protocol):
    """Narrow persistence contract for execution state."""

    async def save(self, record: ExecutionRecord) -> None:
        """Insert or replace the whole record."""
        ...

    async def update_step_state(self, execution_id: str, step_id: str, state: StepState) -> None:
        """Persist the latest state of one step."""
        ...

    async def append_checkpoint(self, execution_id: str, checkpoint: Checkpoint) -> None:
        """Persist a checkpoint taken before a rollback-policy step."""
        ...

    async def load(self, execution_id: str) -> ExecutionRecord:
        """Load a record.

        Raises:
            ExecutionNotFound: If no record exists for the id.
        """
        ...


class InMemoryExecutionStore:
    """Process-local store keeping deep copies of records.

    Copies isolate stored state from the live record, so a reader never
    observes a half-applied step transition.
    """

    def __init__(self) -> None:
        self._records: dict[str, ExecutionRecord] = {}
        self._lock = asyncio.Lock()

    async def save(self, record: ExecutionRecord) -> None:
        async with self._lock:
            self._records[record.id] = record.model_copy(deep=True)

    async def update_step_state(self, execution_id: str, step_id: str, state: StepState) -> None:
        async with self._lock:
            record = self._get(execution_id)
            record.steps[step_id] = state.model_copy(deep=True)

    async def append_checkpoint(self, execution_id: str, checkpoint: Checkpoint) -> None:
        async with self._lock:
            record = self._get(execution_id)
            record.checkpoints.append(checkpoint.model_copy(deep=True))

    async def load(self, execution_id: str) -> ExecutionRecord:
        async with self._lock:
            return self._get(execution_id).model_copy(deep=True)

    async def list_executions(self, playbook_id: str | None = None) -> list[ExecutionRecord]:
        """List stored records, optionally for one playbook, oldest first."""
        async with self._lock:
            records = [
                r.model_copy(deep=True)
                for r in self._records.values()
                if playbook_id is None or r.playbook_id == playbook_id
            ]
        return sorted(records, key=lambda r: r.started_at)

    def __len__(self) -> int:
        return len(self._records)

    def _get(self, execution_id: str) -> ExecutionRecord:
        record = self._records.get(execution_id)
        if record is None:
            raise ExecutionNotFound(execution_id)
        return record
