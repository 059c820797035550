"""Playbook step executor.

This module provides:
- Sequential step execution with per-step timeouts
- Retries with exponential backoff (tenacity)
- Conditional steps, then/else branches and template resolution of step inputs
- Error policies: abort, continue and rollback to a checkpoint
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rw_soar.actions.base import ActionContext, ActionLogger, ActionResult, log_at
from rw_soar.actions.registry import ActionRegistry
from rw_soar.config import EngineConfig
from rw_soar.errors import (
    ActionExecutionError,
    PlaybookEngineError,
    RollbackFailure,
    StepTimeoutError,
)
from rw_soar.events.models import Event
from rw_soar.playbook.conditions import ConditionEvaluator
from rw_soar.playbook.execution import (
    AuditEntry,
    Checkpoint,
    ExecutionRecord,
    ExecutionStatus,
    StepState,
    StepStatus,
)
from rw_soar.playbook.models import ErrorPolicy, PlaybookDefinition, Step, walk_steps
from rw_soar.playbook.store import ExecutionStore
from rw_soar.playbook.templating import TemplateResolver

logger = structlog.get_logger()


class PlaybookExecutor:
    """Runs the steps of one playbook against one triggering event.

    Per-step errors never escape :meth:`execute`; they become step state
    transitions and the returned ExecutionRecord is the only outcome.

    Example:
        executor = PlaybookExecutor(create_default_registry(), InMemoryExecutionStore())
        record = await executor.execute(playbook, event)
        if record.status == ExecutionStatus.FAILED:
            print(record.error)
    """

    def __init__(
        self,
        registry: ActionRegistry,
        store: ExecutionStore | None = None,
        config: EngineConfig | None = None,
        resolver: TemplateResolver | None = None,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            registry: Actions available to steps
            store: Where execution state is persisted (None keeps it in memory only)
            config: Timeouts, backoff and checkpoint settings
            resolver: Template resolver for step inputs
            evaluator: Condition evaluator for step ``if`` expressions
        """
        self._registry = registry
        self._store = store
        self._config = config or EngineConfig()
        self._resolver = resolver or TemplateResolver()
        self._evaluator = evaluator or ConditionEvaluator()
        self._logger = logger.bind(component="playbook_executor")

    @property
    def registry(self) -> ActionRegistry:
        return self._registry

    async def execute(
        self,
        definition: PlaybookDefinition,
        event: Event,
        *,
        dry_run: bool = False,
        execution_id: str | None = None,
    ) -> ExecutionRecord:
        """Execute every step of a playbook in order.

        Args:
            definition: The playbook to run
            event: The event that triggered it
            dry_run: Flag passed to actions through their context
            execution_id: Id for the new record (generated when omitted)

        Returns:
            The terminal ExecutionRecord
        """
        record = ExecutionRecord.start(
            definition, event, dry_run=dry_run, execution_id=execution_id
        )
        log = self._logger.bind(
            playbook_id=definition.id,
            execution_id=record.id,
            organization_id=record.organization_id,
        )

        log.info(
            "playbook_execution_start",
            playbook=definition.name,
            event_type=event.type,
            event_id=event.id,
            steps=len(record.steps),
            dry_run=dry_run,
        )
        await self._persist(log, "save", record)

        try:
            if await self._run_steps(definition, definition.steps, record, event, log):
                record.finish(ExecutionStatus.COMPLETED)
        except asyncio.CancelledError:
            record.finish(ExecutionStatus.FAILED, error="cancelled")
            log.warning("playbook_execution_cancelled")
            await self._persist(log, "save", record)
            raise

        await self._persist(log, "save", record)

        log.info(
            "playbook_execution_complete",
            status=record.status.value,
            error=record.error,
            duration_ms=record.duration_ms,
            completed=len(record.steps_with_status(StepStatus.COMPLETED)),
            failed=len(record.steps_with_status(StepStatus.FAILED)),
            skipped=len(record.steps_with_status(StepStatus.SKIPPED)),
        )
        return record

    def build_context(self, record: ExecutionRecord, event: Event) -> dict[str, Any]:
        """Values visible to templates and conditions.

        Event data first, then the ``trigger`` envelope, the ``steps`` status
        map and finally execution variables; later keys win. Event data is
        always reachable unshadowed under ``trigger.data``.
        """
        context: dict[str, Any] = dict(event.data)
        context["trigger"] = event.to_payload()
        context["steps"] = {
            step_id: {
                "status": state.status.value,
                "attempts": state.attempts,
                "error": state.error,
                "data": (state.result or {}).get("data"),
            }
            for step_id, state in record.steps.items()
        }
        context.update(record.variables)
        return context

    # =========================================================================
    # Step execution
    # =========================================================================

    async def _run_steps(
        self,
        definition: PlaybookDefinition,
        steps: list[Step],
        record: ExecutionRecord,
        event: Event,
        log: Any,
    ) -> bool:
        """Run steps in order. Returns False when the execution must stop."""
        for step in steps:
            if not await self._run_step(definition, step, record, event, log):
                return False
        return True

    async def _run_step(
        self,
        definition: PlaybookDefinition,
        step: Step,
        record: ExecutionRecord,
        event: Event,
        log: Any,
    ) -> bool:
        """Run one step. Returns False when the execution must stop."""
        state = record.steps[step.id]
        step_log = log.bind(step_id=step.id, action=step.uses)
        context = self.build_context(record, event)

        if step.if_ is not None and not self._condition_holds(step.if_, context, step_log):
            state.transition(StepStatus.SKIPPED)
            record.audit_log.append(
                AuditEntry(step_id=step.id, message=f"Skipped: condition '{step.if_}' is false")
            )
            step_log.info("step_skipped", condition=step.if_)
            await self._persist_step(step_log, record, step.id)
            await self._skip_steps(
                record, step.then_ + step.else_, f"parent step '{step.id}' was skipped", log
            )
            return True

        params = self._resolver.resolve(step.with_, context)

        state.transition(StepStatus.RUNNING)
        if step.error_policy == ErrorPolicy.ROLLBACK:
            await self._checkpoint(record, step, step_log)
        await self._persist_step(step_log, record, step.id)

        step_log.info("step_execution_start", retries=step.retries, timeout_ms=self._timeout_for(step))

        try:
            result = await self._run_with_retries(definition, step, record, params, context, step_log)
        except PlaybookEngineError as e:
            error = e.message
        except Exception as e:
            step_log.error("step_execution_error", error=str(e), exc_info=True)
            error = str(e) or type(e).__name__
        else:
            state.result = result.model_dump()
            if result.data is not None:
                record.variables[step.id] = copy.deepcopy(result.data)
            state.transition(StepStatus.COMPLETED)

            step_log.info("step_execution_complete", attempts=state.attempts, message=result.message)
            await self._persist_step(step_log, record, step.id)
            return await self._run_branch(definition, step, "then", record, event, log)

        if not await self._handle_failure(step, record, error, step_log):
            return False
        return await self._run_branch(definition, step, "else", record, event, log)

    async def _run_branch(
        self,
        definition: PlaybookDefinition,
        step: Step,
        branch: str,
        record: ExecutionRecord,
        event: Event,
        log: Any,
    ) -> bool:
        """Run the ``then`` or ``else`` steps of a finished step and skip the other list."""
        if not step.has_branches:
            return True

        taken, other = (step.then_, step.else_) if branch == "then" else (step.else_, step.then_)
        log.info(
            "step_branch_selected",
            step_id=step.id,
            branch=branch,
            steps=[s.id for s in taken],
        )
        await self._skip_steps(record, other, f"'{branch}' branch of '{step.id}' was taken", log)
        return await self._run_steps(definition, taken, record, event, log)

    async def _skip_steps(
        self,
        record: ExecutionRecord,
        steps: list[Step],
        reason: str,
        log: Any,
    ) -> None:
        for step in walk_steps(steps):
            record.steps[step.id].transition(StepStatus.SKIPPED)
            record.audit_log.append(AuditEntry(step_id=step.id, message=f"Skipped: {reason}"))
            await self._persist_step(log, record, step.id)

    def _condition_holds(self, expression: str, context: dict[str, Any], log: Any) -> bool:
        try:
            return self._evaluator.evaluate(expression, context)
        except Exception as e:
            log.error("step_condition_error", condition=expression, error=str(e), exc_info=True)
            return False

    async def _run_with_retries(
        self,
        definition: PlaybookDefinition,
        step: Step,
        record: ExecutionRecord,
        params: dict[str, Any],
        context: dict[str, Any],
        log: Any,
    ) -> ActionResult:
        state = record.steps[step.id]
        timeout_ms = self._timeout_for(step)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(step.retries + 1),
            wait=wait_exponential(
                multiplier=self._config.retry_base_delay_seconds,
                max=self._config.retry_max_delay_seconds,
            ),
            # UnknownAction, InvalidParameters and ActionPermissionDenied are final
            retry=retry_if_exception_type(ActionExecutionError),
            before_sleep=self._log_retry(log),
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                state.attempts = attempt.retry_state.attempt_number
                action_context = ActionContext(
                    playbook_id=definition.id,
                    execution_id=record.id,
                    organization_id=record.organization_id,
                    step_id=step.id,
                    attempt=state.attempts,
                    dry_run=record.dry_run,
                    data=copy.deepcopy(context),
                    logger=self._audit_logger(record, step.id, log),
                )
                result = await self._invoke(step, params, action_context, timeout_ms)
                if not result.success:
                    raise ActionExecutionError(
                        step.uses,
                        result.error or result.message or "action reported failure",
                    )

        return result

    async def _invoke(
        self,
        step: Step,
        params: dict[str, Any],
        context: ActionContext,
        timeout_ms: int | None,
    ) -> ActionResult:
        if timeout_ms is None:
            return await self._registry.execute(step.uses, params, context)

        try:
            async with asyncio.timeout(timeout_ms / 1000):
                return await self._registry.execute(step.uses, params, context)
        except TimeoutError as e:
            raise StepTimeoutError(step.uses, timeout_ms) from e

    def _timeout_for(self, step: Step) -> int | None:
        if step.timeout_ms is not None:
            return step.timeout_ms
        return self._config.default_step_timeout_ms

    async def _handle_failure(
        self,
        step: Step,
        record: ExecutionRecord,
        error: str,
        log: Any,
    ) -> bool:
        state = record.steps[step.id]
        state.error = error
        state.transition(StepStatus.FAILED)
        record.audit_log.append(
            AuditEntry(level="error", step_id=step.id, message=f"Failed: {error}")
        )

        log.warning(
            "step_execution_failed",
            error=error,
            attempts=state.attempts,
            error_policy=step.error_policy.value,
        )

        if step.error_policy == ErrorPolicy.CONTINUE:
            await self._persist_step(log, record, step.id)
            return True

        if step.error_policy == ErrorPolicy.ROLLBACK:
            try:
                self._rollback(record, step)
            except RollbackFailure as e:
                log.error("rollback_failed", error=e.message)
                record.finish(ExecutionStatus.FAILED, error=e.message)
                await self._persist_step(log, record, step.id)
                return False

        record.finish(ExecutionStatus.FAILED, error=f"step '{step.id}' failed: {error}")
        await self._persist_step(log, record, step.id)
        return False

    # =========================================================================
    # Checkpoints
    # =========================================================================

    async def _checkpoint(self, record: ExecutionRecord, step: Step, log: Any) -> None:
        max_checkpoints = self._config.max_checkpoints
        if max_checkpoints == 0:
            return

        checkpoint = Checkpoint(step_id=step.id, variables=copy.deepcopy(record.variables))
        record.checkpoints.append(checkpoint)
        if len(record.checkpoints) > max_checkpoints:
            del record.checkpoints[:-max_checkpoints]

        log.debug("checkpoint_created", checkpoints=len(record.checkpoints))
        await self._persist(log, "append_checkpoint", record.id, checkpoint)

    def _rollback(self, record: ExecutionRecord, step: Step) -> None:
        """Restore variables from the most recent checkpoint.

        Raises:
            RollbackFailure: If no checkpoint exists.
        """
        if not record.checkpoints:
            raise RollbackFailure(step.id)

        checkpoint = record.checkpoints[-1]
        record.variables = copy.deepcopy(checkpoint.variables)
        record.audit_log.append(
            AuditEntry(
                level="warn",
                step_id=step.id,
                message=f"Rolled back to checkpoint taken before '{checkpoint.step_id}'",
            )
        )
        self._logger.info(
            "rollback_complete",
            execution_id=record.id,
            step_id=step.id,
            checkpoint_step_id=checkpoint.step_id,
        )

    # =========================================================================
    # Logging and persistence helpers
    # =========================================================================

    @staticmethod
    def _audit_logger(record: ExecutionRecord, step_id: str, log: Any) -> ActionLogger:
        def write(message: str, level: str = "info") -> None:
            record.audit_log.append(AuditEntry(level=level, step_id=step_id, message=message))
            log_at(log, level, "action_log", message=message)

        return write

    @staticmethod
    def _log_retry(log: Any) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            log.warning(
                "step_retry_scheduled",
                attempt=retry_state.attempt_number,
                delay_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
                error=str(exc) if exc else None,
            )

        return before_sleep

    async def _persist_step(self, log: Any, record: ExecutionRecord, step_id: str) -> None:
        state: StepState = record.steps[step_id]
        await self._persist(log, "update_step_state", record.id, step_id, state)

    async def _persist(
        self,
        log: Any,
        operation: str,
        *args: Any,
    ) -> None:
        """Run a store call; failures are logged and never fail the execution."""
        if self._store is None:
            return
        try:
            await getattr(self._store, operation)(*args)
        except Exception as e:
            log.error("execution_store_error", operation=operation, error=str(e), exc_info=True)
