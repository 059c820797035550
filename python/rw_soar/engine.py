"""Wiring of the event bus, trigger matcher and step executor.

The engine subscribes to every event on the bus, asks the trigger matcher
which playbooks apply, and runs each match as its own asyncio task.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from typing import Any

import structlog

from rw_soar.actions.builtin import create_default_registry, create_dry_run_registry
from rw_soar.actions.registry import ActionRegistry
from rw_soar.config import EngineConfig
from rw_soar.errors import PlaybookNotFound
from rw_soar.events.bus import WILDCARD, EventBus, get_event_bus
from rw_soar.events.models import PLAYBOOK_MANUAL, Event
from rw_soar.events.sinks import RedisStreamSink
from rw_soar.playbook.execution import ExecutionRecord
from rw_soar.playbook.executor import PlaybookExecutor
from rw_soar.playbook.models import PlaybookDefinition
from rw_soar.playbook.source import InMemoryPlaybookSource, PlaybookSource
from rw_soar.playbook.store import ExecutionStore, InMemoryExecutionStore
from rw_soar.playbook.trigger import TriggerMatcher

logger = structlog.get_logger()

PLAYBOOK_TEST = "manual.test"


class PlaybookEngine:
    """Runs playbooks in response to events published on the bus.

    Example:
        engine = PlaybookEngine(bus=bus, source=InMemoryPlaybookSource([playbook]))
        engine.start()
        bus.publish(Event(type="alert.created", ...))
        await engine.wait_idle()
        await engine.stop()
    """

    def __init__(
        self,
        bus: EventBus | None = None,
        source: PlaybookSource | None = None,
        registry: ActionRegistry | None = None,
        store: ExecutionStore | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._bus = bus if bus is not None else get_event_bus()
        self._source = source if source is not None else InMemoryPlaybookSource()
        self._registry = registry if registry is not None else create_default_registry()
        self._store = store if store is not None else InMemoryExecutionStore()
        self._config = config or EngineConfig()

        self._matcher = TriggerMatcher(self._source)
        self._executor = PlaybookExecutor(self._registry, self._store, self._config)
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_executions)
        self._running: dict[str, asyncio.Task[ExecutionRecord | None]] = {}
        self._unsubscribe: Callable[[], None] | None = None
        self._sink: RedisStreamSink | None = None
        self._logger = logger.bind(component="playbook_engine")

    @property
    def registry(self) -> ActionRegistry:
        return self._registry

    @property
    def store(self) -> ExecutionStore:
        return self._store

    @property
    def is_running(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        """Subscribe to all bus events. Calling it twice has no effect."""
        if self._unsubscribe is not None:
            return

        self._unsubscribe = self._bus.subscribe(WILDCARD, self.handle_event)

        if self._config.redis_url and self._sink is None:
            self._sink = RedisStreamSink.from_url(
                self._config.redis_url,
                stream_name=self._config.event_stream_name,
            )
            self._bus.add_sink(self._sink)

        self._logger.info(
            "playbook_engine_started",
            actions=len(self._registry.list_actions()),
            durable_fanout=self._sink is not None,
        )

    async def stop(self) -> None:
        """Unsubscribe from the bus and wait for running executions."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        await self.wait_idle()

        if self._sink is not None:
            self._bus.remove_sink(self._sink)
            await self._sink.close()
            self._sink = None

        self._logger.info("playbook_engine_stopped")

    async def handle_event(self, event: Event) -> list[asyncio.Task[ExecutionRecord | None]]:
        """Start an execution for every playbook the event triggers.

        Returns:
            The spawned execution tasks
        """
        try:
            matches = await self._matcher.match(event)
        except Exception as e:
            self._logger.error(
                "trigger_matching_failed",
                event_type=event.type,
                event_id=event.id,
                error=str(e),
                exc_info=True,
            )
            return []

        if matches:
            self._logger.info(
                "playbooks_triggered",
                event_type=event.type,
                event_id=event.id,
                playbooks=[d.id for d in matches],
            )
        return [self._spawn(definition, event) for definition in matches]

    async def execute_playbook(
        self,
        definition: PlaybookDefinition,
        event: Event,
        *,
        dry_run: bool = False,
    ) -> ExecutionRecord | None:
        """Run one playbook for one event and wait for the result."""
        return await self._spawn(definition, event, dry_run=dry_run)

    async def run_playbook(
        self,
        playbook_id: str,
        data: dict[str, Any] | None = None,
        *,
        organization_id: str | None = None,
        entity_id: str | None = None,
    ) -> ExecutionRecord | None:
        """Run a playbook on demand, as a manual trigger.

        Raises:
            PlaybookNotFound: If the id is unknown or belongs to another organization.
        """
        definition = await self._source.get_playbook(playbook_id)
        if definition is None or (
            organization_id is not None and definition.organization_id != str(organization_id)
        ):
            raise PlaybookNotFound(playbook_id)

        event = Event(
            type=PLAYBOOK_MANUAL,
            entity_type="playbook",
            entity_id=entity_id or definition.id,
            organization_id=definition.organization_id,
            data=data or {},
        )
        return await self.execute_playbook(definition, event)

    async def test_playbook(
        self,
        playbook: PlaybookDefinition | str,
        test_data: dict[str, Any] | None = None,
        *,
        dry_run: bool = True,
    ) -> ExecutionRecord:
        """Run a playbook against test data without persisting the execution.

        With ``dry_run`` every action is simulated except the built-ins
        that have no external effect.

        Raises:
            PlaybookNotFound: If a playbook id is given and unknown.
        """
        if isinstance(playbook, str):
            definition = await self._source.get_playbook(playbook)
            if definition is None:
                raise PlaybookNotFound(playbook)
        else:
            definition = playbook

        registry = create_dry_run_registry(self._registry) if dry_run else self._registry
        executor = PlaybookExecutor(registry, store=None, config=self._config)
        execution_id = f"test-{uuid.uuid4().hex}"
        event = Event(
            type=PLAYBOOK_TEST,
            entity_type=definition.trigger_type.value,
            entity_id=execution_id,
            organization_id=definition.organization_id,
            data=test_data or {},
        )

        self._logger.info(
            "playbook_test_start",
            playbook_id=definition.id,
            execution_id=execution_id,
            dry_run=dry_run,
        )
        return await executor.execute(definition, event, dry_run=dry_run, execution_id=execution_id)

    def running_executions(self) -> list[str]:
        """Ids of executions started and not yet finished."""
        return list(self._running)

    async def wait_idle(self) -> None:
        """Wait until every running execution has finished."""
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)

    def _spawn(
        self,
        definition: PlaybookDefinition,
        event: Event,
        *,
        dry_run: bool = False,
    ) -> asyncio.Task[ExecutionRecord | None]:
        execution_id = uuid.uuid4().hex
        task = asyncio.create_task(
            self._run(definition, event, execution_id, dry_run),
            name=f"playbook:{definition.id}:{execution_id}",
        )
        self._running[execution_id] = task
        task.add_done_callback(lambda _: self._running.pop(execution_id, None))
        return task

    async def _run(
        self,
        definition: PlaybookDefinition,
        event: Event,
        execution_id: str,
        dry_run: bool,
    ) -> ExecutionRecord | None:
        async with self._semaphore:
            try:
                return await self._executor.execute(
                    definition,
                    event,
                    dry_run=dry_run,
                    execution_id=execution_id,
                )
            except Exception as e:
                self._logger.error(
                    "playbook_execution_error",
                    playbook_id=definition.id,
                    execution_id=execution_id,
                    event_id=event.id,
                    error=str(e),
                    exc_info=True,
                )
                return None
