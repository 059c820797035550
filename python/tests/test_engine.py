"""Tests for the engine wiring of bus, matcher and executor."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from structlog.testing import capture_logs

from rw_soar.config import EngineConfig
from rw_soar.engine import PlaybookEngine
from rw_soar.errors import PlaybookNotFound
from rw_soar.events.bus import WILDCARD, EventBus
from rw_soar.playbook.execution import ExecutionStatus, StepStatus
from rw_soar.playbook.source import InMemoryPlaybookSource
from tests.fixtures import (
    RecordingAction,
    SampleEvents,
    SlowAction,
    create_event,
    create_playbook,
    create_registry,
)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def notify():
    return RecordingAction("notify_channel")


@pytest.fixture
def critical_playbook():
    return create_playbook(
        [{"id": "s1", "uses": "notify_channel", "with": {"message": "Alert on {{ host }}"}}],
        playbook_id="critical",
        trigger_filter={"severity": "critical"},
    )


@pytest.fixture
def engine(bus, notify, critical_playbook, store, fast_config):
    return PlaybookEngine(
        bus=bus,
        source=InMemoryPlaybookSource([critical_playbook]),
        registry=create_registry(notify),
        store=store,
        config=fast_config,
    )


# =============================================================================
# Event handling
# =============================================================================


class TestEventHandling:
    @pytest.mark.asyncio
    async def test_published_event_runs_matching_playbook(self, engine, bus, notify, store):
        engine.start()

        bus.publish(SampleEvents.critical_alert())
        await bus.drain()
        await engine.wait_idle()

        assert notify.calls[0][0] == {"message": "Alert on ws-0142"}
        [record] = await store.list_executions()
        assert record.playbook_id == "critical"
        assert record.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unmatched_event_runs_nothing(self, engine, bus, notify, store):
        engine.start()

        bus.publish(SampleEvents.low_alert())
        await bus.drain()
        await engine.wait_idle()

        assert notify.calls == []
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_handle_event_returns_tasks(self, engine):
        tasks = await engine.handle_event(SampleEvents.critical_alert())

        assert len(tasks) == 1
        record = await tasks[0]
        assert record.steps["s1"].status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_each_match_runs_independently(self, bus, store, fast_config):
        notify = RecordingAction("notify_channel")
        source = InMemoryPlaybookSource(
            [
                create_playbook([{"id": "s1", "uses": "notify_channel"}], playbook_id="a"),
                create_playbook([{"id": "s1", "uses": "missing"}], playbook_id="b"),
            ]
        )
        engine = PlaybookEngine(bus, source, create_registry(notify), store, fast_config)

        tasks = await engine.handle_event(SampleEvents.critical_alert())
        records = await asyncio.gather(*tasks)

        statuses = {r.playbook_id: r.status for r in records}
        assert statuses == {"a": ExecutionStatus.COMPLETED, "b": ExecutionStatus.FAILED}

    @pytest.mark.asyncio
    async def test_matching_errors_are_logged(self, bus, store):
        source = AsyncMock()
        source.list_playbooks.side_effect = ConnectionError("db down")
        engine = PlaybookEngine(bus, source, create_registry(), store)

        with capture_logs() as logs:
            tasks = await engine.handle_event(SampleEvents.critical_alert())

        assert tasks == []
        assert any(e["event"] == "trigger_matching_failed" for e in logs)

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, bus, store):
        slow = SlowAction("slow", seconds=0.05)
        playbooks = [
            create_playbook([{"id": "s1", "uses": "slow"}], playbook_id=f"pb{i}") for i in range(3)
        ]
        engine = PlaybookEngine(
            bus,
            InMemoryPlaybookSource(playbooks),
            create_registry(slow),
            store,
            EngineConfig(max_concurrent_executions=1),
        )

        tasks = await engine.handle_event(SampleEvents.critical_alert())
        await asyncio.sleep(0.01)

        assert slow.calls == 1
        assert len(engine.running_executions()) == 3

        await asyncio.gather(*tasks)
        assert slow.calls == 3
        assert engine.running_executions() == []


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_subscribes_to_all_events(self, engine, bus):
        engine.start()
        engine.start()

        assert engine.is_running
        assert bus.subscriber_count(WILDCARD) == 1

        await engine.stop()

        assert not engine.is_running
        assert bus.subscriber_count(WILDCARD) == 0

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_executions(self, bus, store, fast_config):
        slow = SlowAction("slow", seconds=0.02)
        engine = PlaybookEngine(
            bus,
            InMemoryPlaybookSource([create_playbook([{"id": "s1", "uses": "slow"}])]),
            create_registry(slow),
            store,
            fast_config,
        )
        engine.start()
        bus.publish(SampleEvents.critical_alert())
        await bus.drain()

        await engine.stop()

        assert engine.running_executions() == []
        [record] = await store.list_executions()
        assert record.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_redis_sink_attached_when_configured(self, bus, store):
        client = AsyncMock()
        config = EngineConfig(redis_url="redis://localhost:6379/0", event_stream_name="soc")
        engine = PlaybookEngine(bus, InMemoryPlaybookSource(), create_registry(), store, config)

        with patch("rw_soar.events.sinks.redis.Redis.from_url", return_value=client):
            engine.start()

        bus.publish(create_event())
        await bus.drain()
        await engine.stop()

        assert client.xadd.await_args.args[0] == "soc"
        client.aclose.assert_awaited_once()

    def test_defaults(self):
        engine = PlaybookEngine(bus=EventBus())
        assert set(engine.registry.list_actions()) == {"log_message", "delay", "set_variables"}


# =============================================================================
# Manual and test runs
# =============================================================================


class TestManualRuns:
    @pytest.mark.asyncio
    async def test_run_playbook(self, engine, notify):
        record = await engine.run_playbook("critical", {"host": "ws09"})

        assert record.status == ExecutionStatus.COMPLETED
        assert record.trigger_event_type == "manual.run"
        assert notify.calls[0][0] == {"message": "Alert on ws09"}

    @pytest.mark.asyncio
    async def test_run_unknown_playbook(self, engine):
        with pytest.raises(PlaybookNotFound):
            await engine.run_playbook("nope")

    @pytest.mark.asyncio
    async def test_run_playbook_of_other_organization(self, engine):
        with pytest.raises(PlaybookNotFound):
            await engine.run_playbook("critical", organization_id="2")

    @pytest.mark.asyncio
    async def test_test_playbook_is_simulated_and_not_stored(self, engine, notify, store):
        record = await engine.test_playbook("critical", {"host": "ws01"})

        assert record.status == ExecutionStatus.COMPLETED
        assert record.dry_run is True
        assert record.id.startswith("test-")
        assert record.variables["s1"] == {
            "action": "notify_channel",
            "simulated": True,
            "input": {"message": "Alert on ws01"},
        }
        assert notify.calls == []
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_test_playbook_live(self, engine, notify, critical_playbook, store):
        record = await engine.test_playbook(critical_playbook, {"host": "ws01"}, dry_run=False)

        assert record.dry_run is False
        assert len(notify.calls) == 1
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_test_unknown_playbook(self, engine):
        with pytest.raises(PlaybookNotFound):
            await engine.test_playbook("nope")
