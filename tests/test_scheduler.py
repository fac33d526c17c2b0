"""
Scheduler tests
"""
import asyncio

import pytest

from lead_automation.config import EngineSettings
from lead_automation.core.scheduler import ExecutionScheduler, TickResult
from lead_automation.exceptions import PersistenceError
from lead_automation.models.execution import ExecutionStatus
from lead_automation.runtime import build_runtime
from lead_automation.storage import InMemoryWorkflowRepository, InMemoryExecutionRepository


class BrokenClaimRepository(InMemoryExecutionRepository):
    """Claiming the executions in ``broken`` fails with a storage error"""

    def __init__(self):
        super().__init__()
        self.broken = set()

    async def claim(self, execution_id, claim_token, now, lease_until):
        if execution_id in self.broken:
            raise PersistenceError("connection reset")
        return await super().claim(execution_id, claim_token, now, lease_until)


@pytest.fixture
async def suspended(engine, welcome_definition):
    """A welcome execution parked on its one day wait"""
    workflow = await engine.create_workflow(welcome_definition)
    await engine.publish_workflow(workflow.id)
    return await engine.start_execution(workflow.id, "lead-1", channel_id="psid-1")


class TestExecutionScheduler:

    async def test_tick_before_due_does_nothing(self, scheduler, suspended, clock, messaging):
        clock.advance(hours=23)

        result = await scheduler.tick()

        assert result.due == 0
        assert result.resumed == []
        assert messaging.messages_for("psid-1") == ["Welcome"]

    async def test_tick_resumes_at_resolved_node(self, scheduler, engine, suspended, clock, metrics):
        assert suspended.current_node_id == "replied"
        clock.advance(days=1)

        result = await scheduler.tick()

        assert result.due == 1
        assert result.resumed == [suspended.id]
        assert result.statuses[suspended.id] is ExecutionStatus.STOPPED
        assert metrics.total("executions_resumed") == 1

        events = await engine.list_events(suspended.id)
        resumed = [e for e in events if e.event_type.value == "execution_resumed"]
        assert resumed[0].node_id == "replied"

    async def test_second_tick_does_not_rerun(self, scheduler, suspended, clock, automation):
        clock.advance(days=1)

        await scheduler.tick()
        second = await scheduler.tick()

        assert second.due == 0
        assert len(automation.calls) == 1

    async def test_concurrent_ticks_run_once(self, scheduler, engine, suspended, clock, subjects, messaging):
        clock.advance(hours=1)
        subjects.record_inbound("lead-1", "psid-1", "yes please", at=clock())
        clock.advance(hours=23)
        other = ExecutionScheduler(engine)

        first, second = await asyncio.gather(scheduler.tick(), other.tick())

        assert first.resumed_count + second.resumed_count == 1
        assert messaging.messages_for("psid-1") == ["Welcome", "Great, let's continue"]

    async def test_tick_with_explicit_time(self, scheduler, suspended, clock):
        result = await scheduler.tick(now=suspended.scheduled_for)

        assert result.resumed == [suspended.id]

    async def test_executions_reach_a_terminal_state(self, scheduler, engine, make_definition, clock):
        definition = make_definition([
            {"id": "first", "type": "message", "config": {"content": "Day one"}},
            {"id": "wait-a", "type": "wait", "config": {"amount": 2, "unit": "hours"}},
            {"id": "second", "type": "message", "config": {"content": "Day one, later"}},
            {"id": "wait-b", "type": "wait", "config": {"amount": 1, "unit": "days"}},
            {"id": "third", "type": "message", "config": {"content": "Day two"}},
        ])
        workflow = await engine.create_workflow(definition)
        await engine.publish_workflow(workflow.id)
        execution = await engine.start_execution(workflow.id, "lead-1", channel_id="psid-1")

        ticks = 0
        while execution.status is ExecutionStatus.PENDING and ticks < 10:
            clock.advance_to(execution.scheduled_for)
            await scheduler.tick()
            execution = await engine.get_execution(execution.id)
            ticks += 1

        assert execution.status is ExecutionStatus.COMPLETED
        assert ticks == 2

    async def test_batch_size_limits_tick(self, engine, welcome_definition, clock):
        workflow = await engine.create_workflow(welcome_definition)
        await engine.publish_workflow(workflow.id)
        for i in range(3):
            await engine.start_execution(workflow.id, f"lead-{i}", channel_id=f"psid-{i}")
        scheduler = ExecutionScheduler(engine, batch_size=2)
        clock.advance(days=1)

        first = await scheduler.tick()
        second = await scheduler.tick()

        assert first.resumed_count == 2
        assert second.resumed_count == 1

    async def test_run_forever_stops_after_max_ticks(self, scheduler, suspended, clock):
        clock.advance(days=1)

        await scheduler.run_forever(interval=0.01, max_ticks=2)

        assert (await scheduler.engine.get_execution(suspended.id)).status is ExecutionStatus.STOPPED

    async def test_start_and_stop(self, scheduler):
        await scheduler.start(interval=0.01)
        await asyncio.sleep(0.03)
        await scheduler.stop()

        assert scheduler._poll_task is None

    def test_tick_result_to_dict(self, clock):
        result = TickResult(started_at=clock(), due=1, resumed=["e1"], statuses={"e1": ExecutionStatus.COMPLETED})

        assert result.to_dict()["statuses"] == {"e1": "completed"}
        assert result.to_dict()["started_at"] == clock().isoformat()
        assert result.to_dict()["failed"] == []


class TestTickIsolation:

    @pytest.fixture
    def repository(self):
        return BrokenClaimRepository()

    @pytest.fixture
    def isolated_runtime(self, repository, messaging, clock, metrics):
        return build_runtime(
            EngineSettings(), InMemoryWorkflowRepository(), repository,
            messaging=messaging, clock=clock, metrics=metrics
        )

    @pytest.fixture
    async def two_waiting(self, isolated_runtime, make_definition):
        engine = isolated_runtime.engine
        workflow = await engine.create_workflow(make_definition([
            {"id": "pause", "type": "wait", "config": {"amount": 10, "unit": "minutes"}},
            {"id": "after", "type": "message", "config": {"content": "after"}},
        ]))
        await engine.publish_workflow(workflow.id)
        first = await engine.start_execution(workflow.id, "lead-a", channel_id="psid-a")
        second = await engine.start_execution(workflow.id, "lead-b", channel_id="psid-b")
        return first, second

    async def test_failing_execution_does_not_abort_tick(
        self, isolated_runtime, repository, two_waiting, clock, messaging
    ):
        first, second = two_waiting
        repository.broken.add(first.id)
        clock.advance(minutes=10)

        result = await isolated_runtime.scheduler.tick()

        assert result.due == 2
        assert result.failed == [first.id]
        assert result.resumed == [second.id]
        assert messaging.messages_for("psid-b") == ["after"]
        assert messaging.messages_for("psid-a") == []

    async def test_failed_execution_is_retried_next_tick(
        self, isolated_runtime, repository, two_waiting, clock, messaging
    ):
        first, _ = two_waiting
        repository.broken.add(first.id)
        clock.advance(minutes=10)
        await isolated_runtime.scheduler.tick()

        repository.broken.clear()
        result = await isolated_runtime.scheduler.tick()

        assert result.resumed == [first.id]
        assert result.failed == []
        assert messaging.messages_for("psid-a") == ["after"]

    async def test_vanished_execution_is_reported(self, isolated_runtime, repository, two_waiting, clock):
        first, second = two_waiting
        clock.advance(minutes=10)
        original_get = repository.get

        async def get(execution_id):
            if execution_id == first.id:
                return None
            return await original_get(execution_id)

        repository.get = get

        result = await isolated_runtime.scheduler.tick()

        assert result.failed == [first.id]
        assert result.resumed == [second.id]
