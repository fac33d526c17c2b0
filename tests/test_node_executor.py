"""
Node executor tests
"""
from datetime import timedelta

import pytest

from lead_automation.core.executor import NodeExecutor
from lead_automation.core.parser import WorkflowParser
from lead_automation.exceptions import ExecutionClaimLostError
from lead_automation.integrations import SYSTEM_NOTIFICATION
from lead_automation.models.execution import Execution, ExecutionStatus, StepKind


@pytest.fixture
def executor(messaging, text_generator, automation, subjects, clock, metrics):
    return NodeExecutor(messaging, text_generator, automation, subjects, clock=clock, metrics=metrics)


@pytest.fixture
def execution():
    return Execution(workflow_id="wf", subject_id="lead-1", context_data={"channel_id": "psid-1"})


@pytest.fixture
def workflow(make_definition):
    definition = make_definition([
        {"id": "static", "type": "message", "config": {"content": "Hello there"}},
        {"id": "generated", "type": "message",
         "config": {"mode": "generated", "content": "Greet the customer by name"}},
        {"id": "pause", "type": "wait", "config": {"amount": 5, "unit": "minutes"}},
        {"id": "mystery", "type": "custom", "data": {"type": "add_tag"}},
        {"id": "stop", "type": "stop_automation", "config": {"reason": "done"}},
    ])
    return WorkflowParser().parse(definition)


class TestMessageNode:

    async def test_static_message(self, executor, workflow, execution, messaging, metrics):
        step = await executor.execute(workflow.nodes["static"], execution, workflow)

        assert step.kind is StepKind.ADVANCE
        assert step.next_node_id == "generated"
        assert messaging.messages_for("psid-1") == ["Hello there"]
        assert messaging.sent[0].hint == SYSTEM_NOTIFICATION
        assert metrics.total("messages_sent") == 1

    async def test_generated_message(self, executor, workflow, execution, messaging, text_generator, subjects):
        text_generator.responses = "  Hi Ana, welcome!  "
        subjects.record_inbound("lead-1", "psid-1", "I'm Ana")

        await executor.execute(workflow.nodes["generated"], execution, workflow)

        assert messaging.messages_for("psid-1") == ["Hi Ana, welcome!"]
        assert "Greet the customer by name" in text_generator.prompts[0]
        assert "Customer: I'm Ana" in text_generator.prompts[0]

    async def test_generation_failure_sends_instruction(
        self, executor, workflow, execution, messaging, text_generator, metrics
    ):
        text_generator.fail_with = "timeout"

        step = await executor.execute(workflow.nodes["generated"], execution, workflow)

        assert step.kind is StepKind.ADVANCE
        assert messaging.messages_for("psid-1") == ["Greet the customer by name"]
        assert metrics.total("generation_fallbacks") == 1

    async def test_empty_generation_sends_instruction(
        self, executor, workflow, execution, messaging, text_generator, metrics
    ):
        text_generator.responses = "   "

        await executor.execute(workflow.nodes["generated"], execution, workflow)

        assert messaging.messages_for("psid-1") == ["Greet the customer by name"]
        assert metrics.total("generation_fallbacks") == 1

    async def test_delivery_failure_still_advances(self, executor, workflow, execution, messaging, metrics):
        messaging.fail_with = "channel closed"

        step = await executor.execute(workflow.nodes["static"], execution, workflow)

        assert step.kind is StepKind.ADVANCE
        assert step.next_node_id == "generated"
        assert metrics.total("message_delivery_failures") == 1
        assert metrics.total("messages_sent") == 0

    async def test_missing_channel(self, executor, workflow, messaging, metrics):
        execution = Execution(workflow_id="wf", subject_id="lead-1")

        step = await executor.execute(workflow.nodes["static"], execution, workflow)

        assert step.kind is StepKind.ADVANCE
        assert messaging.sent == []
        assert metrics.total("message_delivery_failures") == 1

    async def test_sent_message_joins_conversation(self, executor, workflow, execution, text_generator, subjects, clock):
        subjects.record_inbound("lead-1", "psid-1", "Hi", at=clock())
        clock.advance(minutes=1)
        await executor.execute(workflow.nodes["static"], execution, workflow)
        text_generator.responses = "How can I help?"
        clock.advance(minutes=1)

        await executor.execute(workflow.nodes["generated"], execution, workflow)

        assert "Customer: Hi\nBot: Hello there" in text_generator.prompts[0]
        roles = [m.role for m in await subjects.recent_messages("psid-1")]
        assert roles == ["user", "assistant", "assistant"]

    async def test_failed_delivery_stays_out_of_conversation(self, executor, workflow, execution, messaging, subjects):
        messaging.fail_with = "channel closed"

        await executor.execute(workflow.nodes["static"], execution, workflow)

        assert await subjects.recent_messages("psid-1") == []

    async def test_lost_claim_skips_send(self, executor, workflow, execution, messaging, metrics):
        async def claim_lost():
            raise ExecutionClaimLostError(execution.id)

        with pytest.raises(ExecutionClaimLostError):
            await executor.execute(workflow.nodes["static"], execution, workflow, claim_lost)

        assert messaging.sent == []
        assert metrics.total("messages_sent") == 0


class TestControlNodes:

    async def test_trigger_advances(self, executor, workflow, execution):
        step = await executor.execute(workflow.nodes["trigger"], execution, workflow)

        assert step.kind is StepKind.ADVANCE
        assert step.next_node_id == "static"

    async def test_wait_suspends(self, executor, workflow, execution, clock):
        step = await executor.execute(workflow.nodes["pause"], execution, workflow)

        assert step.kind is StepKind.SUSPEND
        assert step.resume_at == clock() + timedelta(minutes=5)
        assert step.next_node_id == "mystery"

    async def test_unknown_node_passes_through(self, executor, workflow, execution, messaging):
        step = await executor.execute(workflow.nodes["mystery"], execution, workflow)

        assert step.kind is StepKind.ADVANCE
        assert step.next_node_id == "stop"
        assert messaging.sent == []

    async def test_stop_disables_automation_once(self, executor, workflow, execution, automation):
        step = await executor.execute(workflow.nodes["stop"], execution, workflow)

        assert step.kind is StepKind.TERMINATE
        assert step.terminal_status is ExecutionStatus.STOPPED
        assert automation.calls == [("lead-1", "done")]
        assert automation.is_disabled("lead-1")

    async def test_stop_when_switch_fails(self, executor, workflow, execution, automation):
        automation.fail_with = "crm down"

        step = await executor.execute(workflow.nodes["stop"], execution, workflow)

        assert step.terminal_status is ExecutionStatus.STOPPED
        assert len(automation.calls) == 1

    async def test_stop_with_lost_claim_leaves_automation_on(self, executor, workflow, execution, automation):
        async def claim_lost():
            raise ExecutionClaimLostError(execution.id)

        with pytest.raises(ExecutionClaimLostError):
            await executor.execute(workflow.nodes["stop"], execution, workflow, claim_lost)

        assert automation.calls == []

    async def test_last_node_terminates(self, executor, make_definition, execution):
        workflow = WorkflowParser().parse(make_definition([
            {"id": "only", "type": "message", "config": {"content": "Bye"}},
        ]))

        step = await executor.execute(workflow.nodes["only"], execution, workflow)

        assert step.kind is StepKind.TERMINATE
        assert step.terminal_status is ExecutionStatus.COMPLETED
