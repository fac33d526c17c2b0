"""
Lead automation usage example
"""
import asyncio
import logging
from pathlib import Path

from lead_automation.clock import ManualClock
from lead_automation.integrations import (
    InMemoryMessagingChannel, InMemorySubjectDirectory, ScriptedTextGenerator
)
from lead_automation.runtime import build_in_memory_runtime


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

EXAMPLES = Path(__file__).parent


async def example_welcome_followup(reply: bool):
    """Welcome a new lead, wait a day, continue only if they replied"""
    print(f"\n=== Welcome and follow-up (lead replies: {reply}) ===")

    clock = ManualClock()
    messaging = InMemoryMessagingChannel(clock=clock)
    subjects = InMemorySubjectDirectory()
    runtime = build_in_memory_runtime(messaging=messaging, subjects=subjects, clock=clock)

    workflow = await runtime.engine.create_workflow(EXAMPLES / "welcome_followup.yaml")
    await runtime.engine.publish_workflow(workflow.id)

    executions = await runtime.dispatcher.stage_changed("new-lead", "lead-42", channel_id="psid-42")
    execution = executions[0]
    print(f"Started {execution.id}: status={execution.status.value}, resumes at {execution.scheduled_for}")

    if reply:
        clock.advance(hours=3)
        subjects.record_inbound("lead-42", "psid-42", "Thanks! Tell me more", at=clock())

    clock.advance(days=1)
    result = await runtime.scheduler.tick()
    print(f"Tick resumed {result.resumed_count} execution(s)")

    execution = await runtime.engine.get_execution(execution.id)
    print(f"Final status: {execution.status.value}")
    print(f"Messages sent: {messaging.messages_for('psid-42')}")
    print(f"Automation disabled: {runtime.automation.disabled}")


async def example_editor_definition():
    """Editor-format workflow with a generated message"""
    print("\n=== Editor definition with generated message ===")

    clock = ManualClock()
    messaging = InMemoryMessagingChannel(clock=clock)
    runtime = build_in_memory_runtime(
        messaging=messaging,
        text_generator=ScriptedTextGenerator("Thanks for buying the course! How did you hear about us?"),
        clock=clock
    )

    workflow = await runtime.engine.create_workflow(EXAMPLES / "editor_workflow.json")
    await runtime.engine.publish_workflow(workflow.id)

    executions = await runtime.dispatcher.product_purchased("course-101", "lead-7", channel_id="psid-7")
    print(f"Started {len(executions)} execution(s)")
    print(f"Messages sent: {messaging.messages_for('psid-7')}")

    events = await runtime.engine.list_events(executions[0].id)
    for event in events:
        print(f"  {event.event_type.value} {event.node_id or ''}")


async def main():
    await example_welcome_followup(reply=True)
    await example_welcome_followup(reply=False)
    await example_editor_definition()


if __name__ == "__main__":
    asyncio.run(main())
