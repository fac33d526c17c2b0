"""
Node executor: runs one node and tells the coordinator where to go next
"""
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from ..models.workflow import (
    Workflow, Node, NodeKind, TriggerNode, MessageNode, WaitNode,
    SmartConditionNode, StopAutomationNode, UnknownNode, MessageMode,
    TRUE_HANDLE, FALSE_HANDLE, utcnow
)
from ..models.execution import Execution, ExecutionStatus, NextStep
from ..exceptions import NodeExecutionError, ExecutionClaimLostError, PersistenceError
from ..integrations.messaging import MessagingChannel, SYSTEM_NOTIFICATION
from ..integrations.text_generation import TextGenerator, SubjectContext
from ..integrations.automation import AutomationSwitch
from ..integrations.subjects import SubjectDirectory, render_conversation
from ..monitoring import MetricsRecorder
from .conditions import ConditionEvaluator


logger = logging.getLogger(__name__)


MESSAGE_PROMPT_TEMPLATE = """Generate a message for this customer based on the following instruction:

Instruction: {instruction}

Recent conversation:
{conversation}

Respond with ONLY the message text to send, nothing else. Keep it natural and conversational."""


Checkpoint = Callable[[], Awaitable[None]]
NodeHandler = Callable[[Node, Execution, Workflow, Checkpoint], Awaitable[NextStep]]


async def no_checkpoint():
    pass


class NodeExecutor:
    """Dispatches a node by kind and performs its side effect"""

    def __init__(
        self,
        messaging: MessagingChannel,
        text_generator: TextGenerator,
        automation: AutomationSwitch,
        subjects: SubjectDirectory,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        conversation_limit: int = 10,
        clock: Callable[[], datetime] = utcnow,
        metrics: Optional[MetricsRecorder] = None
    ):
        self.messaging = messaging
        self.text_generator = text_generator
        self.automation = automation
        self.subjects = subjects
        self.conversation_limit = conversation_limit
        self.clock = clock
        self.metrics = metrics or MetricsRecorder()
        self.condition_evaluator = condition_evaluator or ConditionEvaluator(
            subjects,
            text_generator,
            conversation_limit=conversation_limit,
            clock=clock,
            metrics=self.metrics
        )

        self.handlers: Dict[NodeKind, NodeHandler] = {
            NodeKind.TRIGGER: self._execute_trigger,
            NodeKind.MESSAGE: self._execute_message,
            NodeKind.WAIT: self._execute_wait,
            NodeKind.SMART_CONDITION: self._execute_condition,
            NodeKind.STOP_AUTOMATION: self._execute_stop,
            NodeKind.UNKNOWN: self._execute_unknown,
        }
        missing = set(NodeKind) - set(self.handlers)
        if missing:
            raise TypeError(f"No handler for node kinds: {sorted(k.value for k in missing)}")

    async def execute(
        self,
        node: Node,
        execution: Execution,
        workflow: Workflow,
        checkpoint: Checkpoint = no_checkpoint
    ) -> NextStep:
        """
        Execute a single node; side-effect failures are logged, not raised.

        ``checkpoint`` is awaited right before an irreversible side effect
        (sending a message, disabling automation). The coordinator uses it to
        renew its claim and raises ExecutionClaimLostError when another worker
        has taken the execution over, so the side effect is skipped.
        """
        handler = self.handlers[node.kind]
        try:
            return await handler(node, execution, workflow, checkpoint)
        except (NodeExecutionError, ExecutionClaimLostError, PersistenceError):
            raise
        except Exception as e:
            raise NodeExecutionError(node.id, str(e), e)

    async def _execute_trigger(
        self, node: TriggerNode, execution: Execution, workflow: Workflow, checkpoint: Checkpoint
    ) -> NextStep:
        return NextStep.advance_or_terminate(workflow.next_node_id(node.id))

    async def _execute_message(
        self, node: MessageNode, execution: Execution, workflow: Workflow, checkpoint: Checkpoint
    ) -> NextStep:
        content = node.content
        if node.mode is MessageMode.GENERATED:
            content = await self._generate_message(node, execution)

        await checkpoint()
        await self._deliver(node, execution, content)
        return NextStep.advance_or_terminate(workflow.next_node_id(node.id))

    async def _generate_message(self, node: MessageNode, execution: Execution) -> str:
        """Render the instruction through the text generator, falling back to the instruction"""
        try:
            conversation = ""
            if execution.channel_id:
                messages = await self.subjects.recent_messages(execution.channel_id, self.conversation_limit)
                conversation = render_conversation(messages)

            prompt = MESSAGE_PROMPT_TEMPLATE.format(
                instruction=node.content,
                conversation=conversation
            )
            generated = await self.text_generator.complete(
                prompt,
                SubjectContext(
                    subject_id=execution.subject_id,
                    channel_id=execution.channel_id,
                    context_data=execution.context_data
                )
            )
        except Exception as e:
            logger.error(f"Error generating message for node {node.id}: {e}", exc_info=True)
            self.metrics.inc("generation_fallbacks")
            return node.content

        if not generated or not generated.strip():
            logger.warning(f"Empty generated message for node {node.id}, using instruction")
            self.metrics.inc("generation_fallbacks")
            return node.content
        return generated.strip()

    async def _deliver(self, node: MessageNode, execution: Execution, content: str):
        channel_id = execution.channel_id
        if not channel_id:
            logger.warning(f"Execution {execution.id} has no channel id, message from node {node.id} not sent")
            self.metrics.inc("message_delivery_failures")
            return

        try:
            result = await self.messaging.send(channel_id, content, SYSTEM_NOTIFICATION)
        except Exception as e:
            logger.error(f"Message delivery failed for execution {execution.id} node {node.id}: {e}", exc_info=True)
            self.metrics.inc("message_delivery_failures")
            return

        if not result.success:
            logger.error(f"Message delivery failed for execution {execution.id} node {node.id}: {result.error}")
            self.metrics.inc("message_delivery_failures")
            return

        self.metrics.inc("messages_sent")
        try:
            await self.subjects.record_sent(channel_id, content, self.clock())
        except Exception as e:
            logger.warning(f"Could not add sent message to the conversation of {channel_id}: {e}")

    async def _execute_wait(
        self, node: WaitNode, execution: Execution, workflow: Workflow, checkpoint: Checkpoint
    ) -> NextStep:
        resume_at = self.clock() + node.duration
        return NextStep.suspend(resume_at, workflow.next_node_id(node.id))

    async def _execute_condition(
        self, node: SmartConditionNode, execution: Execution, workflow: Workflow, checkpoint: Checkpoint
    ) -> NextStep:
        result = await self.condition_evaluator.evaluate(node, execution)
        handle = TRUE_HANDLE if result else FALSE_HANDLE
        logger.info(f"Condition {node.id} for execution {execution.id} evaluated {handle}")
        return NextStep.advance_or_terminate(workflow.next_node_id(node.id, handle))

    async def _execute_stop(
        self, node: StopAutomationNode, execution: Execution, workflow: Workflow, checkpoint: Checkpoint
    ) -> NextStep:
        await checkpoint()
        try:
            await self.automation.disable(execution.subject_id, node.reason)
        except Exception as e:
            logger.error(f"Could not disable automation for subject {execution.subject_id}: {e}", exc_info=True)
        return NextStep.terminate(ExecutionStatus.STOPPED)

    async def _execute_unknown(
        self, node: UnknownNode, execution: Execution, workflow: Workflow, checkpoint: Checkpoint
    ) -> NextStep:
        logger.warning(f"Unknown node type '{node.raw_type}' on node {node.id}, passing through")
        return NextStep.advance_or_terminate(workflow.next_node_id(node.id))
