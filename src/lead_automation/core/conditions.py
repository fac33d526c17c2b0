"""
Condition evaluator for smart condition nodes
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..models.workflow import SmartConditionNode, ConditionKind, utcnow
from ..models.execution import Execution
from ..integrations.subjects import SubjectDirectory, render_conversation
from ..integrations.text_generation import TextGenerator, SubjectContext
from ..monitoring import MetricsRecorder


logger = logging.getLogger(__name__)


DEFAULT_REPLY_WINDOW = timedelta(hours=1)

RULE_PROMPT_TEMPLATE = """You are evaluating a condition for a workflow automation.

Condition to check: {rule}

Context:
- Lead ID: {subject_id}
- Recent conversation:
{conversation}

Respond with ONLY "true" or "false" based on whether the condition is met."""


def response_is_true(response: str) -> bool:
    """A reasoning response counts as true when it mentions the token ``true``"""
    return "true" in response.strip().lower()


class ConditionEvaluator:
    """Decides the branch taken by a smart condition node. Never raises."""

    def __init__(
        self,
        subjects: SubjectDirectory,
        text_generator: TextGenerator,
        reply_window: timedelta = DEFAULT_REPLY_WINDOW,
        conversation_limit: int = 10,
        clock: Callable[[], datetime] = utcnow,
        metrics: Optional[MetricsRecorder] = None
    ):
        self.subjects = subjects
        self.text_generator = text_generator
        self.reply_window = reply_window
        self.conversation_limit = conversation_limit
        self.clock = clock
        self.metrics = metrics or MetricsRecorder()

    async def evaluate(self, node: SmartConditionNode, execution: Execution) -> bool:
        if node.condition is ConditionKind.REPLIED_RECENTLY:
            return await self.replied_recently(node, execution)
        if node.condition is ConditionKind.NATURAL_LANGUAGE_RULE:
            return await self.natural_language_rule(node, execution)

        logger.warning(f"Unsupported condition kind {node.condition} on node {node.id}")
        return False

    async def replied_recently(self, node: SmartConditionNode, execution: Execution) -> bool:
        try:
            last_inbound = await self.subjects.last_inbound_message_at(execution.subject_id)
        except Exception as e:
            logger.error(
                f"Could not load last inbound message for subject {execution.subject_id}: {e}",
                exc_info=True
            )
            self.metrics.inc("condition_failures", {"kind": node.condition.value})
            return False

        if last_inbound is None:
            return False

        threshold = node.recency_threshold or self.reply_window
        return self.clock() - last_inbound < threshold

    async def natural_language_rule(self, node: SmartConditionNode, execution: Execution) -> bool:
        if not node.rule_text:
            return False

        try:
            conversation = ""
            if execution.channel_id:
                messages = await self.subjects.recent_messages(
                    execution.channel_id, self.conversation_limit
                )
                conversation = render_conversation(messages)

            prompt = RULE_PROMPT_TEMPLATE.format(
                rule=node.rule_text,
                subject_id=execution.subject_id,
                conversation=conversation or "(no messages)"
            )
            response = await self.text_generator.complete(
                prompt,
                SubjectContext(
                    subject_id=execution.subject_id,
                    channel_id=execution.channel_id,
                    context_data=execution.context_data
                )
            )
        except Exception as e:
            logger.error(f"Error evaluating rule on node {node.id}: {e}", exc_info=True)
            self.metrics.inc("condition_failures", {"kind": node.condition.value})
            return False

        return response_is_true(response or "")
