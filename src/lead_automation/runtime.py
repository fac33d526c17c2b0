"""
Wiring of engine, scheduler, dispatcher and collaborators from settings
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .config import EngineSettings
from .core.conditions import ConditionEvaluator
from .core.engine import WorkflowEngine
from .core.executor import NodeExecutor
from .core.scheduler import ExecutionScheduler
from .core.triggers import TriggerDispatcher
from .integrations import (
    MessagingChannel, InMemoryMessagingChannel, MessengerChannel,
    TextGenerator, ScriptedTextGenerator, OpenAITextGenerator,
    AutomationSwitch, InMemoryAutomationSwitch,
    SubjectDirectory, InMemorySubjectDirectory
)
from .models.workflow import utcnow
from .monitoring import MetricsRecorder, EventLogger
from .storage import (
    WorkflowRepository, ExecutionRepository,
    InMemoryWorkflowRepository, InMemoryExecutionRepository,
    DatabaseManager, SQLAlchemyWorkflowRepository, SQLAlchemyExecutionRepository
)


logger = logging.getLogger(__name__)


@dataclass
class AutomationRuntime:
    """Everything a process needs to run workflows"""
    settings: EngineSettings
    engine: WorkflowEngine
    scheduler: ExecutionScheduler
    dispatcher: TriggerDispatcher
    messaging: MessagingChannel
    text_generator: TextGenerator
    automation: AutomationSwitch
    subjects: SubjectDirectory
    metrics: MetricsRecorder
    db_manager: Optional[DatabaseManager] = None
    started_at: datetime = field(default_factory=utcnow)

    async def close(self):
        if self.db_manager:
            await self.db_manager.close()


def build_runtime(
    settings: EngineSettings,
    workflow_repository: WorkflowRepository,
    execution_repository: ExecutionRepository,
    messaging: Optional[MessagingChannel] = None,
    text_generator: Optional[TextGenerator] = None,
    automation: Optional[AutomationSwitch] = None,
    subjects: Optional[SubjectDirectory] = None,
    clock: Callable[[], datetime] = utcnow,
    metrics: Optional[MetricsRecorder] = None,
    db_manager: Optional[DatabaseManager] = None
) -> AutomationRuntime:
    """Assemble a runtime; collaborators not given are picked from settings"""
    metrics = metrics or MetricsRecorder()
    messaging = messaging or _default_messaging(settings)
    text_generator = text_generator or _default_text_generator(settings)
    automation = automation or InMemoryAutomationSwitch()
    subjects = subjects or InMemorySubjectDirectory()

    evaluator = ConditionEvaluator(
        subjects,
        text_generator,
        reply_window=settings.reply_window,
        conversation_limit=settings.conversation_context_limit,
        clock=clock,
        metrics=metrics
    )
    executor = NodeExecutor(
        messaging,
        text_generator,
        automation,
        subjects,
        condition_evaluator=evaluator,
        conversation_limit=settings.conversation_context_limit,
        clock=clock,
        metrics=metrics
    )
    engine = WorkflowEngine(
        workflow_repository,
        execution_repository,
        executor,
        settings=settings,
        clock=clock,
        metrics=metrics,
        event_logger=EventLogger()
    )

    return AutomationRuntime(
        settings=settings,
        engine=engine,
        scheduler=ExecutionScheduler(engine),
        dispatcher=TriggerDispatcher(engine),
        messaging=messaging,
        text_generator=text_generator,
        automation=automation,
        subjects=subjects,
        metrics=metrics,
        db_manager=db_manager
    )


def build_in_memory_runtime(settings: Optional[EngineSettings] = None, **kwargs) -> AutomationRuntime:
    """Runtime backed by in-memory repositories"""
    return build_runtime(
        settings or EngineSettings(),
        InMemoryWorkflowRepository(),
        InMemoryExecutionRepository(),
        **kwargs
    )


async def create_database_runtime(settings: EngineSettings, **kwargs) -> AutomationRuntime:
    """Runtime backed by the database named in ``settings.database_url``"""
    db_manager = DatabaseManager(settings.database_url)
    await db_manager.initialize()
    return build_runtime(
        settings,
        SQLAlchemyWorkflowRepository(db_manager),
        SQLAlchemyExecutionRepository(db_manager),
        db_manager=db_manager,
        **kwargs
    )


def _default_messaging(settings: EngineSettings) -> MessagingChannel:
    if settings.messenger_page_token:
        return MessengerChannel(
            settings.messenger_page_token,
            api_version=settings.messenger_api_version
        )
    logger.warning("MESSENGER_PAGE_TOKEN not set, outbound messages are kept in memory")
    return InMemoryMessagingChannel()


def _default_text_generator(settings: EngineSettings) -> TextGenerator:
    if settings.openai_api_key:
        return OpenAITextGenerator(
            settings.openai_api_key,
            model=settings.openai_model,
            timeout=settings.openai_timeout_seconds,
            max_retries=settings.openai_max_retries
        )
    logger.warning(
        "OPENAI_API_KEY not set, generated messages fall back to their instruction "
        "and natural language conditions evaluate false"
    )
    return ScriptedTextGenerator()
