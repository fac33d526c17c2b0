"""
Pytest configuration and fixtures
"""
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import pytest

from lead_automation.clock import ManualClock
from lead_automation.config import EngineSettings
from lead_automation.integrations import (
    InMemoryMessagingChannel, InMemorySubjectDirectory,
    InMemoryAutomationSwitch, ScriptedTextGenerator
)
from lead_automation.monitoring import MetricsRecorder
from lead_automation.runtime import AutomationRuntime, build_in_memory_runtime, create_database_runtime
from lead_automation.storage import DatabaseManager


pytest_plugins = ("pytest_asyncio",)


START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

EXAMPLES_DIR = Path(__file__).parent.parent / "examples"


@pytest.fixture
def examples_dir() -> Path:
    return EXAMPLES_DIR


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def messaging(clock) -> InMemoryMessagingChannel:
    return InMemoryMessagingChannel(clock=clock)


@pytest.fixture
def subjects() -> InMemorySubjectDirectory:
    return InMemorySubjectDirectory()


@pytest.fixture
def automation() -> InMemoryAutomationSwitch:
    return InMemoryAutomationSwitch()


@pytest.fixture
def text_generator() -> ScriptedTextGenerator:
    return ScriptedTextGenerator()


@pytest.fixture
def metrics() -> MetricsRecorder:
    return MetricsRecorder()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def runtime(settings, messaging, text_generator, automation, subjects, clock, metrics) -> AutomationRuntime:
    """In-memory runtime with every collaborator observable from the test"""
    return build_in_memory_runtime(
        settings,
        messaging=messaging,
        text_generator=text_generator,
        automation=automation,
        subjects=subjects,
        clock=clock,
        metrics=metrics
    )


@pytest.fixture
def engine(runtime):
    return runtime.engine


@pytest.fixture
def scheduler(runtime):
    return runtime.scheduler


@pytest.fixture
def dispatcher(runtime):
    return runtime.dispatcher


@pytest.fixture
async def test_database(tmp_path) -> AsyncGenerator[DatabaseManager, None]:
    """SQLite database in a temporary file"""
    db_manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}")
    await db_manager.initialize()

    yield db_manager

    await db_manager.close()


@pytest.fixture
async def database_runtime(
    tmp_path, messaging, text_generator, automation, subjects, clock, metrics
) -> AsyncGenerator[AutomationRuntime, None]:
    """Runtime backed by SQLAlchemy repositories on a temporary SQLite file"""
    settings = EngineSettings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'runtime.db'}")
    runtime = await create_database_runtime(
        settings,
        messaging=messaging,
        text_generator=text_generator,
        automation=automation,
        subjects=subjects,
        clock=clock,
        metrics=metrics
    )

    yield runtime

    await runtime.close()


@pytest.fixture
def welcome_definition() -> Dict[str, Any]:
    """Welcome a new lead, wait a day, continue if they replied, otherwise stop"""
    return {
        "workflow": {
            "name": "Welcome and follow-up",
            "trigger": {"type": "stage_change", "stage_id": "new-lead"},
            "nodes": [
                {"id": "trigger", "type": "trigger"},
                {"id": "welcome", "type": "message", "config": {"mode": "static", "content": "Welcome"}},
                {"id": "wait-1d", "type": "wait", "config": {"amount": 1, "unit": "days"}},
                {"id": "replied", "type": "smart_condition",
                 "config": {"kind": "replied_recently", "threshold_minutes": 1440}},
                {"id": "continue", "type": "message",
                 "config": {"mode": "static", "content": "Great, let's continue"}},
                {"id": "stop", "type": "stop_automation", "config": {"reason": "no reply"}},
            ],
            "edges": [
                {"from": "trigger", "to": "welcome"},
                {"from": "welcome", "to": "wait-1d"},
                {"from": "wait-1d", "to": "replied"},
                {"from": "replied", "to": "continue", "handle": "true"},
                {"from": "replied", "to": "stop", "handle": "false"},
            ]
        }
    }


@pytest.fixture
def make_definition() -> Callable[..., Dict[str, Any]]:
    """
    Build a plain definition from a list of nodes.

    Without explicit edges the nodes are chained in the given order, and a
    trigger node is prepended unless one is listed.
    """
    def _make(
        nodes: List[Dict[str, Any]],
        edges: Optional[List[Dict[str, Any]]] = None,
        trigger: Optional[Dict[str, Any]] = None,
        name: str = "Test workflow"
    ) -> Dict[str, Any]:
        nodes = list(nodes)
        if not any(n.get("type") == "trigger" for n in nodes):
            nodes.insert(0, {"id": "trigger", "type": "trigger"})
        if edges is None:
            edges = [
                {"from": a["id"], "to": b["id"]}
                for a, b in zip(nodes, nodes[1:])
            ]
        return {
            "workflow": {
                "name": name,
                "trigger": trigger or {"type": "stage_change", "stage_id": "new-lead"},
                "nodes": nodes,
                "edges": edges,
            }
        }

    return _make
