"""
Workflow definition model: nodes, edges and the trigger that starts a workflow
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple, Union
from uuid import uuid4


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class NodeKind(Enum):
    """Node types understood by the engine"""
    TRIGGER = "trigger"
    MESSAGE = "message"
    WAIT = "wait"
    SMART_CONDITION = "smart_condition"
    STOP_AUTOMATION = "stop_automation"
    UNKNOWN = "unknown"


class TriggerType(Enum):
    """Events that can start a workflow"""
    STAGE_CHANGE = "stage_change"
    APPOINTMENT_BOOKED = "appointment_booked"
    DIGITAL_PRODUCT_PURCHASED = "digital_product_purchased"


class MessageMode(Enum):
    """How a message node obtains its text"""
    STATIC = "static"
    GENERATED = "generated"


class WaitUnit(Enum):
    """Units accepted by wait nodes"""
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    def to_timedelta(self, amount: int) -> timedelta:
        if self is WaitUnit.DAYS:
            return timedelta(days=amount)
        if self is WaitUnit.HOURS:
            return timedelta(hours=amount)
        return timedelta(minutes=amount)


class ConditionKind(Enum):
    """Branching strategies of smart condition nodes"""
    REPLIED_RECENTLY = "replied_recently"
    NATURAL_LANGUAGE_RULE = "natural_language_rule"


TRUE_HANDLE = "true"
FALSE_HANDLE = "false"


@dataclass(frozen=True)
class TriggerNode:
    """Entry point of a workflow"""
    id: str
    label: str = ""

    kind = NodeKind.TRIGGER


@dataclass(frozen=True)
class MessageNode:
    """Sends static or generated text to the subject"""
    id: str
    label: str = ""
    mode: MessageMode = MessageMode.STATIC
    content: str = ""  # message text, or the instruction when generated

    kind = NodeKind.MESSAGE


@dataclass(frozen=True)
class WaitNode:
    """Suspends the execution for a fixed duration"""
    id: str
    label: str = ""
    amount: int = 5
    unit: WaitUnit = WaitUnit.MINUTES

    kind = NodeKind.WAIT

    @property
    def duration(self) -> timedelta:
        return self.unit.to_timedelta(self.amount)


@dataclass(frozen=True)
class SmartConditionNode:
    """Branches on the "true"/"false" handle"""
    id: str
    label: str = ""
    condition: ConditionKind = ConditionKind.REPLIED_RECENTLY
    rule_text: Optional[str] = None
    recency_threshold: Optional[timedelta] = None

    kind = NodeKind.SMART_CONDITION


@dataclass(frozen=True)
class StopAutomationNode:
    """Disables automation for the subject and stops the execution"""
    id: str
    label: str = ""
    reason: str = "Workflow stopped"

    kind = NodeKind.STOP_AUTOMATION


@dataclass(frozen=True)
class UnknownNode:
    """Node type written by a newer editor that this engine does not know"""
    id: str
    label: str = ""
    raw_type: str = ""
    payload: Dict[str, Any] = field(default_factory=dict, compare=False)

    kind = NodeKind.UNKNOWN


Node = Union[TriggerNode, MessageNode, WaitNode, SmartConditionNode, StopAutomationNode, UnknownNode]


@dataclass(frozen=True)
class Edge:
    """Directed edge, optionally labelled with a branch handle"""
    source: str
    target: str
    id: str = field(default_factory=lambda: str(uuid4()))
    branch_handle: Optional[str] = None


@dataclass(frozen=True)
class TriggerSpec:
    """Which external event starts the workflow"""
    type: TriggerType = TriggerType.STAGE_CHANGE
    stage_id: Optional[str] = None
    product_id: Optional[str] = None


@dataclass(frozen=True)
class Workflow:
    """Immutable workflow definition shared by all of its executions"""
    id: str = field(default_factory=lambda: str(uuid4()))
    name: str = ""
    trigger: TriggerSpec = field(default_factory=TriggerSpec)
    is_published: bool = False
    nodes: Dict[str, Node] = field(default_factory=dict)
    edges: Tuple[Edge, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def get_node(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    @property
    def trigger_node(self) -> Optional[TriggerNode]:
        for node in self.nodes.values():
            if isinstance(node, TriggerNode):
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def outgoing_edge(self, node_id: str, branch_handle: Optional[str] = None) -> Optional[Edge]:
        """
        Resolve the edge leaving ``node_id``.

        Without a handle the unlabeled edge is returned; with a handle, the
        edge carrying exactly that handle. ``None`` means end of path.
        """
        for edge in self.edges:
            if edge.source == node_id and edge.branch_handle == branch_handle:
                return edge
        return None

    def next_node_id(self, node_id: str, branch_handle: Optional[str] = None) -> Optional[str]:
        edge = self.outgoing_edge(node_id, branch_handle)
        return edge.target if edge else None

    def reachable_nodes(self) -> Set[str]:
        trigger = self.trigger_node
        if trigger is None:
            return set()

        seen = {trigger.id}
        stack = [trigger.id]
        while stack:
            current = stack.pop()
            for edge in self.outgoing_edges(current):
                if edge.target not in seen:
                    seen.add(edge.target)
                    stack.append(edge.target)
        return seen

    def unreachable_nodes(self) -> Set[str]:
        return set(self.nodes) - self.reachable_nodes()
