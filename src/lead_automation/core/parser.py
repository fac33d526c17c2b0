"""
Workflow parser and validator
"""
import json
import logging
import math
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

import yaml

from ..models.workflow import (
    Workflow, Node, Edge, NodeKind, TriggerType, TriggerSpec,
    TriggerNode, MessageNode, WaitNode, SmartConditionNode,
    StopAutomationNode, UnknownNode, MessageMode, WaitUnit, ConditionKind
)
from ..exceptions import WorkflowParseError, WorkflowValidationError
from .schema import GraphSchemaValidator


logger = logging.getLogger(__name__)


# Node type names written by the visual editor and by hand-written definitions
NODE_TYPE_ALIASES = {
    "trigger": NodeKind.TRIGGER,
    "message": NodeKind.MESSAGE,
    "wait": NodeKind.WAIT,
    "smart_condition": NodeKind.SMART_CONDITION,
    "stop_bot": NodeKind.STOP_AUTOMATION,
    "stop_automation": NodeKind.STOP_AUTOMATION,
}

MESSAGE_MODE_ALIASES = {
    "custom": MessageMode.STATIC,
    "static": MessageMode.STATIC,
    "ai": MessageMode.GENERATED,
    "generated": MessageMode.GENERATED,
}

CONDITION_KIND_ALIASES = {
    "has_replied": ConditionKind.REPLIED_RECENTLY,
    "replied_recently": ConditionKind.REPLIED_RECENTLY,
    "repliedRecently": ConditionKind.REPLIED_RECENTLY,
    "ai_rule": ConditionKind.NATURAL_LANGUAGE_RULE,
    "natural_language_rule": ConditionKind.NATURAL_LANGUAGE_RULE,
    "naturalLanguageRule": ConditionKind.NATURAL_LANGUAGE_RULE,
}

DEFAULT_MESSAGE_TEXT = "Hello!"
DEFAULT_STOP_REASON = "Workflow stopped"

WHITE, GREY, BLACK = 0, 1, 2


def _whole_number(raw: Any) -> int:
    """Read a count the way the editor stores it: numbers or numeric strings, fraction dropped"""
    if isinstance(raw, bool):
        raise ValueError(raw)
    if isinstance(raw, int):
        return raw
    number = float(str(raw).strip())
    if not math.isfinite(number):
        raise ValueError(raw)
    return int(number)


def _field(payload: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """Return the first non-empty value among several spellings of a key"""
    for name in names:
        value = payload.get(name)
        if value is not None and value != "":
            return value
    return default


class WorkflowParser:
    """Turns editor JSON, plain dicts, YAML or JSON files into validated workflows"""

    def __init__(self):
        self.schema_validator = GraphSchemaValidator()
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }

    def parse(self, source: Union[str, Path, Dict[str, Any]]) -> Workflow:
        """
        Parse a workflow definition

        Args:
            source: a dict, a path to a .yaml/.yml/.json file, or a YAML/JSON string

        Returns:
            Workflow: the validated workflow
        """
        if isinstance(source, dict):
            return self.parse_dict(source)

        if isinstance(source, Path):
            return self.parse_file(source)

        if isinstance(source, str):
            if "\n" not in source and source.lower().endswith(tuple(f".{s}" for s in self.parsers)):
                return self.parse_file(Path(source))
            return self.parse_string(source)

        raise WorkflowParseError(f"Unsupported source type: {type(source)}")

    def parse_file(self, file_path: Path) -> Workflow:
        """Parse a workflow file"""
        suffix = file_path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise WorkflowParseError(f"Unsupported file format: {suffix}")

        try:
            content = file_path.read_text(encoding='utf-8')
        except OSError as e:
            raise WorkflowParseError(f"Cannot read workflow file {file_path}: {e}")

        return self.parse_dict(self.parsers[suffix](content))

    def parse_string(self, content: str) -> Workflow:
        """Parse a YAML or JSON string (JSON is valid YAML)"""
        return self.parse_dict(self._parse_yaml(content))

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowParseError(f"Failed to parse YAML: {e}")
        if not isinstance(data, dict):
            raise WorkflowParseError("Workflow definition must be a mapping")
        return data

    def _parse_json(self, content: str) -> Dict[str, Any]:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise WorkflowParseError(f"Failed to parse JSON: {e}")
        if not isinstance(data, dict):
            raise WorkflowParseError("Workflow definition must be a mapping")
        return data

    def parse_dict(self, data: Dict[str, Any]) -> Workflow:
        """Parse and validate a workflow given as a dict"""
        if 'workflow' in data:
            data = data['workflow']

        # stored rows keep the graph under workflow_data
        graph = data.get('workflow_data') or data
        structural_errors = self.schema_validator.validate(graph)
        if structural_errors:
            raise WorkflowValidationError(
                f"Workflow definition is malformed: {'; '.join(structural_errors)}", structural_errors
            )

        errors: List[str] = []

        nodes: Dict[str, Node] = {}
        for node_data in graph.get('nodes') or []:
            try:
                node = self._parse_node(node_data)
            except WorkflowValidationError as e:
                errors.extend(e.errors)
                continue
            if node.id in nodes:
                errors.append(f"Duplicate node id '{node.id}'")
                continue
            nodes[node.id] = node

        edges: List[Edge] = []
        for edge_data in graph.get('edges') or []:
            try:
                edges.append(self._parse_edge(edge_data))
            except WorkflowValidationError as e:
                errors.extend(e.errors)

        workflow_kwargs: Dict[str, Any] = {}
        if data.get('id'):
            workflow_kwargs['id'] = str(data['id'])

        workflow = Workflow(
            name=data.get('name', ''),
            trigger=self._parse_trigger(data, errors),
            is_published=bool(data.get('is_published', False)),
            nodes=nodes,
            edges=tuple(edges),
            **workflow_kwargs
        )

        errors.extend(self.validate(workflow))
        if errors:
            raise WorkflowValidationError(
                f"Workflow validation failed: {'; '.join(errors)}", errors
            )

        unreachable = workflow.unreachable_nodes()
        if unreachable:
            logger.warning(
                f"Workflow '{workflow.id}' has unreachable nodes: {sorted(unreachable)}"
            )

        return workflow

    def _parse_trigger(self, data: Dict[str, Any], errors: List[str]) -> TriggerSpec:
        trigger_data = data.get('trigger') or {}
        raw_type = _field(trigger_data, 'type') or data.get('trigger_type') or TriggerType.STAGE_CHANGE.value
        try:
            trigger_type = TriggerType(raw_type)
        except ValueError:
            errors.append(f"Unknown trigger type '{raw_type}'")
            trigger_type = TriggerType.STAGE_CHANGE

        stage_id = _field(trigger_data, 'stage_id') or data.get('trigger_stage_id')
        product_id = _field(trigger_data, 'product_id') or data.get('trigger_digital_product_id')
        return TriggerSpec(
            type=trigger_type,
            stage_id=str(stage_id) if stage_id else None,
            product_id=str(product_id) if product_id else None
        )

    def _parse_node(self, data: Dict[str, Any]) -> Node:
        """
        Parse a node.

        Editor nodes look like ``{"id", "type": "custom", "data": {"type": ...}}``;
        plain nodes carry ``type`` and an optional ``config`` mapping.
        """
        node_id = data.get('id')
        if not node_id:
            raise WorkflowValidationError("Node must include an 'id'")
        node_id = str(node_id)

        if isinstance(data.get('data'), dict):
            payload = data['data']
            raw_type = payload.get('type', '')
        else:
            payload = dict(data.get('config') or {})
            raw_type = data.get('type', '')
        label = _field(payload, 'label') or data.get('name') or ''

        kind = NODE_TYPE_ALIASES.get(str(raw_type), NodeKind.UNKNOWN)

        if kind is NodeKind.TRIGGER:
            return TriggerNode(id=node_id, label=label)
        if kind is NodeKind.MESSAGE:
            return self._parse_message_node(node_id, label, payload)
        if kind is NodeKind.WAIT:
            return self._parse_wait_node(node_id, label, payload)
        if kind is NodeKind.SMART_CONDITION:
            return self._parse_condition_node(node_id, label, payload)
        if kind is NodeKind.STOP_AUTOMATION:
            return StopAutomationNode(
                id=node_id,
                label=label,
                reason=_field(payload, 'reason', default=DEFAULT_STOP_REASON)
            )
        return UnknownNode(id=node_id, label=label, raw_type=str(raw_type), payload=dict(payload))

    def _parse_message_node(self, node_id: str, label: str, payload: Dict[str, Any]) -> MessageNode:
        raw_mode = _field(payload, 'mode', 'messageMode', 'message_mode', default='custom')
        mode = MESSAGE_MODE_ALIASES.get(str(raw_mode))
        if mode is None:
            raise WorkflowValidationError(f"Node '{node_id}': unknown message mode '{raw_mode}'")

        content = _field(
            payload, 'content', 'messageText', 'message_text', 'promptTemplate', 'prompt_template'
        ) or label or DEFAULT_MESSAGE_TEXT
        return MessageNode(id=node_id, label=label, mode=mode, content=str(content))

    def _parse_wait_node(self, node_id: str, label: str, payload: Dict[str, Any]) -> WaitNode:
        raw_amount = _field(payload, 'amount', 'duration', default=5)
        try:
            amount = _whole_number(raw_amount)
        except ValueError:
            raise WorkflowValidationError(f"Node '{node_id}': wait amount must be a number, got '{raw_amount}'")
        if amount < 0:
            raise WorkflowValidationError(f"Node '{node_id}': wait amount must not be negative")

        raw_unit = _field(payload, 'unit', default=WaitUnit.MINUTES.value)
        try:
            unit = WaitUnit(str(raw_unit).lower())
        except ValueError:
            raise WorkflowValidationError(f"Node '{node_id}': unknown wait unit '{raw_unit}'")

        return WaitNode(id=node_id, label=label, amount=amount, unit=unit)

    def _parse_condition_node(self, node_id: str, label: str, payload: Dict[str, Any]) -> SmartConditionNode:
        raw_kind = _field(payload, 'kind', 'conditionType', 'condition_type', default='has_replied')
        condition = CONDITION_KIND_ALIASES.get(str(raw_kind))
        if condition is None:
            raise WorkflowValidationError(f"Node '{node_id}': unknown condition type '{raw_kind}'")

        rule_text = _field(payload, 'rule_text', 'ruleText', 'conditionRule', 'condition_rule', 'description')
        if condition is ConditionKind.NATURAL_LANGUAGE_RULE and not rule_text:
            raise WorkflowValidationError(f"Node '{node_id}': natural language condition needs a rule")

        threshold: Optional[timedelta] = None
        raw_threshold = _field(payload, 'threshold_minutes', 'thresholdMinutes')
        if raw_threshold is not None:
            try:
                minutes = _whole_number(raw_threshold)
            except ValueError:
                raise WorkflowValidationError(f"Node '{node_id}': threshold must be a number of minutes")
            if minutes <= 0:
                raise WorkflowValidationError(f"Node '{node_id}': threshold must be positive")
            threshold = timedelta(minutes=minutes)

        return SmartConditionNode(
            id=node_id,
            label=label,
            condition=condition,
            rule_text=str(rule_text) if rule_text else None,
            recency_threshold=threshold
        )

    def _parse_edge(self, data: Dict[str, Any]) -> Edge:
        source = data.get('from', data.get('source'))
        target = data.get('to', data.get('target'))
        if not source or not target:
            raise WorkflowValidationError("Edge must include 'from/to' or 'source/target'")

        handle = _field(data, 'sourceHandle', 'source_handle', 'branch_handle', 'handle')
        return Edge(
            id=str(data.get('id') or uuid4()),
            source=str(source),
            target=str(target),
            branch_handle=str(handle) if handle is not None else None
        )

    def validate(self, workflow: Workflow) -> List[str]:
        """Check graph invariants; returns a list of problems"""
        errors = []

        triggers = [node.id for node in workflow.nodes.values() if node.kind is NodeKind.TRIGGER]
        if not triggers:
            errors.append("Workflow has no trigger node")
        elif len(triggers) > 1:
            errors.append(f"Workflow has multiple trigger nodes: {triggers}")

        seen_handles = set()
        for edge in workflow.edges:
            if edge.source not in workflow.nodes:
                errors.append(f"Edge '{edge.id}' source '{edge.source}' not found in nodes")
            if edge.target not in workflow.nodes:
                errors.append(f"Edge '{edge.id}' target '{edge.target}' not found in nodes")

            key = (edge.source, edge.branch_handle)
            if key in seen_handles:
                if edge.branch_handle is None:
                    errors.append(f"Node '{edge.source}' has more than one unlabeled outgoing edge")
                else:
                    errors.append(
                        f"Node '{edge.source}' has more than one outgoing edge "
                        f"with handle '{edge.branch_handle}'"
                    )
            seen_handles.add(key)

        cycle = self._find_cycle_without_wait(workflow)
        if cycle:
            errors.append(f"Cycle without a wait node: {' -> '.join(cycle)}")

        return errors

    def _find_cycle_without_wait(self, workflow: Workflow) -> Optional[List[str]]:
        """Find a cycle whose nodes are all non-wait nodes"""
        adjacency: Dict[str, List[str]] = {}
        for edge in workflow.edges:
            source = workflow.nodes.get(edge.source)
            target = workflow.nodes.get(edge.target)
            if source is None or target is None:
                continue
            if source.kind is NodeKind.WAIT or target.kind is NodeKind.WAIT:
                continue
            adjacency.setdefault(edge.source, []).append(edge.target)

        # white: unseen, grey: on the current path, black: fully explored
        colour = dict.fromkeys(workflow.nodes, WHITE)
        for root in workflow.nodes:
            if colour[root] != WHITE:
                continue

            colour[root] = GREY
            path = [root]
            pending = [iter(adjacency.get(root, ()))]
            while pending:
                for target in pending[-1]:
                    if colour[target] == GREY:
                        return path[path.index(target):] + [target]
                    if colour[target] == WHITE:
                        colour[target] = GREY
                        path.append(target)
                        pending.append(iter(adjacency.get(target, ())))
                        break
                else:
                    colour[path.pop()] = BLACK
                    pending.pop()
        return None

    def to_dict(self, workflow: Workflow) -> Dict[str, Any]:
        """Plain-shape dict accepted back by ``parse_dict``"""
        return {
            "workflow": {
                "id": workflow.id,
                "name": workflow.name,
                "is_published": workflow.is_published,
                "trigger": {
                    "type": workflow.trigger.type.value,
                    "stage_id": workflow.trigger.stage_id,
                    "product_id": workflow.trigger.product_id,
                },
                "nodes": [self._node_to_dict(n) for n in workflow.nodes.values()],
                "edges": [self._edge_to_dict(e) for e in workflow.edges],
            }
        }

    def serialize(self, workflow: Workflow, fmt: str = "json") -> str:
        data = self.to_dict(workflow)
        if fmt == "json":
            return json.dumps(data, ensure_ascii=False, indent=2)
        if fmt in ("yaml", "yml"):
            return yaml.safe_dump(data, allow_unicode=True, sort_keys=False)
        raise WorkflowParseError(f"Unsupported serialisation format: {fmt}")

    def _node_to_dict(self, node: Node) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        if isinstance(node, MessageNode):
            config = {"mode": node.mode.value, "content": node.content}
        elif isinstance(node, WaitNode):
            config = {"amount": node.amount, "unit": node.unit.value}
        elif isinstance(node, SmartConditionNode):
            config = {"kind": node.condition.value}
            if node.rule_text:
                config["rule_text"] = node.rule_text
            if node.recency_threshold is not None:
                config["threshold_minutes"] = int(node.recency_threshold.total_seconds() // 60)
        elif isinstance(node, StopAutomationNode):
            config = {"reason": node.reason}
        elif isinstance(node, UnknownNode):
            config = dict(node.payload)

        raw_type = node.raw_type if isinstance(node, UnknownNode) else node.kind.value
        data: Dict[str, Any] = {"id": node.id, "type": raw_type}
        if node.label:
            data["name"] = node.label
        if config:
            data["config"] = config
        return data

    def _edge_to_dict(self, edge: Edge) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": edge.id, "from": edge.source, "to": edge.target}
        if edge.branch_handle is not None:
            payload["handle"] = edge.branch_handle
        return payload
