"""
JSON Schema for the structural shape of a workflow graph
"""
import json
from typing import Any, Dict, List

from jsonschema import Draft7Validator


NODE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id"],
    "properties": {
        "id": {"type": ["string", "integer"]},
        "type": {"type": "string"},
        "name": {"type": "string"},
        "data": {"type": "object"},
        "config": {"type": "object"},
    },
}

EDGE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": ["string", "integer"]},
        "source": {"type": ["string", "integer"]},
        "target": {"type": ["string", "integer"]},
        "from": {"type": ["string", "integer"]},
        "to": {"type": ["string", "integer"]},
        "sourceHandle": {"type": ["string", "null"]},
        "handle": {"type": ["string", "null"]},
    },
    "anyOf": [
        {"required": ["source", "target"]},
        {"required": ["from", "to"]},
    ],
}

GRAPH_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["nodes"],
    "properties": {
        "name": {"type": ["string", "null"]},
        "nodes": {"type": "array", "items": NODE_SCHEMA},
        "edges": {"type": ["array", "null"], "items": EDGE_SCHEMA},
        "trigger": {"type": ["object", "null"]},
    },
}


class GraphSchemaValidator:
    """Collects every structural problem of a graph definition"""

    def __init__(self, schema: Dict[str, Any] = GRAPH_SCHEMA):
        self.schema = schema
        self.validators_cache: Dict[str, Draft7Validator] = {}

    def validate(self, data: Dict[str, Any]) -> List[str]:
        schema_str = json.dumps(self.schema, sort_keys=True)
        if schema_str not in self.validators_cache:
            self.validators_cache[schema_str] = Draft7Validator(self.schema)

        validator = self.validators_cache[schema_str]
        errors = []
        for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
            path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
            errors.append(f"{path}: {error.message}")
        return errors
