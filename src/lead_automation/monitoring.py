"""In-process metrics and structured event logging for the automation engine."""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, Optional


class MetricsRecorder:
    """In-memory counters used by tests, the CLI and the health endpoint."""

    def __init__(self) -> None:
        self.counters: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))

    def inc(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 1) -> None:
        labels_key = self._labels_key(labels)
        self.counters[name][labels_key] += value

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        labels_key = self._labels_key(labels)
        return self.counters[name].get(labels_key, 0.0)

    def total(self, name: str) -> float:
        return sum(self.counters[name].values())

    def snapshot(self) -> Dict[str, float]:
        return {name: sum(values.values()) for name, values in self.counters.items()}

    def _labels_key(self, labels: Optional[Dict[str, str]]) -> str:
        if not labels:
            return "__no_labels__"
        sorted_items = sorted(labels.items())
        return "|".join(f"{k}={v}" for k, v in sorted_items)


class EventLogger:
    """Structured event logger for execution lifecycle events."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("lead_automation.events")

    def log(self, event: str, **payload: Any) -> None:
        self.logger.info(event, extra={"event_payload": payload})
