"""
Automation switch integration: turns the bot off for a subject
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple
import logging

from ..exceptions import CollaboratorError


logger = logging.getLogger(__name__)


class AutomationSwitch(ABC):
    """Disables further automation for a subject"""

    @abstractmethod
    async def disable(self, subject_id: str, reason: str) -> None:
        """Raise CollaboratorError if the switch could not be flipped"""
        pass


class InMemoryAutomationSwitch(AutomationSwitch):
    """Keeps disabled subjects in memory"""

    def __init__(self):
        self.disabled: Dict[str, str] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_with: Optional[str] = None

    async def disable(self, subject_id: str, reason: str) -> None:
        self.calls.append((subject_id, reason))
        if self.fail_with:
            raise CollaboratorError("automation_switch", self.fail_with)

        self.disabled[subject_id] = reason
        logger.info(f"Automation disabled for subject {subject_id}: {reason}")

    def is_disabled(self, subject_id: str) -> bool:
        return subject_id in self.disabled
