"""
Subject directory: read-only view of leads and their conversations
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..models.workflow import utcnow


@dataclass(frozen=True)
class ConversationMessage:
    """One message of a subject's conversation"""
    role: str  # "user" or "assistant"
    content: str
    created_at: datetime = field(default_factory=utcnow)


class SubjectDirectory(ABC):
    """Looks up subject state the engine does not own"""

    @abstractmethod
    async def last_inbound_message_at(self, subject_id: str) -> Optional[datetime]:
        """When the subject last wrote to us, or None if never"""
        pass

    @abstractmethod
    async def recent_messages(self, channel_id: str, limit: int = 10) -> List[ConversationMessage]:
        """Most recent messages on the channel, oldest first"""
        pass

    async def record_sent(self, channel_id: str, content: str, at: datetime):
        """Add a message the engine sent to the conversation; directories fed by the CRM ignore it"""
        return None


class InMemorySubjectDirectory(SubjectDirectory):
    """Subject directory backed by dicts"""

    def __init__(self):
        self.last_inbound: Dict[str, datetime] = {}
        self.conversations: Dict[str, List[ConversationMessage]] = {}

    def record_inbound(self, subject_id: str, channel_id: str, content: str, at: Optional[datetime] = None):
        at = at or utcnow()
        self.last_inbound[subject_id] = at
        self.conversations.setdefault(channel_id, []).append(
            ConversationMessage(role="user", content=content, created_at=at)
        )

    def record_outbound(self, channel_id: str, content: str, at: Optional[datetime] = None):
        self.conversations.setdefault(channel_id, []).append(
            ConversationMessage(role="assistant", content=content, created_at=at or utcnow())
        )

    async def record_sent(self, channel_id: str, content: str, at: datetime):
        self.record_outbound(channel_id, content, at)

    async def last_inbound_message_at(self, subject_id: str) -> Optional[datetime]:
        return self.last_inbound.get(subject_id)

    async def recent_messages(self, channel_id: str, limit: int = 10) -> List[ConversationMessage]:
        messages = sorted(self.conversations.get(channel_id, []), key=lambda m: m.created_at)
        return messages[-limit:] if limit > 0 else []


def render_conversation(messages: List[ConversationMessage]) -> str:
    """Render messages as ``Customer: ...`` / ``Bot: ...`` lines"""
    return "\n".join(
        f"{'Customer' if m.role == 'user' else 'Bot'}: {m.content}" for m in messages
    )
