"""
Messaging channel integration
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

import httpx

from ..exceptions import CollaboratorError
from ..models.workflow import utcnow


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryHint:
    """How the channel should classify an outbound message"""
    messaging_type: str = "RESPONSE"
    tag: Optional[str] = None


# Out-of-session system notification, allowed outside the 24h reply window
SYSTEM_NOTIFICATION = DeliveryHint(messaging_type="MESSAGE_TAG", tag="ACCOUNT_UPDATE")


@dataclass
class DeliveryResult:
    """Outcome of one send"""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SentMessage:
    """Message recorded by the in-memory channel"""
    channel_id: str
    content: str
    hint: DeliveryHint
    sent_at: datetime = field(default_factory=utcnow)


class MessagingChannel(ABC):
    """Delivers text to a subject's channel"""

    @abstractmethod
    async def send(self, channel_id: str, content: str, hint: DeliveryHint) -> DeliveryResult:
        """Send a message; returns a failed result or raises CollaboratorError on error"""
        pass


class InMemoryMessagingChannel(MessagingChannel):
    """Records messages instead of delivering them"""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self.sent: List[SentMessage] = []
        self.fail_with: Optional[str] = None

    async def send(self, channel_id: str, content: str, hint: DeliveryHint) -> DeliveryResult:
        if self.fail_with:
            raise CollaboratorError("messaging", self.fail_with)

        self.sent.append(SentMessage(channel_id=channel_id, content=content, hint=hint, sent_at=self.clock()))
        return DeliveryResult(success=True, message_id=f"local-{len(self.sent)}")

    def messages_for(self, channel_id: str) -> List[str]:
        return [m.content for m in self.sent if m.channel_id == channel_id]


class MessengerChannel(MessagingChannel):
    """Facebook Messenger Send API channel"""

    def __init__(
        self,
        page_access_token: str,
        api_version: str = "v18.0",
        base_url: str = "https://graph.facebook.com",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.page_access_token = page_access_token
        self.api_version = api_version
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _payload(self, channel_id: str, content: str, hint: DeliveryHint) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "recipient": {"id": channel_id},
            "message": {"text": content},
            "messaging_type": hint.messaging_type,
        }
        if hint.tag:
            payload["tag"] = hint.tag
        return payload

    async def send(self, channel_id: str, content: str, hint: DeliveryHint) -> DeliveryResult:
        url = f"{self.base_url}/{self.api_version}/me/messages"
        params = {"access_token": self.page_access_token}
        payload = self._payload(channel_id, content, hint)

        try:
            if self._client is not None:
                response = await self._client.post(url, params=params, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, params=params, json=payload)
        except httpx.HTTPError as e:
            raise CollaboratorError("messenger", f"request failed: {e}")

        if response.status_code >= 400:
            logger.warning(
                f"Messenger rejected message for {channel_id}: "
                f"{response.status_code} {response.text}"
            )
            return DeliveryResult(success=False, error=f"HTTP {response.status_code}: {response.text}")

        body = response.json()
        return DeliveryResult(success=True, message_id=body.get("message_id"))
