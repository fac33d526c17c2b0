"""External collaborators of the automation engine"""

# Messaging
from .messaging import (
    MessagingChannel,
    InMemoryMessagingChannel,
    MessengerChannel,
    DeliveryHint,
    DeliveryResult,
    SentMessage,
    SYSTEM_NOTIFICATION
)

# Text generation
from .text_generation import (
    TextGenerator,
    ScriptedTextGenerator,
    OpenAITextGenerator,
    SubjectContext
)

# Automation switch
from .automation import AutomationSwitch, InMemoryAutomationSwitch

# Subjects
from .subjects import (
    SubjectDirectory,
    InMemorySubjectDirectory,
    ConversationMessage,
    render_conversation
)

__all__ = [
    # Messaging
    "MessagingChannel",
    "InMemoryMessagingChannel",
    "MessengerChannel",
    "DeliveryHint",
    "DeliveryResult",
    "SentMessage",
    "SYSTEM_NOTIFICATION",

    # Text generation
    "TextGenerator",
    "ScriptedTextGenerator",
    "OpenAITextGenerator",
    "SubjectContext",

    # Automation switch
    "AutomationSwitch",
    "InMemoryAutomationSwitch",

    # Subjects
    "SubjectDirectory",
    "InMemorySubjectDirectory",
    "ConversationMessage",
    "render_conversation"
]
