"""
Conversation Messages
=====================
Message model shared by the memory window, archive and token counters.
"""

import time
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum


class MessageRole(Enum):
    """Message roles in conversation."""
    HUMAN = "human"
    AI = "ai"
    SYSTEM = "system"
    TOOL = "tool"


# Role names as chat completion APIs expect them
_API_ROLES = {
    MessageRole.HUMAN: "user",
    MessageRole.AI: "assistant",
    MessageRole.SYSTEM: "system",
    MessageRole.TOOL: "tool",
}


@dataclass
class ConversationMessage:
    """Conversation message with token accounting."""
    role: MessageRole
    content: str
    name: Optional[str] = None
    token_cost: int = 0  # Set by the memory window on add
    created_at: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def api_role(self) -> str:
        return _API_ROLES[self.role]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API-compatible dict."""
        result = {
            "role": self.api_role,
            "content": self.content,
        }
        if self.name:
            result["name"] = self.name
        return result


def human(content: str, **kwargs) -> ConversationMessage:
    return ConversationMessage(role=MessageRole.HUMAN, content=content, **kwargs)


def ai(content: str, **kwargs) -> ConversationMessage:
    return ConversationMessage(role=MessageRole.AI, content=content, **kwargs)


def system(content: str, **kwargs) -> ConversationMessage:
    return ConversationMessage(role=MessageRole.SYSTEM, content=content, **kwargs)


__all__ = [
    'MessageRole',
    'ConversationMessage',
    'human',
    'ai',
    'system',
]
