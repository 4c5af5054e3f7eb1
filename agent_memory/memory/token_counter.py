"""
Token Counter
=============
Pluggable token estimation strategies keyed by model name.

Features:
- Character-based approximation (fast, no dependencies at runtime)
- tiktoken encodings for OpenAI-compatible models
- Per-message framing overhead for chat formats
"""

import logging
from functools import lru_cache
from typing import Optional, Iterable
from abc import ABC, abstractmethod

from .messages import ConversationMessage

logger = logging.getLogger(__name__)

# <|start|>role<|end|>content<|end|> plus one token for the role itself
MESSAGE_OVERHEAD = 3
ROLE_OVERHEAD = 1

# Model families served by tiktoken encodings
_TIKTOKEN_PREFIXES = ("gpt-", "o1", "o3", "o4", "text-embedding", "chatgpt")


class TokenCounter(ABC):
    """Abstract base class for token counters."""

    model_name: str = "approximate"

    @abstractmethod
    def count(self, text: str) -> int:
        """Count tokens in text."""
        pass

    def count_message(self, message: ConversationMessage) -> int:
        """Count tokens for one chat message including framing overhead."""
        return self.count_framed(message.content, message.api_role)

    def count_framed(self, text: str, role: str) -> int:
        """Token cost of text wrapped in a chat message of the given role."""
        return self.count(text) + self.count(role) + MESSAGE_OVERHEAD + ROLE_OVERHEAD

    def count_messages(self, messages: Iterable[ConversationMessage]) -> int:
        """Count tokens in message list."""
        return sum(self.count_message(msg) for msg in messages)

    def estimate_system_prompt(self, prompt: str) -> int:
        """Estimate tokens for a system prompt, zero when blank."""
        if not prompt or not prompt.strip():
            return 0
        return self.count_framed(prompt, "system")


class ApproximateTokenCounter(TokenCounter):
    """
    Approximate token counter using character-based estimation.
    Fast but less accurate. Use for development/testing.
    """

    def __init__(self, chars_per_token: float = 4.0, model_name: str = "approximate"):
        """
        Initialize with chars-per-token ratio.

        Args:
            chars_per_token: Average characters per token
            model_name: Model the estimate stands in for
        """
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token
        self.model_name = model_name

    def count(self, text: str) -> int:
        """Count tokens approximately."""
        if not text:
            return 0
        return int(len(text) / self.chars_per_token)


class TiktokenCounter(TokenCounter):
    """
    Accurate token counter using tiktoken (for OpenAI-compatible models).
    """

    def __init__(self, model: str = "gpt-4o"):
        """
        Initialize with model name.

        Args:
            model: Model name for encoding
        """
        self.model_name = model
        self._encoding = None

    def _get_encoding(self):
        """Lazy load tiktoken encoding."""
        if self._encoding is None:
            import tiktoken
            try:
                self._encoding = tiktoken.encoding_for_model(self.model_name)
            except KeyError:
                logger.warning(f"No tiktoken encoding for {self.model_name}, using cl100k_base")
                self._encoding = tiktoken.get_encoding("cl100k_base")
        return self._encoding

    def count(self, text: str) -> int:
        """Count tokens accurately."""
        if not text:
            return 0
        return len(self._get_encoding().encode(text))


def create_token_counter(model_name: Optional[str] = None) -> TokenCounter:
    """
    Select a token counter for a model.

    Args:
        model_name: Chat model id

    Returns:
        TiktokenCounter for OpenAI model families, ApproximateTokenCounter otherwise
    """
    name = (model_name or "").lower()
    if name.startswith(_TIKTOKEN_PREFIXES):
        return TiktokenCounter(model=model_name)
    return ApproximateTokenCounter(model_name=model_name or "approximate")


@lru_cache(maxsize=16)
def _shared_counter(model_name: Optional[str]) -> TokenCounter:
    return create_token_counter(model_name)


def estimate_tokens(text: str, model_name: Optional[str] = None) -> int:
    """Estimate tokens in text for the given model."""
    return _shared_counter(model_name).count(text)


__all__ = [
    'TokenCounter',
    'ApproximateTokenCounter',
    'TiktokenCounter',
    'create_token_counter',
    'estimate_tokens',
    'MESSAGE_OVERHEAD',
    'ROLE_OVERHEAD',
]
