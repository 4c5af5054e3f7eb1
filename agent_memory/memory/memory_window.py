"""
Memory Window
=============
Token-budgeted window of active conversation messages.

Features:
- Strict oldest-first eviction into a message archive
- System prompt counted in the budget, never evicted
- Reserve tokens held back for model-side framing
- List and token counter mutated together under one lock
"""

import logging
import threading
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field

from ..errors import ConfigError
from .messages import ConversationMessage
from .message_archive import MessageArchive
from .token_counter import TokenCounter, ApproximateTokenCounter

logger = logging.getLogger(__name__)


@dataclass
class AddMessageResult:
    """Result of adding a message to the window."""
    added: bool
    pruned_messages: List[ConversationMessage] = field(default_factory=list)
    current_token_count: int = 0
    remaining_capacity: int = 0


@dataclass
class WindowStats:
    """Memory window statistics."""
    total_messages: int
    current_tokens: int
    max_tokens: int
    reserve_tokens: int
    system_prompt_tokens: int
    usage_percentage: float
    remaining_capacity: int
    can_accept_more: bool


def validate_limits(max_tokens: int, reserve_tokens: int):
    """Reject budgets that leave no room for messages."""
    if max_tokens <= 0:
        raise ConfigError(f"max_tokens must be positive, got {max_tokens}")
    if reserve_tokens < 0:
        raise ConfigError(f"reserve_tokens must not be negative, got {reserve_tokens}")
    if reserve_tokens >= max_tokens:
        raise ConfigError("Reserve tokens must be less than max tokens")


class MemoryWindow:
    """
    Keeps conversation messages within a token budget.

    The usable budget is ``max_tokens - reserve_tokens``. When an add pushes
    the window over it, the oldest messages move to the archive one at a
    time until it fits again. A single message larger than the whole budget
    stays in the window on its own; any other message is evicted if it
    cannot fit next to the system prompt.

    Example:
        window = MemoryWindow(max_tokens=8000, reserve_tokens=1000)
        window.set_system_prompt("You are a helpful assistant.")

        result = window.add_message(human("Create a token called Pebble"))
        print(result.pruned_messages, window.get_stats().current_tokens)
    """

    DEFAULT_MAX_TOKENS = 8000
    DEFAULT_RESERVE_TOKENS = 1000

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        reserve_tokens: int = DEFAULT_RESERVE_TOKENS,
        token_counter: Optional[TokenCounter] = None,
        archive: Optional[MessageArchive] = None,
    ):
        """
        Initialize memory window.

        Args:
            max_tokens: Total token budget
            reserve_tokens: Headroom withheld from the budget
            token_counter: Token estimation strategy
            archive: Destination for evicted messages
        """
        validate_limits(max_tokens, reserve_tokens)

        self.max_tokens = max_tokens
        self.reserve_tokens = reserve_tokens
        self._counter = token_counter or ApproximateTokenCounter()
        self._archive = archive

        self._messages: List[ConversationMessage] = []
        self._message_tokens = 0
        self._system_prompt = ""
        self._system_prompt_tokens = 0
        self._lock = threading.RLock()

    @property
    def token_budget(self) -> int:
        """Usable tokens for the system prompt plus messages."""
        return self.max_tokens - self.reserve_tokens

    @property
    def current_tokens(self) -> int:
        """Current token count including system prompt."""
        with self._lock:
            return self._system_prompt_tokens + self._message_tokens

    @property
    def message_count(self) -> int:
        with self._lock:
            return len(self._messages)

    def add_message(self, message: ConversationMessage) -> AddMessageResult:
        """
        Add a message, evicting old ones if over budget.

        Args:
            message: Message to add

        Returns:
            Result including any pruned messages
        """
        message.token_cost = self._counter.count_message(message)

        with self._lock:
            self._messages.append(message)
            self._message_tokens += message.token_cost
            pruned = self._prune_to_fit()
            current = self._system_prompt_tokens + self._message_tokens

        return AddMessageResult(
            added=True,
            pruned_messages=pruned,
            current_token_count=current,
            remaining_capacity=max(0, self.max_tokens - current),
        )

    def _prune_to_fit(self) -> List[ConversationMessage]:
        """Evict oldest messages until within budget. Caller holds the lock."""
        pruned: List[ConversationMessage] = []
        budget = self.token_budget

        # A lone message is kept only when it cannot fit the budget by itself
        while (
            self._system_prompt_tokens + self._message_tokens > budget
            and self._messages
            and (len(self._messages) > 1 or self._messages[0].token_cost <= budget)
        ):
            oldest = self._messages.pop(0)
            self._message_tokens -= oldest.token_cost
            pruned.append(oldest)

        if pruned:
            if self._archive is not None:
                self._archive.store_messages(pruned)
            logger.debug(
                f"Evicted {len(pruned)} messages, window now "
                f"{self._system_prompt_tokens + self._message_tokens}/{budget} tokens"
            )
        return pruned

    def can_add_message(self, message: ConversationMessage) -> bool:
        """Check whether a message could ever fit within the budget."""
        return self._counter.count_message(message) <= self.token_budget

    def get_messages(self) -> List[ConversationMessage]:
        """Get a copy of active messages in chronological order."""
        with self._lock:
            return list(self._messages)

    def set_system_prompt(self, prompt: str):
        """Replace the system prompt and recount its tokens."""
        tokens = self._counter.estimate_system_prompt(prompt)
        with self._lock:
            self._system_prompt = prompt
            self._system_prompt_tokens = tokens
            self._prune_to_fit()

    def get_system_prompt(self) -> str:
        return self._system_prompt

    def clear(self):
        """Remove all active messages. The system prompt is kept."""
        with self._lock:
            self._messages = []
            self._message_tokens = 0

    def update_limits(self, max_tokens: int, reserve_tokens: Optional[int] = None) -> List[ConversationMessage]:
        """
        Change the budget, evicting immediately if now over it.

        Returns:
            Messages pruned by the new limits
        """
        reserve = self.reserve_tokens if reserve_tokens is None else reserve_tokens
        validate_limits(max_tokens, reserve)

        with self._lock:
            self.max_tokens = max_tokens
            self.reserve_tokens = reserve
            pruned = self._prune_to_fit()

        logger.info(f"Memory window limits updated: max={max_tokens}, reserve={reserve}")
        return pruned

    def get_config(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "max_tokens": self.max_tokens,
                "reserve_tokens": self.reserve_tokens,
                "current_tokens": self._system_prompt_tokens + self._message_tokens,
                "message_count": len(self._messages),
                "system_prompt_tokens": self._system_prompt_tokens,
            }

    def get_stats(self) -> WindowStats:
        """Get window statistics from a single consistent snapshot."""
        with self._lock:
            current = self._system_prompt_tokens + self._message_tokens
            total = len(self._messages)
            system_tokens = self._system_prompt_tokens
            max_tokens = self.max_tokens
            reserve = self.reserve_tokens

        remaining = max(0, max_tokens - current)
        return WindowStats(
            total_messages=total,
            current_tokens=current,
            max_tokens=max_tokens,
            reserve_tokens=reserve,
            system_prompt_tokens=system_tokens,
            usage_percentage=round(current / max_tokens * 100, 2),
            remaining_capacity=remaining,
            can_accept_more=remaining > reserve,
        )


__all__ = [
    'MemoryWindow',
    'AddMessageResult',
    'WindowStats',
    'validate_limits',
]
