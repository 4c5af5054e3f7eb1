"""
Message Archive
===============
Bounded store for messages evicted from the active memory window.

Features:
- FIFO capacity limit (oldest archived messages are dropped for good)
- Substring and regex search, most recent first
- Recent-history and time-range queries
"""

import re
import time
import logging
import threading
from typing import Optional, List, Dict, Any
from dataclasses import dataclass
from collections import deque

from ..errors import ConfigError
from .messages import ConversationMessage, MessageRole

logger = logging.getLogger(__name__)


@dataclass
class ArchivedMessage:
    """Archived message with storage metadata."""
    message: ConversationMessage
    stored_at: float
    id: str


@dataclass
class StoreResult:
    """Result of storing messages."""
    stored: int
    dropped: int


@dataclass
class StorageStats:
    """Archive statistics."""
    total_messages: int
    max_storage_limit: int
    usage_percentage: int
    oldest_message_time: Optional[float] = None
    newest_message_time: Optional[float] = None


class MessageArchive:
    """
    Searchable overflow store for pruned conversation messages.

    Example:
        archive = MessageArchive(max_storage=1000)
        archive.store_messages(pruned)

        hits = archive.search_messages("token", limit=5)
        recent = archive.get_recent_messages(10)
    """

    DEFAULT_MAX_STORAGE = 1000

    def __init__(self, max_storage: int = DEFAULT_MAX_STORAGE):
        """
        Initialize archive.

        Args:
            max_storage: Maximum number of archived messages
        """
        if max_storage <= 0:
            raise ConfigError("Storage limit must be greater than 0")
        self.max_storage = max_storage
        self._messages: deque = deque()
        self._id_counter = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._messages)

    def store_messages(self, messages: List[ConversationMessage]) -> StoreResult:
        """
        Store messages, dropping the oldest when over capacity.

        Args:
            messages: Messages to archive, oldest first

        Returns:
            How many messages were stored and dropped
        """
        if not messages:
            return StoreResult(stored=0, dropped=0)

        now = time.time()
        dropped = 0
        with self._lock:
            for message in messages:
                self._id_counter += 1
                self._messages.append(ArchivedMessage(
                    message=message,
                    stored_at=now,
                    id=f"msg_{self._id_counter}_{int(now * 1000)}",
                ))
            while len(self._messages) > self.max_storage:
                self._messages.popleft()
                dropped += 1

        if dropped:
            logger.debug(f"Archive full, dropped {dropped} oldest messages")
        return StoreResult(stored=len(messages), dropped=dropped)

    def get_recent_messages(self, count: int) -> List[ConversationMessage]:
        """Get the last ``count`` archived messages in chronological order."""
        if count <= 0:
            return []
        with self._lock:
            stored = list(self._messages)
        return [s.message for s in stored[-count:]]

    def search_messages(
        self,
        query: str,
        case_sensitive: bool = False,
        limit: Optional[int] = None,
        use_regex: bool = False,
    ) -> List[ConversationMessage]:
        """
        Search archived messages, most recent first.

        Args:
            query: Substring or regex pattern
            case_sensitive: Match case exactly
            limit: Maximum results (all when None)
            use_regex: Treat query as a regular expression

        Returns:
            Matching messages, newest first
        """
        if not query:
            return []

        with self._lock:
            stored = list(self._messages)

        if use_regex:
            try:
                pattern = re.compile(query, 0 if case_sensitive else re.IGNORECASE)
            except re.error as e:
                logger.warning(f"Invalid search pattern {query!r}: {e}")
                return []
            matcher = lambda content: pattern.search(content) is not None
        else:
            needle = query if case_sensitive else query.lower()
            if case_sensitive:
                matcher = lambda content: needle in content
            else:
                matcher = lambda content: needle in content.lower()

        matches = []
        for entry in reversed(stored):
            if matcher(entry.message.content):
                matches.append(entry.message)
                if limit is not None and len(matches) >= limit:
                    break
        return matches

    def get_messages_by_type(
        self,
        role: MessageRole,
        limit: Optional[int] = None,
    ) -> List[ConversationMessage]:
        """Get archived messages with the given role, chronological."""
        with self._lock:
            filtered = [s.message for s in self._messages if s.message.role == role]
        return filtered[:limit] if limit else filtered

    def get_messages_from_time_range(self, start_time: float, end_time: float) -> List[ConversationMessage]:
        """Get messages archived within [start_time, end_time]."""
        if start_time > end_time:
            return []
        with self._lock:
            return [
                s.message for s in self._messages
                if start_time <= s.stored_at <= end_time
            ]

    def get_recent_messages_by_time(self, minutes: float) -> List[ConversationMessage]:
        """Get messages archived within the last N minutes."""
        if minutes <= 0:
            return []
        cutoff = time.time() - minutes * 60
        with self._lock:
            return [s.message for s in self._messages if s.stored_at >= cutoff]

    def update_storage_limit(self, new_limit: int) -> int:
        """
        Change capacity, dropping the oldest messages if now over it.

        Returns:
            Number of messages dropped
        """
        if new_limit <= 0:
            raise ConfigError("Storage limit must be greater than 0")
        dropped = 0
        with self._lock:
            self.max_storage = new_limit
            while len(self._messages) > self.max_storage:
                self._messages.popleft()
                dropped += 1
        return dropped

    def get_storage_stats(self) -> StorageStats:
        """Get archive statistics."""
        with self._lock:
            total = len(self._messages)
            oldest = self._messages[0].stored_at if total else None
            newest = self._messages[-1].stored_at if total else None
        return StorageStats(
            total_messages=total,
            max_storage_limit=self.max_storage,
            usage_percentage=round(total / self.max_storage * 100) if total else 0,
            oldest_message_time=oldest,
            newest_message_time=newest,
        )

    def export_messages(self) -> List[Dict[str, Any]]:
        """Export archived messages as JSON-serializable dicts."""
        with self._lock:
            return [
                {
                    "id": s.id,
                    "type": s.message.role.value,
                    "content": s.message.content,
                    "stored_at": s.stored_at,
                }
                for s in self._messages
            ]

    def clear(self):
        """Remove every archived message."""
        with self._lock:
            self._messages.clear()
            self._id_counter = 0


__all__ = [
    'MessageArchive',
    'ArchivedMessage',
    'StoreResult',
    'StorageStats',
]
