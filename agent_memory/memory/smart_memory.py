"""
Smart Memory Manager
====================
Single entry point for conversation memory.

Combines:
- MemoryWindow: token-budgeted active messages
- MessageArchive: searchable history of evicted messages
- EntityAssociationTracker: entities created during the conversation

An optional ContentStoreManager can be attached; references shown in the
conversation then appear in exports and context summaries. Its lifecycle
stays with whoever created it.
"""

import logging
from typing import Optional, List, Dict, Any, Union
from dataclasses import dataclass, asdict, fields, replace

from ..errors import ConfigError
from .messages import ConversationMessage, MessageRole
from .memory_window import MemoryWindow, AddMessageResult, validate_limits
from .message_archive import MessageArchive, StorageStats
from .entity_tracker import EntityAssociation, EntityAssociationTracker
from .token_counter import TokenCounter, create_token_counter

logger = logging.getLogger(__name__)


@dataclass
class SmartMemoryConfig:
    """Memory configuration."""
    max_tokens: int = 8000
    reserve_tokens: int = 1000
    model_name: str = "gpt-4o"
    storage_limit: int = 1000

    def validate(self) -> "SmartMemoryConfig":
        validate_limits(self.max_tokens, self.reserve_tokens)
        if self.storage_limit <= 0:
            raise ConfigError("Storage limit must be greater than 0")
        return self


@dataclass
class MemoryStats:
    """Active memory statistics."""
    total_active_messages: int
    current_token_count: int
    max_tokens: int
    remaining_capacity: int
    system_prompt_tokens: int
    usage_percentage: float


class SmartMemoryManager:
    """
    Conversation memory with automatic overflow into a searchable archive.

    Example:
        memory = SmartMemoryManager(SmartMemoryConfig(max_tokens=4000))
        memory.set_system_prompt("You are a Hedera assistant.")

        memory.add_message(human("Create a token called Pebble"))
        memory.store_entity_association("0.0.5005", "Pebble", "token")

        context = memory.get_messages()
        old = memory.search_history("Pebble")
    """

    def __init__(
        self,
        config: Optional[SmartMemoryConfig] = None,
        token_counter: Optional[TokenCounter] = None,
        content_manager=None,
        entity_tracker: Optional[EntityAssociationTracker] = None,
    ):
        """
        Initialize memory manager.

        Args:
            config: Memory configuration
            token_counter: Token estimation strategy, chosen from model_name when omitted
            content_manager: Optional ContentStoreManager shared with the application
            entity_tracker: Entity tracker, a fresh one when omitted
        """
        self.config = replace(config or SmartMemoryConfig()).validate()
        self.token_counter = token_counter or create_token_counter(self.config.model_name)
        self.content_manager = content_manager

        self.archive = MessageArchive(max_storage=self.config.storage_limit)
        self.window = MemoryWindow(
            max_tokens=self.config.max_tokens,
            reserve_tokens=self.config.reserve_tokens,
            token_counter=self.token_counter,
            archive=self.archive,
        )
        self.entities = entity_tracker or EntityAssociationTracker()

        logger.info(
            f"Smart memory initialized (max_tokens={self.config.max_tokens}, "
            f"reserve={self.config.reserve_tokens}, model={self.config.model_name})"
        )

    # =========================================================================
    # Active memory
    # =========================================================================

    def add_message(self, message: ConversationMessage) -> AddMessageResult:
        """Add a message; the oldest messages move to the archive when over budget."""
        return self.window.add_message(message)

    def can_add_message(self, message: ConversationMessage) -> bool:
        return self.window.can_add_message(message)

    def get_messages(self) -> List[ConversationMessage]:
        return self.window.get_messages()

    def set_system_prompt(self, prompt: str):
        self.window.set_system_prompt(prompt)

    def get_system_prompt(self) -> str:
        return self.window.get_system_prompt()

    def clear(self, include_archive: bool = False):
        """
        Clear active messages.

        Args:
            include_archive: Also drop archived history
        """
        self.window.clear()
        if include_archive:
            self.archive.clear()
        logger.debug(f"Memory cleared (include_archive={include_archive})")

    def get_memory_stats(self) -> MemoryStats:
        stats = self.window.get_stats()
        return MemoryStats(
            total_active_messages=stats.total_messages,
            current_token_count=stats.current_tokens,
            max_tokens=stats.max_tokens,
            remaining_capacity=stats.remaining_capacity,
            system_prompt_tokens=stats.system_prompt_tokens,
            usage_percentage=stats.usage_percentage,
        )

    # =========================================================================
    # Archived history
    # =========================================================================

    def search_history(
        self,
        query: str,
        case_sensitive: bool = False,
        limit: Optional[int] = None,
        use_regex: bool = False,
    ) -> List[ConversationMessage]:
        return self.archive.search_messages(
            query, case_sensitive=case_sensitive, limit=limit, use_regex=use_regex
        )

    def get_recent_history(self, count: int) -> List[ConversationMessage]:
        return self.archive.get_recent_messages(count)

    def get_history_by_type(
        self,
        role: Union[MessageRole, str],
        limit: Optional[int] = None,
    ) -> List[ConversationMessage]:
        return self.archive.get_messages_by_type(MessageRole(role), limit)

    def get_history_from_time_range(self, start_time: float, end_time: float) -> List[ConversationMessage]:
        return self.archive.get_messages_from_time_range(start_time, end_time)

    def get_recent_history_by_time(self, minutes: float) -> List[ConversationMessage]:
        return self.archive.get_recent_messages_by_time(minutes)

    def get_storage_stats(self) -> StorageStats:
        return self.archive.get_storage_stats()

    def get_overall_stats(self) -> Dict[str, Any]:
        """Combined active memory and archive statistics."""
        memory_stats = self.get_memory_stats()
        storage_stats = self.get_storage_stats()
        return {
            "active_memory": asdict(memory_stats),
            "storage": asdict(storage_stats),
            "total_messages_managed": memory_stats.total_active_messages + storage_stats.total_messages,
            "active_memory_utilization": memory_stats.usage_percentage,
            "storage_utilization": storage_stats.usage_percentage,
        }

    # =========================================================================
    # Entities
    # =========================================================================

    def store_entity_association(
        self,
        entity_id: str,
        entity_name: str,
        entity_type: str,
        transaction_id: Optional[str] = None,
        network_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Optional[EntityAssociation]:
        return self.entities.store_entity_association(
            entity_id, entity_name, entity_type,
            transaction_id=transaction_id,
            network_id=network_id,
            session_id=session_id,
        )

    def get_entity_associations(self, entity_type: Optional[str] = None) -> List[EntityAssociation]:
        return self.entities.get_entity_associations(entity_type)

    def resolve_entity_reference(
        self,
        query: str,
        entity_type: Optional[str] = None,
        limit: int = 10,
        fuzzy_match: bool = True,
    ) -> List[EntityAssociation]:
        return self.entities.resolve_entity_reference(
            query, entity_type=entity_type, limit=limit, fuzzy_match=fuzzy_match
        )

    # =========================================================================
    # Content references
    # =========================================================================

    def get_most_recent_reference(self):
        """Latest content reference shown in the conversation, or None."""
        if self.content_manager is None:
            return None
        return self.content_manager.context.get_most_recent_reference()

    def get_conversation_references(self) -> List[Dict[str, Any]]:
        if self.content_manager is None:
            return []
        return [c.to_dict() for c in self.content_manager.context.get_contexts()]

    # =========================================================================
    # Configuration and state
    # =========================================================================

    def update_config(self, **changes) -> SmartMemoryConfig:
        """
        Apply configuration changes immediately.

        Shrinking max_tokens evicts at once; shrinking storage_limit drops
        the oldest archived messages. model_name is recorded but the token
        counter is kept so already-counted messages stay consistent.

        Raises:
            ConfigError: on unknown keys or invalid values (nothing is applied)
        """
        unknown = set(changes) - {f.name for f in fields(SmartMemoryConfig)}
        if unknown:
            raise ConfigError(f"Unknown memory settings: {sorted(unknown)}")

        updated = replace(self.config, **changes).validate()

        if updated.max_tokens != self.config.max_tokens or updated.reserve_tokens != self.config.reserve_tokens:
            self.window.update_limits(updated.max_tokens, updated.reserve_tokens)
        if updated.storage_limit != self.config.storage_limit:
            dropped = self.archive.update_storage_limit(updated.storage_limit)
            if dropped:
                logger.info(f"Archive limit lowered, dropped {dropped} oldest messages")
        if updated.model_name != self.config.model_name:
            expected = type(create_token_counter(updated.model_name))
            if type(self.token_counter) is not expected:
                logger.warning(
                    f"Model changed to {updated.model_name}, which uses {expected.__name__}; "
                    f"token counts still come from {type(self.token_counter).__name__}"
                )

        self.config = updated
        return replace(updated)

    def get_config(self) -> SmartMemoryConfig:
        return replace(self.config)

    def export_state(self) -> Dict[str, Any]:
        """Serializable snapshot of configuration, messages and statistics."""
        return {
            "config": asdict(self.config),
            "active_messages": [
                {"content": m.content, "type": m.role.value}
                for m in self.window.get_messages()
            ],
            "system_prompt": self.get_system_prompt(),
            "memory_stats": asdict(self.get_memory_stats()),
            "storage_stats": asdict(self.get_storage_stats()),
            "stored_messages": self.archive.export_messages(),
            "entities": [a.to_dict() for a in self.get_entity_associations()],
            "references": self.get_conversation_references(),
        }

    def get_context_summary(self, include_stored_context: bool = False) -> Dict[str, Any]:
        """Compact view of the conversation for logging or hand-off."""
        active = self.get_messages()
        storage_stats = self.get_storage_stats()
        summary = {
            "active_message_count": len(active),
            "system_prompt": self.get_system_prompt(),
            "recent_messages": active[-5:],
            "memory_utilization": self.get_memory_stats().usage_percentage,
            "has_stored_history": storage_stats.total_messages > 0,
        }
        if self.content_manager is not None:
            latest = self.get_most_recent_reference()
            summary["reference_count"] = len(self.content_manager.context.get_contexts())
            summary["most_recent_reference"] = latest.format if latest else None
        if include_stored_context:
            summary["recent_stored_messages"] = self.get_recent_history(10)
            summary["storage_stats"] = storage_stats
        return summary

    def dispose(self):
        """Release memory. The attached content manager is left to its owner."""
        self.window.clear()
        self.window.set_system_prompt("")
        self.archive.clear()
        self.entities.dispose()
        logger.info("Smart memory disposed")


__all__ = [
    'SmartMemoryManager',
    'SmartMemoryConfig',
    'MemoryStats',
]
