"""
Memory Module
=============
Token-budgeted conversation memory for blockchain agents.

Components:
- SmartMemoryManager: Facade over window, archive and entities
- MemoryWindow: Token-aware active message window
- MessageArchive: Searchable store for evicted messages
- EntityAssociationTracker: Names for entities created in conversation
- TokenCounter: Pluggable token estimation
"""

from .messages import (
    ConversationMessage,
    MessageRole,
    human,
    ai,
    system,
)

from .token_counter import (
    TokenCounter,
    ApproximateTokenCounter,
    TiktokenCounter,
    create_token_counter,
    estimate_tokens,
)

from .memory_window import (
    MemoryWindow,
    AddMessageResult,
    WindowStats,
)

from .message_archive import (
    MessageArchive,
    StoreResult,
    StorageStats,
)

from .entity_tracker import (
    EntityAssociation,
    EntityAssociationTracker,
    normalize_entity_type,
)

from .smart_memory import (
    SmartMemoryManager,
    SmartMemoryConfig,
    MemoryStats,
)


__all__ = [
    # Messages
    'ConversationMessage',
    'MessageRole',
    'human',
    'ai',
    'system',

    # Token Counting
    'TokenCounter',
    'ApproximateTokenCounter',
    'TiktokenCounter',
    'create_token_counter',
    'estimate_tokens',

    # Memory Window
    'MemoryWindow',
    'AddMessageResult',
    'WindowStats',

    # Archive
    'MessageArchive',
    'StoreResult',
    'StorageStats',

    # Entities
    'EntityAssociation',
    'EntityAssociationTracker',
    'normalize_entity_type',

    # Facade
    'SmartMemoryManager',
    'SmartMemoryConfig',
    'MemoryStats',
]
