"""
Content Module
==============
Reference-based offloading of large payloads out of the conversation.

Components:
- ContentStore: Storage, resolution and cleanup of referenced content
- ContentStoreManager: Application-owned handle to the store
- ToolOutputProcessor: Swaps large tool outputs for references
- ReferenceContextTracker: References shown in the conversation
- Backends: In-memory, filesystem and hybrid persistence
"""

from .types import (
    ContentType,
    ContentSource,
    ReferenceLifecycleState,
    ResolutionErrorType,
    ContentMetadata,
    ContentReference,
    ReferenceResolutionResult,
    CleanupPolicy,
    ContentReferenceConfig,
    ContentReferenceStats,
    CleanupResult,
)

from .reference_ids import (
    REFERENCE_PREFIX,
    generate_reference_id,
    is_valid_reference_id,
    format_reference,
    extract_reference_id,
    find_reference_ids,
)

from .backends import (
    ContentBackend,
    InMemoryContentBackend,
    FilesystemContentBackend,
    HybridContentBackend,
    create_backend,
)

from .content_store import (
    ContentStore,
    ReferencePolicy,
    SizeThresholdPolicy,
    detect_content_type,
    create_preview,
)

from .reference_context import (
    DisplayFormat,
    DisplayOptions,
    DisplayResult,
    ReferenceContext,
    ReferenceContextTracker,
    ValidationResult,
)

from .store_manager import ContentStoreManager

from .tool_output import (
    ReferenceCapability,
    ProcessedOutput,
    ToolOutputProcessor,
)


__all__ = [
    # Types
    'ContentType',
    'ContentSource',
    'ReferenceLifecycleState',
    'ResolutionErrorType',
    'ContentMetadata',
    'ContentReference',
    'ReferenceResolutionResult',
    'CleanupPolicy',
    'ContentReferenceConfig',
    'ContentReferenceStats',
    'CleanupResult',

    # Reference IDs
    'REFERENCE_PREFIX',
    'generate_reference_id',
    'is_valid_reference_id',
    'format_reference',
    'extract_reference_id',
    'find_reference_ids',

    # Backends
    'ContentBackend',
    'InMemoryContentBackend',
    'FilesystemContentBackend',
    'HybridContentBackend',
    'create_backend',

    # Store
    'ContentStore',
    'ReferencePolicy',
    'SizeThresholdPolicy',
    'detect_content_type',
    'create_preview',
    'ContentStoreManager',

    # Tool Output
    'ReferenceCapability',
    'ProcessedOutput',
    'ToolOutputProcessor',

    # Conversation Context
    'DisplayFormat',
    'DisplayOptions',
    'DisplayResult',
    'ReferenceContext',
    'ReferenceContextTracker',
    'ValidationResult',
]
