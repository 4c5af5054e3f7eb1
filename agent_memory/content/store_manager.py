"""
Content Store Manager
=====================
Owns one ContentStore for the lifetime of an application.

Construct once at startup and pass it to whatever needs content
references (memory facade, tool output processor, HTTP handlers).
"""

import time
import logging
from pathlib import Path
from typing import Optional, Union

from ..errors import NotFoundError, StorageError
from .backends import ContentBackend
from .content_store import ContentStore, ReferencePolicy
from .reference_context import ReferenceContextTracker
from .reference_ids import find_reference_ids, format_reference
from .types import (
    ContentSource,
    ContentReference,
    ContentReferenceConfig,
    ContentReferenceStats,
    ReferenceResolutionResult,
    ResolutionErrorType,
    CleanupResult,
)

logger = logging.getLogger(__name__)


class ContentStoreManager:
    """
    Explicit handle to the content store.

    Example:
        manager = ContentStoreManager(ContentReferenceConfig(size_threshold_bytes=4096))
        await manager.initialize()

        ref = await manager.store_content_if_large(big_output, source=ContentSource.MCP_TOOL)
        text = await manager.resolve_text(f"see {ref.format}")
        latest = manager.context.get_most_recent_reference()

        await manager.dispose()
    """

    def __init__(
        self,
        reference_config: Optional[ContentReferenceConfig] = None,
        storage_dir: Optional[Path] = None,
        backend: Optional[ContentBackend] = None,
        policy: Optional[ReferencePolicy] = None,
        **store_options,
    ):
        """
        Initialize manager.

        Args:
            reference_config: Content store configuration
            storage_dir: Root directory for filesystem and hybrid backends
            backend: Explicit backend, overrides config.storage_backend
            policy: Reference size policy
            store_options: Passed through to ContentStore (e.g. clock)
        """
        self._store_args = dict(
            config=reference_config,
            backend=backend,
            storage_dir=storage_dir,
            policy=policy,
            **store_options,
        )
        self._store = ContentStore(**self._store_args)
        self._initialized = False
        self.context = ReferenceContextTracker(self, clock=store_options.get("clock", time.time))

    @property
    def store(self) -> ContentStore:
        return self._store

    async def initialize(self):
        """Start the underlying store. Safe to call twice; reopens after dispose."""
        if self._initialized:
            return
        if self._store.is_disposed:
            self._store_args["config"] = self._store.config
            self._store = ContentStore(**self._store_args)
        await self._store.start()
        self._initialized = True
        logger.info("Content store manager initialized")

    def is_initialized(self) -> bool:
        return self._initialized

    async def dispose(self):
        """Stop the underlying store. Idempotent."""
        await self._store.dispose()
        self.context.clear()
        self._initialized = False

    def should_use_reference(self, content: Union[bytes, str], threshold_override: Optional[int] = None) -> bool:
        return self._store.should_use_reference(content, threshold_override)

    async def store_content(self, content: Union[bytes, str], **kwargs) -> ContentReference:
        return await self._store.store_content(content, **kwargs)

    async def store_content_if_large(
        self,
        content: Union[bytes, str],
        source: ContentSource = ContentSource.SYSTEM,
        **metadata,
    ) -> Optional[ContentReference]:
        return await self._store.store_content_if_large(content, source=source, **metadata)

    async def resolve_reference(self, reference_id: str) -> ReferenceResolutionResult:
        return await self._store.resolve_reference(reference_id)

    async def require_reference(self, reference_id: str) -> ReferenceResolutionResult:
        """
        Resolve a reference, raising instead of returning a failure.

        Raises:
            NotFoundError: if the reference is unknown, removed or expired
            StorageError: if the payload is corrupted or could not be read
        """
        result = await self._store.resolve_reference(reference_id)
        if result.success:
            return result
        if result.error_type == ResolutionErrorType.NOT_FOUND:
            raise NotFoundError(result.error, reference_id, result.suggested_actions)
        raise StorageError(result.error, reference_id, result.suggested_actions)

    async def has_reference(self, reference_id: str) -> bool:
        return await self._store.has_reference(reference_id)

    async def cleanup_reference(self, reference_id: str) -> bool:
        return await self._store.cleanup_reference(reference_id)

    async def perform_cleanup(self) -> CleanupResult:
        return await self._store.perform_cleanup()

    async def update_config(self, **changes) -> ContentReferenceConfig:
        return await self._store.update_config(**changes)

    async def get_stats(self) -> ContentReferenceStats:
        return await self._store.get_stats()

    async def resolve_text(self, text: str) -> str:
        """
        Expand every ``content-ref:`` token in text to its content.

        Tokens that cannot be resolved are left as they are.
        """
        for reference_id in dict.fromkeys(find_reference_ids(text)):
            result = await self._store.resolve_reference(reference_id)
            if not result.success:
                logger.debug(f"Leaving unresolved reference {reference_id}: {result.error}")
                continue
            content = result.content.decode("utf-8", errors="replace")
            text = text.replace(format_reference(reference_id), content)
        return text


__all__ = [
    'ContentStoreManager',
]
