"""
Content Store
=============
Offloads payloads too large for the conversation token budget and manages
their retention.

Features:
- Random URL-safe reference ids (256 bits)
- Pluggable persistence (memory, filesystem, hybrid)
- Per-source cleanup policies swept on a background task
- Structured, never-raising reference resolution
- Access statistics and timing metrics

Lifecycle per reference:
    active -> cleanup_pending -> removed   (policy sweep)
    active -> removed                      (explicit cleanup_reference)
"""

import json
import re
import time
import asyncio
import logging
import threading
from pathlib import Path
from typing import Optional, Dict, Any, List, Union, Callable
from dataclasses import dataclass, replace
from collections import deque
from abc import ABC, abstractmethod

from ..errors import StorageError, ConfigError
from .backends import ContentBackend, create_backend
from .reference_ids import generate_reference_id, is_valid_reference_id
from .types import (
    ContentType,
    ContentSource,
    ContentMetadata,
    ContentReference,
    ContentReferenceConfig,
    ContentReferenceStats,
    PerformanceMetrics,
    ReferenceSummary,
    ReferenceLifecycleState,
    ReferenceResolutionResult,
    ResolutionErrorType,
    CleanupResult,
    PREVIEW_MAX_LENGTH,
)

logger = logging.getLogger(__name__)

# Rolling window for timing averages
MAX_TIMING_RECORDS = 100


class ReferencePolicy(ABC):
    """Decides whether content is large enough to store by reference."""

    @abstractmethod
    def should_use_reference(self, size_bytes: int, config: ContentReferenceConfig) -> bool:
        pass


class SizeThresholdPolicy(ReferencePolicy):
    """Reference anything strictly larger than the configured threshold."""

    def should_use_reference(self, size_bytes: int, config: ContentReferenceConfig) -> bool:
        return size_bytes > config.size_threshold_bytes


@dataclass
class StoredContent:
    """Index entry for a stored payload."""
    metadata: ContentMetadata
    state: ReferenceLifecycleState = ReferenceLifecycleState.ACTIVE


def _to_bytes(content: Union[bytes, bytearray, str]) -> bytes:
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content)


def detect_content_type(content: bytes, mime_type: Optional[str] = None) -> ContentType:
    """Classify content from its mime type, or by sniffing the first 1000 bytes."""
    if mime_type:
        if mime_type == "text/html":
            return ContentType.HTML
        if mime_type == "text/markdown":
            return ContentType.MARKDOWN
        if mime_type == "application/json":
            return ContentType.JSON
        if mime_type.startswith("text/"):
            return ContentType.TEXT
        return ContentType.BINARY

    head = content[:1000]
    if b"\x00" in head:
        return ContentType.BINARY
    try:
        text = head.decode("utf-8")
    except UnicodeDecodeError:
        # A multi-byte character may straddle the cut
        text = head.decode("utf-8", errors="ignore")
        if not text:
            return ContentType.BINARY
    stripped = text.lstrip()
    if stripped.startswith(("{", "[")):
        return ContentType.JSON
    if "<html" in text.lower() or "<!doctype" in text.lower():
        return ContentType.HTML
    if "#" in text and "\n" in text:
        return ContentType.MARKDOWN
    return ContentType.TEXT


def create_preview(content: bytes, content_type: ContentType) -> str:
    """Build a preview of at most PREVIEW_MAX_LENGTH characters."""
    if content_type == ContentType.BINARY:
        return "[Binary content]"

    preview = content[:PREVIEW_MAX_LENGTH * 2].decode("utf-8", errors="ignore")
    if content_type == ContentType.HTML:
        preview = re.sub(r"<[^>]*>", "", preview)
        preview = re.sub(r"\s+", " ", preview)
    elif content_type == ContentType.JSON:
        try:
            preview = json.dumps(json.loads(preview), separators=(",", ":"))
        except ValueError:
            pass

    preview = preview.strip()
    if len(preview) > PREVIEW_MAX_LENGTH:
        preview = preview[:PREVIEW_MAX_LENGTH - 3] + "..."
    return preview or "[Binary content]"


class ContentStore:
    """
    Reference-based store for large conversation payloads.

    Example:
        store = ContentStore(ContentReferenceConfig(storage_backend="memory"))
        await store.start()

        if store.should_use_reference(tool_output):
            ref = await store.store_content(tool_output, source=ContentSource.MCP_TOOL)
            message = ref.format  # "content-ref:..."

        result = await store.resolve_reference(ref.reference_id)
        if result.success:
            print(len(result.content))

        await store.dispose()
    """

    def __init__(
        self,
        config: Optional[ContentReferenceConfig] = None,
        backend: Optional[ContentBackend] = None,
        storage_dir: Optional[Path] = None,
        policy: Optional[ReferencePolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize content store.

        Args:
            config: Thresholds and retention policy
            backend: Payload persistence, built from config when omitted
            storage_dir: Root directory for filesystem and hybrid backends
            policy: "Is this content large" decision, size threshold by default
            clock: Time source in epoch seconds
        """
        self.config = (config or ContentReferenceConfig()).validate()
        self._backend = backend or create_backend(self.config, storage_dir)
        self._policy = policy or SizeThresholdPolicy()
        self._clock = clock

        self._index: Dict[str, StoredContent] = {}
        self._index_lock = threading.Lock()
        self._reference_locks: Dict[str, threading.Lock] = {}
        self._reference_locks_guard = threading.Lock()

        self._total_resolutions = 0
        self._failed_resolutions = 0
        self._recently_cleaned_up = 0
        self._creation_times: deque = deque(maxlen=MAX_TIMING_RECORDS)
        self._resolution_times: deque = deque(maxlen=MAX_TIMING_RECORDS)
        self._cleanup_times: deque = deque(maxlen=MAX_TIMING_RECORDS)

        self._cleanup_task: Optional[asyncio.Task] = None
        self._started = False
        self._disposed = False

    @property
    def backend(self) -> ContentBackend:
        return self._backend

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _lock_for(self, reference_id: str) -> threading.Lock:
        with self._reference_locks_guard:
            lock = self._reference_locks.get(reference_id)
            if lock is None:
                lock = self._reference_locks[reference_id] = threading.Lock()
            return lock

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self):
        """
        Start the store: reload persisted entries and the cleanup task.

        Must be called from a running event loop. Safe to call twice.
        """
        if self._disposed:
            raise RuntimeError("ContentStore has been disposed")
        if self._started:
            return
        self._started = True

        if self.config.enable_persistence and self._backend.persistent:
            await self._load_persisted()

        self._start_cleanup_task()
        logger.info(
            f"Content store started (backend={self.config.storage_backend}, "
            f"auto_cleanup={self.config.enable_auto_cleanup})"
        )

    async def _load_persisted(self):
        entries = await self._backend.list_entries()
        with self._index_lock:
            for reference_id, metadata in entries:
                self._index.setdefault(reference_id, StoredContent(metadata=metadata))
        logger.info(f"Loaded {len(entries)} persisted content references")

    def _start_cleanup_task(self):
        if not self.config.enable_auto_cleanup or self._cleanup_task is not None:
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def _stop_cleanup_task(self):
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self):
        """Periodic cleanup sweep."""
        while True:
            await asyncio.sleep(self.config.cleanup_interval_ms / 1000)
            try:
                result = await self.perform_cleanup()
                if result.cleaned_up or result.errors:
                    logger.info(
                        f"Cleanup sweep removed {result.cleaned_up} references "
                        f"({len(result.errors)} errors)"
                    )
            except Exception as e:
                logger.error(f"Cleanup sweep failed: {e}")

    async def _ensure_started(self):
        if not self._started and not self._disposed:
            await self.start()

    async def dispose(self):
        """
        Cancel the cleanup task and drop the in-process index. Idempotent.

        Payloads are deleted from the backend unless persistence is enabled
        on a persistent backend.
        """
        if self._disposed:
            return
        self._disposed = True
        await self._stop_cleanup_task()

        # Entries nobody will reload are removed, on disk as well as in memory
        if not (self.config.enable_persistence and self._backend.persistent):
            try:
                removed = await self._backend.clear()
                logger.debug(f"Cleared {removed} unpersisted payloads")
            except StorageError as e:
                logger.error(f"Failed to clear content backend on dispose: {e}")
        with self._index_lock:
            self._index.clear()
        with self._reference_locks_guard:
            self._reference_locks.clear()
        logger.info("Content store disposed")

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # =========================================================================
    # Storage
    # =========================================================================

    def should_use_reference(
        self,
        content: Union[bytes, bytearray, str],
        threshold_override: Optional[int] = None,
    ) -> bool:
        """
        Decide whether content should be stored by reference.

        Args:
            content: Payload (str is measured as UTF-8)
            threshold_override: Size threshold replacing the configured one
        """
        size = len(_to_bytes(content))
        if threshold_override is not None:
            return size > threshold_override
        return self._policy.should_use_reference(size, self.config)

    async def store_content(
        self,
        content: Union[bytes, bytearray, str],
        source: ContentSource = ContentSource.SYSTEM,
        content_type: Optional[ContentType] = None,
        mime_type: Optional[str] = None,
        mcp_tool_name: Optional[str] = None,
        file_name: Optional[str] = None,
        tags: Optional[List[str]] = None,
        custom_metadata: Optional[Dict[str, Any]] = None,
    ) -> ContentReference:
        """
        Store content and return a reference.

        Args:
            content: Payload (str is stored as UTF-8)
            source: Origin, selects the cleanup policy
            content_type: Classification, detected when omitted
            mime_type: Original MIME type
            mcp_tool_name: Tool that produced the content
            file_name: Original or suggested file name
            tags: Free-form labels
            custom_metadata: Extra source metadata

        Returns:
            Lightweight reference (no payload)

        Raises:
            StorageError: if the payload could not be persisted
        """
        if self._disposed:
            raise StorageError("Content store has been disposed", suggested_actions=["Create a new store"])
        await self._ensure_started()

        start = time.perf_counter()
        payload = _to_bytes(content)
        now = self._clock()
        reference_id = generate_reference_id()

        metadata = ContentMetadata(
            content_type=content_type or detect_content_type(payload, mime_type),
            size_bytes=len(payload),
            source=ContentSource(source),
            created_at=now,
            last_accessed_at=now,
            access_count=0,
            mime_type=mime_type,
            mcp_tool_name=mcp_tool_name,
            file_name=file_name,
            tags=list(tags or []),
            custom_metadata=dict(custom_metadata or {}),
        )

        try:
            await self._backend.write(reference_id, payload, metadata)
        except StorageError:
            self._record_timing(self._creation_times, start)
            raise
        except Exception as e:
            self._record_timing(self._creation_times, start)
            raise StorageError(
                f"Failed to store content: {e}",
                reference_id=reference_id,
                suggested_actions=["Try again", "Check storage limits"],
            ) from e

        with self._index_lock:
            self._index[reference_id] = StoredContent(metadata=metadata)

        await self._enforce_storage_limits(protect=reference_id)

        reference = ContentReference(
            reference_id=reference_id,
            state=ReferenceLifecycleState.ACTIVE,
            preview=create_preview(payload, metadata.content_type),
            metadata=ReferenceSummary(
                content_type=metadata.content_type,
                size_bytes=metadata.size_bytes,
                source=metadata.source,
                file_name=metadata.file_name,
                mime_type=metadata.mime_type,
            ),
            created_at=now,
        )

        self._record_timing(self._creation_times, start)
        logger.debug(f"Stored {metadata.size_bytes} bytes from {metadata.source.value} as {reference_id}")
        return reference

    async def store_content_if_large(
        self,
        content: Union[bytes, bytearray, str],
        source: ContentSource = ContentSource.SYSTEM,
        **metadata,
    ) -> Optional[ContentReference]:
        """Store content only when it crosses the reference threshold, else None."""
        if not self.should_use_reference(content):
            return None
        return await self.store_content(content, source=source, **metadata)

    # =========================================================================
    # Resolution
    # =========================================================================

    def _failure(
        self,
        start: float,
        error: str,
        error_type: ResolutionErrorType,
        suggested_actions: List[str],
    ) -> ReferenceResolutionResult:
        self._failed_resolutions += 1
        self._record_timing(self._resolution_times, start)
        return ReferenceResolutionResult(
            success=False,
            error=error,
            error_type=error_type,
            suggested_actions=suggested_actions,
        )

    async def resolve_reference(self, reference_id: str) -> ReferenceResolutionResult:
        """
        Resolve a reference to its content.

        Never raises; failures come back as a result with ``error_type``
        so callers can fall back to inlining the original content.
        """
        start = time.perf_counter()
        try:
            if not is_valid_reference_id(reference_id):
                return self._failure(
                    start, "Invalid reference ID format", ResolutionErrorType.NOT_FOUND,
                    ["Check the reference ID format", "Ensure the reference ID is complete"],
                )

            entry = self._index.get(reference_id)
            if entry is None or entry.state != ReferenceLifecycleState.ACTIVE:
                return self._failure(
                    start, "Reference not found", ResolutionErrorType.NOT_FOUND,
                    ["Verify the reference ID", "Check if the content has expired", "Request fresh content"],
                )

            try:
                content = await self._backend.read(reference_id)
            except StorageError as e:
                logger.error(f"Backend read failed for {reference_id}: {e}")
                return self._failure(
                    start, f"Storage error resolving reference: {e}", ResolutionErrorType.SYSTEM_ERROR,
                    ["Try again", "Contact administrator"],
                )

            # Removed while the read was in flight
            if content is None or entry.state != ReferenceLifecycleState.ACTIVE:
                return self._failure(
                    start, "Reference not found", ResolutionErrorType.NOT_FOUND,
                    ["Request fresh content"],
                )

            if len(content) != entry.metadata.size_bytes:
                entry.state = ReferenceLifecycleState.INVALID
                logger.error(
                    f"Payload for {reference_id} is {len(content)} bytes, "
                    f"expected {entry.metadata.size_bytes}"
                )
                return self._failure(
                    start, "Stored content is corrupted", ResolutionErrorType.CORRUPTED,
                    ["Request fresh content", "Store the content again"],
                )

            with self._lock_for(reference_id):
                entry.metadata.access_count += 1
                entry.metadata.last_accessed_at = self._clock()
                snapshot = replace(
                    entry.metadata,
                    tags=list(entry.metadata.tags),
                    custom_metadata=dict(entry.metadata.custom_metadata),
                )

            if self._backend.persistent:
                try:
                    await self._backend.update_metadata(reference_id, snapshot)
                except StorageError as e:
                    logger.warning(f"Could not persist access stats for {reference_id}: {e}")

            self._total_resolutions += 1
            self._record_timing(self._resolution_times, start)
            return ReferenceResolutionResult(success=True, content=content, metadata=snapshot)

        except Exception as e:
            logger.error(f"Unexpected error resolving {reference_id}: {e}")
            return self._failure(
                start, f"System error resolving reference: {e}", ResolutionErrorType.SYSTEM_ERROR,
                ["Try again", "Contact administrator"],
            )

    async def has_reference(self, reference_id: str) -> bool:
        """Check that a reference exists and is active. Does not count as access."""
        if not is_valid_reference_id(reference_id):
            return False
        entry = self._index.get(reference_id)
        return entry is not None and entry.state == ReferenceLifecycleState.ACTIVE

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def _remove(self, reference_id: str, entry: StoredContent):
        """Delete payload then drop the index entry. Raises StorageError."""
        await self._backend.delete(reference_id)
        entry.state = ReferenceLifecycleState.REMOVED
        with self._index_lock:
            if self._index.get(reference_id) is entry:
                del self._index[reference_id]
        with self._reference_locks_guard:
            self._reference_locks.pop(reference_id, None)

    async def cleanup_reference(self, reference_id: str) -> bool:
        """
        Remove a reference now.

        Returns:
            True if removed, False if it did not exist (idempotent)

        Raises:
            StorageError: if the backend could not delete the payload
        """
        entry = self._index.get(reference_id)
        if entry is None or entry.state == ReferenceLifecycleState.REMOVED:
            return False
        await self._remove(reference_id, entry)
        self._recently_cleaned_up += 1
        logger.debug(f"Cleaned up reference {reference_id}")
        return True

    async def perform_cleanup(self) -> CleanupResult:
        """
        Sweep stored references against the cleanup policies.

        Entries idle longer than their source policy's ``max_age_ms`` are
        removed, then least-recently-accessed entries go until the store is
        back within ``max_references``. Per-entry failures are collected,
        never raised.
        """
        start = time.perf_counter()
        result = CleanupResult()
        now_ms = self._now_ms()

        with self._index_lock:
            snapshot = list(self._index.items())

        expired = []
        for reference_id, entry in snapshot:
            if entry.state == ReferenceLifecycleState.REMOVED:
                continue
            policy = self.config.policy_for(entry.metadata.source)
            age_ms = now_ms - entry.metadata.last_accessed_at * 1000
            if age_ms > policy.max_age_ms or entry.state in (
                ReferenceLifecycleState.CLEANUP_PENDING, ReferenceLifecycleState.INVALID,
            ):
                entry.state = ReferenceLifecycleState.CLEANUP_PENDING
                expired.append((policy.priority, reference_id, entry))

        # Stable sort: equal priority keeps index order
        expired.sort(key=lambda item: item[0], reverse=True)
        for _, reference_id, entry in expired:
            try:
                await self._remove(reference_id, entry)
                result.cleaned_up += 1
            except Exception as e:
                result.errors.append(f"Failed to cleanup {reference_id}: {e}")

        trimmed, errors = await self._trim_excess()
        result.cleaned_up += trimmed
        result.errors.extend(errors)

        self._recently_cleaned_up = result.cleaned_up
        self._record_timing(self._cleanup_times, start)
        if result.errors:
            logger.warning(f"Cleanup finished with {len(result.errors)} errors")
        return result

    async def _trim_excess(self, protect: Optional[str] = None):
        """Evict least-recently-accessed entries over the count or byte limits."""
        cleaned = 0
        errors: List[str] = []

        with self._index_lock:
            active = [
                (rid, entry) for rid, entry in self._index.items()
                if entry.state == ReferenceLifecycleState.ACTIVE
            ]
        active.sort(key=lambda item: item[1].metadata.last_accessed_at)

        count = len(active)
        total_bytes = sum(entry.metadata.size_bytes for _, entry in active)
        for reference_id, entry in active:
            if count <= self.config.max_references and total_bytes <= self.config.max_total_storage_bytes:
                break
            if reference_id == protect:
                continue
            entry.state = ReferenceLifecycleState.CLEANUP_PENDING
            try:
                await self._remove(reference_id, entry)
                cleaned += 1
                count -= 1
                total_bytes -= entry.metadata.size_bytes
            except Exception as e:
                errors.append(f"Failed to cleanup excess reference {reference_id}: {e}")
        return cleaned, errors

    async def _enforce_storage_limits(self, protect: Optional[str] = None):
        with self._index_lock:
            count = len(self._index)
            total_bytes = sum(entry.metadata.size_bytes for entry in self._index.values())
        if count > self.config.max_references or total_bytes > self.config.max_total_storage_bytes:
            cleaned, errors = await self._trim_excess(protect=protect)
            for error in errors:
                logger.warning(error)
            if cleaned:
                logger.info(f"Storage limits reached, evicted {cleaned} least recently used references")

    # =========================================================================
    # Configuration and statistics
    # =========================================================================

    async def update_config(self, **changes) -> ContentReferenceConfig:
        """
        Merge changes into the active configuration.

        Already-issued references stay resolvable. The cleanup task is
        restarted so a new interval takes effect.

        Raises:
            ConfigError: if the merged configuration is invalid
        """
        if "storage_backend" in changes and changes["storage_backend"] != self.config.storage_backend:
            raise ConfigError("storage_backend cannot change on a live store")

        self.config = self.config.merged(**changes)
        logger.info(f"Content reference config updated: {sorted(changes)}")

        if self._started and not self._disposed:
            await self._stop_cleanup_task()
            self._start_cleanup_task()
        return self.config

    @staticmethod
    def _record_timing(bucket: deque, start: float):
        bucket.append((time.perf_counter() - start) * 1000)

    @staticmethod
    def _average(values) -> float:
        return sum(values) / len(values) if values else 0.0

    async def get_stats(self) -> ContentReferenceStats:
        """Aggregate counters derived from the current index."""
        with self._index_lock:
            active = [
                (rid, entry.metadata) for rid, entry in self._index.items()
                if entry.state == ReferenceLifecycleState.ACTIVE
            ]

        total_bytes = sum(meta.size_bytes for _, meta in active)
        most_accessed = None
        max_access = 0
        for reference_id, meta in active:
            if meta.access_count > max_access:
                max_access = meta.access_count
                most_accessed = reference_id

        return ContentReferenceStats(
            active_references=len(active),
            total_storage_bytes=total_bytes,
            recently_cleaned_up=self._recently_cleaned_up,
            total_resolutions=self._total_resolutions,
            failed_resolutions=self._failed_resolutions,
            average_content_size=total_bytes / len(active) if active else 0.0,
            storage_utilization=total_bytes / self.config.max_total_storage_bytes * 100,
            most_accessed_reference_id=most_accessed,
            performance_metrics=PerformanceMetrics(
                average_creation_time_ms=self._average(self._creation_times),
                average_resolution_time_ms=self._average(self._resolution_times),
                average_cleanup_time_ms=self._average(self._cleanup_times),
            ),
        )

    def get_reference_state(self, reference_id: str) -> ReferenceLifecycleState:
        """Lifecycle state of a reference; REMOVED once gone, INVALID for malformed ids."""
        if not is_valid_reference_id(reference_id):
            return ReferenceLifecycleState.INVALID
        entry = self._index.get(reference_id)
        return entry.state if entry is not None else ReferenceLifecycleState.REMOVED


__all__ = [
    'ContentStore',
    'ReferencePolicy',
    'SizeThresholdPolicy',
    'StoredContent',
    'detect_content_type',
    'create_preview',
]
