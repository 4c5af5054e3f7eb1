"""
Content Backends
================
Persistence for content store payloads.

Backends:
- In-Memory - Single process, nothing survives a restart
- Filesystem - Payload file plus JSON metadata sidecar per reference
- Hybrid - In-memory copy in front of the filesystem store
"""

import os
import json
import asyncio
import logging
import tempfile
import threading
from pathlib import Path
from typing import Optional, Dict, List, Tuple
from abc import ABC, abstractmethod

from ..errors import StorageError, ConfigError
from .types import ContentMetadata, ContentReferenceConfig

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = Path(tempfile.gettempdir()) / "agent_memory" / "content"


class ContentBackend(ABC):
    """Abstract payload store. I/O failures raise StorageError."""

    # True when entries outlive the process
    persistent: bool = False

    @abstractmethod
    async def write(self, reference_id: str, content: bytes, metadata: ContentMetadata):
        """Persist payload and metadata."""
        pass

    @abstractmethod
    async def read(self, reference_id: str) -> Optional[bytes]:
        """Read payload, None if absent."""
        pass

    @abstractmethod
    async def delete(self, reference_id: str) -> bool:
        """Delete payload, True if something was removed."""
        pass

    @abstractmethod
    async def exists(self, reference_id: str) -> bool:
        """Check if payload exists."""
        pass

    async def update_metadata(self, reference_id: str, metadata: ContentMetadata):
        """Persist refreshed access statistics."""
        pass

    async def list_entries(self) -> List[Tuple[str, ContentMetadata]]:
        """Enumerate stored entries with their metadata."""
        return []

    @abstractmethod
    async def clear(self) -> int:
        """Remove all entries, return count."""
        pass


class InMemoryContentBackend(ContentBackend):
    """
    In-memory payload store.

    Suitable for single-instance deployments.
    """

    def __init__(self):
        self._payloads: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    async def write(self, reference_id: str, content: bytes, metadata: ContentMetadata):
        with self._lock:
            self._payloads[reference_id] = bytes(content)

    async def read(self, reference_id: str) -> Optional[bytes]:
        with self._lock:
            return self._payloads.get(reference_id)

    async def delete(self, reference_id: str) -> bool:
        with self._lock:
            return self._payloads.pop(reference_id, None) is not None

    async def exists(self, reference_id: str) -> bool:
        with self._lock:
            return reference_id in self._payloads

    async def clear(self) -> int:
        with self._lock:
            count = len(self._payloads)
            self._payloads.clear()
            return count


class FilesystemContentBackend(ContentBackend):
    """
    Local filesystem payload store.

    Payloads stored at: {storage_dir}/{id[:2]}/{id}.bin
    Metadata stored at: {storage_dir}/{id[:2]}/{id}.json
    """

    persistent = True

    def __init__(self, storage_dir: Optional[Path] = None):
        """
        Initialize filesystem backend.

        Args:
            storage_dir: Root directory for payloads
        """
        self.storage_dir = Path(storage_dir or DEFAULT_STORAGE_DIR)
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory {self.storage_dir}: {e}") from e

    def _paths(self, reference_id: str) -> Tuple[Path, Path]:
        subdir = self.storage_dir / reference_id[:2]
        return subdir / f"{reference_id}.bin", subdir / f"{reference_id}.json"

    @staticmethod
    def _write_atomic(path: Path, data: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.parent / f"{path.name}.tmp"
        tmp.write_bytes(data)
        os.replace(tmp, path)

    def _write_sync(self, reference_id: str, content: bytes, metadata: ContentMetadata):
        payload_path, meta_path = self._paths(reference_id)
        self._write_atomic(payload_path, content)
        self._write_atomic(meta_path, json.dumps(metadata.to_dict(), default=str).encode("utf-8"))

    async def write(self, reference_id: str, content: bytes, metadata: ContentMetadata):
        try:
            await asyncio.to_thread(self._write_sync, reference_id, content, metadata)
        except OSError as e:
            raise StorageError(f"Failed to write {reference_id}: {e}", reference_id=reference_id) from e

    async def read(self, reference_id: str) -> Optional[bytes]:
        payload_path, _ = self._paths(reference_id)
        try:
            return await asyncio.to_thread(payload_path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {reference_id}: {e}", reference_id=reference_id) from e

    async def update_metadata(self, reference_id: str, metadata: ContentMetadata):
        _, meta_path = self._paths(reference_id)
        data = json.dumps(metadata.to_dict(), default=str).encode("utf-8")
        try:
            await asyncio.to_thread(self._write_atomic, meta_path, data)
        except OSError as e:
            raise StorageError(f"Failed to update metadata for {reference_id}: {e}", reference_id=reference_id) from e

    def _delete_sync(self, reference_id: str) -> bool:
        removed = False
        for path in self._paths(reference_id):
            if path.exists():
                path.unlink()
                removed = True
        return removed

    async def delete(self, reference_id: str) -> bool:
        try:
            return await asyncio.to_thread(self._delete_sync, reference_id)
        except OSError as e:
            raise StorageError(f"Failed to delete {reference_id}: {e}", reference_id=reference_id) from e

    async def exists(self, reference_id: str) -> bool:
        payload_path, _ = self._paths(reference_id)
        return await asyncio.to_thread(payload_path.exists)

    def _list_sync(self) -> List[Tuple[str, ContentMetadata]]:
        entries = []
        for meta_path in self.storage_dir.glob("*/*.json"):
            reference_id = meta_path.stem
            if not meta_path.with_suffix(".bin").exists():
                continue
            try:
                metadata = ContentMetadata.from_dict(json.loads(meta_path.read_text("utf-8")))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable metadata {meta_path}: {e}")
                continue
            entries.append((reference_id, metadata))
        return entries

    async def list_entries(self) -> List[Tuple[str, ContentMetadata]]:
        try:
            return await asyncio.to_thread(self._list_sync)
        except OSError as e:
            raise StorageError(f"Failed to list {self.storage_dir}: {e}") from e

    def _clear_sync(self) -> int:
        count = 0
        for payload_path in self.storage_dir.glob("*/*.bin"):
            payload_path.unlink()
            payload_path.with_suffix(".json").unlink(missing_ok=True)
            count += 1
        return count

    async def clear(self) -> int:
        try:
            return await asyncio.to_thread(self._clear_sync)
        except OSError as e:
            raise StorageError(f"Failed to clear {self.storage_dir}: {e}") from e


class HybridContentBackend(ContentBackend):
    """
    Memory-first backend that writes through to the filesystem.

    Reads hit memory; misses (e.g. after a restart) fall back to disk and
    repopulate the in-memory copy.
    """

    persistent = True

    def __init__(self, storage_dir: Optional[Path] = None):
        self._memory = InMemoryContentBackend()
        self._disk = FilesystemContentBackend(storage_dir)

    async def write(self, reference_id: str, content: bytes, metadata: ContentMetadata):
        await self._disk.write(reference_id, content, metadata)
        await self._memory.write(reference_id, content, metadata)

    async def read(self, reference_id: str) -> Optional[bytes]:
        content = await self._memory.read(reference_id)
        if content is not None:
            return content
        content = await self._disk.read(reference_id)
        if content is not None:
            await self._memory.write(reference_id, content, None)
        return content

    async def update_metadata(self, reference_id: str, metadata: ContentMetadata):
        await self._disk.update_metadata(reference_id, metadata)

    async def delete(self, reference_id: str) -> bool:
        in_memory = await self._memory.delete(reference_id)
        on_disk = await self._disk.delete(reference_id)
        return in_memory or on_disk

    async def exists(self, reference_id: str) -> bool:
        return await self._memory.exists(reference_id) or await self._disk.exists(reference_id)

    async def list_entries(self) -> List[Tuple[str, ContentMetadata]]:
        return await self._disk.list_entries()

    async def clear(self) -> int:
        await self._memory.clear()
        return await self._disk.clear()


def create_backend(
    config: ContentReferenceConfig,
    storage_dir: Optional[Path] = None,
) -> ContentBackend:
    """
    Create the backend selected by ``config.storage_backend``.

    Args:
        config: Content reference configuration
        storage_dir: Root directory for filesystem and hybrid backends
    """
    if config.storage_backend == "memory":
        return InMemoryContentBackend()
    if config.storage_backend == "filesystem":
        return FilesystemContentBackend(storage_dir)
    if config.storage_backend == "hybrid":
        return HybridContentBackend(storage_dir)
    raise ConfigError(f"Unknown storage_backend {config.storage_backend!r}")


__all__ = [
    'ContentBackend',
    'InMemoryContentBackend',
    'FilesystemContentBackend',
    'HybridContentBackend',
    'create_backend',
    'DEFAULT_STORAGE_DIR',
]
