"""
Tests for content backends
===========================
"""

import pytest

from agent_memory.errors import ConfigError, StorageError
from agent_memory.content import (
    ContentStore,
    ContentReferenceConfig,
    ContentMetadata,
    ContentSource,
    ContentType,
    InMemoryContentBackend,
    FilesystemContentBackend,
    HybridContentBackend,
    create_backend,
    generate_reference_id,
)


def make_metadata(size: int = 4) -> ContentMetadata:
    return ContentMetadata(
        content_type=ContentType.TEXT,
        size_bytes=size,
        source=ContentSource.MCP_TOOL,
        mcp_tool_name="get_topic_messages",
        tags=["hcs"],
    )


@pytest.mark.asyncio
class TestInMemoryContentBackend:
    """Tests for InMemoryContentBackend."""

    async def test_write_read_delete(self):
        backend = InMemoryContentBackend()
        await backend.write("abc", b"data", make_metadata())

        assert await backend.read("abc") == b"data"
        assert await backend.exists("abc")
        assert await backend.delete("abc") is True
        assert await backend.delete("abc") is False
        assert await backend.read("abc") is None

    async def test_clear(self):
        backend = InMemoryContentBackend()
        for i in range(3):
            await backend.write(f"id{i}", b"x", make_metadata(1))
        assert await backend.clear() == 3
        assert not await backend.exists("id0")


@pytest.mark.asyncio
class TestFilesystemContentBackend:
    """Tests for FilesystemContentBackend."""

    async def test_round_trip_with_metadata(self, tmp_path):
        backend = FilesystemContentBackend(tmp_path)
        reference_id = generate_reference_id()
        await backend.write(reference_id, b"\x00binary\xff", make_metadata(9))

        assert await backend.read(reference_id) == b"\x00binary\xff"
        assert (tmp_path / reference_id[:2] / f"{reference_id}.bin").exists()

        entries = await backend.list_entries()
        assert len(entries) == 1
        listed_id, metadata = entries[0]
        assert listed_id == reference_id
        assert metadata.source == ContentSource.MCP_TOOL
        assert metadata.mcp_tool_name == "get_topic_messages"
        assert metadata.tags == ["hcs"]

    async def test_update_metadata(self, tmp_path):
        backend = FilesystemContentBackend(tmp_path)
        reference_id = generate_reference_id()
        metadata = make_metadata()
        await backend.write(reference_id, b"data", metadata)

        metadata.access_count = 7
        await backend.update_metadata(reference_id, metadata)

        (_, reloaded), = await backend.list_entries()
        assert reloaded.access_count == 7

    async def test_missing_and_delete(self, tmp_path):
        backend = FilesystemContentBackend(tmp_path)
        reference_id = generate_reference_id()

        assert await backend.read(reference_id) is None
        await backend.write(reference_id, b"data", make_metadata())
        assert await backend.delete(reference_id) is True
        assert not await backend.exists(reference_id)
        assert await backend.list_entries() == []

    async def test_corrupt_sidecar_skipped(self, tmp_path):
        backend = FilesystemContentBackend(tmp_path)
        reference_id = generate_reference_id()
        await backend.write(reference_id, b"data", make_metadata())
        (tmp_path / reference_id[:2] / f"{reference_id}.json").write_text("{not json")

        assert await backend.list_entries() == []

    async def test_write_error_becomes_storage_error(self, tmp_path, mocker):
        backend = FilesystemContentBackend(tmp_path)
        mocker.patch.object(backend, "_write_atomic", side_effect=PermissionError("read-only"))

        with pytest.raises(StorageError):
            await backend.write(generate_reference_id(), b"data", make_metadata())


@pytest.mark.asyncio
class TestHybridContentBackend:
    """Tests for HybridContentBackend."""

    async def test_reads_fall_back_to_disk(self, tmp_path):
        reference_id = generate_reference_id()
        first = HybridContentBackend(tmp_path)
        await first.write(reference_id, b"persisted", make_metadata(9))

        # New instance has an empty memory layer
        second = HybridContentBackend(tmp_path)
        assert await second.read(reference_id) == b"persisted"
        assert await second.exists(reference_id)

        assert await second.delete(reference_id)
        assert await second.read(reference_id) is None


class TestCreateBackend:
    """Tests for backend selection."""

    def test_selects_by_config(self, tmp_path):
        assert isinstance(create_backend(ContentReferenceConfig()), InMemoryContentBackend)
        assert isinstance(
            create_backend(ContentReferenceConfig(storage_backend="filesystem"), tmp_path),
            FilesystemContentBackend,
        )
        assert isinstance(
            create_backend(ContentReferenceConfig(storage_backend="hybrid"), tmp_path),
            HybridContentBackend,
        )

    def test_unknown_backend_rejected(self):
        with pytest.raises(ConfigError):
            ContentReferenceConfig(storage_backend="s3").validate()


@pytest.mark.asyncio
class TestPersistentStore:
    """Content store over a persistent backend."""

    async def test_references_survive_restart(self, tmp_path):
        config = ContentReferenceConfig(
            storage_backend="filesystem",
            enable_persistence=True,
            enable_auto_cleanup=False,
        )
        store = ContentStore(config, storage_dir=tmp_path)
        await store.start()
        ref = await store.store_content("survives restarts " * 100, source=ContentSource.USER_UPLOAD)
        await store.resolve_reference(ref.reference_id)
        await store.dispose()

        restarted = ContentStore(config, storage_dir=tmp_path)
        await restarted.start()
        result = await restarted.resolve_reference(ref.reference_id)

        assert result.success
        assert result.content == ("survives restarts " * 100).encode()
        assert result.metadata.access_count == 2
        await restarted.dispose()

    async def test_unpersisted_payloads_removed_on_dispose(self, tmp_path):
        config = ContentReferenceConfig(
            storage_backend="filesystem",
            enable_persistence=False,
            enable_auto_cleanup=False,
        )
        store = ContentStore(config, storage_dir=tmp_path)
        await store.start()
        await store.store_content("x" * 20 * 1024, source=ContentSource.MCP_TOOL)
        assert list(tmp_path.glob("*/*.bin"))

        await store.dispose()

        assert list(tmp_path.glob("*/*.bin")) == []
        assert list(tmp_path.glob("*/*.json")) == []

        reopened = ContentStore(
            ContentReferenceConfig(
                storage_backend="filesystem",
                enable_persistence=True,
                enable_auto_cleanup=False,
            ),
            storage_dir=tmp_path,
        )
        await reopened.start()
        stats = await reopened.get_stats()
        assert stats.active_references == 0
        await reopened.dispose()
