"""
Tests for tool output pipeline and store manager
=================================================
"""

import pytest

from agent_memory.errors import NotFoundError, StorageError
from agent_memory.content import (
    ContentStoreManager,
    ContentReferenceConfig,
    ContentSource,
    ReferenceCapability,
    ToolOutputProcessor,
    format_reference,
)


class RecordingCapability(ReferenceCapability):
    """Tool that accepts references and records them."""

    def __init__(self):
        self.created = []

    def accepts_references(self) -> bool:
        return True

    def on_reference_created(self, reference):
        self.created.append(reference)


@pytest.fixture
async def manager():
    manager = ContentStoreManager(ContentReferenceConfig(size_threshold_bytes=100, enable_auto_cleanup=False))
    await manager.initialize()
    yield manager
    await manager.dispose()


@pytest.mark.asyncio
class TestContentStoreManager:
    """Tests for ContentStoreManager."""

    async def test_lifecycle(self):
        manager = ContentStoreManager(ContentReferenceConfig(enable_auto_cleanup=False))
        assert not manager.is_initialized()

        await manager.initialize()
        await manager.initialize()
        assert manager.is_initialized()

        await manager.dispose()
        await manager.dispose()
        assert not manager.is_initialized()

        await manager.initialize()
        ref = await manager.store_content("after reopen")
        assert await manager.has_reference(ref.reference_id)
        await manager.dispose()

    async def test_resolve_text_expands_tokens(self, manager):
        ref = await manager.store_content_if_large("x" * 500, source=ContentSource.AGENT_GENERATED)
        missing = format_reference("B" * 43)

        text = await manager.resolve_text(f"before {ref.format} middle {missing} after")

        assert text == f"before {'x' * 500} middle {missing} after"

    async def test_resolve_text_ignores_uppercase_prefix(self, manager):
        ref = await manager.store_content_if_large("x" * 500, source=ContentSource.AGENT_GENERATED)
        shouted = f"CONTENT-REF:{ref.reference_id}"

        assert await manager.resolve_text(f"see {shouted}") == f"see {shouted}"
        result = await manager.resolve_reference(ref.reference_id)
        assert result.metadata.access_count == 1

    async def test_require_reference_raises(self, manager, mocker):
        ref = await manager.store_content("payload " * 20)
        result = await manager.require_reference(ref.reference_id)
        assert result.content == ("payload " * 20).encode()

        with pytest.raises(NotFoundError) as exc_info:
            await manager.require_reference("E" * 43)
        assert exc_info.value.reference_id == "E" * 43
        assert exc_info.value.suggested_actions

        mocker.patch.object(manager.store.backend, "read", side_effect=StorageError("disk gone"))
        with pytest.raises(StorageError):
            await manager.require_reference(ref.reference_id)

    async def test_delegates_stats_and_config(self, manager):
        await manager.store_content("data")
        await manager.update_config(max_references=10)

        stats = await manager.get_stats()
        assert stats.active_references == 1
        assert manager.store.config.max_references == 10
        assert (await manager.perform_cleanup()).errors == []


@pytest.mark.asyncio
class TestToolOutputProcessor:
    """Tests for ToolOutputProcessor."""

    async def test_small_output_inline(self, manager):
        processed = await ToolOutputProcessor(manager).process("get_balance", "10 HBAR")

        assert processed.text == "10 HBAR"
        assert not processed.is_reference

    async def test_large_output_referenced(self, manager):
        output = '{"messages": [' + ",".join('"m"' for _ in range(100)) + "]}"
        processed = await ToolOutputProcessor(manager).process(
            "get_topic_messages", output, mime_type="application/json"
        )

        assert processed.is_reference
        assert processed.text == processed.reference.format
        result = await manager.resolve_reference(processed.reference.reference_id)
        assert result.content.decode() == output
        assert result.metadata.mcp_tool_name == "get_topic_messages"
        assert result.metadata.source == ContentSource.MCP_TOOL

    async def test_capability_notified(self, manager):
        capability = RecordingCapability()
        processed = await ToolOutputProcessor(manager).process("tool", "y" * 500, capability=capability)

        assert capability.created == [processed.reference]

    async def test_default_capability_not_notified(self, manager, mocker):
        capability = ReferenceCapability()
        spy = mocker.spy(capability, "on_reference_created")

        await ToolOutputProcessor(manager).process("tool", "y" * 500, capability=capability)

        spy.assert_not_called()

    async def test_storage_failure_inlines_output(self, manager, mocker):
        mocker.patch.object(manager, "store_content", side_effect=StorageError("disk full"))

        processed = await ToolOutputProcessor(manager).process("tool", "z" * 500)

        assert processed.text == "z" * 500
        assert not processed.is_reference
