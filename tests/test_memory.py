"""
Tests for memory module
========================
"""

import pytest

from agent_memory.errors import ConfigError
from agent_memory.content import ContentStoreManager, ContentReferenceConfig, ToolOutputProcessor
from agent_memory.memory import (
    ApproximateTokenCounter,
    ConversationMessage,
    MemoryWindow,
    MessageArchive,
    MessageRole,
    SmartMemoryConfig,
    SmartMemoryManager,
    TiktokenCounter,
    create_token_counter,
    human,
    ai,
)


class TestTokenCounter:
    """Tests for token counters."""

    def test_empty_text_is_zero(self):
        assert ApproximateTokenCounter().count("") == 0

    def test_monotonic_in_length(self):
        counter = ApproximateTokenCounter()
        counts = [counter.count("x" * n) for n in range(0, 200, 7)]
        assert counts == sorted(counts)

    def test_message_includes_framing_overhead(self):
        counter = ApproximateTokenCounter()
        message = human("a" * 40)
        assert counter.count_message(message) > counter.count(message.content)

    def test_blank_system_prompt_is_free(self):
        assert ApproximateTokenCounter().estimate_system_prompt("   ") == 0

    def test_invalid_ratio(self):
        with pytest.raises(ValueError):
            ApproximateTokenCounter(chars_per_token=0)

    def test_factory_selects_by_model(self):
        assert isinstance(create_token_counter("gpt-4o"), TiktokenCounter)
        assert isinstance(create_token_counter("claude-3-5-sonnet"), ApproximateTokenCounter)
        assert isinstance(create_token_counter(None), ApproximateTokenCounter)


class TestMemoryWindow:
    """Tests for MemoryWindow."""

    def test_invalid_limits(self, token_counter):
        with pytest.raises(ConfigError):
            MemoryWindow(max_tokens=100, reserve_tokens=100, token_counter=token_counter)
        with pytest.raises(ConfigError):
            MemoryWindow(max_tokens=0, reserve_tokens=0, token_counter=token_counter)
        with pytest.raises(ConfigError):
            MemoryWindow(max_tokens=100, reserve_tokens=-1, token_counter=token_counter)

    def test_add_within_budget(self, token_counter):
        window = MemoryWindow(max_tokens=1000, reserve_tokens=100, token_counter=token_counter)
        result = window.add_message(human("Hello"))
        window.add_message(ai("Hi there!"))

        assert result.added
        assert result.pruned_messages == []
        assert [m.content for m in window.get_messages()] == ["Hello", "Hi there!"]

    def test_small_window_evicts_into_archive_in_order(self, token_counter):
        archive = MessageArchive(max_storage=100)
        window = MemoryWindow(max_tokens=50, reserve_tokens=10, token_counter=token_counter, archive=archive)

        sent = [human(f"{i}" * (8 * (i + 1))) for i in range(6)]
        for message in sent:
            window.add_message(message)

        active = window.get_messages()
        assert len(active) < 6
        archived = archive.get_recent_messages(100)
        assert [m.content for m in archived + active] == [m.content for m in sent]
        assert sum(m.token_cost for m in active) <= window.token_budget

    def test_budget_invariant_holds_after_every_add(self, token_counter):
        window = MemoryWindow(max_tokens=200, reserve_tokens=20, token_counter=token_counter)
        window.set_system_prompt("You are a helpful assistant.")
        system_tokens = window.get_stats().system_prompt_tokens

        for i in range(40):
            window.add_message(human("word " * (i % 9 + 1)))
            total = system_tokens + sum(m.token_cost for m in window.get_messages())
            assert total <= window.token_budget
            assert window.current_tokens == total

    def test_oversized_message_stays_alone(self, token_counter):
        window = MemoryWindow(max_tokens=50, reserve_tokens=10, token_counter=token_counter)
        window.add_message(human("short"))
        huge = human("x" * 1000)

        assert not window.can_add_message(huge)
        result = window.add_message(huge)

        assert window.get_messages() == [huge]
        assert len(result.pruned_messages) == 1

    def test_lone_message_evicted_when_it_overflows_with_system_prompt(self):
        archive = MessageArchive()
        window = MemoryWindow(
            max_tokens=100, reserve_tokens=10,
            token_counter=ApproximateTokenCounter(chars_per_token=1.0), archive=archive,
        )
        window.set_system_prompt("s" * 60)
        message = human("m" * 40)

        assert window.can_add_message(message)
        result = window.add_message(message)

        assert result.pruned_messages == [message]
        assert window.get_messages() == []
        assert window.current_tokens <= window.token_budget
        assert archive.get_recent_messages(1) == [message]

    def test_oversized_message_stays_alone_with_system_prompt(self):
        window = MemoryWindow(
            max_tokens=100, reserve_tokens=10,
            token_counter=ApproximateTokenCounter(chars_per_token=1.0),
        )
        window.set_system_prompt("s" * 60)
        huge = human("m" * 200)

        window.add_message(huge)

        assert window.get_messages() == [huge]

    def test_equal_cost_evicts_in_arrival_order(self, token_counter):
        archive = MessageArchive()
        window = MemoryWindow(max_tokens=40, reserve_tokens=5, token_counter=token_counter, archive=archive)
        for i in range(10):
            window.add_message(human(f"msg-{i:02d}"))

        archived = [m.content for m in archive.get_recent_messages(10)]
        assert archived == [f"msg-{i:02d}" for i in range(len(archived))]

    def test_system_prompt_counted_never_evicted(self, token_counter):
        window = MemoryWindow(max_tokens=60, reserve_tokens=10, token_counter=token_counter)
        window.set_system_prompt("You are a Hedera assistant.")
        for i in range(10):
            window.add_message(human(f"message number {i}"))

        stats = window.get_stats()
        assert window.get_system_prompt() == "You are a Hedera assistant."
        assert stats.system_prompt_tokens > 0
        assert stats.current_tokens <= window.token_budget

    def test_update_limits_evicts_immediately(self, token_counter):
        window = MemoryWindow(max_tokens=1000, reserve_tokens=100, token_counter=token_counter)
        for i in range(20):
            window.add_message(human(f"this is message {i} with some padding"))

        pruned = window.update_limits(max_tokens=100, reserve_tokens=10)

        assert pruned
        assert window.current_tokens <= window.token_budget

    def test_clear_keeps_system_prompt(self, token_counter):
        window = MemoryWindow(token_counter=token_counter)
        window.set_system_prompt("Prompt")
        window.add_message(human("Hello"))
        window.clear()

        assert window.get_messages() == []
        assert window.get_system_prompt() == "Prompt"
        assert window.current_tokens == window.get_stats().system_prompt_tokens

    def test_stats(self, token_counter):
        window = MemoryWindow(max_tokens=1000, reserve_tokens=100, token_counter=token_counter)
        window.add_message(human("Hello there"))
        stats = window.get_stats()

        assert stats.total_messages == 1
        assert stats.max_tokens == 1000
        assert stats.reserve_tokens == 100
        assert stats.remaining_capacity == 1000 - stats.current_tokens
        assert stats.usage_percentage == round(stats.current_tokens / 1000 * 100, 2)
        assert stats.can_accept_more

    def test_get_messages_returns_copy(self, token_counter):
        window = MemoryWindow(token_counter=token_counter)
        window.add_message(human("Hello"))
        window.get_messages().clear()
        assert window.message_count == 1


class TestMessageArchive:
    """Tests for MessageArchive."""

    def test_invalid_limit(self):
        with pytest.raises(ConfigError):
            MessageArchive(max_storage=0)

    def test_fifo_overflow(self):
        archive = MessageArchive(max_storage=3)
        result = archive.store_messages([human(f"m{i}") for i in range(5)])

        assert result.stored == 5
        assert result.dropped == 2
        assert [m.content for m in archive.get_recent_messages(10)] == ["m2", "m3", "m4"]

    def test_search_case_and_limit(self):
        archive = MessageArchive()
        archive.store_messages([
            human("Create TOKEN alpha"),
            ai("token alpha created"),
            human("Create token beta"),
        ])

        assert len(archive.search_messages("token")) == 3
        assert [m.content for m in archive.search_messages("TOKEN", case_sensitive=True)] == ["Create TOKEN alpha"]
        limited = archive.search_messages("token", limit=1)
        assert [m.content for m in limited] == ["Create token beta"]
        assert archive.search_messages("") == []

    def test_regex_search(self):
        archive = MessageArchive()
        archive.store_messages([human("account 0.0.1234"), human("no id here")])

        hits = archive.search_messages(r"\d+\.\d+\.\d+", use_regex=True)
        assert [m.content for m in hits] == ["account 0.0.1234"]
        assert archive.search_messages("(unclosed", use_regex=True) == []

    def test_messages_by_type(self):
        archive = MessageArchive()
        archive.store_messages([human("q1"), ai("a1"), human("q2")])

        assert [m.content for m in archive.get_messages_by_type(MessageRole.HUMAN)] == ["q1", "q2"]
        assert len(archive.get_messages_by_type(MessageRole.HUMAN, limit=1)) == 1

    def test_update_storage_limit(self):
        archive = MessageArchive(max_storage=10)
        archive.store_messages([human(f"m{i}") for i in range(10)])

        assert archive.update_storage_limit(4) == 6
        assert len(archive) == 4
        with pytest.raises(ConfigError):
            archive.update_storage_limit(0)

    def test_storage_stats(self):
        archive = MessageArchive(max_storage=4)
        assert archive.get_storage_stats().oldest_message_time is None

        archive.store_messages([human("a"), human("b")])
        stats = archive.get_storage_stats()
        assert stats.total_messages == 2
        assert stats.max_storage_limit == 4
        assert stats.usage_percentage == 50
        assert stats.oldest_message_time <= stats.newest_message_time

    def test_time_queries(self):
        archive = MessageArchive()
        archive.store_messages([human("recent")])
        stats = archive.get_storage_stats()

        assert len(archive.get_recent_messages_by_time(5)) == 1
        assert archive.get_recent_messages_by_time(0) == []
        assert len(archive.get_messages_from_time_range(stats.oldest_message_time - 1, stats.newest_message_time + 1)) == 1
        assert archive.get_messages_from_time_range(10, 5) == []


class TestSmartMemoryManager:
    """Tests for SmartMemoryManager."""

    def test_default_config(self):
        config = SmartMemoryConfig()
        assert config.max_tokens == 8000
        assert config.reserve_tokens == 1000
        assert config.model_name == "gpt-4o"
        assert config.storage_limit == 1000

    def test_conversation_round(self, memory, sample_conversation):
        for role, content in sample_conversation:
            memory.add_message(ConversationMessage(role=MessageRole(role), content=content))

        assert [m.content for m in memory.get_messages()] == [c for _, c in sample_conversation]
        assert memory.get_memory_stats().total_active_messages == 4

    def test_clear_leaves_archive(self, memory):
        for i in range(60):
            memory.add_message(human(f"message {i} about the Pebble token"))
        archived = memory.get_storage_stats().total_messages
        assert archived > 0

        memory.clear()
        assert memory.get_messages() == []
        assert memory.get_storage_stats().total_messages == archived

        memory.clear(include_archive=True)
        assert memory.get_storage_stats().total_messages == 0

    def test_search_history(self, memory):
        for i in range(60):
            memory.add_message(human(f"message {i} about the Pebble token"))

        assert memory.search_history("pebble")
        assert memory.search_history("pebble", case_sensitive=True) == []
        assert len(memory.search_history("pebble", limit=3)) == 3

    def test_update_config_shrinks_window(self, memory):
        for i in range(30):
            memory.add_message(human(f"message {i} with a bit of extra text"))

        memory.update_config(max_tokens=120, reserve_tokens=20)

        stats = memory.get_memory_stats()
        assert stats.max_tokens == 120
        assert stats.current_token_count <= 100
        assert memory.get_config().max_tokens == 120

    def test_update_config_rejects_invalid(self, memory):
        with pytest.raises(ConfigError):
            memory.update_config(reserve_tokens=10_000)
        with pytest.raises(ConfigError):
            memory.update_config(unknown_setting=1)
        assert memory.get_config().reserve_tokens == 50

    def test_model_change_warns_when_tokenizer_differs(self, memory, mocker):
        mock_logger = mocker.patch("agent_memory.memory.smart_memory.logger")

        memory.update_config(model_name="claude-3-5-sonnet")
        mock_logger.warning.assert_not_called()

        memory.update_config(model_name="gpt-4o-mini")
        mock_logger.warning.assert_called_once()
        assert "TiktokenCounter" in mock_logger.warning.call_args[0][0]
        assert isinstance(memory.token_counter, ApproximateTokenCounter)
        assert memory.get_config().model_name == "gpt-4o-mini"

    def test_update_storage_limit(self, memory):
        for i in range(80):
            memory.add_message(human(f"message {i} with a bit of extra text"))
        memory.update_config(storage_limit=5)
        assert memory.get_storage_stats().total_messages <= 5

    def test_overall_stats_and_export(self, memory):
        memory.set_system_prompt("Prompt")
        memory.add_message(human("Hello"))
        memory.store_entity_association("0.0.5005", "Pebble", "token")

        overall = memory.get_overall_stats()
        assert overall["total_messages_managed"] == 1

        state = memory.export_state()
        assert state["system_prompt"] == "Prompt"
        assert state["active_messages"] == [{"content": "Hello", "type": "human"}]
        assert state["entities"][0]["entity_id"] == "0.0.5005"

    def test_context_summary(self, memory):
        for i in range(8):
            memory.add_message(human(f"m{i}"))

        summary = memory.get_context_summary()
        assert summary["active_message_count"] == 8
        assert len(summary["recent_messages"]) == 5
        assert "recent_stored_messages" not in summary
        assert "storage_stats" in memory.get_context_summary(include_stored_context=True)

    def test_history_by_type(self, memory):
        for i in range(40):
            memory.add_message(human(f"question {i} padded out a little"))
            memory.add_message(ai(f"answer {i} padded out a little"))

        answers = memory.get_history_by_type("ai")
        assert answers
        assert all(m.role == MessageRole.AI for m in answers)

    def test_dispose(self, memory):
        memory.add_message(human("Hello"))
        memory.store_entity_association("0.0.1", "x", "token")
        memory.dispose()

        assert memory.get_messages() == []
        assert memory.get_entity_associations() == []
        assert memory.store_entity_association("0.0.2", "y", "token") is None


@pytest.mark.asyncio
class TestMemoryWithReferences:
    """Smart memory with an attached content store manager."""

    async def test_references_in_summary_and_export(self, token_counter):
        manager = ContentStoreManager(ContentReferenceConfig(size_threshold_bytes=100, enable_auto_cleanup=False))
        await manager.initialize()
        memory = SmartMemoryManager(SmartMemoryConfig(), token_counter=token_counter, content_manager=manager)

        assert memory.get_context_summary()["most_recent_reference"] is None

        processed = await ToolOutputProcessor(manager).process("get_topic_messages", "m" * 500)
        memory.add_message(ConversationMessage(role=MessageRole.TOOL, content=processed.text))

        summary = memory.get_context_summary()
        assert summary["reference_count"] == 1
        assert summary["most_recent_reference"] == processed.reference.format
        assert memory.get_most_recent_reference() == processed.reference

        exported = memory.export_state()["references"]
        assert [r["context_id"] for r in exported] == [processed.context_id]

        memory.dispose()
        await manager.dispose()

    async def test_without_content_manager(self, memory):
        assert memory.get_most_recent_reference() is None
        assert memory.export_state()["references"] == []
        assert "reference_count" not in memory.get_context_summary()
