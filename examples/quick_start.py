"""
Quick Start Example
===================
Minimal example of using the Agent Memory Pack.
"""

import asyncio
import json

from agent_memory.memory import SmartMemoryManager, SmartMemoryConfig, ApproximateTokenCounter, human, ai
from agent_memory.content import (
    ContentStoreManager,
    ContentReferenceConfig,
    ContentSource,
    ToolOutputProcessor,
)


async def main():
    """Quick start demo."""
    print("=" * 60)
    print("Agent Memory Pack - Quick Start")
    print("=" * 60)

    # 1. Memory Window
    print("\n1. Memory Window")
    print("-" * 40)

    memory = SmartMemoryManager(
        SmartMemoryConfig(max_tokens=400, reserve_tokens=50, storage_limit=100),
        token_counter=ApproximateTokenCounter(),
    )
    memory.set_system_prompt("You are a helpful assistant for Hedera network operations.")

    for i in range(20):
        memory.add_message(human(f"Message {i}: please check the balance of account 0.0.{1000 + i}"))
        memory.add_message(ai(f"Reply {i}: the balance of account 0.0.{1000 + i} is {i * 10} HBAR"))

    stats = memory.get_memory_stats()
    print(f"   - Active Messages: {stats.total_active_messages}")
    print(f"   - Tokens: {stats.current_token_count}/{stats.max_tokens}")
    print(f"   - Usage: {stats.usage_percentage}%")
    print(f"   - Archived: {memory.get_storage_stats().total_messages}")

    hits = memory.search_history("0.0.1003")
    print(f"   - Search '0.0.1003': {[m.content[:30] for m in hits]}")

    # 2. Entity Tracking
    print("\n2. Entity Tracking")
    print("-" * 40)

    memory.store_entity_association("0.0.5005", "Pebble", "token", transaction_id="0.0.2@1700000000.000")
    memory.store_entity_association("0.0.6006", "Announcements", "topic")
    for assoc in memory.get_entity_associations():
        print(f"   - {assoc.entity_type}: {assoc.entity_name} -> {assoc.entity_id}")
    print(f"   - Resolve 'my pebble token': {[a.entity_id for a in memory.resolve_entity_reference('pebble')]}")

    # 3. Content References
    print("\n3. Content References")
    print("-" * 40)

    content = ContentStoreManager(ContentReferenceConfig(size_threshold_bytes=1024))
    await content.initialize()
    processor = ToolOutputProcessor(content)

    large_output = json.dumps({"messages": [{"seq": i, "text": "x" * 40} for i in range(100)]})
    processed = await processor.process("get_topic_messages", large_output, mime_type="application/json")
    print(f"   - Output Size: {len(large_output)} bytes")
    print(f"   - In Conversation: {processed.text[:40]}...")
    print(f"   - Preview: {processed.reference.preview[:60]}...")

    result = await content.resolve_reference(processed.reference.reference_id)
    print(f"   - Resolved: {result.success}, {len(result.content)} bytes, accessed {result.metadata.access_count}x")

    upload = await content.store_content("notes " * 500, source=ContentSource.USER_UPLOAD, file_name="notes.txt")
    ref_stats = await content.get_stats()
    print(f"   - Upload Reference: {upload.format[:30]}...")
    print(f"   - Active References: {ref_stats.active_references}")
    print(f"   - Total Bytes: {ref_stats.total_storage_bytes}")

    card = await content.context.display_reference(upload)
    latest = content.context.get_most_recent_reference()
    print(f"   - Displayed As: {card.display_text.splitlines()[0]} ({card.context_id})")
    print(f"   - Most Recent: {latest.metadata.file_name}")

    await content.dispose()
    memory.dispose()

    print("\n" + "=" * 60)
    print("Quick Start Complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
