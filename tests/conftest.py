"""
Pytest configuration and fixtures
==================================
"""

import os
import pytest

# Set test environment variables
os.environ["MODEL"] = "approximate"
os.environ["CONTENT_STORAGE_BACKEND"] = "memory"
os.environ["MEMORY_MAX_TOKENS"] = "2000"
os.environ["MEMORY_RESERVE_TOKENS"] = "200"

from agent_memory.memory import ApproximateTokenCounter, SmartMemoryManager, SmartMemoryConfig
from agent_memory.content import ContentStore, ContentReferenceConfig


class FakeClock:
    """Manually advanced time source (epoch seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_counter():
    """Deterministic counter: one token per four characters."""
    return ApproximateTokenCounter()


@pytest.fixture
def memory(token_counter):
    """Smart memory with a small budget."""
    manager = SmartMemoryManager(
        SmartMemoryConfig(max_tokens=500, reserve_tokens=50, storage_limit=100),
        token_counter=token_counter,
    )
    yield manager
    manager.dispose()


@pytest.fixture
def reference_config():
    """Content config without the background sweep."""
    return ContentReferenceConfig(
        size_threshold_bytes=10 * 1024,
        enable_auto_cleanup=False,
    )


@pytest.fixture
async def content_store(reference_config, clock):
    store = ContentStore(reference_config, clock=clock)
    await store.start()
    yield store
    await store.dispose()


@pytest.fixture
def sample_message():
    """Sample message for testing."""
    return "Hello, this is a test message for the AI agent."


@pytest.fixture
def sample_conversation():
    """Sample conversation history."""
    return [
        ("human", "Create a token called Pebble with symbol PBL"),
        ("ai", "Created token Pebble (0.0.5005)."),
        ("human", "Mint 100 Pebble to my account"),
        ("ai", "Minted 100 PBL to 0.0.1234."),
    ]
