"""
Agent Memory Pack - Main Entry Point
====================================
Demo service wiring conversation memory and content references.
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn

from agent_memory.errors import AgentMemoryError, ConfigError, NotFoundError
from agent_memory.memory import (
    SmartMemoryManager,
    SmartMemoryConfig,
    ConversationMessage,
    MessageRole,
    human,
    ai,
)
from agent_memory.content import (
    ContentStoreManager,
    ContentReferenceConfig,
    ContentSource,
    ToolOutputProcessor,
    extract_reference_id,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

class Config:
    """Application configuration."""

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))

    # Memory
    MODEL: str = os.getenv("MODEL", "gpt-4o")
    MEMORY_MAX_TOKENS: int = int(os.getenv("MEMORY_MAX_TOKENS", "8000"))
    MEMORY_RESERVE_TOKENS: int = int(os.getenv("MEMORY_RESERVE_TOKENS", "1000"))
    MEMORY_STORAGE_LIMIT: int = int(os.getenv("MEMORY_STORAGE_LIMIT", "1000"))

    # Content references
    CONTENT_STORAGE_BACKEND: str = os.getenv("CONTENT_STORAGE_BACKEND", "memory")
    CONTENT_STORAGE_DIR: Optional[str] = os.getenv("CONTENT_STORAGE_DIR")
    CONTENT_SIZE_THRESHOLD_BYTES: int = int(os.getenv("CONTENT_SIZE_THRESHOLD_BYTES", str(10 * 1024)))


config = Config()


# =============================================================================
# Initialize Components
# =============================================================================

content_manager = ContentStoreManager(
    ContentReferenceConfig(
        size_threshold_bytes=config.CONTENT_SIZE_THRESHOLD_BYTES,
        storage_backend=config.CONTENT_STORAGE_BACKEND,
        enable_persistence=config.CONTENT_STORAGE_BACKEND != "memory",
    ),
    storage_dir=config.CONTENT_STORAGE_DIR,
)
tool_processor = ToolOutputProcessor(content_manager)
memory = SmartMemoryManager(
    SmartMemoryConfig(
        max_tokens=config.MEMORY_MAX_TOKENS,
        reserve_tokens=config.MEMORY_RESERVE_TOKENS,
        model_name=config.MODEL,
        storage_limit=config.MEMORY_STORAGE_LIMIT,
    ),
    content_manager=content_manager,
)
memory.set_system_prompt("You are a helpful assistant for Hedera network operations.")


# =============================================================================
# FastAPI Application
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    await content_manager.initialize()
    yield
    await content_manager.dispose()


app = FastAPI(
    title="Agent Memory Pack Demo",
    description="Token-budgeted conversation memory with content references",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(AgentMemoryError)
async def memory_error_handler(request: Request, exc: AgentMemoryError):
    if isinstance(exc, ConfigError):
        status_code = 400
    elif isinstance(exc, NotFoundError):
        status_code = 404
    else:
        status_code = 500
    return JSONResponse(
        status_code=status_code,
        content={
            "error": str(exc),
            "error_type": exc.error_type,
            "suggested_actions": exc.suggested_actions,
        },
    )


def _message_dict(message: ConversationMessage) -> dict:
    return {
        "role": message.role.value,
        "content": message.content,
        "token_cost": message.token_cost,
        "created_at": message.created_at,
    }


@app.post("/chat")
async def chat(request: Request):
    """
    Add a user turn (and optional tool output) to memory.

    Body: {"message": str, "tool_name"?: str, "tool_output"?: str,
           "entity"?: {"entity_id", "entity_name", "entity_type", "transaction_id"?}}
    """
    body = await request.json()
    message = (body.get("message") or "").strip()
    if not message:
        return JSONResponse(status_code=400, content={"error": "message is required"})

    memory.add_message(human(message))

    reference = None
    if body.get("tool_output") is not None:
        processed = await tool_processor.process(body.get("tool_name", "tool"), body["tool_output"])
        memory.add_message(ConversationMessage(
            role=MessageRole.TOOL,
            content=processed.text,
            name=body.get("tool_name"),
        ))
        reference = processed.reference

    entity = body.get("entity")
    if entity:
        memory.store_entity_association(
            entity.get("entity_id", ""),
            entity.get("entity_name", ""),
            entity.get("entity_type", ""),
            transaction_id=entity.get("transaction_id"),
        )

    # Simulated agent turn (replace with an actual model call)
    agent_response = f"I received your message: {message[:100]}"
    result = memory.add_message(ai(agent_response))

    return {
        "response": agent_response,
        "reference": reference.to_dict() if reference else None,
        "pruned_messages": len(result.pruned_messages),
        "memory": asdict(memory.get_memory_stats()),
    }


@app.get("/memory/stats")
async def memory_stats():
    """Active memory and archive statistics."""
    stats = memory.get_overall_stats()
    stats["entities"] = [a.to_dict() for a in memory.get_entity_associations()]
    return stats


@app.get("/memory/history")
async def memory_history(q: Optional[str] = None, limit: int = 20):
    """Search archived history, or list the most recent archived messages."""
    if q:
        messages = memory.search_history(q, limit=limit)
    else:
        messages = memory.get_recent_history(limit)
    return {"messages": [_message_dict(m) for m in messages]}


@app.get("/references/stats")
async def reference_stats():
    """Content store statistics."""
    return asdict(await content_manager.get_stats())


@app.get("/references/context")
async def reference_context():
    """References shown in this conversation, minus any the store has dropped."""
    validation = await content_manager.context.validate_references()
    latest = content_manager.context.get_most_recent_reference()
    return {
        "references": [c.to_dict() for c in content_manager.context.get_contexts()],
        "most_recent": latest.format if latest else None,
        "removed": validation.removed,
        "stats": content_manager.context.get_context_stats(),
    }


@app.get("/references/{reference_id}")
async def get_reference(reference_id: str):
    """Resolve a content reference."""
    result = await content_manager.require_reference(extract_reference_id(reference_id) or reference_id)
    return {
        "content": result.content.decode("utf-8", errors="replace"),
        "metadata": result.metadata.to_dict(),
    }


@app.delete("/references/{reference_id}")
async def delete_reference(reference_id: str):
    """Remove a content reference."""
    removed = await content_manager.cleanup_reference(reference_id)
    if not removed:
        raise NotFoundError("Reference not found", reference_id, ["Verify the reference ID"])
    return {"removed": True}


@app.post("/references")
async def store_reference(request: Request):
    """Store content by reference regardless of size."""
    body = await request.json()
    try:
        source = ContentSource(body.get("source", ContentSource.USER_UPLOAD.value))
    except ValueError:
        return JSONResponse(
            status_code=400,
            content={
                "error": f"Unknown source {body.get('source')!r}",
                "valid_sources": [s.value for s in ContentSource],
            },
        )

    reference = await content_manager.store_content(
        body.get("content", ""),
        source=source,
        mime_type=body.get("mime_type"),
        file_name=body.get("file_name"),
    )
    body = reference.to_dict()
    body["context_id"] = content_manager.context.add_reference(reference)
    return body


@app.get("/health")
async def health():
    """Health check."""
    return {
        "status": "healthy" if content_manager.is_initialized() else "starting",
        "model": config.MODEL,
        "version": "1.0.0",
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Agent Memory Pack",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "chat": "/chat",
            "memory_stats": "/memory/stats",
            "history": "/memory/history",
            "references": "/references/{reference_id}",
            "reference_stats": "/references/stats",
            "reference_context": "/references/context",
            "health": "/health",
        },
    }


# =============================================================================
# Run
# =============================================================================

def main():
    """Run the application."""
    uvicorn.run(
        app,
        host=config.HOST,
        port=config.PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
