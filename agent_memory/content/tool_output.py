"""
Tool Output Pipeline
====================
Swaps large tool outputs for ``content-ref:`` tokens before they enter
the conversation.

Every reference created here is recorded in the manager's conversation
context so later turns can find it again.

Tools declare whether they can consume references by subclassing
ReferenceCapability; the default implementation opts out.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from ..errors import StorageError
from .store_manager import ContentStoreManager
from .types import ContentSource, ContentReference

logger = logging.getLogger(__name__)


class ReferenceCapability:
    """Capability interface for tools that understand content references."""

    def accepts_references(self) -> bool:
        return False

    def on_reference_created(self, reference: ContentReference):
        pass


@dataclass
class ProcessedOutput:
    """Text placed in the message stream plus the reference, if any."""
    text: str
    reference: Optional[ContentReference] = None
    context_id: Optional[str] = None

    @property
    def is_reference(self) -> bool:
        return self.reference is not None


class ToolOutputProcessor:
    """
    Replace oversized tool outputs with content references.

    Example:
        processor = ToolOutputProcessor(manager)
        processed = await processor.process("get_topic_messages", raw_output)
        memory.add_message(ConversationMessage(MessageRole.TOOL, processed.text))
    """

    def __init__(self, manager: ContentStoreManager):
        self.manager = manager

    async def process(
        self,
        tool_name: str,
        output: Union[str, bytes],
        capability: Optional[ReferenceCapability] = None,
        mime_type: Optional[str] = None,
    ) -> ProcessedOutput:
        """
        Store output by reference when it crosses the size threshold.

        Args:
            tool_name: Tool that produced the output
            output: Raw tool output
            capability: Tool's reference capability, notified on creation
            mime_type: Output MIME type if known

        Returns:
            The reference token for large outputs, the raw text otherwise
        """
        text = output.decode("utf-8", errors="replace") if isinstance(output, bytes) else output
        if not self.manager.should_use_reference(output):
            return ProcessedOutput(text=text)

        try:
            reference = await self.manager.store_content(
                output,
                source=ContentSource.MCP_TOOL,
                mcp_tool_name=tool_name,
                mime_type=mime_type,
            )
        except StorageError as e:
            logger.warning(f"Could not store output of {tool_name} by reference, inlining: {e}")
            return ProcessedOutput(text=text)

        if capability is not None and capability.accepts_references():
            try:
                capability.on_reference_created(reference)
            except Exception as e:
                logger.error(f"Reference callback for {tool_name} failed: {e}")

        context_id = self.manager.context.add_reference(reference)
        logger.debug(f"Tool {tool_name} output ({reference.metadata.size_bytes} bytes) stored as reference")
        return ProcessedOutput(text=reference.format, reference=reference, context_id=context_id)


__all__ = [
    'ReferenceCapability',
    'ProcessedOutput',
    'ToolOutputProcessor',
]
