"""
Reference Context
=================
Tracks the content references shown during a conversation.

Lets an agent answer follow-ups like "inscribe it" or "the file from
earlier" without the user repeating a reference id, and prunes references
the store has since dropped.

Features:
- Context ids per displayed reference
- Most recent / by context id lookup
- Validation against the content store
- Card, inline and compact display text
"""

import time
import logging
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Callable

from .types import ContentReference, ContentType

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_MAX_AGE_MS = 30 * 60 * 1000


class DisplayFormat(Enum):
    """How a reference is rendered into conversation text."""
    CARD = "card"
    INLINE = "inline"
    COMPACT = "compact"


@dataclass
class ReferenceContext:
    """A reference as it appears in the conversation."""
    reference: ContentReference
    context_id: str
    displayed_at: float
    last_accessed_at: float
    conversation_turn: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context_id": self.context_id,
            "reference": self.reference.format,
            "preview": self.reference.preview,
            "displayed_at": self.displayed_at,
            "last_accessed_at": self.last_accessed_at,
            "conversation_turn": self.conversation_turn,
        }


@dataclass
class DisplayOptions:
    """Rendering options for display_reference."""
    display_format: DisplayFormat = DisplayFormat.CARD
    max_preview_length: int = 150
    show_metadata: bool = True
    show_size: bool = True
    include_actions: bool = True


@dataclass
class DisplayResult:
    """Rendered reference text."""
    display_text: str
    has_valid_reference: bool
    context_id: Optional[str] = None
    suggested_actions: List[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    """Outcome of checking tracked references against the store."""
    valid: int = 0
    invalid: int = 0
    removed: List[str] = field(default_factory=list)


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def _size_kb(reference: ContentReference) -> int:
    return round(reference.metadata.size_bytes / 1024)


class ReferenceContextTracker:
    """
    Conversation-scoped registry of displayed references.

    ``store`` is anything with an async ``has_reference(reference_id)``,
    normally the ContentStoreManager that owns this tracker.

    Example:
        tracker = manager.context
        result = await tracker.display_reference(reference)
        print(result.display_text)

        latest = tracker.get_most_recent_reference()
        await tracker.validate_references()
    """

    def __init__(self, store, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock
        self._contexts: Dict[str, ReferenceContext] = {}
        self._turn = 0
        self._lock = threading.Lock()

    def add_reference(self, reference: ContentReference) -> str:
        """
        Track a reference shown in the conversation.

        Returns:
            The context id assigned to it
        """
        now = self._clock()
        with self._lock:
            self._turn += 1
            context_id = f"ctx_{int(now * 1000)}_{self._turn}_{reference.reference_id[:8]}"
            self._contexts[reference.reference_id] = ReferenceContext(
                reference=reference,
                context_id=context_id,
                displayed_at=now,
                last_accessed_at=now,
                conversation_turn=self._turn,
            )

        logger.debug(f"Added reference {reference.reference_id} to conversation context ({context_id})")
        return context_id

    async def display_reference(
        self,
        reference: ContentReference,
        options: Optional[DisplayOptions] = None,
    ) -> DisplayResult:
        """
        Render a reference for the conversation and start tracking it.

        References the store no longer holds render as unavailable and are
        not tracked.
        """
        options = options or DisplayOptions()
        try:
            if not await self._store.has_reference(reference.reference_id):
                return DisplayResult(
                    display_text=self._format_unavailable(reference, options.include_actions),
                    has_valid_reference=False,
                    suggested_actions=["Request fresh content", "Use alternative content source"],
                )
        except Exception as e:
            logger.error(f"Error displaying reference {reference.reference_id}: {e}")
            return DisplayResult(
                display_text=(
                    f"**Reference Error**\n"
                    f"Error accessing referenced content: {e}\n"
                    f"**Reference:** {_truncate(reference.preview, 100)}\n"
                ),
                has_valid_reference=False,
                suggested_actions=["Check reference validity", "Try again", "Contact administrator"],
            )

        context_id = self.add_reference(reference)
        if options.display_format == DisplayFormat.INLINE:
            text = self._format_inline(reference, options.max_preview_length)
        elif options.display_format == DisplayFormat.COMPACT:
            text = self._format_compact(reference, options.show_size)
        else:
            text = self._format_card(reference, options, context_id)

        return DisplayResult(display_text=text, has_valid_reference=True, context_id=context_id)

    def get_most_recent_reference(self) -> Optional[ContentReference]:
        """Latest displayed reference, or None."""
        with self._lock:
            if not self._contexts:
                return None
            latest = max(self._contexts.values(), key=lambda c: (c.displayed_at, c.conversation_turn))
            latest.last_accessed_at = self._clock()
            return latest.reference

    def get_reference_by_context_id(self, context_id: str) -> Optional[ContentReference]:
        with self._lock:
            for context in self._contexts.values():
                if context.context_id == context_id:
                    context.last_accessed_at = self._clock()
                    return context.reference
        return None

    def get_contexts(self) -> List[ReferenceContext]:
        """Tracked references, oldest first."""
        with self._lock:
            return sorted(self._contexts.values(), key=lambda c: c.conversation_turn)

    async def validate_references(self) -> ValidationResult:
        """Drop tracked references the store no longer holds."""
        result = ValidationResult()
        with self._lock:
            reference_ids = list(self._contexts)

        for reference_id in reference_ids:
            try:
                valid = await self._store.has_reference(reference_id)
            except Exception as e:
                logger.warning(f"Error validating reference {reference_id}: {e}")
                valid = False

            if valid:
                result.valid += 1
                continue
            result.invalid += 1
            result.removed.append(reference_id)
            with self._lock:
                self._contexts.pop(reference_id, None)
            logger.debug(f"Removed invalid reference from context: {reference_id}")

        return result

    def cleanup_old_references(self, max_age_ms: int = DEFAULT_CONTEXT_MAX_AGE_MS) -> int:
        """
        Forget references not looked up within max_age_ms.

        Only the conversation context is pruned; stored content is untouched.

        Returns:
            Number of references forgotten
        """
        cutoff = self._clock() - max_age_ms / 1000
        with self._lock:
            stale = [rid for rid, c in self._contexts.items() if c.last_accessed_at < cutoff]
            for reference_id in stale:
                del self._contexts[reference_id]

        if stale:
            logger.debug(f"Cleaned up {len(stale)} old references from context")
        return len(stale)

    def get_context_stats(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            displayed = [c.displayed_at for c in self._contexts.values()]
            turn = self._turn
        return {
            "active_references": len(displayed),
            "conversation_turn": turn,
            "oldest_reference_age_ms": (now - min(displayed)) * 1000 if displayed else None,
            "most_recent_reference_age_ms": (now - max(displayed)) * 1000 if displayed else None,
        }

    def clear(self):
        with self._lock:
            self._contexts.clear()
            self._turn = 0
        logger.debug("Cleared all references from context")

    # =========================================================================
    # Formatting
    # =========================================================================

    def _format_card(self, reference: ContentReference, options: DisplayOptions, context_id: str) -> str:
        metadata = reference.metadata
        lines = [
            "**Large Content Reference**",
            f"**Preview:** {_truncate(reference.preview, options.max_preview_length)}",
        ]
        if options.show_size:
            size = f"**Size:** {_size_kb(reference)}KB"
            if metadata.content_type != ContentType.BINARY:
                size += f" ({metadata.content_type.value})"
            lines.append(size)
        if options.show_metadata:
            if metadata.file_name:
                lines.append(f"**File:** {metadata.file_name}")
            lines.append(f"**Source:** {metadata.source.value}")
        if options.include_actions:
            lines.append("")
            lines.append('You can say "inscribe it" to use this content in the next action.')

        lines.append("")
        lines.append(f"*Reference ID: {reference.reference_id[:12]}...*")
        lines.append(f"*Context: {context_id}*")
        return "\n".join(lines)

    def _format_inline(self, reference: ContentReference, max_preview_length: int) -> str:
        return (
            f"[{_size_kb(reference)}KB {reference.metadata.content_type.value}] "
            f"{_truncate(reference.preview, max_preview_length)}"
        )

    def _format_compact(self, reference: ContentReference, show_size: bool) -> str:
        size = f" ({_size_kb(reference)}KB)" if show_size else ""
        return f"Referenced content{size}: {reference.metadata.file_name or 'large content'}"

    def _format_unavailable(self, reference: ContentReference, include_actions: bool) -> str:
        text = (
            "**Content Reference Expired**\n"
            "The referenced content is no longer available.\n"
            f"**Original:** {_truncate(reference.preview, 100)}\n"
        )
        if include_actions:
            text += "\nPlease request fresh content from the original source."
        return text


__all__ = [
    'DisplayFormat',
    'DisplayOptions',
    'DisplayResult',
    'ReferenceContext',
    'ReferenceContextTracker',
    'ValidationResult',
    'DEFAULT_CONTEXT_MAX_AGE_MS',
]
