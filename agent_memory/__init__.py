"""
Agent Memory Pack
=================
Conversation memory components for blockchain agents.

Modules:
- memory: Token-budgeted window, archive search, entity tracking
- content: Reference-based storage for large tool outputs and uploads
- errors: Shared exception types
"""

from . import errors
from . import memory
from . import content

__version__ = "1.0.0"

__all__ = [
    'errors',
    'memory',
    'content',
]
