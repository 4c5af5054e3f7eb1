"""
Errors
======
Exception taxonomy shared by the memory and content packages.

- NotFoundError: reference absent, removed or pending removal
- StorageError: backing-store I/O failure
- ConfigError: invalid configuration at construction or update time
"""

from typing import Optional, List


class AgentMemoryError(Exception):
    """Base class for agent memory errors."""

    error_type = "system_error"

    def __init__(
        self,
        message: str,
        reference_id: Optional[str] = None,
        suggested_actions: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.reference_id = reference_id
        self.suggested_actions = list(suggested_actions or [])


class NotFoundError(AgentMemoryError):
    """Reference is absent or has expired."""

    error_type = "not_found"


class StorageError(AgentMemoryError):
    """Backing store could not complete an I/O operation."""

    error_type = "system_error"


class ConfigError(AgentMemoryError, ValueError):
    """Configuration value rejected."""

    error_type = "config_error"


__all__ = [
    'AgentMemoryError',
    'NotFoundError',
    'StorageError',
    'ConfigError',
]
