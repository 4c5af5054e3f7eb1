"""
Content Reference Types
=======================
Data model for offloading large payloads out of the conversation.

A ContentReference is the compact stand-in placed in the message stream;
the payload and full ContentMetadata stay in the content store.
"""

import time
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field, fields, replace
from enum import Enum

from ..errors import ConfigError
from .reference_ids import format_reference

PREVIEW_MAX_LENGTH = 200


class ContentType(Enum):
    """Content classification."""
    TEXT = "text"
    JSON = "json"
    HTML = "html"
    MARKDOWN = "markdown"
    BINARY = "binary"
    UNKNOWN = "unknown"


class ContentSource(Enum):
    """Origin of stored content."""
    MCP_TOOL = "mcp_tool"
    USER_UPLOAD = "user_upload"
    AGENT_GENERATED = "agent_generated"
    SYSTEM = "system"


class ReferenceLifecycleState(Enum):
    """Lifecycle of a stored payload. INVALID marks a payload that failed its integrity check."""
    ACTIVE = "active"
    CLEANUP_PENDING = "cleanup_pending"
    REMOVED = "removed"
    INVALID = "invalid"


class ResolutionErrorType(Enum):
    """Why a reference could not be resolved."""
    NOT_FOUND = "not_found"
    CORRUPTED = "corrupted"
    SYSTEM_ERROR = "system_error"


@dataclass
class ContentMetadata:
    """Full metadata kept alongside a stored payload."""
    content_type: ContentType
    size_bytes: int
    source: ContentSource
    created_at: float = field(default_factory=time.time)
    last_accessed_at: float = field(default_factory=time.time)
    access_count: int = 0
    mime_type: Optional[str] = None
    mcp_tool_name: Optional[str] = None
    file_name: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    custom_metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON sidecars and API responses."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["content_type"] = self.content_type.value
        data["source"] = self.source.value
        data["tags"] = list(self.tags)
        data["custom_metadata"] = dict(self.custom_metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentMetadata":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["content_type"] = ContentType(values["content_type"])
        values["source"] = ContentSource(values["source"])
        return cls(**values)


@dataclass
class ReferenceSummary:
    """Metadata subset carried by a ContentReference."""
    content_type: ContentType
    size_bytes: int
    source: ContentSource
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


@dataclass
class ContentReference:
    """
    Lightweight handle to stored content.

    Never carries the payload, only a preview of at most 200 characters.
    """
    reference_id: str
    state: ReferenceLifecycleState
    preview: str
    metadata: ReferenceSummary
    created_at: float

    @property
    def format(self) -> str:
        """Token to embed in message text."""
        return format_reference(self.reference_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference_id": self.reference_id,
            "reference": self.format,
            "state": self.state.value,
            "preview": self.preview,
            "metadata": {
                "content_type": self.metadata.content_type.value,
                "size_bytes": self.metadata.size_bytes,
                "source": self.metadata.source.value,
                "file_name": self.metadata.file_name,
                "mime_type": self.metadata.mime_type,
            },
            "created_at": self.created_at,
        }


@dataclass
class ReferenceResolutionResult:
    """Structured outcome of resolving a reference. Never raised."""
    success: bool
    content: Optional[bytes] = None
    metadata: Optional[ContentMetadata] = None
    error: Optional[str] = None
    error_type: Optional[ResolutionErrorType] = None
    suggested_actions: List[str] = field(default_factory=list)


@dataclass
class CleanupPolicy:
    """Retention rule for one source category."""
    max_age_ms: int
    priority: int


def _default_policies() -> Dict[str, CleanupPolicy]:
    return {
        "recent": CleanupPolicy(max_age_ms=30 * 60 * 1000, priority=1),
        "user_content": CleanupPolicy(max_age_ms=2 * 60 * 60 * 1000, priority=2),
        "agent_generated": CleanupPolicy(max_age_ms=60 * 60 * 1000, priority=3),
        "default": CleanupPolicy(max_age_ms=60 * 60 * 1000, priority=4),
    }


# Source -> cleanup policy bucket
POLICY_BUCKETS = {
    ContentSource.MCP_TOOL: "recent",
    ContentSource.USER_UPLOAD: "user_content",
    ContentSource.AGENT_GENERATED: "agent_generated",
}

STORAGE_BACKENDS = ("memory", "filesystem", "hybrid")


@dataclass
class ContentReferenceConfig:
    """Thresholds and retention policy for the content store."""
    size_threshold_bytes: int = 10 * 1024           # 10KB
    max_age_ms: int = 60 * 60 * 1000                # 1 hour
    max_references: int = 100
    max_total_storage_bytes: int = 100 * 1024 * 1024  # 100MB
    enable_auto_cleanup: bool = True
    cleanup_interval_ms: int = 5 * 60 * 1000        # 5 minutes
    enable_persistence: bool = False
    storage_backend: str = "memory"
    cleanup_policies: Dict[str, CleanupPolicy] = field(default_factory=_default_policies)

    def validate(self) -> "ContentReferenceConfig":
        """Raise ConfigError for unusable values."""
        for name in ("size_threshold_bytes", "max_age_ms", "max_references",
                     "max_total_storage_bytes", "cleanup_interval_ms"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigError(
                f"Unknown storage_backend {self.storage_backend!r}, expected one of {STORAGE_BACKENDS}"
            )
        for bucket, policy in self.cleanup_policies.items():
            if policy.max_age_ms <= 0:
                raise ConfigError(f"cleanup policy {bucket!r} max_age_ms must be positive")
        return self

    def merged(self, **changes) -> "ContentReferenceConfig":
        """
        Return a validated copy with changes applied.

        cleanup_policies is merged per bucket; dict values are accepted.
        """
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigError(f"Unknown content reference settings: {sorted(unknown)}")

        policies = changes.pop("cleanup_policies", None)
        updated = replace(self, **changes)
        merged_policies = dict(self.cleanup_policies)
        for bucket, policy in (policies or {}).items():
            if isinstance(policy, dict):
                base = merged_policies.get(bucket) or CleanupPolicy(
                    max_age_ms=updated.max_age_ms, priority=len(merged_policies) + 1
                )
                policy = replace(base, **policy)
            merged_policies[bucket] = policy
        updated.cleanup_policies = merged_policies
        return updated.validate()

    def policy_for(self, source: ContentSource) -> CleanupPolicy:
        """Cleanup policy for a source, falling back to max_age_ms."""
        bucket = POLICY_BUCKETS.get(source, "default")
        policy = self.cleanup_policies.get(bucket) or self.cleanup_policies.get("default")
        if policy is None:
            policy = CleanupPolicy(max_age_ms=self.max_age_ms, priority=len(self.cleanup_policies) + 1)
        return policy


@dataclass
class PerformanceMetrics:
    """Average operation timings."""
    average_creation_time_ms: float = 0.0
    average_resolution_time_ms: float = 0.0
    average_cleanup_time_ms: float = 0.0


@dataclass
class ContentReferenceStats:
    """Aggregate counters for the content store."""
    active_references: int = 0
    total_storage_bytes: int = 0
    recently_cleaned_up: int = 0
    total_resolutions: int = 0
    failed_resolutions: int = 0
    average_content_size: float = 0.0
    storage_utilization: float = 0.0
    most_accessed_reference_id: Optional[str] = None
    performance_metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)


@dataclass
class CleanupResult:
    """Outcome of a cleanup sweep."""
    cleaned_up: int = 0
    errors: List[str] = field(default_factory=list)


__all__ = [
    'ContentType',
    'ContentSource',
    'ReferenceLifecycleState',
    'ResolutionErrorType',
    'ContentMetadata',
    'ReferenceSummary',
    'ContentReference',
    'ReferenceResolutionResult',
    'CleanupPolicy',
    'ContentReferenceConfig',
    'PerformanceMetrics',
    'ContentReferenceStats',
    'CleanupResult',
    'POLICY_BUCKETS',
    'STORAGE_BACKENDS',
    'PREVIEW_MAX_LENGTH',
]
