"""
Entity Tracker
==============
Append-only record of on-chain entities created during a conversation.

Associations map a friendly name ("my Pebble token") to an entity id
("0.0.12345") so a reference resolver can rewrite later user messages.
Retrieval is most-recent-first, which is the order resolvers rely on when
several entities share a type.
"""

import re
import time
import logging
import threading
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field, asdict, replace

logger = logging.getLogger(__name__)

MAX_ENTITY_NAME_LENGTH = 100
MAX_QUERY_LENGTH = 200

# shard.realm.num
ENTITY_ID_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")

# Aliases folded to canonical entity formats
ENTITY_TYPE_REGISTRY = {
    "topic": "topicId",
    "topicid": "topicId",
    "token": "tokenId",
    "tokenid": "tokenId",
    "account": "accountId",
    "accountid": "accountId",
    "contract": "contractId",
    "contractid": "contractId",
    "file": "fileId",
    "fileid": "fileId",
    "schedule": "scheduleId",
    "scheduleid": "scheduleId",
}

USAGE_HINTS = {
    "tokenId": "Use this as tokenId for token service operations",
    "topicId": "Can be used for consensus operations and hcs://1/<topicId> links",
    "accountId": "Can be used for account based operations",
}


@dataclass
class EntityAssociation:
    """Recorded mapping from a friendly name to an entity id."""
    entity_id: str
    entity_name: str
    entity_type: str
    created_at: float = field(default_factory=time.time)
    transaction_id: Optional[str] = None
    network_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def usage(self) -> Optional[str]:
        return USAGE_HINTS.get(self.entity_type)

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        if self.usage:
            data["usage"] = self.usage
        return data


def normalize_entity_type(raw: str) -> str:
    """Fold type aliases like "token" or "Token ID" to "tokenId"."""
    value = (raw or "").strip()
    if not value:
        return ""
    key = re.sub(r"[^a-z]", "", value.lower())
    return ENTITY_TYPE_REGISTRY.get(key, value)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class EntityAssociationTracker:
    """
    Tracks entity associations in arrival order.

    Example:
        tracker = EntityAssociationTracker()
        tracker.store_entity_association("0.0.5005", "Pebble", "token")

        latest_token = tracker.get_entity_associations("tokenId")[0]
    """

    def __init__(self, clock=time.time):
        self._associations: List[EntityAssociation] = []
        self._clock = clock
        self._disposed = False
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._associations)

    def store_entity_association(
        self,
        entity_id: str,
        entity_name: str,
        entity_type: str,
        transaction_id: Optional[str] = None,
        network_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Optional[EntityAssociation]:
        """
        Record a newly created entity.

        Args:
            entity_id: On-chain entity id
            entity_name: Friendly name given by the user or derived
            entity_type: Type or alias ("token", "topicId", ...)
            transaction_id: Transaction that created the entity
            network_id: Network the entity lives on
            session_id: Conversation session scope

        Returns:
            The stored association, or None if rejected
        """
        if self._disposed:
            logger.warning("Entity tracker disposed, ignoring association")
            return None

        sanitized_id = _clean(entity_id)
        sanitized_name = _clean(entity_name)
        sanitized_type = normalize_entity_type(entity_type)
        if not sanitized_id or not sanitized_name or not sanitized_type:
            logger.warning(
                f"Rejected entity association id={entity_id!r} name={entity_name!r} type={entity_type!r}"
            )
            return None

        association = EntityAssociation(
            entity_id=sanitized_id,
            entity_name=sanitized_name[:MAX_ENTITY_NAME_LENGTH],
            entity_type=sanitized_type,
            created_at=self._clock(),
            transaction_id=_clean(transaction_id),
            network_id=_clean(network_id),
            session_id=_clean(session_id),
        )

        with self._lock:
            self._associations.append(association)

        logger.debug(f"Stored {sanitized_type} association {sanitized_name} -> {sanitized_id}")
        return association

    def _newest_first(self) -> List[EntityAssociation]:
        with self._lock:
            snapshot = list(self._associations)
        # reversed() keeps arrival order as the tie-break for equal timestamps
        return sorted(reversed(snapshot), key=lambda a: a.created_at, reverse=True)

    def get_entity_associations(self, entity_type: Optional[str] = None) -> List[EntityAssociation]:
        """
        Get associations, most recent first, one per entity id.

        Args:
            entity_type: Optional type or alias filter

        Returns:
            Copy of matching associations
        """
        wanted = normalize_entity_type(entity_type) if entity_type is not None else None
        if entity_type is not None and not wanted:
            return []

        merged: Dict[str, EntityAssociation] = {}
        order: List[str] = []
        for assoc in self._newest_first():
            if wanted and assoc.entity_type != wanted:
                continue
            existing = merged.get(assoc.entity_id)
            if existing is None:
                merged[assoc.entity_id] = assoc
                order.append(assoc.entity_id)
            elif assoc.transaction_id and not existing.transaction_id:
                # Older record carries the creating transaction, keep it
                merged[assoc.entity_id] = replace(existing, transaction_id=assoc.transaction_id)
        return [merged[entity_id] for entity_id in order]

    def resolve_entity_reference(
        self,
        query: str,
        entity_type: Optional[str] = None,
        limit: int = 10,
        fuzzy_match: bool = True,
    ) -> List[EntityAssociation]:
        """
        Find associations matching a name or id mentioned by the user.

        Args:
            query: Entity name, id, or natural-language fragment
            entity_type: Optional type filter
            limit: Maximum results (clamped to 1..100)
            fuzzy_match: Fall back to word overlap when nothing matches exactly

        Returns:
            Matching associations, most recent first
        """
        sanitized = (query or "").strip()[:MAX_QUERY_LENGTH]
        if not sanitized:
            return []

        safe_limit = max(1, min(limit or 10, 100))
        candidates = self.get_entity_associations(entity_type)

        if ENTITY_ID_PATTERN.match(sanitized):
            return [a for a in candidates if a.entity_id == sanitized][:safe_limit]

        needle = sanitized.lower()
        matches = [
            a for a in candidates
            if needle in a.entity_name.lower() or needle in a.entity_id.lower()
            or a.entity_name.lower() in needle
        ]

        if not matches and fuzzy_match:
            words = {w for w in re.findall(r"[a-z0-9]+", needle) if len(w) > 2}
            matches = [
                a for a in candidates
                if words & set(re.findall(r"[a-z0-9]+", a.entity_name.lower()))
                or any(w in a.entity_type.lower() for w in words)
            ]

        return matches[:safe_limit]

    def dispose(self):
        """Clear all associations. The tracker accepts nothing afterwards."""
        with self._lock:
            self._associations.clear()
            self._disposed = True


__all__ = [
    'EntityAssociation',
    'EntityAssociationTracker',
    'normalize_entity_type',
    'ENTITY_TYPE_REGISTRY',
]
