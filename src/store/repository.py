"""Read-through cache of contract entities keyed by (entity type, id).

Only values decoded from confirmed contract reads may be written here.
Derived amounts (requirements, repayment states) and optimistic guesses
never are; callers recompute them from these entries instead.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from ..models import EntityType

logger = logging.getLogger(__name__)


def _key_of(entity: Any) -> Any:
    key = getattr(entity, "entity_key", None)
    if key is None:
        raise TypeError(f"{type(entity).__name__} has no entity_key")
    return key


class EntityRepository:
    def __init__(self) -> None:
        self._entities: dict[tuple[EntityType, Any], Any] = {}

    def __len__(self) -> int:
        return len(self._entities)

    def get(self, entity_type: EntityType, key: Any) -> Any | None:
        return self._entities.get((entity_type, key))

    def values(self, entity_type: EntityType) -> list[Any]:
        return [v for (t, _), v in self._entities.items() if t is entity_type]

    def upsert(self, entity_type: EntityType, entity: Any, key: Any = None) -> bool:
        """Store one read result; returns False when it was rejected."""
        key = _key_of(entity) if key is None else key
        existing = self._entities.get((entity_type, key))

        # A read whose status moves backwards is an out-of-order response.
        if existing is not None and hasattr(existing, "status") and hasattr(entity, "status"):
            if not existing.status.can_transition_to(entity.status):
                logger.debug(
                    "Ignoring stale %s %s: status %s after %s",
                    entity_type.value,
                    key,
                    entity.status.name,
                    existing.status.name,
                )
                return False

        self._entities[(entity_type, key)] = entity
        return True

    def upsert_batch(self, entity_type: EntityType, entities: Iterable[Any]) -> int:
        """Store a batch of read results; returns how many were applied."""
        applied = 0
        for entity in entities:
            if self.upsert(entity_type, entity):
                applied += 1
        logger.debug("Upserted %d %s entries", applied, entity_type.value)
        return applied

    def invalidate(self, entity_type: EntityType, key: Any = None) -> None:
        """Drop one entry, or every entry of ``entity_type`` when key is None."""
        if key is not None:
            self._entities.pop((entity_type, key), None)
            return
        for cache_key in [k for k in self._entities if k[0] is entity_type]:
            del self._entities[cache_key]
