"""
Identifier allocation for model elements.

The allocator hands out:
- ids: the next sequential number of a scope (entity, property, index,
  relation, sequence); the scope counter lives on the registry/entity
- uids: random non-zero 64-bit values never used before by any element,
  active or retired

Invariants:
    - Counters only move forward; ids are never recycled
    - A uid is issued at most once per model lifetime
    - Randomness is the only non-determinism; pass a seeded
      random.Random for reproducible runs

Example:
    >>> allocator = IdAllocator(registry, rng=random.Random(42))
    >>> entity_id = allocator.next_id(IdScope.ENTITY)
"""

from __future__ import annotations

import logging
import random
from enum import Enum
from typing import TYPE_CHECKING, Optional, Set

from .errors import DuplicateUidError, UidExhaustedError
from .iduid import IdUid, MAX_ID

if TYPE_CHECKING:
    from .registry import ModelRegistry
    from .types import Entity

logger = logging.getLogger(__name__)

MAX_UID_ATTEMPTS = 1000


class IdScope(Enum):
    """Numbering scopes; each has its own last-id counter."""

    ENTITY = "entity"
    PROPERTY = "property"  # per entity
    INDEX = "index"
    RELATION = "relation"
    SEQUENCE = "sequence"


_ROOT_COUNTERS = {
    IdScope.ENTITY: "last_entity_id",
    IdScope.INDEX: "last_index_id",
    IdScope.RELATION: "last_relation_id",
    IdScope.SEQUENCE: "last_sequence_id",
}


class IdAllocator:
    """Issues ids and uids for one registry.

    The counters and the retired uid lists are owned by the registry; the
    allocator only remembers uids it issued that may not be attached to an
    element yet.
    """

    def __init__(self, registry: ModelRegistry, rng: Optional[random.Random] = None) -> None:
        self._registry = registry
        self._rng = rng or random.Random()
        self._issued: Set[int] = set()

    def _taken(self) -> Set[int]:
        return self._registry.used_uids() | self._issued

    def _draw(self, taken: Set[int]) -> int:
        for _ in range(MAX_UID_ATTEMPTS):
            uid = self._rng.getrandbits(64)
            if uid != 0 and uid not in taken:
                return uid
        raise UidExhaustedError(MAX_UID_ATTEMPTS)

    def next_uid(self) -> int:
        """Draw a fresh uid and record it as used.

        Raises:
            UidExhaustedError: If no unused uid was drawn in MAX_UID_ATTEMPTS
        """
        uid = self._draw(self._taken())
        self._issued.add(uid)
        return uid

    def propose_uid(self) -> int:
        """Draw a fresh uid without recording it (for annotation hints)."""
        return self._draw(self._taken())

    def claim_uid(self, uid: int, element: str) -> int:
        """Record an explicitly requested uid.

        Raises:
            DuplicateUidError: If the uid is zero, in use or retired
        """
        if uid <= 0:
            raise DuplicateUidError(uid, element, "the reserved value range")
        if uid in self._registry.retired_uids:
            raise DuplicateUidError(uid, element, "a removed element (retired)")
        owner = self._registry.uid_owner(uid)
        if owner is not None:
            raise DuplicateUidError(uid, element, owner)
        if uid in self._issued:
            raise DuplicateUidError(uid, element, "an identifier issued in this run")
        self._issued.add(uid)
        return uid

    def next_id(
        self,
        scope: IdScope,
        entity: Optional[Entity] = None,
        uid: Optional[int] = None,
    ) -> IdUid:
        """Allocate the next identifier of a scope and advance its counter.

        The counter stores the full identifier of the last element assigned
        in the scope, so the id and the uid are allocated together.

        Args:
            scope: Numbering scope
            entity: Owning entity (required for IdScope.PROPERTY)
            uid: Already claimed uid to bind; a fresh one is drawn if None

        Returns:
            The new identifier
        """
        if scope is IdScope.PROPERTY:
            if entity is None:
                raise ValueError("property ids are allocated per entity")
            last = entity.last_property_id
        else:
            last = getattr(self._registry, _ROOT_COUNTERS[scope])

        next_id = last.id + 1
        if next_id > MAX_ID:
            raise ValueError(f"{scope.value} id space exhausted")

        identifier = IdUid(next_id, uid if uid is not None else self.next_uid())
        if scope is IdScope.PROPERTY:
            entity.last_property_id = identifier
        else:
            setattr(self._registry, _ROOT_COUNTERS[scope], identifier)

        logger.debug(f"Allocated {scope.value} identifier {identifier}")
        return identifier
