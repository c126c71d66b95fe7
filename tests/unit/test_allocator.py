"""
Unit tests for the identifier allocator.

Tests cover:
- Sequential ids per scope
- Fresh, unique, non-zero uids
- Explicit uid claims
- Reproducibility with a seeded random source
"""

import random

import pytest

from dbgen.modelgen.model import (
    DuplicateUidError,
    IdScope,
    IdUid,
    ModelRegistry,
    PropertyType,
    UidExhaustedError,
)


class _ConstantRandom(random.Random):
    """Random source that always returns the same value."""

    def __init__(self, value):
        super().__init__()
        self.value = value

    def getrandbits(self, k):
        return self.value


class TestNextId:
    """Tests for IdAllocator.next_id."""

    def test_entity_ids_are_sequential(self):
        """Entity ids count up from 1."""
        registry = ModelRegistry(rng=random.Random(1))

        first = registry.allocator.next_id(IdScope.ENTITY)
        second = registry.allocator.next_id(IdScope.ENTITY)

        assert (first.id, second.id) == (1, 2)
        assert registry.last_entity_id.uid == second.uid

    def test_counter_stores_full_identifier(self):
        """The counter holds the id and uid of the last element."""
        registry = ModelRegistry(rng=random.Random(1))

        identifier = registry.allocator.next_id(IdScope.INDEX)

        assert registry.last_index_id.id == identifier.id
        assert registry.last_index_id.uid == identifier.uid

    def test_property_scope_is_per_entity(self):
        """Property ids restart for each entity."""
        registry = ModelRegistry(rng=random.Random(1))
        a = registry.create_entity("A")
        b = registry.create_entity("B")

        registry.create_property(a, "id", PropertyType.LONG, is_id=True)
        registry.create_property(a, "name", PropertyType.STRING)
        prop = registry.create_property(b, "id", PropertyType.LONG, is_id=True)

        assert prop.id.id == 1
        assert a.last_property_id.id == 2

    def test_property_scope_requires_entity(self):
        """Property ids can't be allocated without an entity."""
        registry = ModelRegistry(rng=random.Random(1))

        with pytest.raises(ValueError, match="per entity"):
            registry.allocator.next_id(IdScope.PROPERTY)

    def test_bound_uid_is_used(self):
        """An explicit uid is bound to the new id."""
        registry = ModelRegistry(rng=random.Random(1))

        identifier = registry.allocator.next_id(IdScope.RELATION, uid=12345)

        assert identifier.uid == 12345
        assert registry.last_relation_id.uid == 12345

    def test_ids_not_recycled_after_removal(self):
        """Removing the last entity doesn't free its id."""
        registry = ModelRegistry(rng=random.Random(1))
        entity = registry.create_entity("A")
        registry.remove_entity(entity)

        assert registry.create_entity("B").id.id == 2


class TestNextUid:
    """Tests for uid generation."""

    def test_uids_are_unique_and_nonzero(self):
        """Many draws never repeat and never return zero."""
        registry = ModelRegistry(rng=random.Random(7))

        uids = [registry.allocator.next_uid() for _ in range(500)]

        assert len(set(uids)) == 500
        assert 0 not in uids
        assert all(0 < uid < 2**64 for uid in uids)

    def test_skips_retired_uids(self):
        """A retired uid is drawn again only to be skipped."""
        seeded = random.Random(3)
        expected_first = seeded.getrandbits(64)
        registry = ModelRegistry(rng=random.Random(3))
        registry.retired_entity_uids.append(expected_first)

        assert registry.allocator.next_uid() != expected_first

    def test_exhaustion_raises(self):
        """A random source stuck on a used value gives up."""
        registry = ModelRegistry(rng=_ConstantRandom(99))
        registry.retired_property_uids.append(99)

        with pytest.raises(UidExhaustedError):
            registry.allocator.next_uid()

    def test_zero_is_never_returned(self):
        """A random source stuck on zero gives up instead of issuing 0."""
        registry = ModelRegistry(rng=_ConstantRandom(0))

        with pytest.raises(UidExhaustedError):
            registry.allocator.next_uid()

    def test_seeded_runs_are_reproducible(self):
        """Two allocators with the same seed issue the same uids."""
        first = ModelRegistry(rng=random.Random(42))
        second = ModelRegistry(rng=random.Random(42))

        assert [first.allocator.next_uid() for _ in range(5)] == [
            second.allocator.next_uid() for _ in range(5)
        ]

    def test_propose_does_not_record(self):
        """propose_uid leaves the uid available for claiming."""
        registry = ModelRegistry(rng=random.Random(5))

        proposed = registry.allocator.propose_uid()

        assert registry.allocator.claim_uid(proposed, "Task") == proposed


class TestClaimUid:
    """Tests for explicit uid requests."""

    def test_claim_unused(self):
        """An unused uid can be claimed once."""
        registry = ModelRegistry(rng=random.Random(1))

        assert registry.allocator.claim_uid(777, "Task.text") == 777
        with pytest.raises(DuplicateUidError, match="issued in this run"):
            registry.allocator.claim_uid(777, "Task.other")

    def test_claim_active_raises(self):
        """A uid owned by an element can't be claimed."""
        registry = ModelRegistry(rng=random.Random(1))
        entity = registry.create_entity("Task")

        with pytest.raises(DuplicateUidError, match="entity 'Task'"):
            registry.allocator.claim_uid(entity.uid, "Note.text")

    def test_claim_retired_raises(self):
        """A retired uid can't be claimed."""
        registry = ModelRegistry(rng=random.Random(1))
        registry.retired_relation_uids.append(555)

        with pytest.raises(DuplicateUidError, match="retired"):
            registry.allocator.claim_uid(555, "Task.tags")

    def test_claim_zero_raises(self):
        """uid zero is reserved."""
        registry = ModelRegistry(rng=random.Random(1))

        with pytest.raises(DuplicateUidError):
            registry.allocator.claim_uid(0, "Task")

    def test_unset_counter_is_none(self):
        """A fresh registry has unset counters."""
        registry = ModelRegistry()

        assert registry.last_entity_id == IdUid.NONE
        assert not registry.last_sequence_id.is_set
