"""
Model module for modelgen.

This module provides the persisted model descriptor, including:
- Identifiers (IdUid) and their allocation (IdAllocator)
- Element definitions (Entity, Property, Relation)
- The ModelRegistry with load/save
- finalize() to check invariants before persisting

Invariants:
    - ids are never reused, even after the element was removed
    - uids are unique across the whole model and never reused (retired)
    - Every entity has exactly one id property

How to change safely:
    - Add new entities/properties through merge(), never by editing ids
    - Remove elements through the registry so their uids get retired
    - Always finalize() before save()
"""

from .allocator import IdAllocator, IdScope
from .errors import (
    AmbiguousMatchError,
    CounterMismatchError,
    DuplicateIdentifierError,
    DuplicateNameError,
    DuplicateUidError,
    FormatError,
    IndexIdentifierError,
    InvalidIdPropertyTypeError,
    InvariantViolationError,
    MergeError,
    MissingIdPropertyError,
    ModelError,
    MultipleIdPropertiesError,
    OrphanRelationTargetError,
    RetiredUidInUseError,
    UidExhaustedError,
    UidRequestError,
    UnresolvedRelationTargetError,
    UnsupportedModelVersionError,
)
from .finalize import collect_violations, finalize, validate
from .iduid import IdUid
from .registry import MODEL_VERSION, ModelRegistry
from .types import (
    Entity,
    IndexType,
    Property,
    PropertyFlags,
    PropertyType,
    Relation,
    normalize_name,
)

__all__ = [
    # Identifiers
    "IdUid",
    "IdAllocator",
    "IdScope",
    # Types
    "Entity",
    "Property",
    "Relation",
    "PropertyType",
    "PropertyFlags",
    "IndexType",
    "normalize_name",
    # Registry
    "ModelRegistry",
    "MODEL_VERSION",
    # Finalize
    "finalize",
    "validate",
    "collect_violations",
    # Errors
    "ModelError",
    "FormatError",
    "UidExhaustedError",
    "MergeError",
    "AmbiguousMatchError",
    "DuplicateUidError",
    "UidRequestError",
    "UnresolvedRelationTargetError",
    "InvariantViolationError",
    "MissingIdPropertyError",
    "MultipleIdPropertiesError",
    "InvalidIdPropertyTypeError",
    "DuplicateIdentifierError",
    "RetiredUidInUseError",
    "DuplicateNameError",
    "CounterMismatchError",
    "IndexIdentifierError",
    "OrphanRelationTargetError",
    "UnsupportedModelVersionError",
]
