"""
Error types for the model reconciliation core.

This module defines all exception types raised while loading, merging and
finalizing a model:
- ModelError: Base exception
- FormatError: Malformed persisted identifiers or structure
- MergeError: Reconciliation could not bind candidates to the model
- InvariantViolationError: Finalize found a broken model invariant

Invariants:
    - All errors inherit from ModelError
    - Errors name the offending entity/property so the user can fix the schema
    - Nothing in the core catches these; the caller discards the in-memory
      model and reloads the last persisted file
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence


class ModelError(Exception):
    """Base exception for all model errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "MODEL_ERROR"
        self.details = details or {}


class FormatError(ModelError):
    """Persisted model data is malformed.

    Raised when:
    - An "id:uid" string has a wrong number of separators
    - A component is not numeric, overflows or is zero
    - A required key is missing from the model file
    """

    def __init__(self, message: str, value: Optional[str] = None) -> None:
        super().__init__(message, code="FORMAT_ERROR", details={"value": value})
        self.value = value


class UidExhaustedError(ModelError):
    """The allocator could not draw a uid that is not already in use."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"could not generate a unique uid after {attempts} attempts",
            code="UID_EXHAUSTED",
            details={"attempts": attempts},
        )
        self.attempts = attempts


# =============================================================================
# Merge errors
# =============================================================================


class MergeError(ModelError):
    """Base class for errors raised while merging a candidate model."""


class AmbiguousMatchError(MergeError):
    """Candidates and model entries cannot be paired unambiguously.

    Raised when:
    - Two candidates resolve to the same model entry
    - An explicit uid annotation matches no entity
    - Two model entries share one normalized name

    Attributes:
        element: Name of the candidate entity/property
        uids: Conflicting uids (may be empty)
        candidates: Names of the conflicting candidates
    """

    def __init__(
        self,
        message: str,
        element: str,
        uids: Sequence[int] = (),
        candidates: Sequence[str] = (),
    ) -> None:
        super().__init__(
            message,
            code="AMBIGUOUS_MATCH",
            details={
                "element": element,
                "uids": list(uids),
                "candidates": list(candidates),
            },
        )
        self.element = element
        self.uids = list(uids)
        self.candidates = list(candidates)


class DuplicateUidError(MergeError):
    """A requested uid is already owned by another element or retired.

    Attributes:
        uid: The requested uid
        element: Name of the candidate requesting it
        owner: Description of the current owner ("retired" for retired uids)
    """

    def __init__(self, uid: int, element: str, owner: str) -> None:
        super().__init__(
            f"uid {uid} requested by '{element}' is already used by {owner}",
            code="DUPLICATE_UID",
            details={"uid": uid, "element": element, "owner": owner},
        )
        self.uid = uid
        self.element = element
        self.owner = owner


class UidRequestError(MergeError):
    """An empty uid annotation asks the user to pin the element's uid.

    The message carries the uid to put into the annotation: the existing uid
    for a known element, or a freshly proposed one for a new element.
    """

    def __init__(self, element: str, uid: int, existing: bool) -> None:
        source = "model uid" if existing else "new uid"
        super().__init__(
            f"uid annotation value must not be empty ({source} = {uid}) on '{element}'",
            code="UID_REQUEST",
            details={"element": element, "uid": uid, "existing": existing},
        )
        self.element = element
        self.uid = uid
        self.existing = existing


class UnresolvedRelationTargetError(MergeError):
    """A candidate relation names an entity the model does not contain."""

    def __init__(self, relation: str, target: str) -> None:
        super().__init__(
            f"relation '{relation}' targets unknown entity '{target}'",
            code="UNRESOLVED_RELATION_TARGET",
            details={"relation": relation, "target": target},
        )
        self.relation = relation
        self.target = target


# =============================================================================
# Invariant violations (Finalize)
# =============================================================================


class InvariantViolationError(ModelError):
    """Base class for violations detected by finalize().

    Attributes:
        element: Path of the offending element (e.g. "Task.text")
    """

    code = "INVARIANT_VIOLATION"

    def __init__(self, message: str, element: str = "") -> None:
        super().__init__(message, code=type(self).code, details={"element": element})
        self.element = element


class MissingIdPropertyError(InvariantViolationError):
    code = "MISSING_ID_PROPERTY"


class MultipleIdPropertiesError(InvariantViolationError):
    code = "MULTIPLE_ID_PROPERTIES"


class InvalidIdPropertyTypeError(InvariantViolationError):
    code = "INVALID_ID_PROPERTY_TYPE"


class DuplicateIdentifierError(InvariantViolationError):
    code = "DUPLICATE_IDENTIFIER"


class RetiredUidInUseError(DuplicateIdentifierError):
    code = "RETIRED_UID_IN_USE"


class DuplicateNameError(InvariantViolationError):
    code = "DUPLICATE_NAME"


class CounterMismatchError(InvariantViolationError):
    """A last-id counter is behind its scope or disagrees with an element."""

    code = "COUNTER_MISMATCH"


class IndexIdentifierError(InvariantViolationError):
    code = "INDEX_IDENTIFIER"


class OrphanRelationTargetError(InvariantViolationError):
    code = "ORPHAN_RELATION_TARGET"


class UnsupportedModelVersionError(InvariantViolationError):
    code = "UNSUPPORTED_MODEL_VERSION"
