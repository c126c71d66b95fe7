"""
Change events reported by merge().

Every decision the reconciler takes on the model is reported as a
ModelChange so callers can print a summary, fail a CI job on warnings, or
show the user which uid to pin. Warning-class changes are legal but may
need attention at database runtime:
- a property changed its storage representation (e.g. integer -> string)
- a property was reset to a new uid, which drops its stored values

Example:
    >>> report = merge(candidates, registry)
    >>> for change in report.warnings:
    ...     print(change)
    [WARNING] PROPERTY_TYPE_CHANGED: Task.text - Property type changed from long to string
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, List, Optional


class ChangeKind(Enum):
    """Kinds of model changes."""

    ENTITY_ADDED = auto()
    ENTITY_RENAMED = auto()
    ENTITY_REMOVED = auto()
    PROPERTY_ADDED = auto()
    PROPERTY_RENAMED = auto()
    PROPERTY_REMOVED = auto()
    PROPERTY_TYPE_CHANGED = auto()
    PROPERTY_FLAGS_CHANGED = auto()
    PROPERTY_UID_RESET = auto()
    INDEX_ADDED = auto()
    INDEX_REMOVED = auto()
    RELATION_ADDED = auto()
    RELATION_RENAMED = auto()
    RELATION_REMOVED = auto()
    RELATION_TARGET_CHANGED = auto()


@dataclass
class ModelChange:
    """A single change applied to the model.

    Attributes:
        kind: The type of change
        path: Path to the changed element (e.g. "Task.text")
        old_value: Previous value (if applicable)
        new_value: New value (if applicable)
        message: Human-readable description of the change
        warning: Whether the change needs the user's attention
    """

    kind: ChangeKind
    path: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    message: str = ""
    warning: bool = False

    @property
    def is_warning(self) -> bool:
        return self.warning

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.name,
            "path": self.path,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "message": self.message,
            "is_warning": self.warning,
        }

    def __str__(self) -> str:
        status = "WARNING" if self.warning else "OK"
        return f"[{status}] {self.kind.name}: {self.path} - {self.message}"


@dataclass
class MergeReport:
    """Outcome of merging one candidate model.

    Attributes:
        source: Label of the merged candidate model
        changes: Changes in the order they were applied
    """

    source: str = ""
    changes: List[ModelChange] = field(default_factory=list)

    def add(self, change: ModelChange) -> ModelChange:
        self.changes.append(change)
        return change

    @property
    def warnings(self) -> List[ModelChange]:
        return [c for c in self.changes if c.is_warning]

    def of_kind(self, kind: ChangeKind) -> List[ModelChange]:
        return [c for c in self.changes if c.kind == kind]

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)
