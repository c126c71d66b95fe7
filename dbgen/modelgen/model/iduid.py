"""
Two-part identifiers ("id:uid") for model elements.

Every entity, property, index and relation in the model carries an IdUid:
- id: sequential number, unique only within its scope (32-bit)
- uid: random number, unique across the whole model for its lifetime (64-bit)

Invariants:
    - uid zero is never valid
    - id zero is only valid while a candidate is waiting to be matched
    - "0:0" is reserved for counters that have not assigned anything yet
    - str(IdUid.parse(s)) == s for every accepted s

Example:
    >>> IdUid.parse("1:7288146211131391486")
    IdUid(id=1, uid=7288146211131391486)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from .errors import FormatError

MAX_ID = 2**32 - 1
MAX_UID = 2**64 - 1

_COMPONENTS = (("id", MAX_ID), ("uid", MAX_UID))


@dataclass(frozen=True, eq=False)
class IdUid:
    """Identifier pair as stored in the model file.

    Equality, hashing and ordering look at the id only; the uid is used for
    identity and collision checks.
    """

    id: int
    uid: int

    NONE: ClassVar[IdUid]

    @classmethod
    def parse(cls, text: str, *, allow_zero_id: bool = False) -> IdUid:
        """Parse an "id:uid" string.

        Args:
            text: The string to parse
            allow_zero_id: Accept a zero id (candidate pending allocation)

        Returns:
            Parsed IdUid

        Raises:
            FormatError: On missing/extra separators, non-numeric,
                overflowing, zero-padded or zero components
        """
        if not isinstance(text, str) or not text:
            raise FormatError("identifier is undefined", value=text)

        parts = text.split(":")
        if len(parts) != 2:
            raise FormatError(
                f"invalid identifier '{text}': expected exactly one ':' separator",
                value=text,
            )

        values = []
        for part, (label, limit) in zip(parts, _COMPONENTS):
            # int() would accept signs, whitespace and underscores
            if not part.isascii() or not part.isdigit():
                raise FormatError(f"can't parse {label} '{part}' in '{text}' as unsigned int", value=text)
            if len(part) > 1 and part.startswith("0"):
                raise FormatError(f"{label} '{part}' in '{text}' has a leading zero", value=text)
            value = int(part)
            if value > limit:
                raise FormatError(f"{label} '{part}' in '{text}' is out of range", value=text)
            values.append(value)

        id_, uid = values
        if uid == 0:
            raise FormatError(f"uid is zero in '{text}'", value=text)
        if id_ == 0 and not allow_zero_id:
            raise FormatError(f"id is zero in '{text}'", value=text)
        return cls(id_, uid)

    @classmethod
    def parse_counter(cls, text: str) -> IdUid:
        """Parse a last-id counter, which may still be the "0:0" sentinel."""
        if text == "0:0":
            return cls.NONE
        return cls.parse(text)

    @property
    def is_set(self) -> bool:
        return self.uid != 0

    def __str__(self) -> str:
        return f"{self.id}:{self.uid}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IdUid):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __lt__(self, other: IdUid) -> bool:
        return self.id < other.id

    def __le__(self, other: IdUid) -> bool:
        return self.id <= other.id

    def __gt__(self, other: IdUid) -> bool:
        return self.id > other.id

    def __ge__(self, other: IdUid) -> bool:
        return self.id >= other.id


IdUid.NONE = IdUid(0, 0)
