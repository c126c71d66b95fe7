"""
Matcher strategies that pair a candidate with an existing model element.

Matching runs as an explicit chain: each matcher answers MATCHED, NO_MATCH
or AMBIGUOUS, and the first answer other than NO_MATCH decides. The default
chains try the uid annotation first and the (normalized) name second.

Invariants:
    - A matcher never guesses: more than one plausible entry is AMBIGUOUS
    - Entities: a uid annotation must match exactly (strict uid matcher)
    - Properties/relations: an unmatched uid falls through to the name
      matcher; the reconciler then treats it as a uid request
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, Sequence

from ..model.types import normalize_name


class MatchOutcome(Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class MatchResult:
    """Answer of a matcher.

    Attributes:
        outcome: What the matcher decided
        entry: The matched model element (MATCHED only)
        matcher: Name of the matcher that decided
        reason: Explanation for AMBIGUOUS results
    """

    outcome: MatchOutcome
    entry: Optional[Any] = None
    matcher: str = ""
    reason: str = ""

    @property
    def matched(self) -> bool:
        return self.outcome is MatchOutcome.MATCHED


NO_MATCH = MatchResult(MatchOutcome.NO_MATCH)


class Matcher(Protocol):
    name: str

    def match(self, candidate: Any, entries: Sequence[Any]) -> MatchResult:
        ...


class UidMatcher:
    """Match on the candidate's explicit uid annotation.

    Args:
        strict: If True, a uid that matches no entry is AMBIGUOUS instead of
            NO_MATCH; the annotation promised an existing element.
    """

    name = "uid"

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict

    def match(self, candidate: Any, entries: Sequence[Any]) -> MatchResult:
        if candidate.uid is None:
            return NO_MATCH
        found = [e for e in entries if e.uid == candidate.uid]
        if len(found) == 1:
            return MatchResult(MatchOutcome.MATCHED, found[0], self.name)
        if len(found) > 1:
            return MatchResult(
                MatchOutcome.AMBIGUOUS,
                matcher=self.name,
                reason=f"uid {candidate.uid} is shared by {len(found)} elements",
            )
        if self.strict:
            return MatchResult(
                MatchOutcome.AMBIGUOUS,
                matcher=self.name,
                reason=f"uid annotation value {candidate.uid} doesn't match any element",
            )
        return NO_MATCH


class NameMatcher:
    """Match on the case-normalized name."""

    name = "name"

    def match(self, candidate: Any, entries: Sequence[Any]) -> MatchResult:
        key = normalize_name(candidate.name)
        found = [e for e in entries if normalize_name(e.name) == key]
        if len(found) == 1:
            return MatchResult(MatchOutcome.MATCHED, found[0], self.name)
        if len(found) > 1:
            return MatchResult(
                MatchOutcome.AMBIGUOUS,
                matcher=self.name,
                reason=f"name '{candidate.name}' matches {len(found)} elements",
            )
        return NO_MATCH


class MatcherChain:
    """Ordered sequence of matchers; the first decisive answer wins."""

    def __init__(self, matchers: Sequence[Matcher]) -> None:
        self.matchers = list(matchers)

    def resolve(self, candidate: Any, entries: Sequence[Any]) -> MatchResult:
        for matcher in self.matchers:
            result = matcher.match(candidate, entries)
            if result.outcome is not MatchOutcome.NO_MATCH:
                return result
        return NO_MATCH


def entity_matchers() -> MatcherChain:
    return MatcherChain([UidMatcher(strict=True), NameMatcher()])


def member_matchers() -> MatcherChain:
    """Chain for properties and relations (scoped to one entity)."""
    return MatcherChain([UidMatcher(strict=False), NameMatcher()])
