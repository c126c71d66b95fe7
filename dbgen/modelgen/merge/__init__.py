"""
Merge module for modelgen.

This module reconciles freshly parsed schema declarations with the model:
- Candidate types and schema document parsing (candidates.py)
- Matcher chains pairing candidates with model elements (matchers.py)
- The reconciler applying the result (reconciler.py)
- Change events describing what happened (changes.py)

Invariants:
    - Existing elements keep their identifiers, whatever was renamed
    - Ambiguity is an error, never a guess
"""

from .candidates import (
    CandidateEntity,
    CandidateModel,
    CandidateProperty,
    CandidateRelation,
    load,
    parse_dict,
    parse_json,
    parse_yaml,
)
from .changes import ChangeKind, MergeReport, ModelChange
from .matchers import (
    MatchOutcome,
    MatchResult,
    MatcherChain,
    NameMatcher,
    UidMatcher,
    entity_matchers,
    member_matchers,
)
from .reconciler import ModelReconciler, merge

__all__ = [
    # Candidates
    "CandidateModel",
    "CandidateEntity",
    "CandidateProperty",
    "CandidateRelation",
    "load",
    "parse_dict",
    "parse_json",
    "parse_yaml",
    # Changes
    "ChangeKind",
    "ModelChange",
    "MergeReport",
    # Matchers
    "MatchOutcome",
    "MatchResult",
    "MatcherChain",
    "UidMatcher",
    "NameMatcher",
    "entity_matchers",
    "member_matchers",
    # Reconciler
    "ModelReconciler",
    "merge",
]
