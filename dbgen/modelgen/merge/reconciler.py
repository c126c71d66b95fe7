"""
Reconciler: merges a candidate model into the model registry.

For every candidate entity the reconciler decides whether it is an existing
entity (possibly renamed), or a new one, and does the same for its
properties and relations. Existing elements keep their identifiers; new
ones get freshly allocated identifiers.

Invariants:
    - Matching never guesses: two candidates resolving to one model element
      raise AmbiguousMatchError, including a uid match racing a name match
    - An explicit entity uid must match an existing entity
    - A property/relation uid that matches nothing in its entity is a uid
      request, honored only if the uid was never used anywhere
    - Properties and relations missing from a matched entity are removed
      (their uids retired); entities are only marked, never removed here,
      because one source may declare only part of the schema
    - All entity matches are resolved before the registry is touched

How to change safely:
    - Add matching policies as matchers (see matchers.py), not as branches
    - Run finalize() after every merge before persisting

Example:
    >>> report = ModelReconciler(registry).merge(candidates)
    >>> finalize(registry)
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..model.errors import (
    AmbiguousMatchError,
    DuplicateUidError,
    UidRequestError,
    UnresolvedRelationTargetError,
)
from ..model.registry import ModelRegistry
from ..model.types import Entity, Property, Relation, check_property_shape, normalize_name
from .candidates import CandidateEntity, CandidateModel, CandidateProperty, CandidateRelation
from .changes import ChangeKind, MergeReport, ModelChange
from .matchers import MatchOutcome, MatcherChain, entity_matchers, member_matchers

logger = logging.getLogger(__name__)


class ModelReconciler:
    """Merges candidate models into one registry.

    Args:
        registry: Model registry, mutated in place
        entity_chain: Matchers for entities (uid, then name by default)
        member_chain: Matchers for properties and relations
    """

    def __init__(
        self,
        registry: ModelRegistry,
        entity_chain: Optional[MatcherChain] = None,
        member_chain: Optional[MatcherChain] = None,
    ) -> None:
        self.registry = registry
        self.entity_chain = entity_chain or entity_matchers()
        self.member_chain = member_chain or member_matchers()

    def merge(self, model: CandidateModel) -> MergeReport:
        """Merge one candidate model into the registry.

        Matched and new entities are marked currently_present; entities that
        no candidate matched are left for the caller to remove.

        Returns:
            Report of all applied changes

        Raises:
            AmbiguousMatchError: Candidates and entries can't be paired
            DuplicateUidError: A requested uid is already used or retired
            UidRequestError: An empty uid annotation was found
            UnresolvedRelationTargetError: A relation targets an unknown entity
        """
        report = MergeReport(source=model.source)
        _check_unique_names(model.entities, "entity", model.source or "schema")

        pairs = self._resolve_entities(model.entities)

        for candidate, entity in pairs:
            if entity is None:
                entity = self.registry.create_entity(candidate.name)
                self._record(report, ModelChange(
                    kind=ChangeKind.ENTITY_ADDED,
                    path=entity.name,
                    new_value=str(entity.id),
                    message=f"Entity '{entity.name}' added with id {entity.id}",
                ))
            elif entity.name != candidate.name:
                old_name = entity.name
                self._rename_entity(entity, candidate.name)
                self._record(report, ModelChange(
                    kind=ChangeKind.ENTITY_RENAMED,
                    path=candidate.name,
                    old_value=old_name,
                    new_value=candidate.name,
                    message=f"Entity renamed from '{old_name}' to '{candidate.name}'",
                ))
            entity.currently_present = True
            self._merge_properties(candidate, entity, report)

        # relations may target any entity of this model, so they go last
        for candidate, _ in pairs:
            entity = self.registry.find_entity_by_name(candidate.name)
            self._merge_relations(candidate, entity, report)

        logger.info(
            f"Merged {len(model.entities)} entities from {model.source or 'schema'}: "
            f"{len(report.changes)} changes, {len(report.warnings)} warnings"
        )
        return report

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def _resolve_entities(
        self, candidates: Sequence[CandidateEntity]
    ) -> List[Tuple[CandidateEntity, Optional[Entity]]]:
        claims: Dict[Entity, str] = {}
        pairs: List[Tuple[CandidateEntity, Optional[Entity]]] = []

        for candidate in candidates:
            result = self.entity_chain.resolve(candidate, self.registry.entities)
            if result.outcome is MatchOutcome.AMBIGUOUS:
                if candidate.uid is not None and result.matcher == "uid":
                    self._reject_foreign_uid(candidate.uid, candidate.name)
                raise AmbiguousMatchError(
                    f"entity '{candidate.name}': {result.reason}",
                    element=candidate.name,
                    uids=[candidate.uid] if candidate.uid is not None else [],
                )

            entity: Optional[Entity] = result.entry
            if candidate.uid_request:
                if entity is not None:
                    raise UidRequestError(candidate.name, entity.uid, existing=True)
                raise UidRequestError(candidate.name, self.registry.allocator.propose_uid(), existing=False)

            if entity is not None:
                if entity in claims:
                    raise AmbiguousMatchError(
                        f"entities '{claims[entity]}' and '{candidate.name}' both resolve to "
                        f"model entity '{entity.name}' (uid {entity.uid}); "
                        f"add a uid annotation to tell them apart",
                        element=candidate.name,
                        uids=[entity.uid],
                        candidates=[claims[entity], candidate.name],
                    )
                claims[entity] = candidate.name
                if result.matcher == "uid":
                    self._check_rename_target(candidate, entity)
            pairs.append((candidate, entity))

        return pairs

    def _reject_foreign_uid(self, uid: int, element: str) -> None:
        if uid in self.registry.retired_uids:
            raise DuplicateUidError(uid, element, "a removed element (retired)")
        owner = self.registry.uid_owner(uid)
        if owner is not None:
            raise DuplicateUidError(uid, element, owner)

    def _check_rename_target(self, candidate: CandidateEntity, entity: Entity) -> None:
        other = self.registry.find_entity_by_name(candidate.name)
        if other is not None and other is not entity:
            raise AmbiguousMatchError(
                f"entity '{candidate.name}' matches uid {entity.uid} of '{entity.name}' "
                f"but its name belongs to entity '{other.name}' (uid {other.uid})",
                element=candidate.name,
                uids=[entity.uid, other.uid],
            )

    def _rename_entity(self, entity: Entity, new_name: str) -> None:
        old_key = normalize_name(entity.name)
        entity.name = new_name
        # to-one relations refer to their target by name
        for other in self.registry.entities:
            for prop in other.properties:
                if prop.relation_target and normalize_name(prop.relation_target) == old_key:
                    prop.relation_target = new_name

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    def _resolve_members(self, entity: Entity, candidates: Sequence, entries: Sequence, label: str):
        """Pair candidates with entries; returns [(candidate, entry, requested_uid)]."""
        claims: Dict[object, str] = {}
        plan = []
        for candidate in candidates:
            path = f"{entity.name}.{candidate.name}"
            result = self.member_chain.resolve(candidate, entries)
            if result.outcome is MatchOutcome.AMBIGUOUS:
                raise AmbiguousMatchError(
                    f"{label} '{path}': {result.reason}",
                    element=path,
                    uids=[candidate.uid] if candidate.uid is not None else [],
                )

            entry = result.entry
            if candidate.uid_request:
                if entry is not None:
                    raise UidRequestError(path, entry.uid, existing=True)
                raise UidRequestError(path, self.registry.allocator.propose_uid(), existing=False)

            if entry is not None:
                if entry in claims:
                    raise AmbiguousMatchError(
                        f"{label}s '{entity.name}.{claims[entry]}' and '{path}' both resolve to "
                        f"'{entity.name}.{entry.name}' (uid {entry.uid})",
                        element=path,
                        uids=[entry.uid],
                        candidates=[claims[entry], candidate.name],
                    )
                claims[entry] = candidate.name

            requested = None
            if candidate.uid is not None and (entry is None or entry.uid != candidate.uid):
                requested = candidate.uid
            plan.append((candidate, entry, requested))

        for candidate, _, requested in plan:
            if requested is not None:
                self.registry.allocator.claim_uid(requested, f"{entity.name}.{candidate.name}")
        return plan

    def _merge_properties(self, candidate: CandidateEntity, entity: Entity, report: MergeReport) -> None:
        _check_unique_names(candidate.properties, "property", candidate.name)
        plan = self._resolve_members(entity, candidate.properties, entity.properties, "property")
        planned = [prop for _, prop, _ in plan if prop is not None]

        for prop in list(entity.properties):
            if not any(prop is p for p in planned):
                self.registry.remove_property(entity, prop)
                self._record(report, ModelChange(
                    kind=ChangeKind.PROPERTY_REMOVED,
                    path=f"{entity.name}.{prop.name}",
                    old_value=str(prop.id),
                    message=f"Property '{prop.name}' {prop.id} removed",
                ))

        for cand, prop, requested in plan:
            if prop is not None and requested is None:
                self._update_property(entity, prop, cand, report)
                continue

            position = None
            if prop is not None:
                # same name, new uid: the stored values are dropped
                position = entity.properties.index(prop)
                self.registry.remove_property(entity, prop)

            new_prop = self.registry.create_property(
                entity,
                cand.name,
                cand.type,
                is_id=cand.is_id,
                index=cand.index,
                unique=cand.unique,
                extra_flags=cand.extra_flags,
                relation_target=cand.relation_target,
                uid=requested,
            )
            path = f"{entity.name}.{new_prop.name}"
            if position is not None:
                entity.properties.remove(new_prop)
                entity.properties.insert(position, new_prop)
                self._record(report, ModelChange(
                    kind=ChangeKind.PROPERTY_UID_RESET,
                    path=path,
                    old_value=str(prop.id),
                    new_value=str(new_prop.id),
                    message=f"Property '{new_prop.name}' recreated with uid {new_prop.uid}; "
                    f"previously stored values are no longer readable",
                    warning=True,
                ))
            else:
                self._record(report, ModelChange(
                    kind=ChangeKind.PROPERTY_ADDED,
                    path=path,
                    new_value=str(new_prop.id),
                    message=f"Property '{new_prop.name}' added with id {new_prop.id}",
                ))

    def _update_property(
        self,
        entity: Entity,
        prop: Property,
        cand: CandidateProperty,
        report: MergeReport,
    ) -> None:
        check_property_shape(cand.name, cand.type, cand.index, cand.unique, cand.relation_target)
        path = f"{entity.name}.{cand.name}"

        if prop.name != cand.name:
            self._record(report, ModelChange(
                kind=ChangeKind.PROPERTY_RENAMED,
                path=path,
                old_value=prop.name,
                new_value=cand.name,
                message=f"Property renamed from '{prop.name}' to '{cand.name}'",
            ))

        if prop.type != cand.type:
            structural = prop.type.storage_class != cand.type.storage_class
            self._record(report, ModelChange(
                kind=ChangeKind.PROPERTY_TYPE_CHANGED,
                path=path,
                old_value=prop.type.schema_name,
                new_value=cand.type.schema_name,
                message=f"Property type changed from {prop.type.schema_name} "
                f"to {cand.type.schema_name}",
                warning=structural,
            ))

        old_flags = prop.flags
        had_index = prop.index is not None

        prop.name = cand.name
        prop.type = cand.type
        prop.is_id = cand.is_id
        prop.index = cand.index
        prop.unique = cand.unique
        prop.extra_flags = cand.extra_flags
        prop.relation_target = cand.relation_target

        if prop.flags != old_flags:
            self._record(report, ModelChange(
                kind=ChangeKind.PROPERTY_FLAGS_CHANGED,
                path=path,
                old_value=old_flags,
                new_value=prop.flags,
                message=f"Property flags changed from {old_flags} to {prop.flags}",
            ))

        if prop.index is not None and not had_index:
            index_id = self.registry.create_index(prop)
            self._record(report, ModelChange(
                kind=ChangeKind.INDEX_ADDED,
                path=path,
                new_value=str(index_id),
                message=f"Index {index_id} added",
            ))
        elif prop.index is None and had_index and prop.index_id is not None:
            index_id = prop.index_id
            self.registry.remove_index(prop)
            self._record(report, ModelChange(
                kind=ChangeKind.INDEX_REMOVED,
                path=path,
                old_value=str(index_id),
                message=f"Index {index_id} removed",
            ))

    # -------------------------------------------------------------------------
    # Relations
    # -------------------------------------------------------------------------

    def _merge_relations(self, candidate: CandidateEntity, entity: Entity, report: MergeReport) -> None:
        _check_unique_names(candidate.relations, "relation", candidate.name)
        targets = {}
        for cand in candidate.relations:
            target = self.registry.find_entity_by_name(cand.target)
            if target is None:
                raise UnresolvedRelationTargetError(f"{entity.name}.{cand.name}", cand.target)
            targets[cand.name] = target

        plan = self._resolve_members(entity, candidate.relations, entity.relations, "relation")
        planned = [rel for _, rel, requested in plan if rel is not None and requested is None]

        for rel in list(entity.relations):
            if not any(rel is p for p in planned):
                self.registry.remove_relation(entity, rel)
                self._record(report, ModelChange(
                    kind=ChangeKind.RELATION_REMOVED,
                    path=f"{entity.name}.{rel.name}",
                    old_value=str(rel.id),
                    message=f"Relation '{rel.name}' {rel.id} removed",
                ))

        for cand, rel, requested in plan:
            target = targets[cand.name]
            if rel is not None and requested is None:
                self._update_relation(entity, rel, cand, target, report)
                continue
            new_rel = self.registry.create_relation(entity, cand.name, target, uid=requested)
            self._record(report, ModelChange(
                kind=ChangeKind.RELATION_ADDED,
                path=f"{entity.name}.{new_rel.name}",
                new_value=str(new_rel.id),
                message=f"Relation '{new_rel.name}' to '{target.name}' added with id {new_rel.id}",
            ))

    def _update_relation(
        self,
        entity: Entity,
        rel: Relation,
        cand: CandidateRelation,
        target: Entity,
        report: MergeReport,
    ) -> None:
        path = f"{entity.name}.{cand.name}"
        if rel.name != cand.name:
            self._record(report, ModelChange(
                kind=ChangeKind.RELATION_RENAMED,
                path=path,
                old_value=rel.name,
                new_value=cand.name,
                message=f"Relation renamed from '{rel.name}' to '{cand.name}'",
            ))
            rel.name = cand.name

        if rel.target_id.uid != target.uid or rel.target_id.id != target.id.id:
            self._record(report, ModelChange(
                kind=ChangeKind.RELATION_TARGET_CHANGED,
                path=path,
                old_value=str(rel.target_id),
                new_value=str(target.id),
                message=f"Relation target changed to '{target.name}' {target.id}",
                warning=True,
            ))
            rel.target_id = target.id

    # -------------------------------------------------------------------------

    def _record(self, report: MergeReport, change: ModelChange) -> None:
        report.add(change)
        if change.is_warning:
            logger.warning(str(change))
        else:
            logger.info(str(change))


def _check_unique_names(candidates: Sequence, label: str, scope: str) -> None:
    seen: Dict[str, str] = {}
    for candidate in candidates:
        key = normalize_name(candidate.name)
        if key in seen:
            raise AmbiguousMatchError(
                f"{label} '{candidate.name}' is declared more than once in {scope}",
                element=candidate.name,
                candidates=[seen[key], candidate.name],
            )
        seen[key] = candidate.name


def merge(model: CandidateModel, registry: ModelRegistry) -> MergeReport:
    """Merge model into registry with the default matcher chains."""
    return ModelReconciler(registry).merge(model)
