"""
Finalize and validate a model before it is persisted.

finalize() is run after every merge and after every removal pass. It
recomputes the derived bookkeeping (each entity's last-property-id) and
then checks the global invariants of the model:
- every entity has exactly one id property of a 64-bit integer type
- names and ids are unique within their scope
- every uid is unique across the whole model and none is retired
- last-id counters are ahead of every id of their scope
- index identifiers are present exactly on indexed properties
- relations point at existing entities

Invariants:
    - Checks only read persisted-shape state; a freshly loaded model with
      no pending candidates validates the same way as a merged one
    - finalize() is idempotent and never lowers a counter

Example:
    >>> finalize(registry)  # raises the first violation found
    >>> problems = validate(registry)  # or collect all of them
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, Iterator, List, Set, Tuple

from .errors import (
    CounterMismatchError,
    DuplicateIdentifierError,
    DuplicateNameError,
    IndexIdentifierError,
    InvalidIdPropertyTypeError,
    InvariantViolationError,
    MissingIdPropertyError,
    MultipleIdPropertiesError,
    OrphanRelationTargetError,
    RetiredUidInUseError,
    UnsupportedModelVersionError,
)
from .iduid import IdUid
from .registry import MODEL_VERSION, ModelRegistry
from .types import ID_PROPERTY_TYPES, Entity, normalize_name

logger = logging.getLogger(__name__)


def finalize(registry: ModelRegistry) -> None:
    """Update derived counters and check all model invariants.

    Raises:
        InvariantViolationError: The first violation found
    """
    for entity in registry.entities:
        _update_last_property_id(entity)

    for violation in collect_violations(registry):
        raise violation

    logger.info(
        f"Model finalized: {len(registry.entities)} entities, "
        f"lastEntityId={registry.last_entity_id}, "
        f"{len(registry.retired_uids)} retired uids"
    )


def validate(registry: ModelRegistry) -> List[InvariantViolationError]:
    """Return every invariant violation without changing the model."""
    return list(collect_violations(registry))


def _update_last_property_id(entity: Entity) -> None:
    if not entity.properties:
        return
    highest = max(entity.properties, key=lambda p: p.id.id)
    if highest.id.id > entity.last_property_id.id:
        entity.last_property_id = highest.id


def collect_violations(registry: ModelRegistry) -> Iterator[InvariantViolationError]:
    """Yield invariant violations in a stable order."""
    yield from _check_versions(registry)
    yield from _check_entities(registry)
    yield from _check_uids(registry)
    yield from _check_counters(registry)
    yield from _check_relations(registry)


def _check_versions(registry: ModelRegistry) -> Iterator[InvariantViolationError]:
    if registry.minimum_parser_version > MODEL_VERSION:
        yield UnsupportedModelVersionError(
            f"the model requires at least parser version {registry.minimum_parser_version}, "
            f"this generator supports {MODEL_VERSION}"
        )
    if registry.minimum_parser_version > registry.model_version:
        yield UnsupportedModelVersionError(
            f"minimum parser version {registry.minimum_parser_version} is newer than "
            f"model version {registry.model_version}"
        )


def _duplicates(values: Iterable) -> Set:
    return {value for value, count in Counter(values).items() if count > 1}


def _check_entities(registry: ModelRegistry) -> Iterator[InvariantViolationError]:
    entities = registry.entities

    for name in sorted(_duplicates(normalize_name(e.name) for e in entities)):
        yield DuplicateNameError(f"entity name '{name}' is used more than once", element=name)

    for entity_id in sorted(_duplicates(e.id.id for e in entities)):
        names = [e.name for e in entities if e.id.id == entity_id]
        yield DuplicateIdentifierError(
            f"entity id {entity_id} is shared by {names}", element=names[0]
        )

    for entity in entities:
        if not entity.name:
            yield DuplicateNameError(f"entity {entity.id} has no name", element=str(entity.id))
        yield from _check_id_property(entity)
        yield from _check_properties(entity)

    index_ids = [
        (p.index_id.id, f"{e.name}.{p.name}")
        for e in entities
        for p in e.properties
        if p.index_id is not None
    ]
    for index_id in sorted(_duplicates(i for i, _ in index_ids)):
        paths = [path for i, path in index_ids if i == index_id]
        yield DuplicateIdentifierError(f"index id {index_id} is shared by {paths}", element=paths[0])

    relation_ids = [(r.id.id, f"{e.name}.{r.name}") for e in entities for r in e.relations]
    for relation_id in sorted(_duplicates(i for i, _ in relation_ids)):
        paths = [path for i, path in relation_ids if i == relation_id]
        yield DuplicateIdentifierError(
            f"relation id {relation_id} is shared by {paths}", element=paths[0]
        )


def _check_id_property(entity: Entity) -> Iterator[InvariantViolationError]:
    id_props = entity.id_properties()
    if not id_props:
        yield MissingIdPropertyError(f"entity '{entity.name}' has no id property", element=entity.name)
        return
    if len(id_props) > 1:
        names = [p.name for p in id_props]
        yield MultipleIdPropertiesError(
            f"entity '{entity.name}' has more than one id property: {names}",
            element=entity.name,
        )
    for prop in id_props:
        if prop.type not in ID_PROPERTY_TYPES:
            yield InvalidIdPropertyTypeError(
                f"id property '{entity.name}.{prop.name}' has type {prop.type.schema_name}, "
                f"expected one of {sorted(t.schema_name for t in ID_PROPERTY_TYPES)}",
                element=f"{entity.name}.{prop.name}",
            )


def _check_properties(entity: Entity) -> Iterator[InvariantViolationError]:
    props = entity.properties

    for name in sorted(_duplicates(normalize_name(p.name) for p in props)):
        yield DuplicateNameError(
            f"property name '{name}' is used more than once in entity '{entity.name}'",
            element=f"{entity.name}.{name}",
        )
    for prop_id in sorted(_duplicates(p.id.id for p in props)):
        names = [p.name for p in props if p.id.id == prop_id]
        yield DuplicateIdentifierError(
            f"property id {prop_id} is shared by {names} in entity '{entity.name}'",
            element=f"{entity.name}.{names[0]}",
        )
    for name in sorted(_duplicates(normalize_name(r.name) for r in entity.relations)):
        yield DuplicateNameError(
            f"relation name '{name}' is used more than once in entity '{entity.name}'",
            element=f"{entity.name}.{name}",
        )

    for prop in props:
        path = f"{entity.name}.{prop.name}"
        if prop.index is not None and prop.index_id is None:
            yield IndexIdentifierError(f"indexed property '{path}' has no index id", element=path)
        elif prop.index is None and prop.index_id is not None:
            yield IndexIdentifierError(
                f"property '{path}' has index id {prop.index_id} but no index flag",
                element=path,
            )


def _check_uids(registry: ModelRegistry) -> Iterator[InvariantViolationError]:
    retired = registry.retired_uids
    owners: Dict[int, str] = {}
    for uid, path in registry.iter_uids():
        if uid in owners:
            yield DuplicateIdentifierError(
                f"uid {uid} is used by both {owners[uid]} and {path}", element=path
            )
            continue
        owners[uid] = path
        if uid in retired:
            yield RetiredUidInUseError(f"{path} uses retired uid {uid}", element=path)


def _check_counter(
    label: str,
    counter: IdUid,
    elements: List[Tuple[IdUid, str]],
    retired: Iterable[int],
) -> Iterator[InvariantViolationError]:
    if not counter.is_set:
        for identifier, path in elements:
            yield CounterMismatchError(
                f"{label} is unset but {path} has id {identifier}", element=path
            )
        return

    found = False
    for identifier, path in elements:
        if identifier.id == counter.id:
            if identifier.uid != counter.uid:
                yield CounterMismatchError(
                    f"{label} {counter} doesn't match {path} {identifier}", element=path
                )
            found = True
        elif identifier.id > counter.id:
            yield CounterMismatchError(
                f"{label} {counter} is lower than {path} {identifier}", element=path
            )

    if not found and counter.uid not in set(retired):
        yield CounterMismatchError(
            f"{label} {counter} doesn't match any element and is not retired", element=label
        )


def _check_counters(registry: ModelRegistry) -> Iterator[InvariantViolationError]:
    entities = registry.entities
    yield from _check_counter(
        "lastEntityId",
        registry.last_entity_id,
        [(e.id, f"entity '{e.name}'") for e in entities],
        registry.retired_entity_uids,
    )
    yield from _check_counter(
        "lastIndexId",
        registry.last_index_id,
        [
            (p.index_id, f"index of '{e.name}.{p.name}'")
            for e in entities
            for p in e.properties
            if p.index_id is not None
        ],
        registry.retired_index_uids,
    )
    yield from _check_counter(
        "lastRelationId",
        registry.last_relation_id,
        [(r.id, f"relation '{e.name}.{r.name}'") for e in entities for r in e.relations],
        registry.retired_relation_uids,
    )
    for entity in entities:
        yield from _check_counter(
            f"lastPropertyId of entity '{entity.name}'",
            entity.last_property_id,
            [(p.id, f"property '{entity.name}.{p.name}'") for p in entity.properties],
            registry.retired_property_uids,
        )


def _check_relations(registry: ModelRegistry) -> Iterator[InvariantViolationError]:
    for entity in registry.entities:
        for rel in entity.relations:
            if registry.find_entity_by_id(rel.target_id) is None:
                yield OrphanRelationTargetError(
                    f"relation '{entity.name}.{rel.name}' targets unknown entity {rel.target_id}",
                    element=f"{entity.name}.{rel.name}",
                )
        for prop in entity.properties:
            if prop.relation_target and registry.find_entity_by_name(prop.relation_target) is None:
                yield OrphanRelationTargetError(
                    f"property '{entity.name}.{prop.name}' targets unknown entity "
                    f"'{prop.relation_target}'",
                    element=f"{entity.name}.{prop.name}",
                )
