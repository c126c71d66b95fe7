"""
Model Registry: the persisted, authoritative model descriptor.

The ModelRegistry holds every entity with its properties, relations and
indexes, plus the bookkeeping needed to keep identifiers stable forever:
- last-id counters per scope (entity, index, relation, sequence)
- retired uids of every removed element, per kind

Invariants:
    - Counters never decrease; removing an element never frees its id
    - Removing an element retires its uid permanently (the retired lists
      only grow)
    - Removing an entity retires its properties, indexes and relations too
    - Saving an unchanged, loaded registry reproduces the file byte for byte

How to change safely:
    - Keep the JSON key names and order; the file is checked into version
      control next to the schema and read by other tools
    - Run finalize() before save(); save() does not validate

Example:
    >>> registry = ModelRegistry.load_or_create("entity-model.json")
    >>> merge(candidates, registry)
    >>> finalize(registry)
    >>> registry.save("entity-model.json")
"""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Union

from .allocator import IdAllocator, IdScope
from .errors import FormatError
from .iduid import IdUid
from .types import (
    Entity,
    IndexType,
    Property,
    PropertyFlags,
    PropertyType,
    Relation,
    check_property_shape,
    normalize_name,
)

logger = logging.getLogger(__name__)

# Model format version written by this generator
MODEL_VERSION = 5

FILE_VERSION = 1

_NOTES = (
    "KEEP THIS FILE! Check it into a version control system (VCS) like git.",
    "This file holds the stable identifiers of your model. Never edit ids by hand.",
    "If you have VCS merge conflicts, resolve them so that no id or uid is lost.",
)

_RETIRED_KINDS = ("entity", "index", "property", "relation")


class ModelRegistry:
    """In-memory model descriptor with identifier bookkeeping.

    Attributes:
        entities: Ordered entities
        last_entity_id: Identifier of the last entity ever created
        last_index_id: Identifier of the last index ever created
        last_relation_id: Identifier of the last relation ever created
        last_sequence_id: Identifier of the last sequence ever created
        retired_entity_uids: uids of removed entities (likewise for index,
            property and relation)
        model_version: Model format version
        minimum_parser_version: Oldest model format reader able to load it
        notes: Header notes of the file, kept as loaded
        allocator: Identifier allocator bound to this registry

    Example:
        >>> registry = ModelRegistry(rng=random.Random(1))
        >>> task = registry.create_entity("Task")
        >>> registry.create_property(task, "id", PropertyType.LONG, is_id=True)
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        """Initialize an empty model."""
        self.entities: List[Entity] = []
        self.last_entity_id = IdUid.NONE
        self.last_index_id = IdUid.NONE
        self.last_relation_id = IdUid.NONE
        self.last_sequence_id = IdUid.NONE
        self.retired_entity_uids: List[int] = []
        self.retired_index_uids: List[int] = []
        self.retired_property_uids: List[int] = []
        self.retired_relation_uids: List[int] = []
        self.model_version = MODEL_VERSION
        self.minimum_parser_version = MODEL_VERSION
        self.version = FILE_VERSION
        self.notes: List[str] = list(_NOTES)
        self.allocator = IdAllocator(self, rng)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find_entity_by_uid(self, uid: int) -> Optional[Entity]:
        for entity in self.entities:
            if entity.uid == uid:
                return entity
        return None

    def find_entity_by_name(self, name: str) -> Optional[Entity]:
        key = normalize_name(name)
        for entity in self.entities:
            if normalize_name(entity.name) == key:
                return entity
        return None

    def find_entity_by_id(self, identifier: IdUid) -> Optional[Entity]:
        """Find an entity by both parts of its identifier."""
        for entity in self.entities:
            if entity.id.id == identifier.id and entity.uid == identifier.uid:
                return entity
        return None

    @property
    def retired_uids(self) -> Set[int]:
        """All retired uids, regardless of the kind of element removed."""
        return (
            set(self.retired_entity_uids)
            | set(self.retired_index_uids)
            | set(self.retired_property_uids)
            | set(self.retired_relation_uids)
        )

    def iter_uids(self) -> Iterator[tuple[int, str]]:
        """Yield (uid, element path) for every active identifier."""
        for entity in self.entities:
            yield entity.uid, f"entity '{entity.name}'"
            for prop in entity.properties:
                yield prop.uid, f"property '{entity.name}.{prop.name}'"
                if prop.index_id is not None:
                    yield prop.index_id.uid, f"index of '{entity.name}.{prop.name}'"
            for rel in entity.relations:
                yield rel.uid, f"relation '{entity.name}.{rel.name}'"

    def active_uids(self) -> Set[int]:
        return {uid for uid, _ in self.iter_uids()}

    def used_uids(self) -> Set[int]:
        """uids that may never be issued again (active and retired)."""
        return self.active_uids() | self.retired_uids

    def uid_owner(self, uid: int) -> Optional[str]:
        """Describe the active element owning uid, None if unowned."""
        for candidate, path in self.iter_uids():
            if candidate == uid:
                return path
        return None

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_entity(self, name: str, uid: Optional[int] = None) -> Entity:
        """Create a new entity with a freshly allocated identifier.

        Args:
            name: Entity name
            uid: uid already claimed through the allocator, or None

        Returns:
            The new entity, appended to the model
        """
        entity = Entity(name=name, id=self.allocator.next_id(IdScope.ENTITY, uid=uid))
        self.entities.append(entity)
        logger.debug(f"Created entity {entity.name} {entity.id}")
        return entity

    def create_property(
        self,
        entity: Entity,
        name: str,
        type_: PropertyType,
        *,
        is_id: bool = False,
        index: Optional[IndexType] = None,
        unique: bool = False,
        extra_flags: PropertyFlags = PropertyFlags(0),
        relation_target: Optional[str] = None,
        uid: Optional[int] = None,
    ) -> Property:
        """Create a new property (and its index, if any) within entity."""
        check_property_shape(name, type_, index, unique, relation_target)
        prop = Property(
            name=name,
            id=self.allocator.next_id(IdScope.PROPERTY, entity=entity, uid=uid),
            type=type_,
            is_id=is_id,
            index=index,
            unique=unique,
            extra_flags=extra_flags,
            relation_target=relation_target,
        )
        entity.properties.append(prop)
        if prop.index is not None:
            self.create_index(prop)
        logger.debug(f"Created property {entity.name}.{prop.name} {prop.id}")
        return prop

    def create_index(self, prop: Property) -> IdUid:
        """Assign an index identifier to prop if it has none."""
        if prop.index_id is None:
            prop.index_id = self.allocator.next_id(IdScope.INDEX)
        return prop.index_id

    def create_relation(
        self,
        entity: Entity,
        name: str,
        target: Entity,
        uid: Optional[int] = None,
    ) -> Relation:
        relation = Relation(
            name=name,
            id=self.allocator.next_id(IdScope.RELATION, uid=uid),
            target_id=target.id,
        )
        entity.relations.append(relation)
        logger.debug(f"Created relation {entity.name}.{relation.name} {relation.id}")
        return relation

    # -------------------------------------------------------------------------
    # Removal (retirement)
    # -------------------------------------------------------------------------

    def remove_index(self, prop: Property) -> None:
        """Drop the index identifier of prop, retiring its uid."""
        if prop.index_id is not None:
            self.retired_index_uids.append(prop.index_id.uid)
            prop.index_id = None

    def remove_property(self, entity: Entity, prop: Property) -> None:
        """Remove prop from entity, retiring its uid and its index uid.

        The entity's last_property_id is left as is.
        """
        entity.properties.remove(prop)
        self.remove_index(prop)
        self.retired_property_uids.append(prop.uid)
        logger.debug(f"Removed property {entity.name}.{prop.name} {prop.id}")

    def remove_relation(self, entity: Entity, relation: Relation) -> None:
        entity.relations.remove(relation)
        self.retired_relation_uids.append(relation.uid)
        logger.debug(f"Removed relation {entity.name}.{relation.name} {relation.id}")

    def remove_entity(self, entity: Entity) -> None:
        """Remove entity with all its properties and relations."""
        while entity.properties:
            self.remove_property(entity, entity.properties[0])
        while entity.relations:
            self.remove_relation(entity, entity.relations[0])
        self.entities.remove(entity)
        self.retired_entity_uids.append(entity.uid)
        logger.info(f"Removed entity {entity.name} {entity.id} from the model")

    # -------------------------------------------------------------------------
    # Presence markers (one generator run)
    # -------------------------------------------------------------------------

    def reset_presence(self) -> None:
        """Clear the currently_present marker of every entity."""
        for entity in self.entities:
            entity.currently_present = False

    def absent_entities(self) -> List[Entity]:
        """Entities no candidate matched since the last reset_presence()."""
        return [e for e in self.entities if not e.currently_present]

    def remove_absent_entities(self) -> List[Entity]:
        """Remove all absent entities; only valid after a full-schema run.

        Returns:
            The removed entities
        """
        removed = self.absent_entities()
        for entity in removed:
            self.remove_entity(entity)
        return removed

    def upgrade_version(self, version: int = MODEL_VERSION) -> None:
        """Raise model and minimum parser versions to at least version."""
        self.model_version = max(self.model_version, version)
        self.minimum_parser_version = max(self.minimum_parser_version, version)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Convert registry to the persisted dictionary representation."""
        return {
            "_note1": self.notes[0],
            "_note2": self.notes[1],
            "_note3": self.notes[2],
            "entities": [e.to_dict() for e in self.entities],
            "lastEntityId": str(self.last_entity_id),
            "lastIndexId": str(self.last_index_id),
            "lastRelationId": str(self.last_relation_id),
            "lastSequenceId": str(self.last_sequence_id),
            "modelVersion": self.model_version,
            "modelVersionParserMinimum": self.minimum_parser_version,
            "retiredEntityUids": list(self.retired_entity_uids),
            "retiredIndexUids": list(self.retired_index_uids),
            "retiredPropertyUids": list(self.retired_property_uids),
            "retiredRelationUids": list(self.retired_relation_uids),
            "version": self.version,
        }

    def to_json(self) -> str:
        """Convert registry to its file contents (2-space indent, final newline)."""
        return json.dumps(self.to_dict(), indent=2) + "\n"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], rng: Optional[random.Random] = None) -> ModelRegistry:
        """Create a registry from its persisted dictionary representation.

        Raises:
            FormatError: On any malformed identifier or structure
        """
        if not isinstance(data, dict):
            raise FormatError(f"model must be a JSON object, got {type(data).__name__}")

        registry = cls(rng=rng)
        registry.entities = [Entity.from_dict(e) for e in data.get("entities") or []]
        try:
            registry.last_entity_id = IdUid.parse_counter(data.get("lastEntityId", "0:0"))
            registry.last_index_id = IdUid.parse_counter(data.get("lastIndexId", "0:0"))
            registry.last_relation_id = IdUid.parse_counter(data.get("lastRelationId", "0:0"))
            registry.last_sequence_id = IdUid.parse_counter(data.get("lastSequenceId", "0:0"))
        except FormatError as e:
            raise FormatError(f"model counters: {e.message}", value=e.value) from e

        for kind in _RETIRED_KINDS:
            key = f"retired{kind.capitalize()}Uids"
            setattr(registry, f"retired_{kind}_uids", _parse_uid_list(data.get(key) or [], key))

        registry.model_version = _parse_int(data, "modelVersion", MODEL_VERSION)
        registry.minimum_parser_version = _parse_int(
            data, "modelVersionParserMinimum", registry.model_version
        )
        registry.version = _parse_int(data, "version", FILE_VERSION)
        for i in range(len(_NOTES)):
            note = data.get(f"_note{i + 1}", _NOTES[i])
            if not isinstance(note, str):
                raise FormatError(f"_note{i + 1} must be a string", value=str(note))
            registry.notes[i] = note
        return registry

    @classmethod
    def from_json(cls, json_str: str, rng: Optional[random.Random] = None) -> ModelRegistry:
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise FormatError(f"model is not valid JSON: {e}") from e
        return cls.from_dict(data, rng=rng)

    @classmethod
    def load(cls, path: Union[str, Path], rng: Optional[random.Random] = None) -> ModelRegistry:
        """Load a registry from a model file."""
        text = Path(path).read_text(encoding="utf-8")
        registry = cls.from_json(text, rng=rng)
        logger.info(f"Loaded model {path} with {len(registry.entities)} entities")
        return registry

    @classmethod
    def load_or_create(
        cls, path: Union[str, Path], rng: Optional[random.Random] = None
    ) -> ModelRegistry:
        """Load the model file, or start an empty model if it doesn't exist."""
        if Path(path).exists():
            return cls.load(path, rng=rng)
        logger.info(f"Model file {path} not found, starting a new model")
        return cls(rng=rng)

    def save(self, path: Union[str, Path]) -> None:
        """Write the registry to a model file."""
        Path(path).write_text(self.to_json(), encoding="utf-8")
        logger.info(f"Saved model {path} with {len(self.entities)} entities")


def _parse_uid_list(values: Any, key: str) -> List[int]:
    if not isinstance(values, list):
        raise FormatError(f"'{key}' must be a list")
    uids = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 < value < 2**64:
            raise FormatError(f"'{key}' contains an invalid uid {value!r}", value=str(value))
        uids.append(value)
    return uids


def _parse_int(data: Dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise FormatError(f"'{key}' must be an integer, got {value!r}")
    return value
