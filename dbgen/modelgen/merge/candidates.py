"""
Candidate model: freshly parsed schema declarations, not yet reconciled.

Candidates carry names, types and flags but never identifiers; those come
from the model during merge(). The parsing collaborator produces them, or
they are read from a YAML/JSON schema document:

    entities:
      - name: Task
        properties:
          - name: id
            type: long
            id: true
          - name: text
            type: string
            index: ""        # default index for the type (hash for strings)
          - name: dueAt
            type: long
            date: true
          - name: groupId
            type: relation
            target: Group
        relations:
          - name: tags
            target: Tag
      - name: Group
        uid: 4213928738452876283   # rename detection: match by uid
        properties:
          - name: id
            type: long
            id: true
            uid:                   # empty: ask for the uid to pin

Annotation rules:
    - index "" picks hash for string properties and value otherwise
    - unique implies the default index when none is given
    - date refines a long property into a date property
    - relation properties are value-indexed and skip zero in the index
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from ..model.types import (
    IndexType,
    PropertyFlags,
    PropertyType,
    check_property_shape,
)

# Flags a schema may set directly; the others are derived from annotations
_PASS_THROUGH_FLAGS = {
    "non_primitive_type": PropertyFlags.NON_PRIMITIVE_TYPE,
    "not_null": PropertyFlags.NOT_NULL,
    "id_monotonic_sequence": PropertyFlags.ID_MONOTONIC_SEQUENCE,
    "id_self_assignable": PropertyFlags.ID_SELF_ASSIGNABLE,
    "index_partial_skip_null": PropertyFlags.INDEX_PARTIAL_SKIP_NULL,
    "index_partial_skip_zero": PropertyFlags.INDEX_PARTIAL_SKIP_ZERO,
    "virtual": PropertyFlags.VIRTUAL,
    "unsigned": PropertyFlags.UNSIGNED,
    "id_companion": PropertyFlags.ID_COMPANION,
}


@dataclass
class CandidateProperty:
    """A declared property.

    Attributes:
        name: Property name
        type: Property type
        is_id: Declared as the entity id
        index: Index variant, None if not indexed
        unique: Unique constraint (requires an index)
        extra_flags: Other flag bits passed through to the model
        uid: Explicit uid annotation; matches an existing property or
            requests that uid for a new one
        uid_request: Empty uid annotation; merge reports the uid to pin
        relation_target: Target entity name for relation properties
    """

    name: str
    type: PropertyType
    is_id: bool = False
    index: Optional[IndexType] = None
    unique: bool = False
    extra_flags: PropertyFlags = PropertyFlags(0)
    uid: Optional[int] = None
    uid_request: bool = False
    relation_target: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Property name cannot be empty")
        check_property_shape(self.name, self.type, self.index, self.unique, self.relation_target)


@dataclass
class CandidateRelation:
    """A declared standalone relation to another entity."""

    name: str
    target: str
    uid: Optional[int] = None
    uid_request: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Relation name cannot be empty")
        if not self.target:
            raise ValueError(f"Relation '{self.name}': target is required")


@dataclass
class CandidateEntity:
    """A declared entity.

    Attributes:
        name: Entity name
        properties: Declared properties, in declaration order
        relations: Declared standalone relations
        uid: Explicit uid annotation; must match an existing entity
            (rename detection)
        uid_request: Empty uid annotation; merge reports the uid to pin
    """

    name: str
    properties: list[CandidateProperty] = field(default_factory=list)
    relations: list[CandidateRelation] = field(default_factory=list)
    uid: Optional[int] = None
    uid_request: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Entity name cannot be empty")


@dataclass
class CandidateModel:
    """All entities declared by one schema source.

    Attributes:
        entities: Declared entities, in declaration order
        source: Label of the source (usually its file path) for messages
    """

    entities: list[CandidateEntity] = field(default_factory=list)
    source: str = ""


def _parse_uid(data: dict[str, Any], where: str) -> tuple[Optional[int], bool]:
    """Return (uid, uid_request) from an optional uid annotation."""
    if "uid" not in data:
        return None, False
    value = data["uid"]
    if value is None or value == "":
        return None, True
    if isinstance(value, bool):
        raise ValueError(f"{where}: can't parse uid {value!r}")
    try:
        uid = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{where}: can't parse uid {value!r}") from e
    if not 0 < uid < 2**64:
        raise ValueError(f"{where}: uid {uid} is out of range")
    return uid, False


def _parse_index(value: Any, type_: PropertyType, where: str) -> IndexType:
    if value is True or value is None or value == "":
        return IndexType.HASH if type_ == PropertyType.STRING else IndexType.VALUE
    try:
        return IndexType(str(value).lower())
    except ValueError as e:
        raise ValueError(f"{where}: unknown index type {value!r}") from e


def parse_property(data: dict[str, Any], entity: str = "") -> CandidateProperty:
    """Parse a property declaration, resolving its annotations."""
    name = data.get("name", "")
    where = f"property '{entity}.{name}'" if entity else f"property '{name}'"
    type_ = PropertyType.from_str(str(data.get("type", "")))

    if data.get("date"):
        if type_ != PropertyType.LONG:
            raise ValueError(
                f"{where}: invalid underlying type {type_.schema_name} for date; expecting long"
            )
        type_ = PropertyType.DATE

    index: Optional[IndexType] = None
    if "index" in data and data["index"] is not False:
        index = _parse_index(data["index"], type_, where)

    unique = bool(data.get("unique", False))
    if unique and index is None:
        index = _parse_index(None, type_, where)

    extra = PropertyFlags(0)
    for flag_name in data.get("flags") or []:
        try:
            extra |= _PASS_THROUGH_FLAGS[str(flag_name).lower()]
        except KeyError as e:
            raise ValueError(f"{where}: unsupported flag {flag_name!r}") from e

    target = data.get("target") or None
    if type_ == PropertyType.RELATION:
        if index is None:
            index = IndexType.VALUE
        extra |= PropertyFlags.INDEX_PARTIAL_SKIP_ZERO

    uid, uid_request = _parse_uid(data, where)
    return CandidateProperty(
        name=name,
        type=type_,
        is_id=bool(data.get("id", False)),
        index=index,
        unique=unique,
        extra_flags=extra,
        uid=uid,
        uid_request=uid_request,
        relation_target=target,
    )


def parse_relation(data: dict[str, Any], entity: str = "") -> CandidateRelation:
    """Parse a standalone relation declaration."""
    name = data.get("name", "")
    uid, uid_request = _parse_uid(data, f"relation '{entity}.{name}'")
    return CandidateRelation(
        name=name,
        target=data.get("target", ""),
        uid=uid,
        uid_request=uid_request,
    )


def parse_entity(data: dict[str, Any]) -> CandidateEntity:
    """Parse an entity declaration with its properties and relations."""
    name = data.get("name", "")
    uid, uid_request = _parse_uid(data, f"entity '{name}'")
    return CandidateEntity(
        name=name,
        properties=[parse_property(p, name) for p in data.get("properties") or []],
        relations=[parse_relation(r, name) for r in data.get("relations") or []],
        uid=uid,
        uid_request=uid_request,
    )


def parse_dict(data: dict[str, Any], source: str = "") -> CandidateModel:
    """Parse a complete candidate model from a dict."""
    if not isinstance(data, dict):
        raise ValueError(f"schema {source!r} must be a mapping with an 'entities' list")
    return CandidateModel(
        entities=[parse_entity(e) for e in data.get("entities") or []],
        source=source,
    )


def parse_yaml(yaml_str: str, source: str = "") -> CandidateModel:
    """Parse a candidate model from a YAML string."""
    data = yaml.safe_load(yaml_str)
    return parse_dict(data or {}, source)


def parse_json(json_str: str, source: str = "") -> CandidateModel:
    """Parse a candidate model from a JSON string."""
    data = json.loads(json_str)
    return parse_dict(data or {}, source)


def load(path: Union[str, Path]) -> CandidateModel:
    """Read a candidate model file; ".json" files are JSON, anything else YAML."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return parse_json(text, str(path))
    return parse_yaml(text, str(path))
