"""
Core type definitions for the persisted model.

This module defines the elements of the model descriptor:
- Property: Named, typed field of an entity (a column)
- Relation: Standalone to-many relation from one entity to another
- Entity: Record type (a table) with its properties and relations

Invariants:
    - Names are labels; identifiers are canonical
    - Names compare case-insensitively (see normalize_name)
    - Property typing is a tagged union: index/unique/relation-target
      settings are only accepted where the property type allows them
    - Property.flags re-encodes exactly the integer that was loaded

How to change safely:
    - Never renumber PropertyType or PropertyFlags members; the codes are
      persisted and read by the database engine
    - Add new flag bits to PropertyFlags; unknown shape bits stay in
      Property.extra_flags so they survive a load/save cycle
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum, IntEnum, IntFlag
from typing import Any, Optional

from .errors import FormatError
from .iduid import IdUid


def normalize_name(name: str) -> str:
    """Return the form used when comparing entity/property names."""
    return name.lower()


class PropertyType(IntEnum):
    """Property types with their persisted codes."""

    BOOL = 1
    BYTE = 2
    SHORT = 3
    CHAR = 4
    INT = 5
    LONG = 6
    FLOAT = 7
    DOUBLE = 8
    STRING = 9
    DATE = 10  # Unix milliseconds stored as LONG
    RELATION = 11  # id of the target entity's object
    DATE_NANO = 12
    FLEX = 13
    BYTE_VECTOR = 23
    STRING_VECTOR = 30

    @classmethod
    def from_str(cls, value: str) -> PropertyType:
        """Convert a schema type name ("long", "byteVector", ...) to PropertyType.

        Raises:
            ValueError: If value is not a valid type name
        """
        key = value.replace("_", "").lower()
        for kind in cls:
            if kind.name.replace("_", "").lower() == key:
                return kind
        valid = [_camel(k.name) for k in cls]
        raise ValueError(f"Invalid property type '{value}'. Valid types: {valid}")

    @property
    def schema_name(self) -> str:
        return _camel(self.name)

    @property
    def storage_class(self) -> str:
        """Coarse storage representation; changing it reinterprets stored bytes."""
        return _STORAGE_CLASSES[self]


def _camel(name: str) -> str:
    head, *rest = name.lower().split("_")
    return head + "".join(part.capitalize() for part in rest)


_STORAGE_CLASSES = {
    PropertyType.BOOL: "integer",
    PropertyType.BYTE: "integer",
    PropertyType.SHORT: "integer",
    PropertyType.CHAR: "integer",
    PropertyType.INT: "integer",
    PropertyType.LONG: "integer",
    PropertyType.DATE: "integer",
    PropertyType.RELATION: "integer",
    PropertyType.DATE_NANO: "integer",
    PropertyType.FLOAT: "float",
    PropertyType.DOUBLE: "float",
    PropertyType.STRING: "string",
    PropertyType.FLEX: "flex",
    PropertyType.BYTE_VECTOR: "bytes",
    PropertyType.STRING_VECTOR: "strings",
}

# Types accepted for the id property (64-bit, unsigned-compatible)
ID_PROPERTY_TYPES = frozenset({PropertyType.LONG})


class PropertyFlags(IntFlag):
    """Property flag bits with their persisted values."""

    ID = 1
    NON_PRIMITIVE_TYPE = 2
    NOT_NULL = 4
    INDEXED = 8
    RESERVED = 16
    UNIQUE = 32
    ID_MONOTONIC_SEQUENCE = 64
    ID_SELF_ASSIGNABLE = 128
    INDEX_PARTIAL_SKIP_NULL = 256
    INDEX_PARTIAL_SKIP_ZERO = 512
    VIRTUAL = 1024
    INDEX_HASH = 2048
    INDEX_HASH64 = 4096
    UNSIGNED = 8192
    ID_COMPANION = 16384


# Bits owned by the typed fields of Property; everything else is extra_flags
_SHAPE_FLAGS = (
    PropertyFlags.ID
    | PropertyFlags.INDEXED
    | PropertyFlags.UNIQUE
    | PropertyFlags.INDEX_HASH
    | PropertyFlags.INDEX_HASH64
)


class IndexType(Enum):
    """Index variants; HASH and HASH64 index a hash of a string value."""

    VALUE = "value"
    HASH = "hash"
    HASH64 = "hash64"

    @property
    def flag(self) -> PropertyFlags:
        return _INDEX_FLAGS[self]


_INDEX_FLAGS = {
    IndexType.VALUE: PropertyFlags.INDEXED,
    IndexType.HASH: PropertyFlags.INDEX_HASH,
    IndexType.HASH64: PropertyFlags.INDEX_HASH64,
}


def decode_flags(flags: int) -> tuple[bool, Optional[IndexType], bool, PropertyFlags]:
    """Split persisted flag bits into (is_id, index, unique, extra_flags).

    Raises:
        FormatError: If both hash index bits are set
    """
    value = PropertyFlags(flags)
    hash32 = bool(value & PropertyFlags.INDEX_HASH)
    hash64 = bool(value & PropertyFlags.INDEX_HASH64)
    if hash32 and hash64:
        raise FormatError(f"flags {flags} combine hash and hash64 indexes", value=str(flags))

    index: Optional[IndexType] = None
    if hash32:
        index = IndexType.HASH
    elif hash64:
        index = IndexType.HASH64
    elif value & PropertyFlags.INDEXED:
        index = IndexType.VALUE

    # INDEXED next to a hash bit is not one of our shapes; keep it verbatim
    extra = int(value) & ~int(_SHAPE_FLAGS)
    if index in (IndexType.HASH, IndexType.HASH64) and value & PropertyFlags.INDEXED:
        extra |= PropertyFlags.INDEXED

    return (
        bool(value & PropertyFlags.ID),
        index,
        bool(value & PropertyFlags.UNIQUE),
        PropertyFlags(extra),
    )


def check_property_shape(
    name: str,
    type_: PropertyType,
    index: Optional[IndexType],
    unique: bool,
    relation_target: Optional[str],
) -> None:
    """Reject type/flag combinations the tagged property shape does not allow.

    Raises:
        ValueError: On an illegal combination
    """
    if unique and index is None:
        raise ValueError(f"Property '{name}': unique requires an index")
    if index in (IndexType.HASH, IndexType.HASH64) and type_ != PropertyType.STRING:
        raise ValueError(
            f"Property '{name}': {index.value} index is only supported on string properties"
        )
    if type_ == PropertyType.RELATION and not relation_target:
        raise ValueError(f"Property '{name}': relation property requires a relation target")
    if relation_target and type_ != PropertyType.RELATION:
        raise ValueError(
            f"Property '{name}': relation target set on {type_.schema_name} property"
        )


@dataclass(eq=False)
class Property:
    """A property as stored in the model.

    Attributes:
        name: Property name as declared in the schema
        id: Identifier; id is unique within the owning entity
        type: Persisted type code
        is_id: Whether this is the entity's id property
        index: Index variant, None if not indexed
        unique: Unique constraint (requires an index)
        extra_flags: Remaining flag bits, carried through unchanged
        index_id: Index identifier (index scope), set iff indexed
        relation_target: Target entity name for RELATION properties
    """

    name: str
    id: IdUid
    type: PropertyType
    is_id: bool = False
    index: Optional[IndexType] = None
    unique: bool = False
    extra_flags: PropertyFlags = PropertyFlags(0)
    index_id: Optional[IdUid] = None
    relation_target: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Property name cannot be empty")
        check_property_shape(self.name, self.type, self.index, self.unique, self.relation_target)

    @property
    def flags(self) -> int:
        value = self.extra_flags
        if self.is_id:
            value |= PropertyFlags.ID
        if self.index is not None:
            value |= self.index.flag
        if self.unique:
            value |= PropertyFlags.UNIQUE
        return int(value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted dictionary representation."""
        result: dict[str, Any] = {
            "id": str(self.id),
            "name": self.name,
        }
        if self.index_id is not None:
            result["indexId"] = str(self.index_id)
        result["type"] = int(self.type)
        if self.flags:
            result["flags"] = self.flags
        if self.relation_target:
            result["relationTarget"] = self.relation_target
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Property:
        """Create from the persisted dictionary representation.

        Raises:
            FormatError: On malformed identifiers, type codes or flags
        """
        name = _require(data, "name", "property")
        try:
            type_ = PropertyType(_require(data, "type", f"property '{name}'"))
        except ValueError as e:
            raise FormatError(f"property '{name}': unknown type {data.get('type')!r}") from e

        try:
            flags = int(data.get("flags", 0))
            if flags < 0:
                raise ValueError(flags)
            is_id, index, unique, extra = decode_flags(flags)
        except (TypeError, ValueError) as e:
            raise FormatError(
                f"property '{name}': invalid flags {data.get('flags')!r}", value=str(data.get("flags"))
            ) from e
        index_id = IdUid.parse(data["indexId"]) if data.get("indexId") else None

        try:
            return cls(
                name=name,
                id=IdUid.parse(_require(data, "id", f"property '{name}'")),
                type=type_,
                is_id=is_id,
                index=index,
                unique=unique,
                extra_flags=extra,
                index_id=index_id,
                relation_target=data.get("relationTarget") or None,
            )
        except ValueError as e:
            raise FormatError(str(e)) from e

    @property
    def uid(self) -> int:
        return self.id.uid


@dataclass(eq=False)
class Relation:
    """A standalone (to-many) relation owned by an entity.

    Attributes:
        name: Relation name
        id: Identifier; id is unique across all relations of the model
        target_id: Identifier of the target entity
    """

    name: str
    id: IdUid
    target_id: IdUid

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "targetId": str(self.target_id),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Relation:
        name = _require(data, "name", "relation")
        return cls(
            name=name,
            id=IdUid.parse(_require(data, "id", f"relation '{name}'")),
            target_id=IdUid.parse(_require(data, "targetId", f"relation '{name}'")),
        )

    @property
    def uid(self) -> int:
        return self.id.uid


@dataclass(eq=False)
class Entity:
    """An entity (record type) in the model.

    Attributes:
        name: Entity name; unique across the model after normalization
        id: Identifier; id is unique across all entities
        last_property_id: Highest property identifier ever assigned here,
            kept after the property is removed
        properties: Ordered properties
        relations: Ordered standalone relations
        currently_present: Transient marker set when a candidate matched this
            entity during the current run; never persisted
    """

    name: str
    id: IdUid
    last_property_id: IdUid = IdUid.NONE
    properties: list[Property] = dataclass_field(default_factory=list)
    relations: list[Relation] = dataclass_field(default_factory=list)
    currently_present: bool = False

    @property
    def uid(self) -> int:
        return self.id.uid

    def find_property_by_uid(self, uid: int) -> Optional[Property]:
        for prop in self.properties:
            if prop.uid == uid:
                return prop
        return None

    def find_property_by_name(self, name: str) -> Optional[Property]:
        key = normalize_name(name)
        for prop in self.properties:
            if normalize_name(prop.name) == key:
                return prop
        return None

    def find_relation_by_uid(self, uid: int) -> Optional[Relation]:
        for rel in self.relations:
            if rel.uid == uid:
                return rel
        return None

    def find_relation_by_name(self, name: str) -> Optional[Relation]:
        key = normalize_name(name)
        for rel in self.relations:
            if normalize_name(rel.name) == key:
                return rel
        return None

    def id_properties(self) -> list[Property]:
        """Get the properties flagged as the entity id."""
        return [p for p in self.properties if p.is_id]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted dictionary representation."""
        result: dict[str, Any] = {
            "id": str(self.id),
            "lastPropertyId": str(self.last_property_id),
            "name": self.name,
            "properties": [p.to_dict() for p in self.properties],
        }
        if self.relations:
            result["relations"] = [r.to_dict() for r in self.relations]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entity:
        """Create from the persisted dictionary representation."""
        name = _require(data, "name", "entity")
        try:
            return cls(
                name=name,
                id=IdUid.parse(_require(data, "id", f"entity '{name}'")),
                last_property_id=IdUid.parse_counter(data.get("lastPropertyId", "0:0")),
                properties=[Property.from_dict(p) for p in data.get("properties") or []],
                relations=[Relation.from_dict(r) for r in data.get("relations") or []],
            )
        except FormatError as e:
            raise FormatError(f"entity '{name}': {e.message}", value=e.value) from e

    def __repr__(self) -> str:
        return f"Entity(name={self.name!r}, id='{self.id}')"


def _require(data: dict[str, Any], key: str, where: str) -> Any:
    if not isinstance(data, dict):
        raise FormatError(f"{where}: expected an object, got {type(data).__name__}")
    if key not in data:
        raise FormatError(f"{where}: missing '{key}'")
    return data[key]
