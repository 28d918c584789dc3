"""
Core data model for Kiara.

Triples are transient: they are what the parser produces and what the
reader reconstructs. Their object position is a closed tagged variant
(ObjectValue) so that encoding and decoding can dispatch exhaustively.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from kiara.storage.attributes import PART_DB
from kiara.storage.transactions import TempId

if TYPE_CHECKING:
    from kiara.storage.backend import EntityView


BNODE_PREFIX = "_:"


class ValueType(str, Enum):
    """Storage value types an RDF attribute can take."""
    REF = "db.type/ref"
    STRING = "db.type/string"
    LONG = "db.type/long"
    DOUBLE = "db.type/double"
    BOOLEAN = "db.type/boolean"


class Cardinality(str, Enum):
    """Attribute cardinality."""
    ONE = "db.cardinality/one"
    MANY = "db.cardinality/many"


# =============================================================================
# Object values
# =============================================================================

@dataclass(frozen=True)
class Reference:
    """
    An object that names another resource (IRI or blank node).

    When produced by the reader, ``entity`` carries the dereferenced view of
    the target. It takes no part in equality.
    """
    iri: str
    entity: Optional["EntityView"] = field(default=None, compare=False, hash=False, repr=False)

    @property
    def is_blank(self) -> bool:
        return self.iri.startswith(BNODE_PREFIX)


@dataclass(frozen=True)
class StringLiteral:
    value: str


@dataclass(frozen=True)
class NumericLiteral:
    value: Union[int, float]

    @property
    def is_integral(self) -> bool:
        return isinstance(self.value, int)


@dataclass(frozen=True)
class BooleanLiteral:
    value: bool


ObjectValue = Union[Reference, StringLiteral, NumericLiteral, BooleanLiteral]


def value_type_of(obj: ObjectValue) -> ValueType:
    """Storage type implied by the shape of an object value."""
    if isinstance(obj, Reference):
        return ValueType.REF
    if isinstance(obj, StringLiteral):
        return ValueType.STRING
    if isinstance(obj, BooleanLiteral):
        return ValueType.BOOLEAN
    if isinstance(obj, NumericLiteral):
        return ValueType.LONG if obj.is_integral else ValueType.DOUBLE
    raise TypeError(f"Not an object value: {obj!r}")


def literal_value(obj: ObjectValue) -> Any:
    """The raw Python value stored for a literal object."""
    if isinstance(obj, (StringLiteral, NumericLiteral, BooleanLiteral)):
        return obj.value
    if isinstance(obj, Reference):
        raise TypeError(f"References have no literal value: {obj.iri}")
    raise TypeError(f"Not an object value: {obj!r}")


def literal_from_value(value_type: ValueType, value: Any) -> ObjectValue:
    """Rebuild a literal variant from a stored value."""
    if value_type is ValueType.STRING:
        return StringLiteral(value)
    if value_type is ValueType.LONG:
        return NumericLiteral(int(value))
    if value_type is ValueType.DOUBLE:
        return NumericLiteral(float(value))
    if value_type is ValueType.BOOLEAN:
        return BooleanLiteral(bool(value))
    raise TypeError(f"{value_type} is not a literal type")


@dataclass(frozen=True)
class Triple:
    """An RDF statement."""
    subject: str
    predicate: str
    object: ObjectValue

    def __iter__(self):
        return iter((self.subject, self.predicate, self.object))


# =============================================================================
# Directory records
# =============================================================================

@dataclass(frozen=True)
class SchemaAttribute:
    """An attribute inferred from the predicate/value shapes of a triple stream."""
    ident: str
    value_type: ValueType
    cardinality: Cardinality = Cardinality.ONE
    iri: Optional[str] = None

    def to_tx(self) -> Dict[str, Any]:
        """Entity map that installs this attribute."""
        return {
            "db/id": TempId(PART_DB),
            "db/ident": self.ident,
            "db/valueType": self.value_type.value,
            "db/cardinality": self.cardinality.value,
            "k/rdf": True,
        }


@dataclass(frozen=True)
class GraphRecord:
    """A named graph known to the system store."""
    name: str
    storage_url: str
    is_default: bool = False
    is_system: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "storage_url": self.storage_url,
            "is_default": self.is_default,
            "is_system": self.is_system,
        }
