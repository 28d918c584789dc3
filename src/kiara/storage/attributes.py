"""
Built-in attributes, partitions and entity id layout.

Entity ids are tagged with their partition in the high bits so that the
partition of any entity can be read off in O(1), the same way value ids
carry their kind.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Value types
TYPE_REF = "db.type/ref"
TYPE_STRING = "db.type/string"
TYPE_LONG = "db.type/long"
TYPE_DOUBLE = "db.type/double"
TYPE_BOOLEAN = "db.type/boolean"

VALUE_TYPES = frozenset({TYPE_REF, TYPE_STRING, TYPE_LONG, TYPE_DOUBLE, TYPE_BOOLEAN})

CARDINALITY_ONE = "db.cardinality/one"
CARDINALITY_MANY = "db.cardinality/many"

UNIQUE_IDENTITY = "db.unique/identity"
UNIQUE_VALUE = "db.unique/value"

# Partitions
PART_DB = "db.part/db"
PART_TX = "db.part/tx"
PART_USER = "db.part/user"

BUILTIN_PARTITIONS = (PART_DB, PART_TX, PART_USER)

PARTITION_SHIFT = 42
SEQ_MASK = (1 << PARTITION_SHIFT) - 1

# First sequence number handed out in the db partition after the built-ins
FIRST_USER_SEQ = 100


def make_entity_id(partition_index: int, seq: int) -> int:
    return (partition_index << PARTITION_SHIFT) | (seq & SEQ_MASK)


def get_partition_index(eid: int) -> int:
    return eid >> PARTITION_SHIFT


def get_seq(eid: int) -> int:
    return eid & SEQ_MASK


def tx_entity_id(t: int) -> int:
    return make_entity_id(BUILTIN_PARTITIONS.index(PART_TX), t)


@dataclass(frozen=True)
class AttributeDef:
    """Resolved definition of an installed attribute."""
    eid: int
    ident: str
    value_type: str
    cardinality: str = CARDINALITY_ONE
    unique: Optional[str] = None
    is_component: bool = False

    @property
    def is_ref(self) -> bool:
        return self.value_type == TYPE_REF

    @property
    def is_many(self) -> bool:
        return self.cardinality == CARDINALITY_MANY

    @property
    def is_identity(self) -> bool:
        return self.unique == UNIQUE_IDENTITY

    @property
    def is_unique(self) -> bool:
        return self.unique is not None


IDENT_EID = 1
VALUE_TYPE_EID = 2
CARDINALITY_EID = 3
UNIQUE_EID = 4
IS_COMPONENT_EID = 5
PARTITION_EID = 7
TX_INSTANT_EID = 8

# Attributes every store is born with. Ids are fixed.
BUILTIN_ATTRIBUTES = (
    AttributeDef(1, "db/ident", TYPE_STRING, unique=UNIQUE_IDENTITY),
    AttributeDef(2, "db/valueType", TYPE_STRING),
    AttributeDef(3, "db/cardinality", TYPE_STRING),
    AttributeDef(4, "db/unique", TYPE_STRING),
    AttributeDef(5, "db/isComponent", TYPE_BOOLEAN),
    AttributeDef(6, "db/doc", TYPE_STRING),
    AttributeDef(7, "db.install/partition", TYPE_BOOLEAN),
    AttributeDef(8, "db/txInstant", TYPE_LONG),
)

# Built-in partition entities, in partition index order
BUILTIN_PARTITION_EIDS = {PART_DB: 9, PART_TX: 10, PART_USER: 11}

# Attributes whose values define the schema of an attribute entity
SCHEMA_ATTRIBUTES = ("db/valueType", "db/cardinality", "db/unique", "db/isComponent")
