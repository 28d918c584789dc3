"""
Schema definitions and schema inference.

Three fixed schemas are installed by the directory:

- SYSTEM_PARTITION_TX: the ``k/system`` partition, in every store
- SYSTEM_ATTRIBUTES: the graph directory and namespace table, in the
  system store only
- CORE_ATTRIBUTES: the ``k/rdf`` flag marking attributes that came from
  RDF predicates, in every store

RDF attributes are inferred per load: one attribute per distinct predicate,
typed from the shape of the objects seen for it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from kiara.errors import SchemaConflictError
from kiara.models import (
    Cardinality,
    ObjectValue,
    SchemaAttribute,
    Triple,
    ValueType,
    value_type_of,
)
from kiara.namespaces import PrefixResolver
from kiara.storage.attributes import PART_DB
from kiara.storage.backend import Connection, Snapshot
from kiara.storage.transactions import TempId, TxReport

logger = logging.getLogger(__name__)

SYSTEM_PARTITION = "k/system"

SYSTEM_PARTITION_TX = [
    {"db/id": TempId(PART_DB), "db/ident": SYSTEM_PARTITION, "db.install/partition": True},
]


def _attribute(ident: str, value_type: str, cardinality: str = "db.cardinality/one", **extra) -> dict:
    entity = {
        "db/id": TempId(PART_DB),
        "db/ident": ident,
        "db/valueType": value_type,
        "db/cardinality": cardinality,
    }
    entity.update(extra)
    return entity


CORE_ATTRIBUTES = [
    _attribute("k/rdf", "db.type/boolean", **{"db/doc": "Marks attributes that encode RDF predicates"}),
]

SYSTEM_ATTRIBUTES = [
    _attribute("sd/name", "db.type/string", **{"db/unique": "db.unique/identity"}),
    _attribute("k/db-name", "db.type/string", **{"db/unique": "db.unique/value"}),
    _attribute("rdf/type", "db.type/ref", "db.cardinality/many"),
    _attribute("k/default", "db.type/ref"),
    _attribute(
        "k/namespaces",
        "db.type/ref",
        "db.cardinality/many",
        **{"db/isComponent": True},
    ),
    _attribute("k/prefix", "db.type/string", **{"db/unique": "db.unique/value"}),
    _attribute("k/namespace", "db.type/string", **{"db/unique": "db.unique/value"}),
]

SYSTEM_IDENTS = [
    {"db/id": TempId(SYSTEM_PARTITION), "db/ident": "sd/NamedGraph"},
]


def install_core_schema(conn: Connection) -> None:
    """Install the system partition and core attributes. Idempotent."""
    conn.transact(SYSTEM_PARTITION_TX)
    conn.transact(CORE_ATTRIBUTES)


def install_system_schema(conn: Connection) -> None:
    """Install everything the system store needs. Idempotent."""
    install_core_schema(conn)
    conn.transact(SYSTEM_ATTRIBUTES)
    conn.transact(SYSTEM_IDENTS)


# =============================================================================
# Inference
# =============================================================================

def _merge_types(predicate: str, current: Optional[ValueType], observed: ValueType) -> ValueType:
    if current is None or current is observed:
        return observed
    if {current, observed} == {ValueType.LONG, ValueType.DOUBLE}:
        return ValueType.DOUBLE
    raise SchemaConflictError(
        f"Predicate {predicate} has objects of type {current.name} and {observed.name}",
        predicate=predicate,
        types=(current, observed),
    )


def infer_schema(triples: Iterable[Triple], resolver: PrefixResolver) -> List[SchemaAttribute]:
    """
    Infer one attribute per distinct predicate.

    Value types come from the object shapes; LONG and DOUBLE widen to DOUBLE,
    any other disagreement is a SchemaConflictError. A predicate is
    cardinality-many if some subject has more than one distinct object for it.
    """
    types: Dict[str, ValueType] = {}
    objects: Dict[tuple[str, str], Set[ObjectValue]] = defaultdict(set)

    for triple in triples:
        types[triple.predicate] = _merge_types(
            triple.predicate,
            types.get(triple.predicate),
            value_type_of(triple.object),
        )
        objects[(triple.subject, triple.predicate)].add(triple.object)

    many = {predicate for (_, predicate), objs in objects.items() if len(objs) > 1}
    return [
        SchemaAttribute(
            ident=resolver.ident_for(predicate),
            value_type=value_type,
            cardinality=Cardinality.MANY if predicate in many else Cardinality.ONE,
            iri=predicate,
        )
        for predicate, value_type in types.items()
    ]


def rdf_attributes(db: Snapshot) -> List[SchemaAttribute]:
    """Attributes in a store that encode RDF predicates."""
    flagged = set(db.find_entities("k/rdf", True))
    return [
        SchemaAttribute(
            ident=attr.ident,
            value_type=ValueType(attr.value_type),
            cardinality=Cardinality(attr.cardinality),
        )
        for attr in db.attributes()
        if attr.eid in flagged
    ]


def install_schema(conn: Connection, attributes: List[SchemaAttribute]) -> TxReport:
    """
    Install inferred attributes in a single transaction.

    Raises:
        SchemaConflictError: If an attribute already exists with a different
            type or cardinality
    """
    db = conn.db()
    for attribute in attributes:
        existing = db.attribute(attribute.ident)
        if existing is None:
            continue
        if (
            existing.value_type != attribute.value_type.value
            or existing.cardinality != attribute.cardinality.value
        ):
            raise SchemaConflictError(
                f"Attribute {attribute.ident} exists as {existing.value_type} "
                f"{existing.cardinality}, inferred {attribute.value_type.value} "
                f"{attribute.cardinality.value}",
                attribute=attribute.ident,
            )

    report = conn.transact([attribute.to_tx() for attribute in attributes])
    logger.info(f"Installed {len(attributes)} attributes into {conn.url}")
    return report
