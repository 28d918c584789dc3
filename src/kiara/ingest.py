"""
Triple ingestion.

Subjects and reference objects become entities identified by their
qualified name (``db/ident``), so loading the same resource twice upserts
onto one entity. Predicates must already be installed as attributes
(see ``load_schema``); each triple becomes one assertion.

A load is a single transaction. Every triple is encoded and checked against
the installed schema before the commit, so a failing load leaves the store
untouched.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from kiara.errors import SchemaConflictError
from kiara.models import (
    ObjectValue,
    Reference,
    SchemaAttribute,
    Triple,
    ValueType,
    literal_value,
    value_type_of,
)
from kiara.namespaces import PrefixResolver
from kiara.schema import infer_schema, install_schema
from kiara.storage.attributes import PART_USER, AttributeDef
from kiara.storage.backend import Connection, Snapshot
from kiara.storage.transactions import DB_ADD, TempId, TxReport

logger = logging.getLogger(__name__)


class TripleEncoder:
    """Builds transaction data for a batch of triples against one snapshot."""

    def __init__(self, db: Snapshot, resolver: PrefixResolver):
        self._db = db
        self._resolver = resolver
        self._entities: Dict[str, TempId] = {}
        self.tx_data: List[Any] = []

    def entity_for(self, iri: str) -> TempId:
        ident = self._resolver.ident_for(iri)
        tempid = self._entities.get(ident)
        if tempid is None:
            tempid = TempId(PART_USER)
            self._entities[ident] = tempid
            self.tx_data.append({"db/id": tempid, "db/ident": ident})
        return tempid

    def _attribute_for(self, predicate: str) -> AttributeDef:
        ident = self._resolver.ident_for(predicate)
        attr = self._db.attribute(ident)
        if attr is None:
            raise SchemaConflictError(
                f"No attribute installed for predicate {predicate} ({ident})",
                predicate=predicate,
            )
        return attr

    def _encode_object(self, attr: AttributeDef, triple: Triple) -> Any:
        obj: ObjectValue = triple.object
        expected = ValueType(attr.value_type)
        observed = value_type_of(obj)

        if expected is ValueType.REF and isinstance(obj, Reference):
            return self.entity_for(obj.iri)
        if observed is expected:
            return literal_value(obj)
        if expected is ValueType.DOUBLE and observed is ValueType.LONG:
            return float(literal_value(obj))
        raise SchemaConflictError(
            f"Object of {triple.subject} {triple.predicate} is {observed.name}, "
            f"attribute {attr.ident} is {expected.name}",
            predicate=triple.predicate,
            attribute=attr.ident,
        )

    def add(self, triple: Triple) -> None:
        attr = self._attribute_for(triple.predicate)
        value = self._encode_object(attr, triple)
        subject = self.entity_for(triple.subject)
        self.tx_data.append([DB_ADD, subject, attr.ident, value])


def load_schema(graph: Connection, system: Connection, triples: Iterable[Triple]) -> List[SchemaAttribute]:
    """Infer attributes from a triple stream and install them into ``graph``."""
    resolver = PrefixResolver(system)
    attributes = infer_schema(triples, resolver)
    if attributes:
        install_schema(graph, attributes)
    return attributes


def load_data(
    graph: Connection,
    system: Connection,
    triples: Iterable[Triple],
    namespace_table: Optional[Dict[str, str]] = None,
) -> TxReport:
    """
    Encode triples and commit them to ``graph`` in one transaction.

    Raises:
        SchemaConflictError: If a predicate has no attribute or an object
            does not fit its attribute's type. Nothing is committed.
    """
    resolver = PrefixResolver(system, namespace_table)
    encoder = TripleEncoder(graph.db(), resolver)
    count = 0
    for triple in triples:
        encoder.add(triple)
        count += 1

    report = graph.transact(encoder.tx_data)
    logger.info(f"Loaded {count} triples into {graph.url} at t={report.t}")
    return report
