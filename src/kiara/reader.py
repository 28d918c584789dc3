"""Reconstruct RDF triples from a graph store."""

from __future__ import annotations

import logging
from typing import Dict, List

import polars as pl

from kiara.models import ObjectValue, Reference, Triple, ValueType, literal_from_value
from kiara.namespaces import PrefixResolver
from kiara.storage.attributes import AttributeDef
from kiara.storage.backend import Connection, Snapshot

logger = logging.getLogger(__name__)


def _decode_object(db: Snapshot, attr: AttributeDef, v: int, resolver: PrefixResolver) -> ObjectValue:
    value_type = ValueType(attr.value_type)
    if value_type is ValueType.REF:
        entity = db.entity(v)
        ident = entity.ident
        iri = resolver.iri_for(ident) if ident is not None else f"_:e{v}"
        return Reference(iri, entity=entity)
    return literal_from_value(value_type, db.decode(attr, v))


def read_triples(graph: Connection, namespace_table: Dict[str, str]) -> List[Triple]:
    """
    All RDF statements currently in ``graph``.

    Only facts on ``k/rdf`` attributes whose subject has an ident are RDF
    statements; everything else in the store is bookkeeping.
    """
    db = graph.db()
    resolver = PrefixResolver(namespace_table=namespace_table)
    rdf_attrs = db.find_entities("k/rdf", True)
    if not rdf_attrs:
        return []

    facts = db.facts.filter(pl.col("a").is_in(rdf_attrs)).sort(["e", "a", "v"])
    triples: List[Triple] = []
    for e, a, v in facts.select(["e", "a", "v"]).iter_rows():
        subject = db.ident(e)
        if subject is None:
            continue
        attr = db.attribute(a)
        triples.append(
            Triple(
                resolver.iri_for(subject),
                resolver.iri_for(attr.ident),
                _decode_object(db, attr, v, resolver),
            )
        )

    logger.debug(f"Read {len(triples)} triples from {graph.url}")
    return triples
