"""
Graph directory.

The system store maps graph IRIs (``sd/name``) to the storage URL of the
store holding each graph (``k/db-name``). Graph stores are siblings of the
system store: same backend, host and bucket, with the database name
``<prefix>-<local>`` derived from the graph IRI.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional
from urllib.parse import quote

from kiara.errors import ConflictError, InconsistentDirectoryError, KiaraError, StoreNotFoundError
from kiara.models import GraphRecord
from kiara.namespaces import allocate_prefix, split_iri
from kiara.schema import SYSTEM_PARTITION, install_core_schema
from kiara.storage.backend import Connection, Snapshot
from kiara.storage.transactions import AtomicCheck, TempId
from kiara.urls import rewrite_db_name

if TYPE_CHECKING:
    from kiara.core import Kiara

logger = logging.getLogger(__name__)

NAMED_GRAPH = "sd/NamedGraph"


def _lookup(db: Snapshot, graph_iri: str) -> Optional[str]:
    entities = db.find_entities("sd/name", graph_iri)
    if not entities:
        return None
    return db.value_of(entities[0], "k/db-name")


def lookup(system: Connection, graph_iri: str) -> Optional[str]:
    """Storage URL recorded for a graph, or None."""
    return _lookup(system.db(), graph_iri)


def generate_graph_url(kiara: "Kiara", graph_iri: str) -> str:
    """
    Sibling URL of the system store for a graph: ``<prefix>-<local>``.

    The local name is percent-encoded so query characters cannot leak into
    the storage URL.
    """
    try:
        namespace, local = split_iri(graph_iri)
    except ValueError as e:
        raise KiaraError(f"Cannot name a store for graph {graph_iri}: {e}", graph=graph_iri) from e
    prefix = allocate_prefix(kiara.system, namespace)
    return rewrite_db_name(kiara.system_url, f"{prefix}-{quote(local, safe='')}")


def graph_record_tx(graph_iri: str, url: str) -> dict:
    return {
        "db/id": TempId(SYSTEM_PARTITION),
        "rdf/type": NAMED_GRAPH,
        "sd/name": graph_iri,
        "k/db-name": url,
    }


def get_or_create(kiara: "Kiara", graph_iri: str) -> Connection:
    """
    Connection to the store for a graph, creating and recording it if needed.

    Recording is conditional on the directory not having changed since the
    lookup missed. If it has, the lookup is repeated and the graph recorded
    by another writer is used, so every caller ends up on one store.
    """
    backend = kiara.backend
    established = lookup(kiara.system, graph_iri)
    if established is not None:
        backend.create_store(established)
        return backend.connect(established)

    url = generate_graph_url(kiara, graph_iri)
    if backend.create_store(url):
        logger.info(f"Created store {url} for graph {graph_iri}")
    conn = backend.connect(url)
    install_core_schema(conn)

    while True:
        db = kiara.system.db()
        recorded = _lookup(db, graph_iri)
        if recorded is not None:
            return conn if recorded == url else backend.connect(recorded)
        try:
            kiara.system.transact([AtomicCheck(db.basis_t), graph_record_tx(graph_iri, url)])
        except ConflictError as e:
            logger.debug(f"Directory changed while recording {graph_iri}, retrying: {e}")
            continue
        logger.info(f"Registered graph {graph_iri} at {url}")
        return conn


def default_graph_url(db: Snapshot) -> Optional[str]:
    rows = db.datoms(a="k/default")
    if rows.height == 0:
        return None
    if rows.height > 1:
        logger.warning(f"System store {db.url} records {rows.height} default graphs")
    return db.value_of(rows.get_column("v")[0], "k/db-name")


def get_default(system: Connection, fallback_url: str) -> str:
    """
    URL of the established default graph, or ``fallback_url`` if none is
    recorded yet. The store at the returned URL is created if missing.
    """
    url = default_graph_url(system.db()) or fallback_url
    system.backend.create_store(url)
    return url


def find(kiara: "Kiara", graph_iri: Optional[str]) -> Optional[Connection]:
    """
    Connection for a named graph; the default graph when no name is given.

    Raises:
        InconsistentDirectoryError: If the graph is recorded but its store
            cannot be connected to
    """
    if not graph_iri:
        return kiara.default
    url = lookup(kiara.system, graph_iri)
    if url is None:
        return None
    try:
        return kiara.backend.connect(url)
    except StoreNotFoundError as e:
        raise InconsistentDirectoryError(graph_iri, url) from e


def list_graphs(system: Connection) -> List[GraphRecord]:
    """Every graph recorded in the system store, ordered by name."""
    db = system.db()
    names = db.attribute_values("sd/name")
    urls = db.attribute_values("k/db-name")
    if names.height == 0:
        return []

    defaults = db.datoms(a="k/default")
    system_eids = set(defaults.get_column("e").to_list())
    default_eids = set(defaults.get_column("v").to_list())

    joined = names.join(urls, on="e", suffix="_url").sort("value")
    return [
        GraphRecord(
            name=name,
            storage_url=url,
            is_default=e in default_eids,
            is_system=e in system_eids,
        )
        for e, name, url in joined.select(["e", "value", "value_url"]).iter_rows()
    ]
