"""
Bootstrap and file-level operations.

Usage:
    kiara = init("kiara:mem://system")
    load_ttl(kiara, Path("people.ttl"), graph_name="http://example.org/graphs#people")
    for triple in get_triples(kiara, "http://example.org/graphs#people"):
        print(triple)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from kiara.config import KiaraConfig
from kiara.directory import (
    NAMED_GRAPH,
    find,
    get_default,
    get_or_create,
    lookup,
)
from kiara.ingest import load_data
from kiara.ingest import load_schema as ingest_schema
from kiara.models import Triple
from kiara.namespaces import KIARA_NS, KIARA_PREFIX, known_prefixes
from kiara.parser import RdfSource, parse
from kiara.reader import read_triples
from kiara.schema import SYSTEM_PARTITION, install_core_schema, install_system_schema
from kiara.storage.backend import Connection, LocalBackend, get_default_backend
from kiara.storage.transactions import TempId
from kiara.urls import build_url, graph_name, join_root, rewrite_db_name

logger = logging.getLogger(__name__)


@dataclass
class Kiara:
    """Handle on an initialised system: the system store and the default graph."""
    system: Connection
    system_url: str
    default: Connection
    default_url: str

    @property
    def backend(self) -> LocalBackend:
        return self.system.backend


def initial_system_tx(system_url: str, default_url: str) -> list:
    """Records the system graph, its default graph and the ``k`` namespace."""
    return [
        {
            "db/id": TempId(SYSTEM_PARTITION),
            "rdf/type": NAMED_GRAPH,
            "sd/name": graph_name(system_url),
            "k/db-name": system_url,
            "k/namespaces": [{"k/prefix": KIARA_PREFIX, "k/namespace": KIARA_NS}],
            "k/default": {
                "db/id": TempId(SYSTEM_PARTITION),
                "rdf/type": NAMED_GRAPH,
                "sd/name": graph_name(default_url),
                "k/db-name": default_url,
            },
        }
    ]


def init(
    system_url: str,
    default_url: Optional[str] = None,
    backend: Optional[LocalBackend] = None,
) -> Kiara:
    """
    Open (creating if needed) the system store and the default graph.

    An existing system keeps the default graph it was first initialised
    with; ``default_url`` only applies to a new one.
    """
    backend = backend or get_default_backend()
    if default_url is None:
        default_url = rewrite_db_name(system_url, KiaraConfig().default_graph_name)

    if backend.create_store(system_url):
        logger.info(f"Initialising new system store {system_url}")
    system = backend.connect(system_url)
    install_system_schema(system)

    established = get_default(system, default_url)
    default = backend.connect(established)
    install_core_schema(default)

    if lookup(system, graph_name(system_url)) is None:
        system.transact(initial_system_tx(system_url, established))
        logger.info(f"Recorded system {system_url} with default graph {established}")

    return Kiara(system=system, system_url=system_url, default=default, default_url=established)


def create(
    protocol: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    system: Optional[str] = None,
    *,
    root: Optional[str] = None,
    config: Optional[KiaraConfig] = None,
    backend: Optional[LocalBackend] = None,
) -> Kiara:
    """
    Initialise from connection parameters.

    Builds ``protocol://host[:port]/system``, or ``root/system`` when a root
    URL is given. Unset parameters come from ``config`` (by default the
    environment).
    """
    config = config or KiaraConfig.from_env()
    config = config.with_overrides(protocol=protocol, host=host, port=port, system_name=system)
    config.validate_or_raise()

    if root:
        system_url = join_root(root, config.system_name)
    else:
        system_url = build_url(config.protocol, config.host, config.port, config.system_name)
    default_url = rewrite_db_name(system_url, config.default_graph_name)

    if backend is None:
        backend = LocalBackend(config.data_dir) if config.data_dir else get_default_backend()
    return init(system_url, default_url, backend=backend)


def _graph(kiara: Kiara, graph_name: Optional[str]) -> Connection:
    return get_or_create(kiara, graph_name) if graph_name else kiara.default


def load_schema(
    kiara: Kiara,
    source: RdfSource,
    graph_name: Optional[str] = None,
    format: Optional[str] = None,
) -> Kiara:
    """Install the schema inferred from an RDF document."""
    graph = _graph(kiara, graph_name)
    parsed = parse(source, format=format)
    ingest_schema(graph, kiara.system, parsed.triples())
    return kiara


def load_ttl(
    kiara: Kiara,
    source: RdfSource,
    graph_name: Optional[str] = None,
    format: Optional[str] = None,
) -> Kiara:
    """Load an RDF document's triples; its schema must be installed already."""
    graph = _graph(kiara, graph_name)
    parsed = parse(source, format=format)
    load_data(graph, kiara.system, parsed.triples(), known_prefixes(kiara.system))
    return kiara


def get_triples(kiara: Kiara, graph_name: Optional[str] = None) -> Optional[List[Triple]]:
    """Triples of a graph (default graph when unnamed), or None if unknown."""
    graph = find(kiara, graph_name)
    if graph is None:
        return None
    return read_triples(graph, known_prefixes(kiara.system))
