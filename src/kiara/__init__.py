"""
Kiara: RDF graphs stored in an entity/attribute/value database.

Each named graph lives in its own store; a system store records which
store holds which graph, along with the namespace prefix table used to
turn IRIs into attribute names.

Usage:
    from kiara import init, load_schema, load_ttl, get_triples

    kiara = init("kiara:mem://system")
    load_schema(kiara, data)
    load_ttl(kiara, data)
    triples = get_triples(kiara)
"""

from kiara.errors import (
    AllocationConflictError,
    BackendUnavailableError,
    ConfigValidationError,
    ConflictError,
    InconsistentDirectoryError,
    KiaraError,
    SchemaConflictError,
    StoreNotFoundError,
    TransactionError,
    UniquenessError,
    UnrecognizedSchemeError,
)
from kiara.models import (
    BooleanLiteral,
    Cardinality,
    GraphRecord,
    NumericLiteral,
    ObjectValue,
    Reference,
    SchemaAttribute,
    StringLiteral,
    Triple,
    ValueType,
)
from kiara.urls import graph_name, parse_storage_url, rewrite_db_name
from kiara.config import KiaraConfig
from kiara.storage import LocalBackend
from kiara.namespaces import allocate_prefix, known_prefixes, resolve_prefix, split_iri
from kiara.directory import find, generate_graph_url, get_default, get_or_create, list_graphs, lookup
from kiara.core import Kiara, create, get_triples, init, load_schema, load_ttl

__version__ = "0.1.0"

__all__ = [
    # Bootstrap
    "Kiara",
    "init",
    "create",
    "load_schema",
    "load_ttl",
    "get_triples",
    "KiaraConfig",
    "LocalBackend",
    # Directory
    "lookup",
    "find",
    "get_or_create",
    "get_default",
    "generate_graph_url",
    "list_graphs",
    # Namespaces and URLs
    "resolve_prefix",
    "allocate_prefix",
    "known_prefixes",
    "split_iri",
    "rewrite_db_name",
    "parse_storage_url",
    "graph_name",
    # Model
    "Triple",
    "Reference",
    "StringLiteral",
    "NumericLiteral",
    "BooleanLiteral",
    "ObjectValue",
    "ValueType",
    "Cardinality",
    "SchemaAttribute",
    "GraphRecord",
    # Errors
    "KiaraError",
    "UnrecognizedSchemeError",
    "BackendUnavailableError",
    "StoreNotFoundError",
    "TransactionError",
    "ConflictError",
    "UniquenessError",
    "AllocationConflictError",
    "InconsistentDirectoryError",
    "SchemaConflictError",
    "ConfigValidationError",
]
