"""
Kiara Storage Layer.

An in-process entity/attribute/value store with a polars-backed datom log,
dictionary-encoded literal values, conditional commits and optional Parquet
persistence.
"""

from kiara.storage.attributes import (
    AttributeDef,
    PART_DB,
    PART_TX,
    PART_USER,
)
from kiara.storage.values import ValueDict, ValueKind, ValueId
from kiara.storage.facts import FactLog, FACT_SCHEMA
from kiara.storage.transactions import (
    AtomicCheck,
    TempId,
    TxBuilder,
    TxReport,
)
from kiara.storage.persistence import StoragePersistence
from kiara.storage.backend import (
    Connection,
    EntityView,
    LocalBackend,
    Snapshot,
    configure_backend,
    get_default_backend,
)

__all__ = [
    "AttributeDef",
    "PART_DB",
    "PART_TX",
    "PART_USER",
    "ValueDict",
    "ValueKind",
    "ValueId",
    "FactLog",
    "FACT_SCHEMA",
    # Transactions
    "AtomicCheck",
    "TempId",
    "TxBuilder",
    "TxReport",
    # Persistence
    "StoragePersistence",
    # Backend
    "Connection",
    "EntityView",
    "LocalBackend",
    "Snapshot",
    "configure_backend",
    "get_default_backend",
]
