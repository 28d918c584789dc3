"""
In-process entity/attribute/value store.

LocalBackend hosts any number of stores keyed by storage URL. Each store
supports ACID multi-datom commits (serialised per store), point-in-time
snapshots and entity dereferencing, plus the conditional-commit check
(AtomicCheck) the prefix allocator relies on.

Usage:
    backend = LocalBackend()
    backend.create_store("kiara:mem://example")
    conn = backend.connect("kiara:mem://example")

    report = conn.transact([{"db/ident": "ex/thing"}])
    db = conn.db()
    db.entity(db.entid("ex/thing"))

With ``data_dir`` set, every commit is written to Parquet before it becomes
visible, and stores are reloaded from disk on first use.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterator, List, Optional, Set, Union

import polars as pl

from kiara.errors import BackendUnavailableError, StoreNotFoundError
from kiara.storage.attributes import (
    BUILTIN_ATTRIBUTES,
    BUILTIN_PARTITION_EIDS,
    CARDINALITY_EID,
    CARDINALITY_ONE,
    FIRST_USER_SEQ,
    IDENT_EID,
    IS_COMPONENT_EID,
    PART_DB,
    PART_TX,
    PARTITION_EID,
    TYPE_BOOLEAN,
    TYPE_DOUBLE,
    TYPE_LONG,
    TYPE_STRING,
    UNIQUE_EID,
    VALUE_TYPE_EID,
    AttributeDef,
    get_seq,
    make_entity_id,
)
from kiara.storage.facts import Datom, FactLog, current_view, datoms_to_frame
from kiara.storage.persistence import StoragePersistence
from kiara.storage.transactions import TxBuilder, TxReport, LITERAL_KINDS
from kiara.storage.values import ValueDict
from kiara.urls import parse_storage_url

logger = logging.getLogger(__name__)

AttrRef = Union[str, int]

_POLARS_TYPES = {
    TYPE_STRING: pl.Utf8,
    TYPE_LONG: pl.Int64,
    TYPE_DOUBLE: pl.Float64,
    TYPE_BOOLEAN: pl.Boolean,
}


# =============================================================================
# Snapshots
# =============================================================================

class Snapshot:
    """
    Immutable view of a store as of transaction ``basis_t``.

    All indexes are built lazily from the datom frame on first use.
    """

    def __init__(self, url: str, log: pl.DataFrame, basis_t: int, values: ValueDict):
        self._url = url
        self._log = log
        self._t = basis_t
        self._values = values

        self._facts: Optional[pl.DataFrame] = None
        self._eavt: Optional[Dict[tuple[int, int], Set[int]]] = None
        self._ident_by_eid: Optional[Dict[int, str]] = None
        self._eid_by_ident: Optional[Dict[str, int]] = None
        self._attrs_by_eid: Optional[Dict[int, AttributeDef]] = None
        self._attrs_by_ident: Optional[Dict[str, AttributeDef]] = None
        self._partitions: Optional[List[str]] = None
        self._holders: Dict[int, Dict[int, int]] = {}

    @property
    def url(self) -> str:
        return self._url

    @property
    def basis_t(self) -> int:
        """Number of the last transaction visible in this snapshot."""
        return self._t

    @property
    def facts(self) -> pl.DataFrame:
        """Current datoms: columns e, a, v, tx."""
        if self._facts is None:
            self._facts = current_view(self._log, self._t)
        return self._facts

    def as_of(self, t: int) -> "Snapshot":
        """An earlier view of the same store."""
        if t > self._t:
            raise ValueError(f"Cannot read t={t} from a snapshot at t={self._t}")
        return Snapshot(self._url, self._log, t, self._values)

    def __repr__(self) -> str:
        return f"Snapshot({self._url!r}, t={self._t})"

    # -------------------------------------------------------------------------
    # Indexes
    # -------------------------------------------------------------------------

    def _load_idents(self) -> None:
        rows = self.facts.filter(pl.col("a") == IDENT_EID).select(["e", "v"]).iter_rows()
        self._ident_by_eid = {e: self._values.get(v) for e, v in rows}
        self._eid_by_ident = {ident: e for e, ident in self._ident_by_eid.items()}

    def _load_attributes(self) -> None:
        schema_attrs = [IDENT_EID, VALUE_TYPE_EID, CARDINALITY_EID, UNIQUE_EID, IS_COMPONENT_EID]
        rows = self.facts.filter(pl.col("a").is_in(schema_attrs)).select(["e", "a", "v"])
        props: Dict[int, Dict[int, Any]] = {}
        for e, a, v in rows.iter_rows():
            props.setdefault(e, {})[a] = self._values.get(v)

        self._attrs_by_eid = {}
        for e, p in props.items():
            if VALUE_TYPE_EID not in p or IDENT_EID not in p:
                continue
            self._attrs_by_eid[e] = AttributeDef(
                eid=e,
                ident=p[IDENT_EID],
                value_type=p[VALUE_TYPE_EID],
                cardinality=p.get(CARDINALITY_EID, CARDINALITY_ONE),
                unique=p.get(UNIQUE_EID),
                is_component=bool(p.get(IS_COMPONENT_EID, False)),
            )
        self._attrs_by_ident = {a.ident: a for a in self._attrs_by_eid.values()}

    def _index(self) -> Dict[tuple[int, int], Set[int]]:
        if self._eavt is None:
            eavt: Dict[tuple[int, int], Set[int]] = {}
            for e, a, v in self.facts.select(["e", "a", "v"]).iter_rows():
                eavt.setdefault((e, a), set()).add(v)
            self._eavt = eavt
        return self._eavt

    # -------------------------------------------------------------------------
    # Idents, attributes, partitions
    # -------------------------------------------------------------------------

    def entid(self, ident: str) -> Optional[int]:
        if self._eid_by_ident is None:
            self._load_idents()
        return self._eid_by_ident.get(ident)

    def ident(self, eid: int) -> Optional[str]:
        if self._ident_by_eid is None:
            self._load_idents()
        return self._ident_by_eid.get(eid)

    def attribute(self, ref: AttrRef) -> Optional[AttributeDef]:
        """Definition of an installed attribute, by ident or entity id."""
        if self._attrs_by_eid is None:
            self._load_attributes()
        if isinstance(ref, str):
            return self._attrs_by_ident.get(ref)
        return self._attrs_by_eid.get(ref)

    def attributes(self) -> List[AttributeDef]:
        if self._attrs_by_eid is None:
            self._load_attributes()
        return sorted(self._attrs_by_eid.values(), key=lambda a: a.eid)

    def partitions(self) -> List[str]:
        """Installed partitions, in partition-index order."""
        if self._partitions is None:
            eids = (
                self.facts.filter(pl.col("a") == PARTITION_EID)
                .sort("e")
                .get_column("e")
                .to_list()
            )
            self._partitions = [self.ident(e) for e in eids]
        return self._partitions

    def partition_index(self, partition: str) -> Optional[int]:
        try:
            return self.partitions().index(partition)
        except ValueError:
            return None

    # -------------------------------------------------------------------------
    # Value encoding
    # -------------------------------------------------------------------------

    def encode(self, attr: AttributeDef, value: Any) -> Optional[int]:
        """Stored form of a value, or None if it has never been stored."""
        if attr.is_ref:
            if isinstance(value, EntityView):
                return value.eid
            if isinstance(value, str):
                return self.entid(value)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
            return None
        kind = LITERAL_KINDS[attr.value_type]
        try:
            return self._values.lookup(value, kind)
        except (TypeError, ValueError):
            return None

    def decode(self, attr: AttributeDef, v: int) -> Any:
        return v if attr.is_ref else self._values.get(v)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def datoms(
        self,
        e: Optional[int] = None,
        a: Optional[AttrRef] = None,
        v: Any = None,
    ) -> pl.DataFrame:
        """
        Current datoms matching a pattern.

        ``v`` is given in its Python form and requires ``a``.
        """
        df = self.facts
        if e is not None:
            df = df.filter(pl.col("e") == e)
        if a is not None:
            attr = self.attribute(a)
            if attr is None:
                return df.clear()
            df = df.filter(pl.col("a") == attr.eid)
            if v is not None:
                encoded = self.encode(attr, v)
                if encoded is None:
                    return df.clear()
                df = df.filter(pl.col("v") == encoded)
        elif v is not None:
            raise ValueError("Filtering on a value requires an attribute")
        return df

    def attribute_values(self, a: AttrRef) -> pl.DataFrame:
        """Decoded (e, value) pairs for one attribute."""
        attr = self.attribute(a)
        if attr is None:
            return pl.DataFrame(schema={"e": pl.Int64, "value": pl.Null})
        rows = self.datoms(a=attr.eid)
        if attr.is_ref:
            return rows.select(["e", pl.col("v").alias("value")])
        return pl.DataFrame(
            {
                "e": rows.get_column("e"),
                "value": pl.Series(
                    "value",
                    [self._values.get(v) for v in rows.get_column("v").to_list()],
                    dtype=_POLARS_TYPES[attr.value_type],
                ),
            }
        )

    def current_values(self, e: int, attr: AttributeDef) -> Set[int]:
        return self._index().get((e, attr.eid), set())

    def holder_of(self, attr: AttributeDef, v: int) -> Optional[int]:
        """Entity currently holding stored value ``v`` for ``attr``."""
        holders = self._holders.get(attr.eid)
        if holders is None:
            rows = self.facts.filter(pl.col("a") == attr.eid).select(["v", "e"]).iter_rows()
            holders = dict(rows)
            self._holders[attr.eid] = holders
        return holders.get(v)

    def lookup_unique(self, attr: AttributeDef, value: Any) -> Optional[int]:
        encoded = self.encode(attr, value)
        return None if encoded is None else self.holder_of(attr, encoded)

    def value_of(self, e: int, a: AttrRef) -> Any:
        """Decoded value of an attribute on an entity (a set when many)."""
        attr = self.attribute(a)
        if attr is None:
            return None
        stored = self.current_values(e, attr)
        if attr.is_many:
            return {self.decode(attr, v) for v in stored}
        return self.decode(attr, next(iter(stored))) if stored else None

    def find_entities(self, a: AttrRef, value: Any) -> List[int]:
        return self.datoms(a=a, v=value).get_column("e").to_list()

    def entity(self, eid: int) -> "EntityView":
        return EntityView(self, eid)


# =============================================================================
# Entities
# =============================================================================

class EntityView(Mapping):
    """
    Lazy, read-only view of one entity in a snapshot.

    Reference attributes come back as nested EntityViews; cardinality-many
    attributes as frozensets.
    """

    def __init__(self, db: Snapshot, eid: int):
        self._db = db
        self._eid = eid
        self._attrs: Optional[Dict[str, Any]] = None

    @property
    def eid(self) -> int:
        return self._eid

    @property
    def db(self) -> Snapshot:
        return self._db

    @property
    def ident(self) -> Optional[str]:
        return self._db.ident(self._eid)

    def _load(self) -> Dict[str, Any]:
        if self._attrs is None:
            attrs: Dict[str, Any] = {}
            rows = self._db.datoms(e=self._eid).select(["a", "v"]).iter_rows()
            for a, v in rows:
                attr = self._db.attribute(a)
                if attr is None:
                    continue
                value = EntityView(self._db, v) if attr.is_ref else self._db.decode(attr, v)
                if attr.is_many:
                    attrs.setdefault(attr.ident, set()).add(value)
                else:
                    attrs[attr.ident] = value
            self._attrs = {k: frozenset(v) if isinstance(v, set) else v for k, v in attrs.items()}
        return self._attrs

    def __getitem__(self, key: str) -> Any:
        return self._load()[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._load())

    def __len__(self) -> int:
        return len(self._load())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EntityView):
            return NotImplemented
        return self._eid == other._eid and self._db.url == other._db.url

    def __hash__(self) -> int:
        return hash((self._db.url, self._eid))

    def __repr__(self) -> str:
        return f"EntityView({self.ident or self._eid})"


# =============================================================================
# Stores and connections
# =============================================================================

def _genesis_datoms(values: ValueDict) -> List[Datom]:
    """Datoms every store is born with, at t=0."""
    datoms: List[Datom] = []
    for attr in BUILTIN_ATTRIBUTES:
        datoms.append((attr.eid, IDENT_EID, values.intern(attr.ident), 0, True))
        datoms.append((attr.eid, VALUE_TYPE_EID, values.intern(attr.value_type), 0, True))
        datoms.append((attr.eid, CARDINALITY_EID, values.intern(attr.cardinality), 0, True))
        if attr.unique:
            datoms.append((attr.eid, UNIQUE_EID, values.intern(attr.unique), 0, True))
    for partition, eid in BUILTIN_PARTITION_EIDS.items():
        datoms.append((eid, IDENT_EID, values.intern(partition), 0, True))
        datoms.append((eid, PARTITION_EID, values.intern(True), 0, True))
    return datoms


class _Store:
    """State of one hosted store. Commits are serialised by ``lock``."""

    def __init__(self, url: str, facts: pl.DataFrame, values: ValueDict):
        self.url = url
        self.log = FactLog(facts)
        self.values = values
        self.lock = RLock()
        self._snapshot: Optional[Snapshot] = None
        self.next_seq = self._derive_next_seq()

    @classmethod
    def genesis(cls, url: str) -> "_Store":
        values = ValueDict()
        return cls(url, datoms_to_frame(_genesis_datoms(values)), values)

    def _derive_next_seq(self) -> Dict[int, int]:
        db = self.snapshot()
        next_seq: Dict[int, int] = {}
        for index, partition in enumerate(db.partitions()):
            if partition == PART_TX:
                continue
            top = self.log.max_entity_seq(make_entity_id(index, 0), make_entity_id(index + 1, 0))
            seq = get_seq(top) + 1 if top is not None else 1
            if partition == PART_DB:
                seq = max(seq, FIRST_USER_SEQ)
            next_seq[index] = seq
        return next_seq

    def snapshot(self) -> Snapshot:
        with self.lock:
            if self._snapshot is None:
                self._snapshot = Snapshot(self.url, self.log.df, self.log.basis_t(), self.values)
            return self._snapshot

    def commit(self, df: pl.DataFrame, next_seq: Dict[int, int]) -> None:
        with self.lock:
            self.log.replace(df)
            self.next_seq = next_seq
            self._snapshot = None


class Connection:
    """Handle on one store."""

    def __init__(self, backend: "LocalBackend", store: _Store):
        self._backend = backend
        self._store = store

    @property
    def url(self) -> str:
        return self._store.url

    @property
    def backend(self) -> "LocalBackend":
        return self._backend

    def db(self) -> Snapshot:
        """The current snapshot."""
        self._backend._check_open()
        return self._store.snapshot()

    def transact(self, tx_data: List[Any]) -> TxReport:
        """
        Commit transaction data atomically.

        Raises:
            ConflictError: An AtomicCheck in tx_data is stale
            UniquenessError: A unique value is held by another entity
            SchemaConflictError: An installed attribute would change
            TransactionError: The data is otherwise invalid
            BackendUnavailableError: The commit could not be persisted
        """
        self._backend._check_open()
        store = self._store
        with store.lock:
            db_before = store.snapshot()
            builder = TxBuilder(db_before, store.values, store.next_seq)
            prepared = builder.build(tx_data, db_before.basis_t + 1)
            new_log = store.log.appended(prepared.datoms)
            self._backend._save(store.url, new_log, store.values)
            store.commit(new_log, prepared.next_seq)
            db_after = store.snapshot()
        return TxReport(
            db_before=db_before,
            db_after=db_after,
            tempids=prepared.tempids,
            tx_data=datoms_to_frame(prepared.datoms),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Connection):
            return NotImplemented
        return self._store is other._store

    def __hash__(self) -> int:
        return hash(self._store.url)

    def __repr__(self) -> str:
        return f"Connection({self.url!r})"


class LocalBackend:
    """
    Hosts stores in this process, optionally persisted to ``data_dir``.

    Any URL the URL rewriter recognises can name a store; the scheme only
    decides how sibling URLs are derived.
    """

    def __init__(self, data_dir: Optional[str | Path] = None):
        self._stores: Dict[str, _Store] = {}
        self._lock = RLock()
        self._closed = False
        self._persistence = StoragePersistence(data_dir) if data_dir else None

    def _check_open(self) -> None:
        if self._closed:
            raise BackendUnavailableError("Backend is closed")

    def _save(self, url: str, facts: pl.DataFrame, values: ValueDict) -> None:
        if self._persistence is not None:
            self._persistence.save(url, facts, values)

    def _load(self, url: str) -> Optional[_Store]:
        if self._persistence is None:
            return None
        loaded = self._persistence.load(url)
        if loaded is None:
            return None
        facts, values = loaded
        store = _Store(url, facts, values)
        self._stores[url] = store
        return store

    def create_store(self, url: str) -> bool:
        """
        Create a store at ``url``.

        Returns:
            True if a new store was created, False if one already existed
        """
        parse_storage_url(url)
        with self._lock:
            self._check_open()
            if url in self._stores or self._load(url) is not None:
                return False
            store = _Store.genesis(url)
            self._save(url, store.log.df, store.values)
            self._stores[url] = store
        logger.info(f"Created store {url}")
        return True

    def connect(self, url: str) -> Connection:
        """
        Connect to an existing store.

        Raises:
            StoreNotFoundError: If no store exists at ``url``
        """
        with self._lock:
            self._check_open()
            store = self._stores.get(url) or self._load(url)
            if store is None:
                raise StoreNotFoundError(url)
        return Connection(self, store)

    def store_exists(self, url: str) -> bool:
        with self._lock:
            return url in self._stores or (
                self._persistence is not None and self._persistence.exists(url)
            )

    def list_stores(self) -> List[str]:
        with self._lock:
            urls = set(self._stores)
            if self._persistence is not None:
                urls.update(self._persistence.list_urls())
            return sorted(urls)

    def close(self) -> None:
        with self._lock:
            self._stores.clear()
            self._closed = True


_default_backend: Optional[LocalBackend] = None
_default_lock = RLock()


def get_default_backend() -> LocalBackend:
    """Process-wide backend used when callers do not pass one."""
    global _default_backend
    with _default_lock:
        if _default_backend is None:
            _default_backend = LocalBackend()
        return _default_backend


def configure_backend(data_dir: Optional[str | Path] = None) -> LocalBackend:
    """Replace the process-wide backend."""
    global _default_backend
    with _default_lock:
        _default_backend = LocalBackend(data_dir)
        return _default_backend
