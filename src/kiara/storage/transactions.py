"""
Transaction data expansion for the local store.

A transaction is a list of items:

- entity maps: ``{"db/id": <id>, attr: value, ...}`` where ``<id>`` is an
  entity id, an ident string or a TempId (a fresh TempId in the user
  partition when omitted). Values of cardinality-many attributes may be
  lists/sets; values of reference attributes may be nested entity maps.
- list assertions: ``["db/add", e, attr, value]`` and
  ``["db/retract", e, attr, value]``.
- conditions: ``AtomicCheck(basis_t)``, which fails the whole commit with
  ConflictError if the store has moved past ``basis_t``.

TxBuilder validates and expands everything into datoms before the caller
appends a single one, which is what makes commits all-or-nothing.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

import polars as pl

from kiara.errors import ConflictError, SchemaConflictError, TransactionError, UniquenessError
from kiara.storage.attributes import (
    CARDINALITY_EID,
    CARDINALITY_MANY,
    CARDINALITY_ONE,
    IDENT_EID,
    PART_TX,
    PART_USER,
    SCHEMA_ATTRIBUTES,
    TYPE_BOOLEAN,
    TYPE_DOUBLE,
    TYPE_LONG,
    TYPE_STRING,
    UNIQUE_IDENTITY,
    UNIQUE_VALUE,
    VALUE_TYPE_EID,
    VALUE_TYPES,
    AttributeDef,
    make_entity_id,
    tx_entity_id,
)
from kiara.storage.facts import Datom
from kiara.storage.values import ValueDict, ValueKind

if TYPE_CHECKING:
    from kiara.storage.backend import Snapshot


_tempid_counter = itertools.count(1)

DB_ADD = "db/add"
DB_RETRACT = "db/retract"

LITERAL_KINDS = {
    TYPE_STRING: ValueKind.STRING,
    TYPE_LONG: ValueKind.LONG,
    TYPE_DOUBLE: ValueKind.DOUBLE,
    TYPE_BOOLEAN: ValueKind.BOOLEAN,
}


@dataclass(frozen=True)
class TempId:
    """
    Placeholder for an entity that does not exist yet.

    Two TempIds are the same entity when partition and label agree. An
    unlabelled TempId gets a fresh label and is therefore unique.
    """
    partition: str = PART_USER
    label: int = field(default_factory=lambda: -next(_tempid_counter))


@dataclass(frozen=True)
class AtomicCheck:
    """Condition: the store's basis must still be ``basis_t`` at commit."""
    basis_t: int


EntityRef = Union[int, str, TempId]


@dataclass
class _Op:
    added: bool
    e: EntityRef
    attr: AttributeDef
    value: Any


@dataclass
class PreparedTx:
    """Result of expanding transaction data against a snapshot."""
    t: int
    datoms: List[Datom]
    tempids: Dict[TempId, int]
    next_seq: Dict[int, int]


@dataclass
class TxReport:
    """What a committed transaction did."""
    db_before: "Snapshot"
    db_after: "Snapshot"
    tempids: Dict[TempId, int]
    tx_data: pl.DataFrame

    @property
    def t(self) -> int:
        return self.db_after.basis_t

    def resolve(self, tempid: TempId) -> int:
        """Entity id a TempId was resolved to."""
        return self.tempids[tempid]


def encode_literal(attr: AttributeDef, value: Any, values: ValueDict) -> int:
    """Check a literal against its attribute type and intern it."""
    kind = LITERAL_KINDS.get(attr.value_type)
    ok = (
        (kind == ValueKind.STRING and isinstance(value, str))
        or (kind == ValueKind.BOOLEAN and isinstance(value, bool))
        or (kind == ValueKind.LONG and isinstance(value, int) and not isinstance(value, bool))
        or (kind == ValueKind.DOUBLE and isinstance(value, (int, float)) and not isinstance(value, bool))
    )
    if not ok:
        raise TransactionError(
            f"Value {value!r} does not match type {attr.value_type} of {attr.ident}",
            attribute=attr.ident,
            value=value,
        )
    return values.intern(value, kind)


class TxBuilder:
    """Expands transaction data into datoms against a snapshot."""

    def __init__(self, db: "Snapshot", values: ValueDict, next_seq: Dict[int, int]):
        self._db = db
        self._values = values
        self._next_seq = dict(next_seq)
        self._ops: List[_Op] = []
        self._checks: List[AtomicCheck] = []
        self._tempids: Dict[TempId, int] = {}
        self._tx_idents: Dict[str, TempId] = {}

    # -------------------------------------------------------------------------
    # Flattening
    # -------------------------------------------------------------------------

    def _attribute(self, ref: Union[str, int]) -> AttributeDef:
        attr = self._db.attribute(ref)
        if attr is None:
            raise TransactionError(f"Unknown attribute: {ref}", attribute=ref)
        return attr

    def _add_entity_map(self, entity: Dict[str, Any]) -> EntityRef:
        e = entity.get("db/id")
        if e is None:
            e = TempId()
        for key, value in entity.items():
            if key == "db/id":
                continue
            attr = self._attribute(key)
            if isinstance(value, (list, tuple, set, frozenset)):
                if not attr.is_many:
                    raise TransactionError(
                        f"Multiple values for cardinality-one attribute {attr.ident}",
                        attribute=attr.ident,
                    )
                items = list(value)
            else:
                items = [value]
            for item in items:
                if attr.is_ref and isinstance(item, dict):
                    if "db/id" not in item:
                        partition = e.partition if isinstance(e, TempId) else PART_USER
                        item = {"db/id": TempId(partition), **item}
                    item = self._add_entity_map(item)
                self._ops.append(_Op(True, e, attr, item))
        return e

    def add(self, item: Any) -> None:
        if isinstance(item, AtomicCheck):
            self._checks.append(item)
        elif isinstance(item, dict):
            self._add_entity_map(item)
        elif isinstance(item, (list, tuple)) and len(item) == 4 and item[0] in (DB_ADD, DB_RETRACT):
            op, e, attr_ref, value = item
            self._ops.append(_Op(op == DB_ADD, e, self._attribute(attr_ref), value))
        else:
            raise TransactionError(f"Unrecognised transaction item: {item!r}")

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _bind(self, tempid: TempId, eid: int) -> None:
        bound = self._tempids.get(tempid)
        if bound is not None and bound != eid:
            raise TransactionError(
                f"Temporary id {tempid} upserts to conflicting entities {bound} and {eid}"
            )
        self._tempids[tempid] = eid

    def _resolve_tempids(self) -> None:
        # Identity upserts against the existing database
        for op in self._ops:
            if op.added and isinstance(op.e, TempId) and op.attr.is_identity:
                existing = self._db.lookup_unique(op.attr, op.value)
                if existing is not None:
                    self._bind(op.e, existing)
            if op.added and op.attr.ident == "db/ident" and isinstance(op.e, TempId):
                self._tx_idents.setdefault(op.value, op.e)

        # Tempids sharing a new identity value are the same entity
        seen: Dict[tuple, TempId] = {}
        aliases: Dict[TempId, TempId] = {}
        for op in self._ops:
            if op.added and isinstance(op.e, TempId) and op.attr.is_identity and op.e not in self._tempids:
                key = (op.attr.eid, op.value)
                first = seen.setdefault(key, op.e)
                if first != op.e:
                    aliases[op.e] = first

        for op in self._ops:
            for ref in (op.e, op.value if op.attr.is_ref else None):
                if isinstance(ref, TempId) and ref not in self._tempids and ref not in aliases:
                    self._tempids[ref] = self._allocate(ref.partition)
        for alias, first in aliases.items():
            self._tempids[alias] = self._tempids[first]

    def _allocate(self, partition: str) -> int:
        index = self._db.partition_index(partition)
        if index is None or partition == PART_TX:
            raise TransactionError(f"Unknown partition: {partition}", partition=partition)
        seq = self._next_seq.get(index, 1)
        self._next_seq[index] = seq + 1
        return make_entity_id(index, seq)

    def _resolve_ref(self, ref: EntityRef) -> int:
        if isinstance(ref, TempId):
            return self._tempids[ref]
        if isinstance(ref, bool):
            raise TransactionError(f"Invalid entity reference: {ref!r}")
        if isinstance(ref, int):
            return ref
        if isinstance(ref, str):
            eid = self._db.entid(ref)
            if eid is not None:
                return eid
            tempid = self._tx_idents.get(ref)
            if tempid is not None:
                return self._tempids[tempid]
            raise TransactionError(f"Unknown ident: {ref}", ident=ref)
        raise TransactionError(f"Invalid entity reference: {ref!r}")

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _check_schema_change(self, e: int, attr: AttributeDef, value: Any) -> None:
        if attr.ident not in SCHEMA_ATTRIBUTES:
            return
        if attr.ident == "db/valueType" and value not in VALUE_TYPES:
            raise TransactionError(f"Unknown value type: {value}")
        if attr.ident == "db/cardinality" and value not in (CARDINALITY_ONE, CARDINALITY_MANY):
            raise TransactionError(f"Unknown cardinality: {value}")
        if attr.ident == "db/unique" and value not in (UNIQUE_IDENTITY, UNIQUE_VALUE):
            raise TransactionError(f"Unknown uniqueness: {value}")

        installed = self._db.attribute(e)
        if installed is None:
            return
        current = {
            "db/valueType": installed.value_type,
            "db/cardinality": installed.cardinality,
            "db/unique": installed.unique,
            "db/isComponent": installed.is_component,
        }[attr.ident]
        if current != value:
            raise SchemaConflictError(
                f"Attribute {installed.ident} already has {attr.ident} {current!r}, got {value!r}",
                attribute=installed.ident,
            )

    def _check_new_attributes(self, datoms: List[Datom]) -> None:
        defined: Dict[int, set] = {}
        named = {e for e, a, _v, _t, added in datoms if added and a == IDENT_EID}
        for e, a, _v, _t, added in datoms:
            if added and a in (VALUE_TYPE_EID, CARDINALITY_EID) and self._db.attribute(e) is None:
                defined.setdefault(e, set()).add(a)
        for e, attrs in defined.items():
            if attrs != {VALUE_TYPE_EID, CARDINALITY_EID}:
                raise TransactionError(
                    f"Attribute entity {e} needs both db/valueType and db/cardinality"
                )
            if e not in named and self._db.ident(e) is None:
                raise TransactionError(f"Attribute entity {e} has no db/ident")

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build(self, tx_data: Iterable[Any], t: int) -> PreparedTx:
        for item in tx_data:
            self.add(item)

        for check in self._checks:
            if self._db.basis_t > check.basis_t:
                raise ConflictError(check.basis_t, self._db.basis_t)

        self._resolve_tempids()

        datoms: List[Datom] = []
        asserted_one: Dict[tuple[int, int], int] = {}
        asserted: set[tuple[int, int, int]] = set()
        retracted: set[tuple[int, int, int]] = set()
        unique_claims: Dict[tuple[int, int], int] = {}

        for op in self._ops:
            e = self._resolve_ref(op.e)
            attr = op.attr
            if attr.is_ref:
                v = self._resolve_ref(op.value)
            else:
                v = encode_literal(attr, op.value, self._values)
            if op.added:
                self._check_schema_change(e, attr, op.value)
            current = self._db.current_values(e, attr)

            if not op.added:
                if v in current and (e, attr.eid, v) not in retracted:
                    retracted.add((e, attr.eid, v))
                    datoms.append((e, attr.eid, v, t, False))
                continue

            if not attr.is_many:
                previous = asserted_one.get((e, attr.eid))
                if previous is not None and previous != v:
                    raise TransactionError(
                        f"Conflicting values for {attr.ident} on entity {e}",
                        attribute=attr.ident,
                        entity=e,
                    )
                asserted_one[(e, attr.eid)] = v
            if (e, attr.eid, v) in asserted or v in current:
                continue
            if not attr.is_many:
                for old in current:
                    if (e, attr.eid, old) not in retracted:
                        retracted.add((e, attr.eid, old))
                        datoms.append((e, attr.eid, old, t, False))
            asserted.add((e, attr.eid, v))
            datoms.append((e, attr.eid, v, t, True))

            if attr.is_unique:
                claimant = unique_claims.setdefault((attr.eid, v), e)
                holder = self._db.holder_of(attr, v)
                if claimant != e or (
                    holder is not None and holder != e and (holder, attr.eid, v) not in retracted
                ):
                    raise UniquenessError(attr.ident, op.value, holder if claimant == e else claimant)

        self._check_new_attributes(datoms)

        instant = self._values.intern(int(time.time() * 1_000_000), ValueKind.LONG)
        datoms.append((tx_entity_id(t), self._attribute("db/txInstant").eid, instant, t, True))

        return PreparedTx(t=t, datoms=datoms, tempids=dict(self._tempids), next_seq=self._next_seq)
