"""
Tests for the local entity/attribute/value store.
"""

import pytest

from kiara.errors import (
    BackendUnavailableError,
    ConflictError,
    SchemaConflictError,
    StoreNotFoundError,
    TransactionError,
    UniquenessError,
    UnrecognizedSchemeError,
)
from kiara.storage import PART_DB, PART_TX, AtomicCheck, EntityView, LocalBackend, TempId
from kiara.storage.attributes import get_partition_index

URL = "kiara:mem://test"


def attribute(ident, value_type, cardinality="one", **extra):
    entity = {
        "db/id": TempId(PART_DB),
        "db/ident": ident,
        "db/valueType": f"db.type/{value_type}",
        "db/cardinality": f"db.cardinality/{cardinality}",
    }
    entity.update(extra)
    return entity


class TestStoreLifecycle:
    """Creating, connecting and closing."""

    def test_create_store_reports_creation(self):
        backend = LocalBackend()
        assert backend.create_store(URL) is True
        assert backend.create_store(URL) is False
        assert backend.store_exists(URL)
        assert backend.list_stores() == [URL]

    def test_connect_unknown_store(self):
        backend = LocalBackend()
        with pytest.raises(StoreNotFoundError) as exc:
            backend.connect("kiara:mem://missing")
        assert isinstance(exc.value, BackendUnavailableError)

    def test_create_rejects_unknown_scheme(self):
        backend = LocalBackend()
        with pytest.raises(UnrecognizedSchemeError):
            backend.create_store("bogus://x")

    def test_closed_backend(self):
        backend = LocalBackend()
        backend.create_store(URL)
        conn = backend.connect(URL)
        backend.close()
        with pytest.raises(BackendUnavailableError):
            conn.db()
        with pytest.raises(BackendUnavailableError):
            backend.connect(URL)

    def test_genesis_has_builtins(self):
        backend = LocalBackend()
        backend.create_store(URL)
        db = backend.connect(URL).db()
        assert db.basis_t == 0
        assert db.attribute("db/ident").is_identity
        assert db.partitions() == ["db.part/db", "db.part/tx", "db.part/user"]


class TestTransactions:
    """Transaction semantics."""

    @pytest.fixture
    def conn(self):
        """Store with a small person schema."""
        backend = LocalBackend()
        backend.create_store(URL)
        conn = backend.connect(URL)
        conn.transact([
            attribute("ex/name", "string", **{"db/unique": "db.unique/identity"}),
            attribute("ex/email", "string", **{"db/unique": "db.unique/value"}),
            attribute("ex/age", "long"),
            attribute("ex/score", "double"),
            attribute("ex/tags", "string", "many"),
            attribute("ex/friend", "ref"),
        ])
        return conn

    def test_entity_map_and_tempid(self, conn):
        alice = TempId()
        report = conn.transact([{"db/id": alice, "ex/name": "alice", "ex/age": 30}])

        eid = report.resolve(alice)
        db = report.db_after
        assert db.value_of(eid, "ex/name") == "alice"
        assert db.value_of(eid, "ex/age") == 30
        assert report.t == report.db_before.basis_t + 1

    def test_cardinality_one_replaces(self, conn):
        first = conn.transact([{"ex/name": "alice", "ex/age": 30}])
        conn.transact([{"ex/name": "alice", "ex/age": 31}])

        db = conn.db()
        alice = db.find_entities("ex/name", "alice")
        assert len(alice) == 1
        assert db.value_of(alice[0], "ex/age") == 31
        assert db.as_of(first.t).value_of(alice[0], "ex/age") == 30

    def test_cardinality_many_accumulates(self, conn):
        conn.transact([{"ex/name": "alice", "ex/tags": ["a", "b"]}])
        conn.transact([{"ex/name": "alice", "ex/tags": "c"}])

        db = conn.db()
        eid = db.find_entities("ex/name", "alice")[0]
        assert db.value_of(eid, "ex/tags") == {"a", "b", "c"}

    def test_many_values_for_cardinality_one(self, conn):
        with pytest.raises(TransactionError):
            conn.transact([{"ex/name": "alice", "ex/age": [1, 2]}])

    def test_identity_upsert(self, conn):
        r1 = conn.transact([{"ex/name": "alice"}])
        r2 = conn.transact([{"ex/name": "alice", "ex/age": 5}])
        assert list(r1.tempids.values()) == list(r2.tempids.values())

    def test_tempids_sharing_identity_merge(self, conn):
        a, b = TempId(), TempId()
        report = conn.transact([
            {"db/id": a, "ex/name": "carol"},
            {"db/id": b, "ex/name": "carol", "ex/age": 40},
        ])
        assert report.resolve(a) == report.resolve(b)

    def test_unique_value_violation(self, conn):
        conn.transact([{"ex/name": "alice", "ex/email": "a@example.org"}])
        with pytest.raises(UniquenessError) as exc:
            conn.transact([{"ex/name": "bob", "ex/email": "a@example.org"}])
        assert exc.value.attribute == "ex/email"

    def test_atomic_check(self, conn):
        db = conn.db()
        conn.transact([{"ex/name": "alice"}])

        with pytest.raises(ConflictError) as exc:
            conn.transact([AtomicCheck(db.basis_t), {"ex/name": "bob"}])
        assert exc.value.expected_t == db.basis_t
        assert conn.db().find_entities("ex/name", "bob") == []

        current = conn.db()
        conn.transact([AtomicCheck(current.basis_t), {"ex/name": "bob"}])
        assert len(conn.db().find_entities("ex/name", "bob")) == 1

    def test_all_or_nothing(self, conn):
        before = conn.db().basis_t
        with pytest.raises(TransactionError):
            conn.transact([{"ex/name": "alice"}, {"ex/unknown": 1}])
        assert conn.db().basis_t == before
        assert conn.db().find_entities("ex/name", "alice") == []

    def test_type_mismatch(self, conn):
        with pytest.raises(TransactionError):
            conn.transact([{"ex/name": "alice", "ex/age": "thirty"}])

    def test_long_accepted_for_double(self, conn):
        conn.transact([{"ex/name": "alice", "ex/score": 3}])
        db = conn.db()
        eid = db.find_entities("ex/name", "alice")[0]
        score = db.value_of(eid, "ex/score")
        assert score == 3.0 and isinstance(score, float)

    def test_list_form_and_retract(self, conn):
        report = conn.transact([{"ex/name": "alice", "ex/tags": ["x", "y"]}])
        eid = list(report.tempids.values())[0]

        conn.transact([["db/retract", eid, "ex/tags", "x"], ["db/add", eid, "ex/tags", "z"]])
        assert conn.db().value_of(eid, "ex/tags") == {"y", "z"}

    def test_redundant_assertions_dropped(self, conn):
        conn.transact([{"ex/name": "alice", "ex/age": 1}])
        report = conn.transact([{"ex/name": "alice", "ex/age": 1}])
        # only the transaction instant
        assert report.tx_data.height == 1

    def test_reinstall_identical_attribute(self, conn):
        report = conn.transact([attribute("ex/age", "long")])
        assert report.tx_data.height == 1

    def test_changing_attribute_conflicts(self, conn):
        with pytest.raises(SchemaConflictError):
            conn.transact([attribute("ex/age", "string")])

    def test_attribute_unusable_in_installing_tx(self, conn):
        with pytest.raises(TransactionError):
            conn.transact([attribute("ex/height", "long"), {"ex/name": "alice", "ex/height": 180}])

    def test_incomplete_attribute(self, conn):
        with pytest.raises(TransactionError):
            conn.transact([{"db/id": TempId(PART_DB), "db/ident": "ex/half", "db/valueType": "db.type/long"}])

    def test_tx_partition_rejected(self, conn):
        with pytest.raises(TransactionError):
            conn.transact([{"db/id": TempId(PART_TX), "ex/name": "alice"}])

    def test_unknown_partition_rejected(self, conn):
        with pytest.raises(TransactionError):
            conn.transact([{"db/id": TempId("ex.part/none"), "ex/name": "alice"}])

    def test_installed_partition(self, conn):
        conn.transact([{"db/id": TempId(PART_DB), "db/ident": "ex.part/people", "db.install/partition": True}])
        report = conn.transact([{"db/id": TempId("ex.part/people"), "ex/name": "alice"}])
        assert "ex.part/people" in conn.db().partitions()
        assert len(report.tempids) == 1
        [eid] = report.tempids.values()
        assert get_partition_index(eid) == conn.db().partition_index("ex.part/people")


class TestEntityView:
    @pytest.fixture
    def db(self):
        backend = LocalBackend()
        backend.create_store(URL)
        conn = backend.connect(URL)
        conn.transact([
            attribute("ex/name", "string", **{"db/unique": "db.unique/identity"}),
            attribute("ex/tags", "string", "many"),
            attribute("ex/friend", "ref"),
        ])
        conn.transact([
            {"db/ident": "ex/alice", "ex/name": "alice", "ex/tags": ["a", "b"], "ex/friend": {"ex/name": "bob"}},
        ])
        return conn.db()

    def test_values_and_refs(self, db):
        alice = db.entity(db.entid("ex/alice"))
        assert alice.ident == "ex/alice"
        assert alice["ex/name"] == "alice"
        assert alice["ex/tags"] == frozenset({"a", "b"})
        friend = alice["ex/friend"]
        assert isinstance(friend, EntityView)
        assert friend["ex/name"] == "bob"

    def test_mapping_protocol(self, db):
        alice = db.entity(db.entid("ex/alice"))
        assert set(alice) == {"db/ident", "ex/name", "ex/tags", "ex/friend"}
        assert len(alice) == 4
        assert alice == db.entity(alice.eid)

    def test_datoms_pattern(self, db):
        rows = db.datoms(a="ex/name", v="bob")
        assert rows.height == 1
        assert db.datoms(a="ex/name", v="nobody").height == 0
        assert db.datoms(a="ex/missing").height == 0
        with pytest.raises(ValueError):
            db.datoms(v="bob")
