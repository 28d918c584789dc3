"""
Tests for loading triples and reading them back.
"""

import warnings

import pytest

from kiara.errors import SchemaConflictError
from kiara.ingest import TripleEncoder, load_data, load_schema
from kiara.models import (
    BooleanLiteral,
    NumericLiteral,
    Reference,
    StringLiteral,
    Triple,
)
from kiara.namespaces import PrefixResolver, known_prefixes
from kiara.reader import read_triples
from kiara.schema import install_core_schema, install_system_schema
from kiara.storage import EntityView, LocalBackend

EX = "http://example.org/people#"
VOCAB = "http://example.org/vocab/"


def t(s, p, o):
    return Triple(s if s.startswith("_:") else EX + s, VOCAB + p, o)


TRIPLES = [
    t("alice", "knows", Reference(EX + "bob")),
    t("alice", "knows", Reference(EX + "carol")),
    t("alice", "name", StringLiteral("Alice")),
    t("alice", "age", NumericLiteral(30)),
    t("alice", "height", NumericLiteral(1.68)),
    t("alice", "member", BooleanLiteral(True)),
    t("alice", "address", Reference("_:addr1")),
    t("_:addr1", "city", StringLiteral("Brisbane")),
    t("bob", "name", StringLiteral("Bob")),
]


class TestLoadAndRead:
    """Loading schema and data, then reading back."""

    @pytest.fixture
    def stores(self):
        backend = LocalBackend()
        backend.create_store("kiara:mem://system")
        backend.create_store("kiara:mem://graph")
        system = backend.connect("kiara:mem://system")
        graph = backend.connect("kiara:mem://graph")
        install_system_schema(system)
        install_core_schema(graph)
        return system, graph

    def test_round_trip(self, stores):
        system, graph = stores
        load_schema(graph, system, TRIPLES)
        load_data(graph, system, TRIPLES)

        read = read_triples(graph, known_prefixes(system))
        assert set(read) == set(TRIPLES)
        assert len(read) == len(TRIPLES)

    def test_read_raises_no_deprecation_warnings(self, stores):
        system, graph = stores
        load_schema(graph, system, TRIPLES)
        load_data(graph, system, TRIPLES)
        table = known_prefixes(system)

        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            read = read_triples(graph, table)
        assert set(read) == set(TRIPLES)

    def test_references_carry_entities(self, stores):
        system, graph = stores
        load_schema(graph, system, TRIPLES)
        load_data(graph, system, TRIPLES)

        refs = [tr.object for tr in read_triples(graph, known_prefixes(system))
                if tr.predicate == VOCAB + "knows"]
        assert len(refs) == 2
        for ref in refs:
            assert isinstance(ref.entity, EntityView)
        bob = next(ref for ref in refs if ref.iri == EX + "bob")
        assert bob.entity["ns1:name"] == "Bob"

    def test_reload_is_idempotent(self, stores):
        system, graph = stores
        load_schema(graph, system, TRIPLES)
        load_data(graph, system, TRIPLES)
        report = load_data(graph, system, TRIPLES)

        assert report.tx_data.height == 1
        assert set(read_triples(graph, known_prefixes(system))) == set(TRIPLES)

    def test_long_into_double_attribute(self, stores):
        system, graph = stores
        load_schema(graph, system, [t("a", "score", NumericLiteral(2.5))])
        load_data(graph, system, [t("a", "score", NumericLiteral(3))])

        [triple] = read_triples(graph, known_prefixes(system))
        assert triple.object == NumericLiteral(3.0)
        assert isinstance(triple.object.value, float)

    def test_failing_last_triple_commits_nothing(self, stores):
        """A stream that fails on its final triple leaves no facts behind."""
        system, graph = stores
        load_schema(graph, system, TRIPLES)
        before = graph.db().basis_t

        stream = TRIPLES + [t("alice", "undeclared", StringLiteral("x"))]
        with pytest.raises(SchemaConflictError):
            load_data(graph, system, stream)

        assert graph.db().basis_t == before
        assert read_triples(graph, known_prefixes(system)) == []

    def test_object_type_mismatch(self, stores):
        system, graph = stores
        load_schema(graph, system, TRIPLES)
        with pytest.raises(SchemaConflictError):
            load_data(graph, system, [t("alice", "knows", StringLiteral("bob"))])
        with pytest.raises(SchemaConflictError):
            load_data(graph, system, [t("alice", "age", StringLiteral("thirty"))])
        with pytest.raises(SchemaConflictError):
            load_data(graph, system, [t("alice", "name", Reference(EX + "bob"))])

    def test_schema_conflict_across_loads(self, stores):
        system, graph = stores
        load_schema(graph, system, [t("a", "p", NumericLiteral(1))])
        with pytest.raises(SchemaConflictError):
            load_schema(graph, system, [t("a", "p", StringLiteral("one"))])


class TestTripleEncoder:
    def test_one_entity_per_resource(self):
        backend = LocalBackend()
        backend.create_store("kiara:mem://graph")
        graph = backend.connect("kiara:mem://graph")
        install_core_schema(graph)
        resolver = PrefixResolver(namespace_table={"ex": EX})

        encoder = TripleEncoder(graph.db(), resolver)
        assert encoder.entity_for(EX + "alice") is encoder.entity_for(EX + "alice")
        assert encoder.tx_data == [{"db/id": encoder.entity_for(EX + "alice"), "db/ident": "ex:alice"}]
