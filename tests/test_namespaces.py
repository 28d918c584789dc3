"""
Tests for IRI splitting and prefix allocation.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from kiara import namespaces
from kiara.errors import KiaraError
from kiara.namespaces import (
    PrefixResolver,
    allocate_prefix,
    find_prefix,
    is_generated_prefix,
    is_prefix_style,
    known_prefixes,
    resolve_prefix,
    split_iri,
)
from kiara.schema import install_system_schema
from kiara.storage import LocalBackend, TempId

SYSTEM_URL = "kiara:mem://system"


@pytest.fixture
def system():
    """System store with its schema installed."""
    backend = LocalBackend()
    backend.create_store(SYSTEM_URL)
    conn = backend.connect(SYSTEM_URL)
    install_system_schema(conn)
    return conn


class TestSplitIri:
    @pytest.mark.parametrize(
        "iri,expected",
        [
            ("http://example.org/people#alice", ("http://example.org/people#", "alice")),
            ("http://example.org/people/alice", ("http://example.org/people/", "alice")),
            ("http://example.org/a#b/c", ("http://example.org/a#b/", "c")),
            ("urn:isbn:0451450523", ("urn:isbn:", "0451450523")),
            ("http://example.org/ns#", ("http://example.org/ns#", "")),
        ],
    )
    def test_split(self, iri, expected):
        assert split_iri(iri) == expected

    def test_unsplittable(self):
        with pytest.raises(ValueError):
            split_iri("nothing")


class TestPrefixStyle:
    def test_prefix_tokens(self):
        assert is_prefix_style("ex:")
        assert is_prefix_style("foaf:")

    def test_not_prefix_tokens(self):
        assert not is_prefix_style("http://example.org/")
        assert not is_prefix_style("http://example.org#")
        assert not is_prefix_style("ex")
        assert not is_prefix_style(":")

    def test_generated_prefixes(self):
        assert is_generated_prefix("ns1")
        assert is_generated_prefix("ns42")
        assert not is_generated_prefix("ns")
        assert not is_generated_prefix("k")
        assert not is_generated_prefix("nsx")


class TestResolvePrefix:
    def test_mints_sequentially(self, system):
        assert resolve_prefix(system, "http://example.org/a#") == "ns1"
        assert resolve_prefix(system, "http://example.org/b#") == "ns2"
        assert known_prefixes(system) == {
            "ns1": "http://example.org/a#",
            "ns2": "http://example.org/b#",
        }

    def test_idempotent(self, system):
        first = resolve_prefix(system, "http://example.org/a#")
        t = system.db().basis_t
        assert resolve_prefix(system, "http://example.org/a#") == first
        assert system.db().basis_t == t

    def test_prefix_style_not_recorded(self, system):
        assert resolve_prefix(system, "ex:") == "ex"
        assert known_prefixes(system) == {}

    def test_continues_after_highest(self, system):
        system.transact([{"db/id": TempId("k/system"), "k/prefix": "ns7", "k/namespace": "http://seven.example.org/"}])
        system.transact([{"db/id": TempId("k/system"), "k/prefix": "k", "k/namespace": "http://k.example.org/"}])
        assert resolve_prefix(system, "http://example.org/") == "ns8"

    def test_retries_after_lost_race(self, system, monkeypatch):
        original = namespaces._try_register
        raced = []

        def racing(conn, db, prefix, namespace):
            if not raced:
                raced.append(prefix)
                # a rival takes the candidate first
                original(conn, conn.db(), prefix, "http://rival.example.org/")
            return original(conn, db, prefix, namespace)

        monkeypatch.setattr(namespaces, "_try_register", racing)
        assert resolve_prefix(system, "http://example.org/") == "ns2"
        assert find_prefix(system.db(), "http://rival.example.org/") == "ns1"

    def test_concurrent_same_namespace(self, system):
        """Every caller gets the same prefix and only one is recorded."""
        barrier = threading.Barrier(8)

        def allocate(_):
            barrier.wait()
            return resolve_prefix(system, "http://example.org/shared#")

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(allocate, range(8)))

        assert set(results) == {"ns1"}
        assert known_prefixes(system) == {"ns1": "http://example.org/shared#"}

    def test_concurrent_distinct_namespaces(self, system):
        """Distinct namespaces get distinct prefixes with no gaps."""
        count = 10
        barrier = threading.Barrier(count)

        def allocate(i):
            barrier.wait()
            return resolve_prefix(system, f"http://example.org/ns{i}/")

        with ThreadPoolExecutor(max_workers=count) as executor:
            results = list(executor.map(allocate, range(count)))

        assert len(set(results)) == count
        assert set(results) == {f"ns{i}" for i in range(1, count + 1)}


class TestPrefixResolver:
    def test_ident_round_trip(self, system):
        resolver = PrefixResolver(system)
        ident = resolver.ident_for("http://example.org/people#alice")
        assert ident == "ns1:alice"
        assert resolver.iri_for(ident) == "http://example.org/people#alice"

    def test_blank_nodes_pass_through(self, system):
        resolver = PrefixResolver(system)
        assert resolver.ident_for("_:b0") == "_:b0"
        assert resolver.iri_for("_:b0") == "_:b0"
        assert known_prefixes(system) == {}

    def test_read_only_resolver(self):
        resolver = PrefixResolver(namespace_table={"ex": "http://example.org/"})
        assert resolver.ident_for("http://example.org/a") == "ex:a"
        assert resolver.iri_for("ex:a") == "http://example.org/a"
        with pytest.raises(KiaraError):
            resolver.ident_for("http://other.example.org/a")
        with pytest.raises(KiaraError):
            resolver.iri_for("zz:a")

    def test_colon_only_namespaces_are_recorded(self, system):
        resolver = PrefixResolver(system)
        book = resolver.ident_for("urn:isbn:0451450523")
        mbox = resolver.ident_for("mailto:alice@example.org")
        assert book == "ns1:0451450523"
        assert mbox == "ns2:alice@example.org"
        assert known_prefixes(system) == {"ns1": "urn:isbn:", "ns2": "mailto:"}

        reader = PrefixResolver(namespace_table=known_prefixes(system))
        assert reader.iri_for(book) == "urn:isbn:0451450523"
        assert reader.iri_for(mbox) == "mailto:alice@example.org"

    def test_allocate_ignores_prefix_shape(self, system):
        assert resolve_prefix(system, "urn:isbn:") == "urn:isbn"
        assert known_prefixes(system) == {}
        assert allocate_prefix(system, "urn:isbn:") == "ns1"
        assert known_prefixes(system) == {"ns1": "urn:isbn:"}
