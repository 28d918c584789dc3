"""
Tests for the graph directory.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from kiara.core import init
from kiara.directory import (
    find,
    generate_graph_url,
    get_default,
    get_or_create,
    graph_record_tx,
    list_graphs,
    lookup,
)
from kiara.errors import InconsistentDirectoryError, KiaraError
from kiara.namespaces import known_prefixes
from kiara.schema import install_system_schema
from kiara.storage import LocalBackend

GRAPH = "http://example.org/graphs#people"


class TestDirectory:
    @pytest.fixture
    def kiara(self):
        return init("kiara:dev://localhost:4334/system", backend=LocalBackend())

    def test_lookup_unknown(self, kiara):
        assert lookup(kiara.system, GRAPH) is None

    def test_generate_graph_url(self, kiara):
        assert generate_graph_url(kiara, GRAPH) == "kiara:dev://localhost:4334/ns1-people"
        # prefix is reused for the same namespace
        assert generate_graph_url(kiara, "http://example.org/graphs#places") == "kiara:dev://localhost:4334/ns1-places"

    def test_graph_url_escapes_query_characters(self, kiara):
        graph = "http://example.org/graph?id=5"
        conn = get_or_create(kiara, graph)
        assert conn.url == "kiara:dev://localhost:4334/ns1-graph%3Fid%3D5"
        assert lookup(kiara.system, graph) == conn.url

    def test_graph_url_for_urn(self, kiara):
        assert generate_graph_url(kiara, "urn:graphs:people") == "kiara:dev://localhost:4334/ns1-people"
        assert known_prefixes(kiara.system)["ns1"] == "urn:graphs:"

    def test_graph_url_unsplittable(self, kiara):
        with pytest.raises(KiaraError):
            generate_graph_url(kiara, "people")

    def test_get_or_create_records_graph(self, kiara):
        conn = get_or_create(kiara, GRAPH)
        assert conn.url == "kiara:dev://localhost:4334/ns1-people"
        assert lookup(kiara.system, GRAPH) == conn.url
        assert conn.db().attribute("k/rdf") is not None

        again = get_or_create(kiara, GRAPH)
        assert again == conn
        assert len([g for g in list_graphs(kiara.system) if g.name == GRAPH]) == 1

    def test_get_or_create_concurrent(self, kiara):
        """Concurrent callers for one graph converge on a single record."""
        barrier = threading.Barrier(6)

        def create(_):
            barrier.wait()
            return get_or_create(kiara, GRAPH).url

        with ThreadPoolExecutor(max_workers=6) as executor:
            urls = set(executor.map(create, range(6)))

        assert len(urls) == 1
        names = [g.name for g in list_graphs(kiara.system)]
        assert names.count(GRAPH) == 1

    def test_find(self, kiara):
        assert find(kiara, None) == kiara.default
        assert find(kiara, "") == kiara.default
        assert find(kiara, GRAPH) is None

        created = get_or_create(kiara, GRAPH)
        assert find(kiara, GRAPH) == created

    def test_find_inconsistent(self, kiara):
        kiara.system.transact([graph_record_tx("http://example.org/ghost", "kiara:dev://localhost:4334/ghost")])
        with pytest.raises(InconsistentDirectoryError) as exc:
            find(kiara, "http://example.org/ghost")
        assert exc.value.graph == "http://example.org/ghost"
        assert exc.value.database == "kiara:dev://localhost:4334/ghost"

    def test_list_graphs(self, kiara):
        get_or_create(kiara, GRAPH)
        records = {g.name: g for g in list_graphs(kiara.system)}

        assert set(records) == {"system", "default", GRAPH}
        assert records["system"].is_system
        assert records["default"].is_default
        assert records["default"].storage_url == kiara.default_url
        assert not records[GRAPH].is_default

    def test_get_default_established(self, kiara):
        assert get_default(kiara.system, "kiara:dev://localhost:4334/other") == kiara.default_url


class TestGetDefaultFallback:
    def test_fallback_creates_store(self):
        backend = LocalBackend()
        backend.create_store("kiara:mem://system")
        system = backend.connect("kiara:mem://system")
        install_system_schema(system)

        assert get_default(system, "kiara:mem://fallback") == "kiara:mem://fallback"
        assert backend.store_exists("kiara:mem://fallback")
