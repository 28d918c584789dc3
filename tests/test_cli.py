"""Tests for the command line."""
import json

import pytest

from kiara.cli import build_parser, main

TTL = """
@prefix ex: <http://example.org/people#> .
@prefix v: <http://example.org/vocab/> .

ex:alice v:name "Alice" ;
    v:knows ex:bob .
"""


class TestCli:
    @pytest.fixture
    def data_file(self, tmp_path):
        path = tmp_path / "people.ttl"
        path.write_text(TTL, encoding="utf-8")
        return path

    @pytest.fixture
    def base_args(self, tmp_path, monkeypatch):
        for var in ("KIARA_PROTOCOL", "KIARA_HOST", "KIARA_PORT", "KIARA_SYSTEM",
                    "KIARA_DEFAULT_GRAPH", "KIARA_DATA_DIR", "KIARA_LOG_LEVEL"):
            monkeypatch.delenv(var, raising=False)
        return ["--data-dir", str(tmp_path / "stores")]

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_load_and_dump(self, base_args, data_file, capsys):
        assert main(base_args + ["load", str(data_file)]) == 0
        capsys.readouterr()

        assert main(base_args + ["dump"]) == 0
        lines = set(capsys.readouterr().out.strip().splitlines())
        assert lines == {
            '<http://example.org/people#alice> <http://example.org/vocab/name> "Alice" .',
            "<http://example.org/people#alice> <http://example.org/vocab/knows> <http://example.org/people#bob> .",
        }

    def test_named_graph_and_graphs(self, base_args, data_file, capsys):
        graph = "http://example.org/graphs#people"
        assert main(base_args + ["load", str(data_file), "--graph", graph]) == 0
        capsys.readouterr()

        assert main(base_args + ["graphs"]) == 0
        records = json.loads(capsys.readouterr().out)
        assert graph in {r["name"] for r in records}

    def test_schema_then_load(self, base_args, data_file, capsys):
        assert main(base_args + ["schema", str(data_file)]) == 0
        assert main(base_args + ["load", "--no-schema", str(data_file)]) == 0

    def test_prefixes(self, base_args, data_file, capsys):
        main(base_args + ["load", str(data_file)])
        capsys.readouterr()

        assert main(base_args + ["prefixes"]) == 0
        out = capsys.readouterr().out
        assert "ns1: <http://example.org/vocab/>" in out
        assert "k: <http://raw.github.com/quoll/kiara/master/ns#>" in out

    def test_dump_unknown_graph(self, base_args, capsys):
        assert main(base_args + ["dump", "--graph", "http://example.org/none"]) == 1
        assert "Unknown graph" in capsys.readouterr().err

    def test_load_without_schema_fails(self, base_args, data_file, capsys):
        assert main(base_args + ["load", "--no-schema", str(data_file)]) == 1
        assert "Error" in capsys.readouterr().err

    def test_invalid_config(self, base_args, capsys):
        assert main(base_args + ["--protocol", "bogus", "prefixes"]) == 2
        assert "Invalid configuration" in capsys.readouterr().err

    def test_system_url(self, tmp_path, data_file, capsys):
        args = ["--data-dir", str(tmp_path), "--system-url", "kiara:mem://sys"]
        assert main(args + ["load", str(data_file)]) == 0
        capsys.readouterr()
        assert main(args + ["graphs"]) == 0
        names = {r["name"] for r in json.loads(capsys.readouterr().out)}
        assert names == {"sys", "default"}
