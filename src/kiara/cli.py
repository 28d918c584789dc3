"""
Command line interface.

    kiara load people.ttl --graph http://example.org/graphs#people
    kiara dump --graph http://example.org/graphs#people
    kiara prefixes
    kiara graphs

Stores are persisted under ``--data-dir`` (``KIARA_DATA_DIR``, default
``.kiara``) so that successive commands see the same system.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from kiara.config import KiaraConfig
from kiara.core import Kiara, create, get_triples, init, load_schema, load_ttl
from kiara.directory import list_graphs
from kiara.errors import KiaraError
from kiara.namespaces import known_prefixes
from kiara.parser import to_ntriples_line
from kiara.storage.backend import LocalBackend

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = ".kiara"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kiara", description="Store RDF graphs in an entity/attribute/value store")
    parser.add_argument("--config", type=Path, help="JSON config file")
    parser.add_argument("--system-url", help="Storage URL of the system store (overrides protocol/host/port)")
    parser.add_argument("--protocol", help="Storage protocol, e.g. kiara:dev")
    parser.add_argument("--host", help="Storage host")
    parser.add_argument("--port", type=int, help="Storage port")
    parser.add_argument("--data-dir", help=f"Directory for persisted stores (default: {DEFAULT_DATA_DIR})")
    parser.add_argument("--log-level", help="Logging level")

    commands = parser.add_subparsers(dest="command", required=True)

    load = commands.add_parser("load", help="Infer schema from an RDF file and load its triples")
    load.add_argument("file", type=Path)
    load.add_argument("--graph", help="Graph IRI (default graph when omitted)")
    load.add_argument("--format", help="rdflib format name (guessed from the suffix)")
    load.add_argument("--no-schema", action="store_true", help="Skip schema inference")

    schema = commands.add_parser("schema", help="Install the schema inferred from an RDF file")
    schema.add_argument("file", type=Path)
    schema.add_argument("--graph", help="Graph IRI (default graph when omitted)")
    schema.add_argument("--format", help="rdflib format name (guessed from the suffix)")

    dump = commands.add_parser("dump", help="Print a graph as N-Triples")
    dump.add_argument("--graph", help="Graph IRI (default graph when omitted)")

    commands.add_parser("prefixes", help="Print the namespace prefix table")
    commands.add_parser("graphs", help="List recorded graphs")

    return parser


def _config(args: argparse.Namespace) -> KiaraConfig:
    base = KiaraConfig.load(args.config) if args.config else None
    config = KiaraConfig.from_env(base=base).with_overrides(
        protocol=args.protocol,
        host=args.host,
        port=args.port,
        data_dir=args.data_dir,
        log_level=args.log_level.upper() if args.log_level else None,
    )
    if config.data_dir is None:
        config = config.with_overrides(data_dir=DEFAULT_DATA_DIR)
    config.validate_or_raise()
    return config


def _open(args: argparse.Namespace, config: KiaraConfig) -> Kiara:
    if args.system_url:
        return init(args.system_url, backend=LocalBackend(config.data_dir))
    return create(config=config)


def run(args: argparse.Namespace, config: KiaraConfig) -> int:
    kiara = _open(args, config)

    if args.command == "load":
        if not args.no_schema:
            load_schema(kiara, args.file, graph_name=args.graph, format=args.format)
        load_ttl(kiara, args.file, graph_name=args.graph, format=args.format)
        print(f"Loaded {args.file} into {args.graph or 'the default graph'}")
    elif args.command == "schema":
        load_schema(kiara, args.file, graph_name=args.graph, format=args.format)
        print(f"Installed schema from {args.file}")
    elif args.command == "dump":
        triples = get_triples(kiara, args.graph)
        if triples is None:
            print(f"Unknown graph: {args.graph}", file=sys.stderr)
            return 1
        for triple in triples:
            print(to_ntriples_line(triple))
    elif args.command == "prefixes":
        for prefix, namespace in sorted(known_prefixes(kiara.system).items()):
            print(f"{prefix}: <{namespace}>")
    elif args.command == "graphs":
        print(json.dumps([record.to_dict() for record in list_graphs(kiara.system)], indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = _config(args)
    except KiaraError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return run(args, config)
    except KiaraError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
