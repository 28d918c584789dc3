"""
RDF document parsing, via rdflib.

Turns any document rdflib can read into Triples with tagged object values,
plus the prefix declarations the document made. Also the reverse mapping
used to serialise triples for output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import IO, Dict, Iterator, Optional, Union

from rdflib import BNode, Graph, Literal, URIRef
from rdflib.namespace import XSD
from rdflib.term import Node
from rdflib.util import guess_format

from kiara.models import (
    BNODE_PREFIX,
    BooleanLiteral,
    NumericLiteral,
    ObjectValue,
    Reference,
    StringLiteral,
    Triple,
)

logger = logging.getLogger(__name__)

# str is document text, Path is a file, anything with read() is a stream
RdfSource = Union[str, bytes, Path, IO]

DEFAULT_FORMAT = "turtle"

INTEGER_TYPES = frozenset(
    XSD[name]
    for name in (
        "integer", "int", "long", "short", "byte",
        "nonNegativeInteger", "positiveInteger", "negativeInteger", "nonPositiveInteger",
        "unsignedLong", "unsignedInt", "unsignedShort", "unsignedByte",
    )
)
DECIMAL_TYPES = frozenset((XSD.decimal, XSD.double, XSD.float))


@dataclass(frozen=True)
class PrefixDeclaration:
    prefix: str
    namespace: str


# =============================================================================
# Term conversion
# =============================================================================

def _resource(term: Node) -> str:
    if isinstance(term, BNode):
        return BNODE_PREFIX + str(term)
    if isinstance(term, URIRef):
        return str(term)
    raise TypeError(f"Not a resource: {term!r}")


def _literal(term: Literal) -> ObjectValue:
    datatype = term.datatype
    value = term.toPython()
    if datatype in INTEGER_TYPES and isinstance(value, int) and not isinstance(value, bool):
        return NumericLiteral(value)
    if datatype in DECIMAL_TYPES and isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return NumericLiteral(float(value))
    if datatype == XSD.boolean and isinstance(value, bool):
        return BooleanLiteral(value)
    # plain, language-tagged, other datatypes, and ill-typed numerics
    return StringLiteral(str(term))


def to_object(term: Node) -> ObjectValue:
    if isinstance(term, Literal):
        return _literal(term)
    return Reference(_resource(term))


def to_triple(s: Node, p: Node, o: Node) -> Triple:
    return Triple(_resource(s), str(p), to_object(o))


def _to_node(ref: str) -> Node:
    if ref.startswith(BNODE_PREFIX):
        return BNode(ref[len(BNODE_PREFIX):])
    return URIRef(ref)


def to_rdflib(triple: Triple) -> tuple[Node, Node, Node]:
    """rdflib terms for a triple."""
    obj = triple.object
    if isinstance(obj, Reference):
        o = _to_node(obj.iri)
    elif isinstance(obj, BooleanLiteral):
        o = Literal(obj.value, datatype=XSD.boolean)
    elif isinstance(obj, NumericLiteral):
        o = Literal(obj.value, datatype=XSD.integer if obj.is_integral else XSD.double)
    elif isinstance(obj, StringLiteral):
        o = Literal(obj.value)
    else:
        raise TypeError(f"Not an object value: {obj!r}")
    return _to_node(triple.subject), URIRef(triple.predicate), o


def to_ntriples_line(triple: Triple) -> str:
    s, p, o = to_rdflib(triple)
    return f"{s.n3()} {p.n3()} {o.n3()} ."


# =============================================================================
# Parsing
# =============================================================================

class ParsedDocument:
    """A parsed RDF document."""

    def __init__(self, graph: Graph):
        self._graph = graph

    def __len__(self) -> int:
        return len(self._graph)

    @property
    def prefixes(self) -> Dict[str, str]:
        """Prefix declarations made by the document."""
        return {prefix: str(ns) for prefix, ns in self._graph.namespaces()}

    def triples(self) -> Iterator[Triple]:
        for s, p, o in self._graph:
            yield to_triple(s, p, o)

    def events(self) -> Iterator[Union[PrefixDeclaration, Triple]]:
        """Prefix declarations followed by triples."""
        for prefix, namespace in self.prefixes.items():
            yield PrefixDeclaration(prefix, namespace)
        yield from self.triples()


def parse(source: RdfSource, format: Optional[str] = None, base: Optional[str] = None) -> ParsedDocument:
    """
    Parse an RDF document.

    Args:
        source: Document text, bytes, a Path, or a readable stream
        format: Any rdflib format name; guessed from a Path's suffix,
            otherwise Turtle
        base: Base IRI for relative references
    """
    graph = Graph(bind_namespaces="none")
    if isinstance(source, Path):
        fmt = format or guess_format(str(source)) or DEFAULT_FORMAT
        graph.parse(source=str(source), format=fmt, publicID=base)
    elif isinstance(source, (str, bytes)):
        fmt = format or DEFAULT_FORMAT
        graph.parse(data=source, format=fmt, publicID=base)
    else:
        fmt = format or DEFAULT_FORMAT
        graph.parse(source=source, format=fmt, publicID=base)
    logger.debug(f"Parsed {len(graph)} triples as {fmt}")
    return ParsedDocument(graph)
