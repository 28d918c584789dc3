"""
Storage URL grammars and database-name rewriting.

A storage URL names one backing store. Every backend kind has its own URL
grammar; the rewriter recognises the grammar from the scheme and replaces
only the database-name segment, so the result addresses a sibling store on
the same host/region/bucket with the same routing parameters.

    kiara:ddb://us-east-1/kiara-table/system?aws_access_key_id=x
    kiara:sql://system?jdbc:postgresql://localhost:5432/kiara?user=k
    kiara:dev://localhost:4334/system
    kiara:mem://system

The grammar is chosen by the last ``:``-separated component of the scheme,
so ``kiara:ddb`` and ``datomic:ddb`` share a grammar.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional

from kiara.errors import UnrecognizedSchemeError


class UrlGrammar(Enum):
    """Shapes of storage URLs."""
    BUCKET = "bucket"                        # scheme://host-or-region/bucket-or-table/db[?query]
    CONNECTION_STRING = "connection_string"  # scheme://db[?embedded-connection-url]
    HOST = "host"                            # scheme://host[:port]/db[?query]
    NAME_ONLY = "name_only"                  # scheme://db[?query]


_PATTERNS = {
    UrlGrammar.BUCKET: re.compile(
        r"^(?P<scheme>[^/?]+)://(?P<host>[^/?]*)/(?P<bucket>[^/?]*)/(?P<db>[^?]*)(?P<query>\?.*)?$"
    ),
    UrlGrammar.CONNECTION_STRING: re.compile(
        r"^(?P<scheme>[^/?]+)://(?P<db>[^?]*)(?P<query>\?.*)?$"
    ),
    UrlGrammar.HOST: re.compile(
        r"^(?P<scheme>[^/?]+)://(?P<host>[^/?]*)/(?P<db>[^?]*)(?P<query>\?.*)?$"
    ),
    UrlGrammar.NAME_ONLY: re.compile(
        r"^(?P<scheme>[^/?]+)://(?P<db>[^?]*)(?P<query>\?.*)?$"
    ),
}

_SCHEME_GRAMMARS: Dict[str, UrlGrammar] = {
    "ddb": UrlGrammar.BUCKET,
    "riak": UrlGrammar.BUCKET,
    "couchbase": UrlGrammar.BUCKET,
    "sql": UrlGrammar.CONNECTION_STRING,
    "inf": UrlGrammar.HOST,
    "dev": UrlGrammar.HOST,
    "free": UrlGrammar.HOST,
    "mem": UrlGrammar.NAME_ONLY,
}


def register_scheme(kind: str, grammar: UrlGrammar) -> None:
    """Teach the rewriter a new backend kind."""
    if not kind or ":" in kind or "/" in kind:
        raise ValueError(f"Invalid scheme kind: {kind!r}")
    _SCHEME_GRAMMARS[kind] = grammar


def known_schemes() -> Dict[str, UrlGrammar]:
    return dict(_SCHEME_GRAMMARS)


@dataclass(frozen=True)
class StorageUrl:
    """A parsed storage URL."""
    scheme: str
    grammar: UrlGrammar
    db_name: str
    host: Optional[str] = None
    bucket: Optional[str] = None
    query: str = ""

    def with_db_name(self, db_name: str) -> "StorageUrl":
        return replace(self, db_name=db_name)

    def __str__(self) -> str:
        if self.grammar is UrlGrammar.BUCKET:
            body = f"{self.host}/{self.bucket}/{self.db_name}"
        elif self.grammar is UrlGrammar.HOST:
            body = f"{self.host}/{self.db_name}"
        else:
            body = self.db_name
        return f"{self.scheme}://{body}{self.query}"


def parse_storage_url(url: str) -> StorageUrl:
    """
    Parse a storage URL according to its scheme's grammar.

    Raises:
        UnrecognizedSchemeError: If the scheme is unknown or the URL does not
            fit the scheme's grammar.
    """
    scheme, sep, _ = url.partition("://")
    if not sep:
        raise UnrecognizedSchemeError(url)
    grammar = _SCHEME_GRAMMARS.get(scheme.rsplit(":", 1)[-1])
    if grammar is None:
        raise UnrecognizedSchemeError(url)

    match = _PATTERNS[grammar].match(url)
    if match is None:
        raise UnrecognizedSchemeError(url)
    groups = match.groupdict()
    return StorageUrl(
        scheme=groups["scheme"],
        grammar=grammar,
        db_name=groups["db"],
        host=groups.get("host"),
        bucket=groups.get("bucket"),
        query=groups["query"] or "",
    )


def rewrite_db_name(url: str, db_name: str) -> str:
    """
    Return the URL of a sibling store called ``db_name``.

    Scheme, host, bucket and query parameters are preserved verbatim.
    """
    if not db_name or "?" in db_name:
        raise ValueError(f"Invalid database name: {db_name!r}")
    return str(parse_storage_url(url).with_db_name(db_name))


def graph_name(url: str) -> str:
    """Gets the end of the path from a storage URL."""
    return url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]


def build_url(protocol: str, host: str, port: Optional[int], db_name: str) -> str:
    """Assemble ``protocol://host[:port]/db_name``."""
    authority = f"{host}:{port}" if port else host
    return f"{protocol}://{authority}/{db_name}"


def join_root(root: str, db_name: str) -> str:
    """Append a database name to a root URL such as ``kiara:dev://host:4334``."""
    return root + db_name if root.endswith("/") else f"{root}/{db_name}"
