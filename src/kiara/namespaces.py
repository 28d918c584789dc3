"""
Namespace prefixes.

Attribute and entity idents are stored as qualified names ``prefix:local``.
The prefix table lives in the system store as entities carrying
``k/prefix`` and ``k/namespace``. Prefixes for namespaces seen for the first
time are minted as ``ns1``, ``ns2``, ... by an optimistic allocator: it
reads a snapshot, proposes the next free number and commits conditionally
on the snapshot still being current. Losers of a race re-read and retry,
so concurrent callers for the same namespace converge on one prefix and
callers for different namespaces never share one.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Optional, Tuple

import polars as pl

from kiara.errors import AllocationConflictError, ConflictError, KiaraError, UniquenessError
from kiara.models import BNODE_PREFIX
from kiara.storage.backend import Connection, Snapshot
from kiara.storage.transactions import AtomicCheck, TempId

logger = logging.getLogger(__name__)

KIARA_NS = "http://raw.github.com/quoll/kiara/master/ns#"
KIARA_PREFIX = "k"

GENERATED_PREFIX = "ns"
_GENERATED_PATTERN = rf"^{GENERATED_PREFIX}(\d+)$"
_GENERATED_RE = re.compile(_GENERATED_PATTERN)

_NAMESPACE_PARTITION = "k/system"


def split_iri(iri: str) -> Tuple[str, str]:
    """
    Split an IRI into namespace and local name.

    The split falls after the last ``#`` or ``/``; IRIs with neither (such
    as URNs) split after the last ``:``.

    >>> split_iri("http://example.org/people#alice")
    ('http://example.org/people#', 'alice')
    """
    idx = max(iri.rfind("#"), iri.rfind("/"))
    if idx < 0:
        idx = iri.rfind(":")
    if idx < 0:
        raise ValueError(f"Cannot split IRI with no separator: {iri!r}")
    return iri[: idx + 1], iri[idx + 1 :]


def is_prefix_style(ref: str) -> bool:
    """True for references like ``ex:`` that already are a prefix."""
    return len(ref) > 1 and ref.endswith(":") and "/" not in ref and "#" not in ref


def is_generated_prefix(prefix: str) -> bool:
    return _GENERATED_RE.match(prefix) is not None


# =============================================================================
# Prefix table
# =============================================================================

def known_prefixes(system: Connection) -> Dict[str, str]:
    """The prefix table: prefix -> namespace IRI."""
    return _prefix_table(system.db())


def _prefix_table(db: Snapshot) -> Dict[str, str]:
    prefixes = db.attribute_values("k/prefix")
    namespaces = db.attribute_values("k/namespace")
    if prefixes.height == 0 or namespaces.height == 0:
        return {}
    joined = prefixes.join(namespaces, on="e", suffix="_ns")
    return dict(zip(joined.get_column("value").to_list(), joined.get_column("value_ns").to_list()))


def find_prefix(db: Snapshot, namespace: str) -> Optional[str]:
    entities = db.find_entities("k/namespace", namespace)
    if not entities:
        return None
    return db.value_of(entities[0], "k/prefix")


def _biggest_generated_id(db: Snapshot) -> int:
    prefixes = db.attribute_values("k/prefix")
    if prefixes.height == 0:
        return 0
    numbers = (
        prefixes.select(
            pl.col("value").str.extract(_GENERATED_PATTERN, 1).cast(pl.Int64, strict=False).alias("n")
        )
        .drop_nulls()
    )
    if numbers.height == 0:
        return 0
    return int(numbers.get_column("n").max())


def _try_register(system: Connection, db: Snapshot, prefix: str, namespace: str) -> None:
    try:
        system.transact(
            [
                AtomicCheck(db.basis_t),
                {"db/id": TempId(_NAMESPACE_PARTITION), "k/prefix": prefix, "k/namespace": namespace},
            ]
        )
    except (ConflictError, UniquenessError) as e:
        raise AllocationConflictError(
            f"Could not register {prefix} for {namespace}: {e}",
            prefix=prefix,
            namespace=namespace,
        ) from e


def resolve_prefix(system: Connection, namespace_ref: str) -> str:
    """
    Return the prefix for a caller-supplied namespace reference.

    A prefix-style reference (``ex:``) is returned without its colon and
    never recorded. Anything else goes through :func:`allocate_prefix`.
    """
    if is_prefix_style(namespace_ref):
        return namespace_ref[:-1]
    return allocate_prefix(system, namespace_ref)


def allocate_prefix(system: Connection, namespace_ref: str) -> str:
    """
    Return the recorded prefix for a namespace, minting one if it has none.

    Namespaces produced by :func:`split_iri` always come through here, since
    ones like ``urn:isbn:`` or ``mailto:`` look like prefix tokens.
    """
    attempts = 0
    while True:
        db = system.db()
        existing = find_prefix(db, namespace_ref)
        if existing is not None:
            return existing

        candidate = f"{GENERATED_PREFIX}{_biggest_generated_id(db) + 1}"
        try:
            _try_register(system, db, candidate, namespace_ref)
        except AllocationConflictError as e:
            attempts += 1
            logger.debug(f"Retrying prefix allocation for {namespace_ref} (attempt {attempts}): {e}")
            continue

        logger.info(f"Registered namespace {namespace_ref} as {candidate}")
        return candidate


# =============================================================================
# IRI <-> ident mapping
# =============================================================================

class PrefixResolver:
    """
    Maps IRIs to qualified-name idents and back.

    Built from a prefix table snapshot. When given a system connection,
    unknown namespaces are registered through the allocator; without one,
    an unknown namespace is an error.
    """

    def __init__(
        self,
        system: Optional[Connection] = None,
        namespace_table: Optional[Dict[str, str]] = None,
    ):
        self._system = system
        if namespace_table is None:
            namespace_table = known_prefixes(system) if system is not None else {}
        self._by_prefix = dict(namespace_table)
        self._by_namespace = {ns: prefix for prefix, ns in self._by_prefix.items()}

    @property
    def namespace_table(self) -> Dict[str, str]:
        return dict(self._by_prefix)

    def prefix_for(self, namespace: str) -> str:
        prefix = self._by_namespace.get(namespace)
        if prefix is not None:
            return prefix
        if self._system is None:
            raise KiaraError(f"No prefix registered for namespace {namespace}", namespace=namespace)
        prefix = allocate_prefix(self._system, namespace)
        self._by_namespace[namespace] = prefix
        self._by_prefix[prefix] = namespace
        return prefix

    def ident_for(self, iri: str) -> str:
        """``http://ex.org/ns#a`` -> ``ns1:a``. Blank nodes keep their label."""
        if iri.startswith(BNODE_PREFIX):
            return iri
        namespace, local = split_iri(iri)
        return f"{self.prefix_for(namespace)}:{local}"

    def iri_for(self, ident: str) -> str:
        """Inverse of ident_for."""
        if ident.startswith(BNODE_PREFIX):
            return ident
        prefix, sep, local = ident.partition(":")
        namespace = self._by_prefix.get(prefix)
        if not sep or namespace is None:
            raise KiaraError(f"Unknown prefix in ident {ident}", ident=ident)
        return namespace + local
