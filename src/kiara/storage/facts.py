"""
Fact log backed by Polars DataFrames.

Each store keeps an append-only log of datoms:

    e      entity id (partition-tagged)
    a      attribute entity id
    v      entity id for reference attributes, ValueId otherwise
    tx     transaction number (t) that wrote the datom
    added  True for an assertion, False for a retraction

A point-in-time view is derived from the log by keeping, for each
(e, a, v), the last operation at or before the requested t and dropping
the ones that were retractions.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import polars as pl


FACT_SCHEMA = {
    "e": pl.Int64,
    "a": pl.Int64,
    "v": pl.Int64,
    "tx": pl.Int64,
    "added": pl.Boolean,
}

Datom = tuple[int, int, int, int, bool]


def empty_facts() -> pl.DataFrame:
    return pl.DataFrame(schema=FACT_SCHEMA)


def datoms_to_frame(datoms: Sequence[Datom]) -> pl.DataFrame:
    if not datoms:
        return empty_facts()
    return pl.DataFrame(list(datoms), schema=FACT_SCHEMA, orient="row")


def current_view(log: pl.DataFrame, t: int) -> pl.DataFrame:
    """Datoms that hold at transaction t, with the tx that asserted them."""
    return (
        log.filter(pl.col("tx") <= t)
        .sort("tx", maintain_order=True)
        .group_by(["e", "a", "v"], maintain_order=True)
        .agg(pl.col("added").last(), pl.col("tx").last())
        .filter(pl.col("added"))
        .select(["e", "a", "v", "tx"])
    )


class FactLog:
    """
    Append-only datom log.

    Frames are never mutated in place; every append swaps in a new frame,
    so a reference taken by a snapshot stays stable.
    """

    def __init__(self, df: Optional[pl.DataFrame] = None):
        self._df = df if df is not None else empty_facts()

    @property
    def df(self) -> pl.DataFrame:
        return self._df

    def __len__(self) -> int:
        return self._df.height

    def appended(self, datoms: Iterable[Datom]) -> pl.DataFrame:
        """The log as it would be after appending datoms. Does not modify self."""
        frame = datoms_to_frame(list(datoms))
        if frame.height == 0:
            return self._df
        return pl.concat([self._df, frame], how="vertical")

    def append(self, datoms: Iterable[Datom]) -> None:
        self._df = self.appended(datoms)

    def replace(self, df: pl.DataFrame) -> None:
        self._df = df

    def max_entity_seq(self, partition_lo: int, partition_hi: int) -> Optional[int]:
        """Largest entity id in [partition_lo, partition_hi), if any."""
        in_range = self._df.filter(
            (pl.col("e") >= partition_lo) & (pl.col("e") < partition_hi)
        )
        if in_range.height == 0:
            return None
        return in_range.select(pl.col("e").max()).item()

    def basis_t(self) -> int:
        if self._df.height == 0:
            return 0
        return self._df.select(pl.col("tx").max()).item()
