"""
Persistence layer for local stores.

Each store is saved under its own directory below the backend's data
directory, named by the percent-encoded storage URL:

    data_dir/
        kiara%3Adev%3A%2F%2Flocalhost%3A4334%2Fsystem/
            facts.parquet     - datom log (e, a, v, tx, added)
            values.parquet    - value dictionary (value_id, kind, lex)
            metadata.json     - url, basis_t, saved_at

Files are written to a temporary name and moved into place, so a reader
never sees a half-written log.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import quote, unquote

import polars as pl

from kiara.errors import BackendUnavailableError
from kiara.storage.facts import FACT_SCHEMA
from kiara.storage.values import ValueDict

logger = logging.getLogger(__name__)


class StoragePersistence:
    """
    Handles save/load of store logs.

    Args:
        base_path: Directory holding one sub-directory per store
    """

    FACTS_FILE = "facts.parquet"
    VALUES_FILE = "values.parquet"
    METADATA_FILE = "metadata.json"

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)

    def store_path(self, url: str) -> Path:
        return self.base_path / quote(url, safe="")

    def exists(self, url: str) -> bool:
        return (self.store_path(url) / self.FACTS_FILE).exists()

    def list_urls(self) -> List[str]:
        if not self.base_path.exists():
            return []
        return sorted(
            unquote(path.name)
            for path in self.base_path.iterdir()
            if (path / self.FACTS_FILE).exists()
        )

    def save(self, url: str, facts: pl.DataFrame, values: ValueDict) -> None:
        """Write a store's log and value dictionary."""
        path = self.store_path(url)
        try:
            path.mkdir(parents=True, exist_ok=True)
            self._write_parquet(values.to_dataframe(), path / self.VALUES_FILE)
            self._write_parquet(facts, path / self.FACTS_FILE)
            metadata = {
                "url": url,
                "basis_t": int(facts.select(pl.col("tx").max()).item() or 0),
                "saved_at": datetime.now(timezone.utc).isoformat(),
            }
            tmp = path / (self.METADATA_FILE + ".tmp")
            tmp.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
            os.replace(tmp, path / self.METADATA_FILE)
        except OSError as e:
            raise BackendUnavailableError(f"Failed to save store {url}: {e}", url=url) from e

    def load(self, url: str) -> Optional[Tuple[pl.DataFrame, ValueDict]]:
        """Read a store's log and value dictionary, or None if never saved."""
        if not self.exists(url):
            return None
        path = self.store_path(url)
        try:
            facts = pl.read_parquet(path / self.FACTS_FILE).cast(FACT_SCHEMA)
            values = ValueDict.from_dataframe(pl.read_parquet(path / self.VALUES_FILE))
        except (OSError, pl.exceptions.PolarsError) as e:
            raise BackendUnavailableError(f"Failed to load store {url}: {e}", url=url) from e
        logger.debug(f"Loaded {facts.height} datoms for {url} from {path}")
        return facts, values

    @staticmethod
    def _write_parquet(df: pl.DataFrame, target: Path) -> None:
        tmp = target.with_name(target.name + ".tmp")
        df.write_parquet(tmp)
        os.replace(tmp, target)
