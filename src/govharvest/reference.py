"""Reference lookup tables resolved from a local cache or one remote fetch."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import ConfigurationError
from .logging_config import get_logger
from .models import Record

logger = get_logger("reference")

ReferenceLoader = Callable[[], Awaitable[List[Record]]]


class ReferenceTable:
    """In-memory lookup keyed by one field of each entry.

    The table is loaded at most once per run: from ``cache_path`` when that
    file exists, otherwise through ``loader``. Remote results are not written
    back to the cache.
    """

    def __init__(
        self,
        name: str,
        loader: ReferenceLoader,
        *,
        cache_path: Optional[Path] = None,
        key_field: str = "ID",
    ) -> None:
        self.name = name
        self.loader = loader
        self.cache_path = Path(cache_path) if cache_path is not None else None
        self.key_field = key_field
        self._entries: Optional[Dict[Any, Record]] = None

    async def load(self) -> Dict[Any, Record]:
        if self._entries is not None:
            return self._entries

        if self.cache_path is not None and self.cache_path.exists():
            rows = self._read_cache(self.cache_path)
            source = "cache"
        else:
            logger.info(f"Fetching {self.name} data from API...")
            rows = await self.loader()
            source = "API"

        entries: Dict[Any, Record] = {}
        for row in rows or []:
            if isinstance(row, dict) and self.key_field in row:
                entries[row[self.key_field]] = row

        self._entries = entries
        logger.info(f"Loaded {len(entries)} {self.name} entries from {source}")
        return entries

    def get(self, key: Any, default: Optional[Record] = None) -> Optional[Record]:
        if self._entries is None:
            raise RuntimeError(f"Reference table '{self.name}' used before load()")
        if key in self._entries:
            return self._entries[key]
        # Listing payloads sometimes carry numeric ids as strings
        alternate = _alternate_key(key)
        if alternate is not None and alternate in self._entries:
            return self._entries[alternate]
        return default

    def __len__(self) -> int:
        return len(self._entries or {})

    def _read_cache(self, path: Path) -> List[Record]:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except ValueError as exc:
            raise ConfigurationError(f"Reference cache is not valid JSON: {path} ({exc})") from exc
        if not isinstance(data, list):
            raise ConfigurationError(f"Reference cache does not contain a JSON array: {path}")
        return data


def _alternate_key(key: Any) -> Optional[Any]:
    if isinstance(key, int):
        return str(key)
    if isinstance(key, str) and key.strip().isdigit():
        return int(key.strip())
    return None
