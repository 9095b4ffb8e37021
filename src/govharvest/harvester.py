"""Paginated resource harvester.

Fetches every page of a remote listing, tolerates individual page failures,
and returns the collection deduplicated by natural key.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import httpx

from .errors import FetchError, HarvestAborted, ParseError
from .logging_config import get_logger
from .models import ABORT, DelayPolicy, NaturalKey, Page, PhaseStats, Record, RetryPolicy

PageFetcher = Callable[[int], Awaitable[Page]]

DEFAULT_MAX_CONSECUTIVE_FAILURES = 3


MISSING_KEY_VALUES = (None, "")


def natural_key_of(record: Record, natural_key: NaturalKey) -> Optional[Any]:
    """Return the record's key value, or ``None`` when any key field is missing or empty."""
    if not natural_key:
        return None
    if isinstance(natural_key, str):
        value = record.get(natural_key)
        return None if value in MISSING_KEY_VALUES else value
    values = tuple(record.get(field) for field in natural_key)
    if any(value in MISSING_KEY_VALUES for value in values):
        return None
    return values


def deduplicate(records: Iterable[Record], natural_key: NaturalKey) -> List[Record]:
    """Deduplicate by natural key; the last record wins, the first position is kept.

    Records without a key value are kept unchanged.
    """
    if not natural_key:
        return list(records)

    positions: Dict[Any, int] = {}
    result: List[Record] = []
    for record in records:
        key = natural_key_of(record, natural_key)
        if key is None:
            result.append(record)
            continue
        if key in positions:
            result[positions[key]] = record
        else:
            positions[key] = len(result)
            result.append(record)
    return result


def plan_page_bound(
    page_size: int,
    total_records: Optional[int] = None,
    total_pages: Optional[int] = None,
    limit: Optional[int] = None,
) -> Optional[int]:
    """Number of page fetches to issue, or ``None`` to iterate until an empty page."""
    bound: Optional[int] = None
    if total_pages is not None:
        bound = max(total_pages, 0)
    elif total_records is not None:
        bound = math.ceil(max(total_records, 0) / page_size)

    if limit is not None:
        limit_pages = max(1, math.ceil(limit / page_size))
        bound = limit_pages if bound is None else min(bound, limit_pages)

    return bound


class PageHarvester:
    """Walks a paginated listing one page at a time.

    Args:
        fetch_page: Coroutine function returning the ``Page`` for an index
        page_size: Records per page requested from the remote source
        first_page_index: 0 or 1 depending on the source
        natural_key: Field name (or names) used for deduplication
        delay: Pause between consecutive page fetches
        retry_policy: Outcome applied once a page keeps failing
        max_pages: Safety cap when the source reports no totals
        name: Label used in log messages
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        *,
        page_size: int,
        first_page_index: int = 1,
        natural_key: NaturalKey = None,
        delay: Optional[DelayPolicy] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_pages: Optional[int] = None,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        name: str = "listing",
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self._fetch_page = fetch_page
        self.page_size = page_size
        self.first_page_index = first_page_index
        self.natural_key = natural_key
        self.delay = delay or DelayPolicy()
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_pages = max_pages
        self.max_consecutive_failures = max_consecutive_failures
        self.name = name
        self.logger = get_logger(f"harvester.{name}")

    async def fetch_page(self, page_index: int, stats: Optional[PhaseStats] = None) -> Page:
        """Fetch one page; transport and payload failures surface as ``FetchError``."""
        try:
            page = await self._fetch_page(page_index)
        except FetchError as exc:
            if isinstance(exc, ParseError) and exc.payload_prefix:
                self.logger.debug(f"Page {page_index} payload prefix: {exc.payload_prefix!r}")
            raise
        except httpx.HTTPError as exc:
            raise FetchError(page_index, f"Page {page_index} request failed: {exc}", cause=exc) from exc
        except (ValueError, KeyError, TypeError) as exc:
            raise ParseError(page_index, f"Page {page_index} payload malformed: {exc}", cause=exc) from exc

        if stats is not None:
            stats.records_fetched += len(page.records)
        return page

    async def harvest_all(
        self,
        limit: Optional[int] = None,
        stats: Optional[PhaseStats] = None,
        checkpoint: Optional[Any] = None,
    ) -> List[Record]:
        """Fetch every page and return the deduplicated collection.

        A failure on the first page propagates as ``FetchError``; later page
        failures are skipped or abort the run according to the retry policy.
        ``checkpoint`` (anything with ``save(records)``) receives the
        accumulated records after every successful page.
        """
        if stats is None:
            stats = PhaseStats(phase="list")

        collection: List[Record] = []
        page_index = self.first_page_index

        self.logger.info(f"Fetching page {page_index}...")
        stats.total += 1
        first_page = await self.fetch_page(page_index, stats)
        stats.succeeded += 1

        if first_page.is_empty:
            self.logger.warning("No data returned on the first page")
            return []

        collection.extend(first_page.records)
        self._save_progress(checkpoint, collection)

        bound = plan_page_bound(
            self.page_size,
            total_records=first_page.total_records,
            total_pages=first_page.total_pages,
            limit=limit,
        )
        if first_page.total_records is not None:
            self.logger.info(f"Total records available: {first_page.total_records}")
        self.logger.info(
            f"Page {page_index}: {len(first_page.records)} records; "
            f"will fetch {bound if bound is not None else 'until empty'} page(s)"
        )

        pages_issued = 1
        consecutive_failures = 0

        while True:
            if bound is not None and pages_issued >= bound:
                break
            if self.max_pages is not None and pages_issued >= self.max_pages:
                self.logger.warning(f"Safety limit reached ({self.max_pages} pages), stopping")
                break
            if limit is not None and len(collection) >= limit:
                self.logger.info(f"Reached limit of {limit} records")
                break

            page_index += 1
            await self._pause()

            progress = f"{pages_issued + 1}/{bound}" if bound is not None else str(pages_issued + 1)
            self.logger.info(f"Fetching page {page_index} ({progress})...")
            stats.total += 1
            pages_issued += 1

            try:
                page = await self.fetch_page(page_index, stats)
            except FetchError as exc:
                stats.add_error(page_index, exc)
                if self.retry_policy.on_exhausted == ABORT:
                    raise HarvestAborted(page_index, f"Aborting on page {page_index}: {exc}", cause=exc) from exc

                self.logger.warning(f"Skipping page {page_index}: {exc}")
                consecutive_failures += 1
                if bound is None and consecutive_failures >= self.max_consecutive_failures:
                    self.logger.error(
                        f"{consecutive_failures} consecutive page failures without a known bound, stopping"
                    )
                    break
                continue

            consecutive_failures = 0
            stats.succeeded += 1

            if page.is_empty:
                self.logger.info(f"No data on page {page_index}, stopping")
                break

            collection.extend(page.records)
            self._save_progress(checkpoint, collection)
            self.logger.info(
                f"Page {page_index}: {len(page.records)} records (total: {len(collection)})"
            )

        unique = deduplicate(collection, self.natural_key)
        duplicates = len(collection) - len(unique)
        if limit is not None:
            unique = unique[:limit]

        stats.unique_records = len(unique)
        self.logger.info(
            f"Fetched {len(collection)} records, {duplicates} duplicates removed, "
            f"{len(unique)} kept, {stats.failed} page(s) failed"
        )
        return unique

    async def _pause(self) -> None:
        seconds = self.delay.next_delay()
        if seconds > 0:
            await asyncio.sleep(seconds)

    def _save_progress(self, checkpoint: Optional[Any], collection: List[Record]) -> None:
        if checkpoint is None:
            return
        try:
            checkpoint.save(collection)
        except OSError as exc:
            self.logger.error(f"Failed to save progress: {exc}")
