"""Batched detail enrichment with periodic checkpoints."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

from .logging_config import get_logger
from .models import DelayPolicy, PhaseStats, Record
from .storage import Checkpoint

DetailFetcher = Callable[[Record], Awaitable[Record]]
ErrorFields = Callable[[Record, BaseException], Record]

ERROR_FIELD = "ERROR"


def _default_label(record: Record) -> str:
    return str(record.get("ID", "<record>"))


@dataclass
class DetailOptions:
    """Options for one enrichment pass."""

    batch_size: int = 5
    checkpoint_every: int = 10
    batch_delay: DelayPolicy = field(default_factory=DelayPolicy)
    limit: Optional[int] = None
    start_index: int = 0

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be positive")
        if self.checkpoint_every < 1:
            raise ValueError("checkpoint_every must be positive")
        if self.start_index < 0:
            raise ValueError("start_index must not be negative")


class DetailHarvester:
    """Enriches every record of a collection with fetched detail fields.

    Records are processed in fixed-size batches. Each batch is issued
    concurrently and fully awaited before the next one starts; a record whose
    enrichment fails is kept with an ``ERROR`` field.
    """

    def __init__(self, options: Optional[DetailOptions] = None, name: str = "details") -> None:
        self.options = options or DetailOptions()
        self.logger = get_logger(f"details.{name}")

    def select(self, collection: Sequence[Record]) -> List[Record]:
        start = self.options.start_index
        if self.options.limit is not None:
            return list(collection[start:start + self.options.limit])
        return list(collection[start:])

    async def harvest_details(
        self,
        collection: Sequence[Record],
        detail_fetcher: DetailFetcher,
        *,
        completed: Optional[Sequence[Record]] = None,
        on_error: Optional[ErrorFields] = None,
        checkpoint: Optional[Checkpoint] = None,
        stats: Optional[PhaseStats] = None,
        label: Optional[Callable[[Record], str]] = None,
    ) -> List[Record]:
        """Run the enrichment pass and return the detailed collection.

        Args:
            collection: Records to enrich; never mutated
            detail_fetcher: Coroutine returning the fields to merge into a record
            completed: Already-enriched records from an earlier run, kept ahead of the new ones
            on_error: Extra fields for a record whose enrichment failed
            checkpoint: Saved every ``checkpoint_every`` batches and after the last
            stats: Counters to update
            label: Identifier of a record for log and failure entries

        Returns:
            A new list with the completed records followed by one merged record
            per selected input record
        """
        if stats is None:
            stats = PhaseStats(phase="details")

        records = self.select(collection)
        label = label or _default_label
        batch_size = self.options.batch_size
        total_batches = math.ceil(len(records) / batch_size)
        detailed: List[Record] = list(completed or [])
        resumed = len(detailed)

        self.logger.info(
            f"Processing {len(records)} records in {total_batches} batch(es) of {batch_size}"
        )

        for batch_number, offset in enumerate(range(0, len(records), batch_size), start=1):
            batch = records[offset:offset + batch_size]
            self.logger.info(f"--- Processing batch {batch_number}/{total_batches} ---")

            results = await asyncio.gather(
                *(detail_fetcher(record) for record in batch),
                return_exceptions=True,
            )

            batch_output: List[Record] = []
            for record, result in zip(batch, results):
                stats.total += 1
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    stats.add_error(label(record), result)
                    self.logger.warning(f"  Failed {label(record)}: {result}")
                    fallback = on_error(record, result) if on_error else {}
                    batch_output.append({**record, **fallback, ERROR_FIELD: str(result)})
                else:
                    stats.succeeded += 1
                    batch_output.append({**record, **(result or {})})

            detailed.extend(batch_output)
            self.logger.info(
                f"Batch {batch_number} completed. Total processed: {len(detailed) - resumed}/{len(records)}"
            )

            is_last = batch_number == total_batches
            if checkpoint is not None and (batch_number % self.options.checkpoint_every == 0 or is_last):
                checkpoint.save(detailed)

            if not is_last:
                await self._pause()

        self.logger.info(
            f"Detail pass completed: {stats.succeeded} succeeded, {stats.failed} failed"
        )
        return detailed

    async def _pause(self) -> None:
        seconds = self.options.batch_delay.next_delay()
        if seconds > 0:
            await asyncio.sleep(seconds)

