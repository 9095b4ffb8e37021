"""govharvest command line runner.

Runs one phase of one site per invocation:

- ``list``: walk the paginated listing and write ``*raw_result.json``
- ``details``: enrich the raw collection and write ``*detailed_result.json``
- ``download``: fetch every attachment of the persisted collection

Per-item failures are logged and counted; only configuration problems and an
explicit ``abort`` retry outcome end the run with exit code 1.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import HarvestConfig
from .details import DetailHarvester, DetailOptions
from .downloader import AttachmentDownloader
from .errors import ConfigurationError, FetchError, HarvestAborted
from .harvester import PageHarvester
from .logging_config import get_logger, setup_logging
from .models import PhaseStats, Record
from .sources import SiteSource, available_sources, build_source
from .storage import Checkpoint, persist_final, read_collection, write_collection, write_csv

PHASES = ("list", "details", "download")

logger = get_logger("runner")


@dataclass
class RunSummary:
    """Summary of one site/phase run."""

    site: str
    phase: str
    started_at: str
    completed_at: str = ""
    records: int = 0
    output_path: Optional[str] = None
    csv_path: Optional[str] = None
    phases: List[PhaseStats] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def exit_code(self) -> int:
        """Return 1 when the run was stopped, 0 otherwise."""
        return 1 if self.errors else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site": self.site,
            "phase": self.phase,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "records": self.records,
            "output_path": self.output_path,
            "csv_path": self.csv_path,
            "phases": [stats.to_dict() for stats in self.phases],
            "errors": self.errors,
            "exit_code": self.exit_code(),
        }


class HarvestRunner:
    """Runs the phases of one configured source."""

    def __init__(self, source: SiteSource, logger: Optional[logging.Logger] = None) -> None:
        self.source = source
        self.site = source.site
        self.logger = logger or get_logger(f"runner.{source.name}")

    async def run(
        self,
        phase: str,
        *,
        limit: Optional[int] = None,
        start: int = 0,
        test_ids: Optional[Sequence[str]] = None,
        download: bool = False,
        csv: bool = False,
    ) -> RunSummary:
        summary = RunSummary(
            site=self.source.name,
            phase=phase,
            started_at=datetime.utcnow().isoformat() + "Z",
        )

        try:
            if phase == "list":
                await self.run_list(summary, limit=limit, csv=csv)
            elif phase == "details":
                await self.run_details(
                    summary, limit=limit, start=start, test_ids=test_ids, download=download, csv=csv
                )
            elif phase == "download":
                await self.run_download(summary)
            else:
                raise ConfigurationError(f"Unknown phase '{phase}'")
        except (ConfigurationError, HarvestAborted) as exc:
            self.logger.error(str(exc))
            summary.errors.append(str(exc))
        finally:
            await self.source.close()
            summary.completed_at = datetime.utcnow().isoformat() + "Z"

        for stats in summary.phases:
            self._log_phase_summary(stats)
        return summary

    async def run_list(self, summary: RunSummary, *, limit: Optional[int] = None, csv: bool = False) -> List[Record]:
        source = self.source
        stats = self._start_phase(summary, "list")

        harvester = PageHarvester(
            source.fetch_page,
            page_size=self.site.page_size,
            first_page_index=source.first_page_index,
            natural_key=source.natural_key,
            delay=self.site.page_delay,
            retry_policy=source.http_client.retry,
            max_pages=self.site.max_pages,
            name=source.name,
        )
        checkpoint = Checkpoint(source.raw_result_path) if source.saves_list_progress else None

        self.logger.info(f"=== Listing {source.name} ({source.site_path}) ===")
        try:
            records = await harvester.harvest_all(limit=limit, stats=stats, checkpoint=checkpoint)
        except FetchError as exc:
            raise ConfigurationError(f"First page of '{source.name}' failed, no usable data: {exc}") from exc
        finally:
            stats.finish()

        write_collection(source.raw_result_path, records)
        summary.records = len(records)
        summary.output_path = str(source.raw_result_path)
        if csv:
            self._write_csv(summary, source.raw_result_path, records)

        source.log_statistics(records, "list")
        return records

    async def run_details(
        self,
        summary: RunSummary,
        *,
        limit: Optional[int] = None,
        start: int = 0,
        test_ids: Optional[Sequence[str]] = None,
        download: bool = False,
        csv: bool = False,
    ) -> List[Record]:
        source = self.source
        if not source.has_details:
            raise ConfigurationError(f"Site '{source.name}' has no details phase")
        if start < 0:
            raise ConfigurationError(f"--start must not be negative, got {start}")

        batch_size = self.site.detail_batch_size
        completed: List[Record] = []
        if test_ids:
            self.logger.info(f"=== TEST MODE: {len(test_ids)} record(s): {', '.join(test_ids)} ===")
            collection = source.build_test_records(list(test_ids))
            batch_size = source.test_batch_size or batch_size
            checkpoint = None
        else:
            collection = read_collection(source.raw_result_path)
            self.logger.info(f"Loaded {len(collection)} records from {source.raw_result_path}")
            checkpoint = Checkpoint(source.checkpoint_path)
            completed = self._resume_from(checkpoint, start)

        stats = self._start_phase(summary, "details")
        try:
            await source.prepare()
        except FetchError as exc:
            raise ConfigurationError(f"Reference data for '{source.name}' unavailable: {exc}") from exc

        options = DetailOptions(
            batch_size=batch_size,
            checkpoint_every=self.site.checkpoint_every,
            batch_delay=self.site.detail_delay,
            limit=limit,
            start_index=start,
        )
        try:
            detailed = await DetailHarvester(options, name=source.name).harvest_details(
                collection,
                source.fetch_details,
                completed=completed,
                on_error=source.detail_error_fields,
                checkpoint=checkpoint,
                stats=stats,
                label=source.record_label,
            )
        finally:
            stats.finish()

        summary.records = len(detailed)
        if test_ids:
            print(json.dumps(detailed, ensure_ascii=False, indent=2))
        else:
            persist_final(source.detailed_result_path, detailed, checkpoint)
            summary.output_path = str(source.detailed_result_path)
            if csv:
                self._write_csv(summary, source.detailed_result_path, detailed)

        source.log_statistics(detailed, "details")

        if download:
            await self._download(summary, detailed)
        return detailed

    async def run_download(self, summary: RunSummary) -> None:
        source = self.source
        path = source.detailed_result_path
        if not (source.has_details and path.exists()):
            path = source.raw_result_path
        records = read_collection(path)
        self.logger.info(f"Loaded {len(records)} records from {path}")
        await self._download(summary, records)

    async def _download(self, summary: RunSummary, records: Sequence[Record]) -> None:
        source = self.source
        stats = self._start_phase(summary, "download")
        downloader = AttachmentDownloader(
            source.http_client,
            source.attachments_dir,
            origin=source.origin,
            delay=self.site.download_delay,
        )
        attachments = source.collect_attachments(records)
        self.logger.info(f"=== Downloading {len(attachments)} attachment(s) to {source.attachments_dir} ===")
        try:
            await downloader.download_all(attachments, stats=stats)
        finally:
            stats.finish()

    def _resume_from(self, checkpoint: Checkpoint, start: int) -> List[Record]:
        """Return the already-enriched records kept when resuming at ``start``."""
        if not checkpoint.exists():
            if start:
                self.logger.warning(
                    f"No checkpoint at {checkpoint.path}; records before {start} will be missing from the output"
                )
            return []

        saved = checkpoint.load()
        if not start:
            self.logger.warning(
                f"Found checkpoint with {len(saved)} records from an interrupted run; it will be overwritten. "
                f"Use --start {len(saved)} to resume"
            )
            return []

        completed = saved[:start]
        if len(completed) < start:
            self.logger.warning(f"Checkpoint holds only {len(completed)} records, expected {start}")
        self.logger.info(f"Resuming at record {start} with {len(completed)} records from {checkpoint.path}")
        return completed

    def _start_phase(self, summary: RunSummary, phase: str) -> PhaseStats:
        stats = PhaseStats(phase=phase)
        summary.phases.append(stats)
        self.source.bind_stats(stats)
        return stats

    def _write_csv(self, summary: RunSummary, json_path: Path, records: Sequence[Record]) -> None:
        written = write_csv(json_path.with_suffix(".csv"), records)
        if written is not None:
            summary.csv_path = str(written)

    def _log_phase_summary(self, stats: PhaseStats) -> None:
        self.logger.info("=" * 60)
        self.logger.info(f"{stats.phase.upper()} SUMMARY ({self.source.name})")
        self.logger.info("=" * 60)
        self.logger.info(f"Total: {stats.total}")
        self.logger.info(f"Succeeded: {stats.succeeded}")
        if stats.skipped:
            self.logger.info(f"Skipped (already present): {stats.skipped}")
        self.logger.info(f"Failed: {stats.failed}")
        if stats.phase == "list":
            self.logger.info(f"Records fetched: {stats.records_fetched}, unique: {stats.unique_records}")
        if stats.bytes_downloaded:
            self.logger.info(f"Bytes downloaded: {stats.bytes_downloaded}")
        self.logger.info(f"HTTP requests: {stats.http_requests} ({stats.retry_attempts} retries)")
        if stats.duration_seconds is not None:
            self.logger.info(f"Duration: {stats.duration_seconds:.1f}s")
        for error in stats.errors[:20]:
            self.logger.warning(f"  {error.item}: {error.error_type}: {error.message}")
        if len(stats.errors) > 20:
            self.logger.warning(f"  ... and {len(stats.errors) - 20} more failure(s)")
        self.logger.info("=" * 60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="govharvest",
        description="Harvest paginated listings, details and attachments from Vietnamese government sites",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to site configuration YAML (default: config/sites.yaml)",
    )

    parser.add_argument(
        "--output-root",
        type=Path,
        help="Root directory for results (default: settings.output_root, 'result')",
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        help="Write logs to this file (default: logs/govharvest.log)",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Output summary as JSON",
    )

    parser.add_argument("site", choices=available_sources(), help="Site to harvest")
    parser.add_argument("phase", choices=PHASES, help="Phase to run")

    parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of records to list or enrich",
    )

    parser.add_argument(
        "--start",
        type=int,
        default=0,
        metavar="N",
        help="details: resume at record N, keeping the first N records of the saved checkpoint",
    )

    parser.add_argument(
        "--doanhnghiep",
        action="store_true",
        help="dichvucong: harvest business procedures instead of citizen procedures",
    )

    parser.add_argument(
        "--download",
        action="store_true",
        help="details: download attachments after the detail pass",
    )

    parser.add_argument(
        "--csv",
        action="store_true",
        help="Also write the collection as CSV next to the JSON file",
    )

    parser.add_argument(
        "--test",
        nargs="+",
        metavar="ID",
        help="details: enrich only these ids and print the result instead of writing it",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for govharvest."""
    parser = build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO

    try:
        config = HarvestConfig(args.config)
    except ConfigurationError as exc:
        setup_logging(log_file=args.log_file, level=level)
        logger.error(str(exc))
        return 1

    setup_logging(log_file=args.log_file, log_dir=config.log_dir, level=level)

    try:
        source = build_source(
            args.site,
            config,
            variant="doanhnghiep" if args.doanhnghiep else None,
            output_root=args.output_root,
        )
    except ConfigurationError as exc:
        logger.error(str(exc))
        return 1

    runner = HarvestRunner(source)
    summary = asyncio.run(
        runner.run(
            args.phase,
            limit=args.limit,
            start=args.start,
            test_ids=args.test,
            download=args.download,
            csv=args.csv,
        )
    )

    if args.json:
        print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    else:
        logger.info(f"Run summary: {summary.site} {summary.phase}, {summary.records} record(s)")
        if summary.output_path:
            logger.info(f"Output: {summary.output_path}")
        if summary.errors:
            logger.error(f"Errors: {len(summary.errors)}")

    return summary.exit_code()


if __name__ == "__main__":
    raise SystemExit(main())
