"""Attachment download into a per-record directory tree."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Iterable, List, Optional

import httpx

from .errors import DownloadError
from .http_client import HTTPClient
from .logging_config import get_logger
from .models import CACHED, DOWNLOADED, Attachment, AttachmentResult, DelayPolicy, PhaseStats
from .parser_utils import is_absolute_url, rebase_url, sanitize_filename

logger = get_logger("downloader")


class AttachmentDownloader:
    """Downloads attachments to ``<base_dir>/<owner>/<filename>``.

    A destination file that already exists is treated as complete: no
    request is made and no size or checksum check is performed, so a
    truncated file left by a killed process is never repaired.
    """

    def __init__(
        self,
        http_client: HTTPClient,
        base_dir: Path,
        *,
        origin: Optional[str] = None,
        delay: Optional[DelayPolicy] = None,
    ) -> None:
        self.http_client = http_client
        self.base_dir = Path(base_dir)
        self.origin = origin
        self.delay = delay or DelayPolicy()

    def destination_for(self, attachment: Attachment) -> Path:
        owner_dir = self.base_dir / sanitize_filename(attachment.owner_id)
        return owner_dir / sanitize_filename(attachment.filename)

    def resolve_url(self, attachment: Attachment) -> str:
        url = rebase_url(attachment.url, self.origin)
        if not is_absolute_url(url):
            raise DownloadError(attachment, f"Attachment URL is not absolute: {attachment.url!r}")
        return url

    async def download(self, attachment: Attachment, stats: Optional[PhaseStats] = None) -> AttachmentResult:
        """Fetch one attachment unless its destination file already exists."""
        url = self.resolve_url(attachment)
        destination = self.destination_for(attachment)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(attachment, f"Cannot create {destination.parent}: {exc}", cause=exc) from exc

        if destination.exists():
            logger.info(f"Already downloaded: {destination.name} ({attachment.owner_id})")
            return AttachmentResult(attachment=attachment, status=CACHED, path=destination, bytes_written=0)

        try:
            written = await self.http_client.download_async(url, destination, stats=stats)
        except (httpx.HTTPError, OSError) as exc:
            destination.unlink(missing_ok=True)
            raise DownloadError(attachment, f"Failed to download {url}: {exc}", cause=exc) from exc
        except BaseException:
            # Cancellation or interrupt mid-stream still must not leave a partial file
            destination.unlink(missing_ok=True)
            raise

        logger.info(f"Downloaded: {destination.name} -> {destination.parent}")
        return AttachmentResult(attachment=attachment, status=DOWNLOADED, path=destination, bytes_written=written)

    async def download_all(
        self,
        attachments: Iterable[Attachment],
        stats: Optional[PhaseStats] = None,
    ) -> List[AttachmentResult]:
        """Download attachments one by one; failures are counted, never raised."""
        if stats is None:
            stats = PhaseStats(phase="download")

        pending = list(attachments)
        results: List[AttachmentResult] = []

        for position, attachment in enumerate(pending, start=1):
            stats.total += 1
            logger.info(f"[{position}/{len(pending)}] {attachment.owner_id}: {attachment.filename}")
            try:
                result = await self.download(attachment, stats=stats)
            except DownloadError as exc:
                stats.add_error(attachment.owner_id, exc, url=attachment.url)
                logger.warning(f"  Failed: {exc}")
                continue

            results.append(result)
            if result.cached:
                stats.skipped += 1
            else:
                stats.succeeded += 1
                stats.bytes_downloaded += result.bytes_written
                if position < len(pending):
                    await self._pause()

        return results

    async def _pause(self) -> None:
        seconds = self.delay.next_delay()
        if seconds > 0:
            await asyncio.sleep(seconds)
