"""Base class for site sources plugged into the paginated harvester."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from ..config import SiteConfig
from ..errors import ConfigurationError, FetchError, ParseError
from ..http_client import HTTPClient
from ..logging_config import get_logger
from ..models import Attachment, NaturalKey, Page, PhaseStats, Record
from ..parser_utils import parse_json_payload
from ..renderers import Renderer


class SiteSource(ABC):
    """A target site: how to fetch listing pages, details and attachments.

    Subclasses set the class attributes below and implement ``fetch_page``.
    Sources with an enrichment pass set ``has_details`` and override
    ``fetch_details``; sources with files override ``attachments_for``.
    """

    name: str = ""
    site_path: str = ""
    natural_key: NaturalKey = None
    first_page_index: int = 1
    origin: Optional[str] = None
    variants: Tuple[str, ...] = ()
    has_details: bool = False
    test_batch_size: Optional[int] = None
    defaults: Dict[str, Any] = {}

    # Browser rendering, for sources listed through a renderer
    listing_url: Optional[str] = None
    wait_selector: Optional[str] = None
    page_link: Optional[Tuple[str, str]] = None

    def __init__(
        self,
        site: SiteConfig,
        http_client: HTTPClient,
        *,
        output_root: Path = Path("result"),
        variant: Optional[str] = None,
        renderer: Optional[Renderer] = None,
    ) -> None:
        if variant is not None and variant not in self.variants:
            raise ConfigurationError(f"Site '{self.name}' has no variant '{variant}'")
        self.site = site
        self.http_client = http_client
        self.output_root = Path(output_root)
        self.variant = variant or (self.variants[0] if self.variants else None)
        self.renderer = renderer
        self.stats: Optional[PhaseStats] = None
        self.logger = get_logger(f"sources.{self.name}")

    # Output layout

    @property
    def site_dir(self) -> Path:
        return self.output_root / self.site_path

    @property
    def output_prefix(self) -> str:
        return f"{self.variant}_" if self.variant else ""

    @property
    def raw_result_path(self) -> Path:
        return self.site_dir / f"{self.output_prefix}raw_result.json"

    @property
    def detailed_result_path(self) -> Path:
        return self.site_dir / f"{self.output_prefix}detailed_result.json"

    @property
    def checkpoint_path(self) -> Path:
        return self.site_dir / f"{self.output_prefix}detailed_result_temp.json"

    @property
    def attachments_dir(self) -> Path:
        base = self.site_dir / "attachments"
        return base / self.variant if self.variant else base

    @property
    def saves_list_progress(self) -> bool:
        """Whether the listing is written to disk after every page."""
        return False

    def bind_stats(self, stats: Optional[PhaseStats]) -> None:
        self.stats = stats

    # Phases

    @abstractmethod
    async def fetch_page(self, page_index: int) -> Page:
        """Fetch one listing page."""

    async def prepare(self) -> None:
        """Load whatever the detail pass needs before the first batch."""

    async def fetch_details(self, record: Record) -> Record:
        raise NotImplementedError(f"Site '{self.name}' has no detail pass")

    def detail_error_fields(self, record: Record, exc: BaseException) -> Record:
        return {}

    def attachments_for(self, record: Record) -> List[Attachment]:
        return []

    def record_label(self, record: Record) -> str:
        key = self.natural_key
        if isinstance(key, str):
            return str(record.get(key, "<record>"))
        if key:
            return "/".join(str(record.get(part, "?")) for part in key)
        return "<record>"

    def build_test_records(self, ids: Sequence[str]) -> List[Record]:
        """Records standing in for the raw collection in ``--test`` runs."""
        if not isinstance(self.natural_key, str):
            raise ConfigurationError(f"Site '{self.name}' does not support --test")
        return [{self.natural_key: value} for value in ids]

    def collect_attachments(self, records: Iterable[Record]) -> List[Attachment]:
        attachments: List[Attachment] = []
        for record in records:
            attachments.extend(self.attachments_for(record))
        return attachments

    def log_statistics(self, records: Sequence[Record], phase: str) -> None:
        """Log source-specific statistics at the end of a phase."""

    async def close(self) -> None:
        if self.renderer is not None:
            await self.renderer.close()

    # Request helpers

    async def _rest_call(
        self,
        url: str,
        payload: Dict[str, Any],
        item: Any,
        *,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """POST ``params=<json>`` as a form and decode the JSON response."""
        form = {"params": json.dumps(payload, ensure_ascii=False, separators=(",", ":"))}
        try:
            response = await self.http_client.post_form_async(url, form, headers=headers, stats=self.stats)
        except httpx.HTTPError as exc:
            raise FetchError(item, f"{payload.get('service', url)} failed for {item}: {exc}", cause=exc) from exc
        return parse_json_payload(response.text, item)

    async def _get_json(
        self,
        url: str,
        item: Any,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        text = await self._get_text(url, item, params=params, headers=headers)
        return parse_json_payload(text, item)

    async def _get_text(
        self,
        url: str,
        item: Any,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        try:
            response = await self.http_client.get_async(url, params=params, headers=headers, stats=self.stats)
        except httpx.HTTPError as exc:
            raise FetchError(item, f"Failed to fetch {url}: {exc}", cause=exc) from exc
        return response.text

    async def _render(self, page_index: int) -> Optional[str]:
        if self.renderer is None:
            raise ConfigurationError(f"Site '{self.name}' needs a renderer for its listing")
        return await self.renderer.render(page_index, stats=self.stats)

    @staticmethod
    def _expect_list(data: Any, item: Any) -> List[Record]:
        if not isinstance(data, list):
            raise ParseError(item, f"Expected a JSON array, got {type(data).__name__}", payload=str(data))
        return data
