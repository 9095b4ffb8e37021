"""Government legal documents portal (vanban.chinhphu.vn).

The document search is an ASP.NET grid paginated by postbacks, so the
listing comes from a renderer (saved pages or a browser session). Detail
pages are plain HTML fetched over HTTP.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence

from bs4 import Tag
from selenium.webdriver.common.by import By

from ..errors import ConfigurationError
from ..models import Attachment, Page, Record
from ..parser_utils import (
    ExtractionRule,
    extract_record,
    normalize_vn_date,
    parse_html,
    rebase_url,
    select_rows,
)
from .base import SiteSource
from .config import register_source

SITE_ORIGIN = "https://vanban.chinhphu.vn"
FILES_ORIGIN = "https://datafiles.chinhphu.vn"
DETAIL_URL = SITE_ORIGIN + "/?pageid={page_id}&docid={doc_id}"

DOCUMENT_LINK = re.compile(r"pageid=(\d+)&(?:amp;)?docid=(\d+)")
PAGE_INFO = re.compile(r"(\d+)\s*-\s*(\d+)\s*\|\s*(\d+)")

LISTING_RULES = {
    "CODE": ExtractionRule(selector=".code", default=""),
    "ISSUE_DATE": ExtractionRule(selector=".issue-v2", default=""),
}
ISSUED_DATE_RULE = ExtractionRule(selector=".issued-date")
SUMMARY_RULE = ExtractionRule(selector=".substract", default="")

TITLE_RULES = (
    ExtractionRule(selector="span[id^='ctrl_'][id$='_lb_noidung']"),
    ExtractionRule(selector="h4.title span"),
)

# Label cell text -> output field of the detail property table
DETAIL_LABELS = {
    "Số ký hiệu": "CODE",
    "Ngày ban hành": "ISSUE_DATE",
    "Ngày có hiệu lực": "EFFECTIVE_DATE",
    "Loại văn bản": "DOCUMENT_TYPE",
    "Cơ quan ban hành": "ISSUING_AGENCY",
    "Người ký": "SIGNER",
    "Trích yếu": "SUMMARY",
}


def _filename_from_url(url: str, fallback: str) -> str:
    return url.rstrip("/").split("/")[-1] or fallback


def _attachment_entry(link: Tag, origin: Optional[str]) -> Optional[Record]:
    href = (link.get("href") or "").strip()
    if not href:
        return None
    label = link.get_text(" ", strip=True)
    return {
        "url": rebase_url(href, origin),
        "label": label,
        "filename": _filename_from_url(href, label),
    }


def parse_listing(document: str, page_index: int) -> Page:
    """Parse one rendered search results page."""
    soup = parse_html(document)

    total: Optional[int] = None
    page_info = soup.select_one("#document_page_info")
    if page_info is not None:
        match = PAGE_INFO.search(page_info.get_text(" ", strip=True))
        if match:
            total = int(match.group(3))

    records: List[Record] = []
    for row in select_rows(soup, "table.search-result tr"):
        if row.find("th") is not None:
            continue
        cells = row.find_all("td", recursive=False)
        if len(cells) < 3:
            continue

        link = cells[0].select_one("a[href*='pageid']")
        match = DOCUMENT_LINK.search(link.get("href", "")) if link is not None else None
        if match is None:
            continue

        page_id, doc_id = match.group(1), match.group(2)
        fields = extract_record(cells[0], LISTING_RULES)
        attachments = [
            entry
            for entry in (_attachment_entry(a, None) for a in cells[2].select(".bl-doc-file a[download]"))
            if entry is not None
        ]
        records.append(
            {
                "PAGE_ID": page_id,
                "DOC_ID": doc_id,
                "CODE": fields["CODE"],
                "ISSUE_DATE": fields["ISSUE_DATE"],
                "ISSUED_DATE": ISSUED_DATE_RULE.extract(cells[1], "ISSUED_DATE") or fields["ISSUE_DATE"],
                "ISSUE_DATE_ISO": normalize_vn_date(fields["ISSUE_DATE"]),
                "SUMMARY": SUMMARY_RULE.extract(cells[2], "SUMMARY"),
                "DETAIL_URL": DETAIL_URL.format(page_id=page_id, doc_id=doc_id),
                "ATTACHMENTS": attachments,
                "CRAWLED_FROM_PAGE": page_index,
            }
        )

    return Page(index=page_index, records=records, total_records=total)


def parse_detail(document: str, page_id: str, doc_id: str) -> Record:
    """Parse a document detail page into flat fields plus attachments."""
    soup = parse_html(document)
    detail: Record = {
        "PAGE_ID": page_id,
        "DOC_ID": doc_id,
        "DETAIL_URL": DETAIL_URL.format(page_id=page_id, doc_id=doc_id),
    }

    for rule in TITLE_RULES:
        title = rule.extract(soup, "TITLE")
        if title:
            detail["TITLE"] = title
            break

    for label_cell in soup.select("td.col1"):
        field_name = DETAIL_LABELS.get(label_cell.get_text(" ", strip=True))
        if field_name is None:
            continue
        value_cell = label_cell.find_next_sibling("td")
        if value_cell is not None:
            detail[field_name] = value_cell.get_text(" ", strip=True)

    for field_name in ("ISSUE_DATE", "EFFECTIVE_DATE"):
        if field_name in detail:
            detail[f"{field_name}_ISO"] = normalize_vn_date(detail[field_name])

    attachments = []
    for link in soup.select("div.rp-file a.view-file"):
        entry = _attachment_entry(link, FILES_ORIGIN)
        if entry is not None:
            attachments.append(entry)
    detail["ATTACHMENTS"] = attachments
    return detail


def attachment_statistics(records: Sequence[Record]) -> Dict[str, Any]:
    """Summarize attachment coverage and the listing pages a collection came from."""
    with_attachments = [record for record in records if record.get("ATTACHMENTS")]
    pages = sorted({record["CRAWLED_FROM_PAGE"] for record in records if record.get("CRAWLED_FROM_PAGE") is not None})
    return {
        "documents": len(records),
        "with_attachments": len(with_attachments),
        "total_attachments": sum(len(record["ATTACHMENTS"]) for record in with_attachments),
        "first_page": pages[0] if pages else None,
        "last_page": pages[-1] if pages else None,
    }


@register_source("vanban")
class VanBanSource(SiteSource):
    name = "vanban"
    site_path = "vanban.chinhphu.vn"
    natural_key = ("PAGE_ID", "DOC_ID")
    first_page_index = 1
    origin = FILES_ORIGIN
    has_details = True
    defaults: Dict[str, Any] = {
        "page_size": 20,
        "renderer": "browser",
        "detail_batch_size": 1,
        "detail_delay_ms": 100,
        "download_delay_ms": 100,
    }

    listing_url = SITE_ORIGIN + "/"
    wait_selector = "table.search-result"
    page_link = (By.CSS_SELECTOR, "a[href*='Page${page}']")
    total_on_site: Optional[int] = None

    async def fetch_page(self, page_index: int) -> Page:
        document = await self._render(page_index)
        if document is None:
            return Page(index=page_index)
        page = parse_listing(document, page_index)
        if page.total_records is not None:
            self.total_on_site = page.total_records
        return page

    async def fetch_details(self, record: Record) -> Record:
        page_id, doc_id = str(record["PAGE_ID"]), str(record["DOC_ID"])
        label = f"pageid={page_id}&docid={doc_id}"
        document = await self._get_text(DETAIL_URL.format(page_id=page_id, doc_id=doc_id), label)
        detail = parse_detail(document, page_id, doc_id)
        self.logger.info(f"  {label}: {len(detail['ATTACHMENTS'])} attachment(s)")
        return detail

    def detail_error_fields(self, record: Record, exc: BaseException) -> Record:
        return {"DETAIL_URL": DETAIL_URL.format(page_id=record.get("PAGE_ID"), doc_id=record.get("DOC_ID"))}

    def build_test_records(self, ids: List[str]) -> List[Record]:
        records = []
        for value in ids:
            match = DOCUMENT_LINK.search(value) or re.fullmatch(r"(\d+)[:/](\d+)", value)
            if match is None:
                raise ConfigurationError(f"Expected 'pageid=P&docid=D' or 'P/D', got {value!r}")
            records.append({"PAGE_ID": match.group(1), "DOC_ID": match.group(2)})
        return records

    def record_label(self, record: Record) -> str:
        return f"pageid={record.get('PAGE_ID')}&docid={record.get('DOC_ID')}"

    def attachments_for(self, record: Record) -> List[Attachment]:
        owner = self.record_label(record)
        return [
            Attachment(
                url=item["url"],
                filename=item.get("filename") or _filename_from_url(item["url"], "attachment"),
                owner_id=owner,
                label=item.get("label"),
            )
            for item in record.get("ATTACHMENTS") or []
            if item.get("url")
        ]

    def log_statistics(self, records: Sequence[Record], phase: str) -> None:
        if not records:
            return

        summary = attachment_statistics(records)
        self.logger.info("Statistics:")
        self.logger.info(f"  Documents: {summary['documents']}")
        if self.total_on_site is not None:
            self.logger.info(f"  Total on website: {self.total_on_site}")
        self.logger.info(f"  Documents with attachments: {summary['with_attachments']}")
        self.logger.info(f"  Total attachments: {summary['total_attachments']}")
        if summary["first_page"] is not None:
            self.logger.info(f"  Pages crawled: {summary['first_page']} to {summary['last_page']}")
