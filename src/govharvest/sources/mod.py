"""Ministry of National Defence policy guidance documents (www.mod.gov.vn)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from selenium.webdriver.common.by import By

from ..models import Page, Record
from ..parser_utils import ExtractionRule, clean_text, normalize_vn_date, parse_html, rebase_url, select_rows
from .base import SiteSource
from .config import register_source

SITE_ORIGIN = "https://www.mod.gov.vn"
LISTING_URL = SITE_ORIGIN + "/home/cdcs"

ROW_SELECTOR = "table.table-bordered tr.bgTable"
LINK_RULE = ExtractionRule(selector="a", attr="href", default="")


def detect_total_pages(soup: BeautifulSoup) -> Optional[int]:
    """Highest page number shown in the ``.page`` pager.

    Returns ``None`` when the pager also offers a non-numeric link (such as
    ``>>``), since more pages exist beyond the visible window.
    """
    pager = soup.select_one(".page")
    if pager is None:
        return None

    highest = 1
    for element in pager.select("span, a"):
        text = element.get_text(strip=True)
        if text.isdigit():
            highest = max(highest, int(text))
        elif element.name == "a" and text:
            return None
    return highest


def parse_listing(document: str, page_index: int) -> Page:
    soup = parse_html(document)
    records: List[Record] = []

    for row in select_rows(soup, ROW_SELECTOR):
        cells = row.find_all("td", recursive=False)
        if len(cells) < 4:
            continue
        detail_url = LINK_RULE.extract(cells[1], "DETAIL_URL")
        issued = clean_text(cells[2].get_text(" ", strip=True))
        records.append(
            {
                "STT": clean_text(cells[0].get_text(" ", strip=True)),
                "SO_KY_HIEU": clean_text(cells[1].get_text(" ", strip=True)),
                "NGAY_BAN_HANH": issued,
                "NGAY_BAN_HANH_ISO": normalize_vn_date(issued),
                "TRICH_YEU": clean_text(cells[3].get_text(" ", strip=True)),
                "DETAIL_URL": detail_url,
                "FULL_URL": rebase_url(detail_url, SITE_ORIGIN) if detail_url else "",
                "CRAWLED_FROM_PAGE": page_index,
            }
        )

    return Page(index=page_index, records=records, total_pages=detect_total_pages(soup))


@register_source("mod")
class ModSource(SiteSource):
    """Browser-rendered table; progress is written after every page."""

    name = "mod"
    site_path = "www.mod.gov.vn/home/cdcs"
    natural_key = "FULL_URL"
    first_page_index = 1
    origin = SITE_ORIGIN
    defaults: Dict[str, Any] = {
        "page_size": 20,
        "renderer": "browser",
        "page_delay_ms": 1500,
        "page_delay_max_ms": 4000,
        "max_pages": 50,
    }

    listing_url = LISTING_URL
    wait_selector = ROW_SELECTOR
    page_link = (
        By.XPATH,
        "//*[contains(concat(' ', normalize-space(@class), ' '), ' page ')]//a[normalize-space(.)='{page}']",
    )

    @property
    def saves_list_progress(self) -> bool:
        return True

    async def fetch_page(self, page_index: int) -> Page:
        document = await self._render(page_index)
        if document is None:
            return Page(index=page_index)
        page = parse_listing(document, page_index)
        self.logger.info(f"Found {len(page.records)} rows on page {page_index}")
        return page
