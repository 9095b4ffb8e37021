"""Tests for the www.mod.gov.vn source."""

from pathlib import Path

import pytest

from src.govharvest.config import SiteConfig
from src.govharvest.harvester import PageHarvester
from src.govharvest.models import RetryPolicy
from src.govharvest.parser_utils import parse_html
from src.govharvest.sources.mod import ModSource, detect_total_pages, parse_listing

FIXTURES = Path(__file__).parent / "fixtures"


def load_fixture(name):
    return (FIXTURES / name).read_text(encoding="utf-8")


class DictRenderer:
    def __init__(self, pages):
        self.pages = pages

    async def render(self, page_index, stats=None):
        return self.pages.get(page_index)

    async def close(self):
        return None


class UnusedHttpClient:
    retry = RetryPolicy()


def make_source(renderer, tmp_path):
    site = SiteConfig.from_dict("mod", ModSource.defaults)
    return ModSource(site, UnusedHttpClient(), output_root=tmp_path, renderer=renderer)


def test_parse_listing_rows():
    page = parse_listing(load_fixture("mod_listing.html"), 1)

    assert len(page.records) == 2
    first, second = page.records
    assert first["SO_KY_HIEU"] == "15/2024/TT-BQP"
    assert first["NGAY_BAN_HANH"] == "10/03/2024"
    assert first["NGAY_BAN_HANH_ISO"] == "2024-03-10"
    assert first["TRICH_YEU"] == "Hướng dẫn chế độ chính sách đối với quân nhân"
    assert first["DETAIL_URL"] == "/home/detail?id=901"
    assert first["FULL_URL"] == "https://www.mod.gov.vn/home/detail?id=901"
    assert second["FULL_URL"] == "https://www.mod.gov.vn/home/detail?id=902"
    assert page.total_pages == 3


@pytest.mark.parametrize(
    "pager,expected",
    [
        ('<div class="page"><span>1</span><a>2</a><a>7</a></div>', 7),
        ('<div class="page"><span>1</span><a>2</a><a>&gt;&gt;</a></div>', None),
        ('<div class="page"><span>1</span></div>', 1),
        ("<div>no pager</div>", None),
    ],
)
def test_detect_total_pages(pager, expected):
    assert detect_total_pages(parse_html(pager)) == expected


@pytest.mark.asyncio
async def test_fetch_page_and_layout(tmp_path):
    source = make_source(DictRenderer({1: load_fixture("mod_listing.html")}), tmp_path)

    page = await source.fetch_page(1)
    missing = await source.fetch_page(2)

    assert len(page.records) == 2
    assert missing.is_empty
    assert source.saves_list_progress is True
    assert source.has_details is False
    assert source.site.max_pages == 50
    assert source.raw_result_path == tmp_path / "www.mod.gov.vn/home/cdcs" / "raw_result.json"


def test_page_link_targets_numbered_pager_link(tmp_path):
    source = make_source(DictRenderer({}), tmp_path)

    by, template = source.page_link

    assert by == "xpath"
    assert template.format(page=4).endswith("[normalize-space(.)='4']")


LINKLESS_LISTING = """
<table class="table table-bordered">
  <tr class="bgTable"><td>1</td><td><a href="/home/detail?id=1">1/TT</a></td><td>01/01/2024</td><td>Có liên kết</td></tr>
  <tr class="bgTable"><td>2</td><td>2/HD</td><td>02/01/2024</td><td>Không liên kết</td></tr>
  <tr class="bgTable"><td>3</td><td>3/HD</td><td>03/01/2024</td><td>Không liên kết</td></tr>
  <tr class="bgTable"><td>4</td><td>4/HD</td><td>ngày không rõ</td><td>Không liên kết</td></tr>
</table>
"""


@pytest.mark.asyncio
async def test_rows_without_link_survive_deduplication(tmp_path):
    source = make_source(DictRenderer({1: LINKLESS_LISTING}), tmp_path)
    harvester = PageHarvester(source.fetch_page, page_size=20, natural_key=source.natural_key, max_pages=1)

    records = await harvester.harvest_all()

    assert [record["STT"] for record in records] == ["1", "2", "3", "4"]
    assert [record["FULL_URL"] for record in records[1:]] == ["", "", ""]
    assert records[3]["NGAY_BAN_HANH_ISO"] is None
