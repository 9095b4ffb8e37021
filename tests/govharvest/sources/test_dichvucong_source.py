"""Tests for the dichvucong.gov.vn source."""

import json
from pathlib import Path

import httpx
import pytest

from src.govharvest.config import SiteConfig
from src.govharvest.errors import ConfigurationError, FetchError, ParseError
from src.govharvest.models import RetryPolicy
from src.govharvest.sources.dichvucong import DichVuCongSource, parse_detail_html

DETAIL_PAGE = """
<html><body>
  <h1>Cấp giấy phép lái xe</h1>
  <a class="btn" href="dvc-tthc-thu-tuc-hanh-chinh-chi-tiet.html?ma_thu_tuc=123456">Xem chi tiết</a>
</body></html>
"""


class MockResponse:
    def __init__(self, text):
        self.text = text


class MockHttpClient:
    def __init__(self, post_bodies=None, get_bodies=None, error=None):
        self.post_bodies = list(post_bodies or [])
        self.get_bodies = dict(get_bodies or {})
        self.error = error
        self.posts = []
        self.gets = []
        self.retry = RetryPolicy()

    async def post_form_async(self, url, data, *, headers=None, stats=None):
        self.posts.append((url, data, headers))
        if self.error:
            raise self.error
        return MockResponse(self.post_bodies.pop(0))

    async def get_async(self, url, *, headers=None, params=None, stats=None):
        self.gets.append(url)
        if self.error:
            raise self.error
        return MockResponse(self.get_bodies[url])


def make_source(client, variant=None, output_root=Path("result")):
    site = SiteConfig.from_dict("dichvucong", DichVuCongSource.defaults)
    return DichVuCongSource(site, client, output_root=output_root, variant=variant)


@pytest.mark.asyncio
async def test_fetch_page_posts_service_params_and_reads_total():
    rows = [{"TTHC_MA": "1.001", "TTHC_TEN": "A", "TOTAL_RECORDS": 2500}, {"TTHC_MA": "1.002"}]
    client = MockHttpClient(post_bodies=[json.dumps(rows)])
    source = make_source(client)

    page = await source.fetch_page(2)

    assert page.records == rows
    assert page.total_records == 2500
    url, form, headers = client.posts[0]
    params = json.loads(form["params"])
    assert url.endswith("/jsp/rest.jsp")
    assert params["service"] == "get_ds_tthc_da_cong_bo_dvc_service"
    assert params["pObjectType"] == 1
    assert params["p_Page_Size"] == 1000
    assert params["p_Page_Index"] == 2
    assert headers["X-Requested-With"] == "XMLHttpRequest"


@pytest.mark.asyncio
async def test_business_variant_uses_its_object_type_and_prefix(tmp_path):
    client = MockHttpClient(post_bodies=["[]"])
    source = make_source(client, variant="doanhnghiep", output_root=tmp_path)

    page = await source.fetch_page(1)

    assert page.is_empty
    assert json.loads(client.posts[0][1]["params"])["pObjectType"] == 5
    assert source.raw_result_path.name == "doanhnghiep_raw_result.json"
    assert source.detailed_result_path.name == "doanhnghiep_detailed_result.json"
    assert source.attachments_dir == tmp_path / source.site_path / "attachments" / "doanhnghiep"


def test_default_variant_is_citizen_procedures():
    source = make_source(MockHttpClient())

    assert source.variant == "congdan"
    assert source.raw_result_path.name == "congdan_raw_result.json"


def test_unknown_variant_is_rejected():
    with pytest.raises(ConfigurationError):
        make_source(MockHttpClient(), variant="hokinhdoanh")


@pytest.mark.asyncio
async def test_non_array_payload_is_parse_error():
    client = MockHttpClient(post_bodies=['{"error": "session expired"}'])

    with pytest.raises(ParseError):
        await make_source(client).fetch_page(1)


@pytest.mark.asyncio
async def test_html_error_page_is_parse_error_with_prefix():
    client = MockHttpClient(post_bodies=["<html>Service Unavailable</html>"])

    with pytest.raises(ParseError) as excinfo:
        await make_source(client).fetch_page(3)

    assert excinfo.value.page_index == 3
    assert excinfo.value.payload_prefix.startswith("<html>")


@pytest.mark.asyncio
async def test_transport_error_becomes_fetch_error():
    request = httpx.Request("POST", "https://dichvucong.gov.vn/jsp/rest.jsp")
    client = MockHttpClient(error=httpx.ConnectTimeout("timeout", request=request))

    with pytest.raises(FetchError):
        await make_source(client).fetch_page(1)


def test_parse_detail_html_builds_export_link():
    detail = parse_detail_html(DETAIL_PAGE, "1.001")

    assert detail["ID_TTHC"] == "123456"
    assert detail["HAS_EXPORT"] is True
    assert detail["DETAIL_URL_FULL"].endswith("ma_thu_tuc=123456")
    assert "maTTHC=1.001" in detail["EXPORT_WORD_URL"]
    assert "idTTHC=123456" in detail["EXPORT_WORD_URL"]


def test_parse_detail_html_without_link():
    detail = parse_detail_html("<html><body>Không tìm thấy</body></html>", "1.001")

    assert detail["ID_TTHC"] is None
    assert detail["HAS_EXPORT"] is False
    assert detail["EXPORT_WORD_URL"] is None
    assert detail["DETAIL_URL"].endswith("ma_thu_tuc=1.001")


@pytest.mark.asyncio
async def test_fetch_details_reads_detail_page():
    url = "https://dichvucong.gov.vn/p/home/dvc-chi-tiet-thu-tuc-hanh-chinh.html?ma_thu_tuc=1.001"
    client = MockHttpClient(get_bodies={url: DETAIL_PAGE})

    detail = await make_source(client).fetch_details({"TTHC_MA": "1.001"})

    assert client.gets == [url]
    assert detail["ID_TTHC"] == "123456"


def test_error_fields_and_attachments():
    source = make_source(MockHttpClient())

    fallback = source.detail_error_fields({"TTHC_MA": "1.001"}, RuntimeError("boom"))
    assert fallback["HAS_EXPORT"] is False
    assert fallback["EXPORT_WORD_URL"] is None

    record = {"TTHC_MA": "1.001", **parse_detail_html(DETAIL_PAGE, "1.001")}
    attachments = source.attachments_for(record)
    assert len(attachments) == 1
    assert attachments[0].filename == "1.001_chi_tiet.doc"
    assert attachments[0].owner_id == "1.001"
    assert source.attachments_for({"TTHC_MA": "1.002", "HAS_EXPORT": False}) == []
