"""Tests for the emohbackup.moh.gov.vn source."""

import json

import pytest

from src.govharvest.config import SiteConfig
from src.govharvest.errors import ParseError
from src.govharvest.models import RetryPolicy
from src.govharvest.sources.emoh import EmohSource


class MockResponse:
    def __init__(self, text):
        self.text = text


class MockHttpClient:
    def __init__(self, body):
        self.body = body
        self.calls = []
        self.retry = RetryPolicy()

    async def get_async(self, url, *, headers=None, params=None, stats=None):
        self.calls.append((url, params))
        return MockResponse(self.body)


def make_source(body, tmp_path):
    site = SiteConfig.from_dict("emoh", EmohSource.defaults)
    return EmohSource(site, MockHttpClient(body), output_root=tmp_path)


@pytest.mark.asyncio
async def test_fetch_page_reads_results_and_total(tmp_path):
    body = json.dumps(
        {
            "data": {
                "nTotal": 120,
                "lstResult": [
                    {"documentId": 11, "title": "Thông tư 01/2024/TT-BYT"},
                    {"documentId": 12, "title": "Quyết định 2/QĐ-BYT"},
                ],
            }
        }
    )
    source = make_source(body, tmp_path)

    page = await source.fetch_page(0)

    assert page.index == 0
    assert page.total_records == 120
    assert [record["documentId"] for record in page.records] == [11, 12]
    url, params = source.http_client.calls[0]
    assert url.endswith("/publish/doc/search")
    assert params["page"] == 0
    assert params["size"] == 50
    assert params["sortField"] == "-PUBLISH_DATE"


@pytest.mark.asyncio
async def test_missing_data_object_is_parse_error(tmp_path):
    source = make_source(json.dumps({"status": "error"}), tmp_path)

    with pytest.raises(ParseError):
        await source.fetch_page(1)


@pytest.mark.asyncio
async def test_empty_result_list_is_empty_page(tmp_path):
    source = make_source(json.dumps({"data": {"nTotal": 0, "lstResult": None}}), tmp_path)

    page = await source.fetch_page(0)

    assert page.is_empty
    assert page.total_records == 0


def test_layout_is_zero_based_with_document_prefix_and_legacy_tls(tmp_path):
    source = make_source("{}", tmp_path)

    assert source.first_page_index == 0
    assert source.site.legacy_tls is True
    assert source.has_details is False
    assert source.raw_result_path == tmp_path / source.site_path / "document_raw_result.json"


def test_attachments_for_document(tmp_path):
    source = make_source("{}", tmp_path)
    record = {
        "documentId": 11,
        "attachments": [
            {"attachId": 501, "fileName": "TT-01.pdf"},
            {"attachId": 502},
            {"fileName": "no-id.pdf"},
        ],
    }

    attachments = source.attachments_for(record)

    assert [item.filename for item in attachments] == ["TT-01.pdf", "502"]
    assert attachments[0].url.endswith("/publish/attach/getfile/501")
    assert attachments[0].owner_id == "documentId=11"
    assert source.attachments_for({"documentId": 12}) == []
