"""Online public services catalogue on dichvucong.gov.vn."""

from __future__ import annotations

from typing import Any, Dict, List

from ..models import Attachment, Page, Record
from ..parser_utils import ExtractionRule, sanitize_filename
from .base import SiteSource
from .config import register_source

REST_URL = "https://dichvucong.gov.vn/jsp/rest.jsp"
SITE_ORIGIN = "https://dichvucong.gov.vn"
DETAIL_URL = SITE_ORIGIN + "/p/home/dvc-chi-tiet-thu-tuc-hanh-chinh.html?ma_thu_tuc={code}"
FULL_DETAIL_URL = SITE_ORIGIN + "/p/home/dvc-tthc-thu-tuc-hanh-chinh-chi-tiet.html?ma_thu_tuc={procedure_id}"
EXPORT_WORD_URL = SITE_ORIGIN + "/jsp/tthc/export/export_word_detail_tthc.jsp?maTTHC={code}&idTTHC={procedure_id}"

OBJECT_TYPES = {"congdan": 1, "doanhnghiep": 5}

LISTING_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "Accept-Language": "vi,en-GB;q=0.9,en-US;q=0.8,en;q=0.7",
    "Referer": SITE_ORIGIN + "/p/home/dvc-dich-vu-cong-truc-tuyen-ds.html?pkeyWord=",
    "X-Requested-With": "XMLHttpRequest",
}

# "Xem chi tiết" link carrying the internal procedure id
PROCEDURE_ID_RULE = ExtractionRule(
    regex=r'href="dvc-tthc-thu-tuc-hanh-chinh-chi-tiet\.html\?ma_thu_tuc=(\d+)"',
)


def parse_detail_html(document: str, code: str) -> Record:
    procedure_id = PROCEDURE_ID_RULE.extract(document, "ID_TTHC")
    return {
        "ID_TTHC": procedure_id,
        "DETAIL_URL": DETAIL_URL.format(code=code),
        "DETAIL_URL_FULL": FULL_DETAIL_URL.format(procedure_id=procedure_id) if procedure_id else None,
        "EXPORT_WORD_URL": (
            EXPORT_WORD_URL.format(code=code, procedure_id=procedure_id) if procedure_id else None
        ),
        "HAS_EXPORT": procedure_id is not None,
    }


@register_source("dichvucong")
class DichVuCongSource(SiteSource):
    """Administrative procedures for citizens (``congdan``) or businesses (``doanhnghiep``)."""

    name = "dichvucong"
    site_path = "dichvucong.gov.vn/p/home/dvc-dich-vu-cong-truc-tuyen-ds"
    natural_key = "TTHC_MA"
    first_page_index = 1
    origin = SITE_ORIGIN
    variants = ("congdan", "doanhnghiep")
    has_details = True
    defaults: Dict[str, Any] = {
        "page_size": 1000,
        "page_delay_ms": 100,
        "detail_batch_size": 1,
        "detail_delay_ms": 500,
        "download_delay_ms": 500,
    }

    async def fetch_page(self, page_index: int) -> Page:
        payload = {
            "service": "get_ds_tthc_da_cong_bo_dvc_service",
            "type": "ref",
            "provider": "dvcquocgiaRead",
            "pKeyWord": "",
            "pCoQuanId": -1,
            "pObjectType": OBJECT_TYPES[self.variant],
            "pMucDo": -1,
            "p_Page_Size": self.site.page_size,
            "p_Page_Index": page_index,
        }
        data = await self._rest_call(REST_URL, payload, page_index, headers=LISTING_HEADERS)
        records = self._expect_list(data, page_index)
        total = int(records[0].get("TOTAL_RECORDS") or 0) if records else None
        return Page(index=page_index, records=records, total_records=total)

    async def fetch_details(self, record: Record) -> Record:
        code = str(record["TTHC_MA"])
        document = await self._get_text(DETAIL_URL.format(code=code), code)
        detail = parse_detail_html(document, code)
        self.logger.info(f"  {code}: export {'found' if detail['HAS_EXPORT'] else 'not found'}")
        return detail

    def detail_error_fields(self, record: Record, exc: BaseException) -> Record:
        return {
            "ID_TTHC": None,
            "DETAIL_URL": DETAIL_URL.format(code=record.get("TTHC_MA", "")),
            "DETAIL_URL_FULL": None,
            "EXPORT_WORD_URL": None,
            "HAS_EXPORT": False,
        }

    def attachments_for(self, record: Record) -> List[Attachment]:
        if not record.get("HAS_EXPORT") or not record.get("EXPORT_WORD_URL"):
            return []
        code = sanitize_filename(str(record["TTHC_MA"]))
        return [
            Attachment(
                url=record["EXPORT_WORD_URL"],
                filename=f"{code}_chi_tiet.doc",
                owner_id=code,
                label="Word export",
            )
        ]

    def log_statistics(self, records: List[Record], phase: str) -> None:
        if phase != "details":
            return
        with_export = sum(1 for record in records if record.get("HAS_EXPORT"))
        self.logger.info(f"Procedures with Word export: {with_export}/{len(records)}")
