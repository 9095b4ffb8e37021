"""Ministry of Health document archive (emohbackup.moh.gov.vn)."""

from __future__ import annotations

from typing import Any, Dict, List

from ..errors import ParseError
from ..models import Attachment, Page, Record
from .base import SiteSource
from .config import register_source

SEARCH_URL = "https://emohbackup.moh.gov.vn/publish/doc/search"
ATTACHMENT_URL = "https://emohbackup.moh.gov.vn/publish/attach/getfile/{attach_id}"

SEARCH_FILTERS = {
    "typeId": 0,
    "deptId": 0,
    "term": "",
    "isLaw": "false",
    "sortField": "-PUBLISH_DATE",
    "year": 0,
    "signerId": 0,
    "startPublishDate": "",
    "endPublishDate": "",
}


@register_source("emoh")
class EmohSource(SiteSource):
    """Zero-based JSON search; the host only negotiates legacy TLS versions."""

    name = "emoh"
    site_path = "emohbackup.moh.gov.vn/publish/home"
    natural_key = "documentId"
    first_page_index = 0
    defaults: Dict[str, Any] = {
        "page_size": 50,
        "legacy_tls": True,
    }

    @property
    def output_prefix(self) -> str:
        return "document_"

    async def fetch_page(self, page_index: int) -> Page:
        params = {"page": page_index, "size": self.site.page_size, **SEARCH_FILTERS}
        body = await self._get_json(SEARCH_URL, page_index, params=params, headers={"Accept": "application/json"})

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ParseError(page_index, "Search response has no 'data' object", payload=str(body))

        records = data.get("lstResult") or []
        total = data.get("nTotal")
        return Page(
            index=page_index,
            records=self._expect_list(records, page_index),
            total_records=int(total) if total is not None else None,
        )

    def attachments_for(self, record: Record) -> List[Attachment]:
        owner = f"documentId={record.get('documentId')}"
        return [
            Attachment(
                url=ATTACHMENT_URL.format(attach_id=item["attachId"]),
                filename=item.get("fileName") or str(item["attachId"]),
                owner_id=owner,
            )
            for item in record.get("attachments") or []
            if item.get("attachId") is not None
        ]
