"""Published decisions on administrative procedures (thutuc.dichvucong.gov.vn).

The listing is a JSON search service. The detail pass joins each decision
with the agency and field reference tables, collects the new, modified and
rescinded procedure lists (each paginated by the ``AMOUNT`` total) and reads
the attachment list embedded in the public decision page.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..config import SiteConfig
from ..harvester import PageHarvester
from ..http_client import HTTPClient
from ..models import Attachment, DelayPolicy, Page, Record
from ..parser_utils import extract_js_json
from ..reference import ReferenceTable
from ..renderers import Renderer
from .base import SiteSource
from .config import register_source

REST_URL = "https://thutuc.dichvucong.gov.vn/jsp/rest.jsp"
DECISION_PAGE_URL = (
    "https://thutuc.dichvucong.gov.vn/p/home/dvc-tthc-quyet-dinh-cong-bo-chi-tiet.html?ma_quyet_dinh={decision_id}"
)
FILE_DOWNLOAD_URL = "https://csdl.dichvucong.gov.vn/web/jsp/download_file.jsp?ma={code}"

PROVIDER = "dvcquocgia"
AGENCY_SERVICE = "get_list_agency_service_v2"
FIELD_SERVICE = "procedure_get_list_field_service_v2"
DECISION_FIELDS_SERVICE = "get_fields_by_dp_id_services_v2"
PROCEDURE_SERVICES = {
    "NEW": "get_procedures_by_dp_id_service_v2",
    "MODIFIED": "get_modified_procedures_by_dp_id_service_v2",
    "RESCINDED": "get_rescinded_procedures_by_dp_id_service_v2",
}

DEFAULT_REFERENCE_DIR = "example/thutuc.dichvucong.gov.vn/p/home/dvc-tthc-quyet-dinh-cong-bo"


def parse_attachments(document: str) -> List[Record]:
    """Read the ``var str = '[...]'`` attachment list of a decision page."""
    items = extract_js_json(document, "str") or []
    return [
        {
            "filename": item.get("tenTep"),
            "code": item.get("code"),
            "file_id": item.get("tepDinhKemId"),
            "download_url": FILE_DOWNLOAD_URL.format(code=item.get("code")),
        }
        for item in items
        if isinstance(item, dict)
    ]


def _amount(records: List[Record]) -> Optional[int]:
    if not records:
        return None
    return int(records[0].get("AMOUNT") or 0)


@register_source("thutuc")
class ThuTucSource(SiteSource):
    name = "thutuc"
    site_path = "thutuc.dichvucong.gov.vn/p/home/dvc-tthc-quyet-dinh-cong-bo"
    natural_key = "ID"
    first_page_index = 1
    has_details = True
    test_batch_size = 3
    defaults: Dict[str, Any] = {
        "page_size": 50,
        "page_delay_ms": 1000,
        "detail_batch_size": 5,
        "detail_delay_ms": 2000,
        "checkpoint_every": 10,
        "options": {
            "reference_dir": DEFAULT_REFERENCE_DIR,
            "procedure_page_size": 50,
            "procedure_delay_ms": 500,
        },
    }

    def __init__(
        self,
        site: SiteConfig,
        http_client: HTTPClient,
        *,
        output_root: Path = Path("result"),
        variant: Optional[str] = None,
        renderer: Optional[Renderer] = None,
    ) -> None:
        super().__init__(site, http_client, output_root=output_root, variant=variant, renderer=renderer)
        reference_dir = Path(site.options.get("reference_dir", DEFAULT_REFERENCE_DIR))
        self.agencies = ReferenceTable(
            "agency",
            lambda: self._reference_rows(AGENCY_SERVICE),
            cache_path=reference_dir / f"{AGENCY_SERVICE}.json",
        )
        self.fields = ReferenceTable(
            "field",
            lambda: self._reference_rows(FIELD_SERVICE),
            cache_path=reference_dir / f"{FIELD_SERVICE}.json",
        )
        self.procedure_page_size = int(site.options.get("procedure_page_size", 50))
        self.procedure_delay = DelayPolicy.from_ms(site.options.get("procedure_delay_ms", 500))

    async def fetch_page(self, page_index: int) -> Page:
        payload = {
            "service": "decision_publishment_advanced_search_service_v2",
            "provider": PROVIDER,
            "type": "ref",
            "recordPerPage": self.site.page_size,
            "pageIndex": page_index,
            "keyword": "",
            "agency_id": "-1",
            "field_id": "-1",
            "publishing_date": "",
        }
        records = self._expect_list(await self._rest_call(REST_URL, payload, page_index), page_index)
        return Page(index=page_index, records=records, total_records=_amount(records))

    async def prepare(self) -> None:
        await self.agencies.load()
        await self.fields.load()

    async def _reference_rows(self, service: str) -> List[Record]:
        payload = {"service": service, "provider": PROVIDER, "type": "ref"}
        return self._expect_list(await self._rest_call(REST_URL, payload, service), service)

    async def fetch_details(self, record: Record) -> Record:
        decision_id = record["ID"]
        self.logger.info(f"Fetching details for decision {decision_id} ({record.get('CODE')})...")

        results = await asyncio.gather(
            self.fetch_decision_fields(decision_id),
            self.fetch_procedures(decision_id, "NEW"),
            self.fetch_procedures(decision_id, "MODIFIED"),
            self.fetch_procedures(decision_id, "RESCINDED"),
            self.fetch_attachments(decision_id),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        fields, new, modified, rescinded, attachments = results

        matched_fields = []
        for field in fields:
            reference = self.fields.get(field.get("ID")) or {}
            matched_fields.append({**field, "FIELD_FULL_NAME": reference.get("FIELD_NAME") or field.get("NAME")})

        return {
            "AGENCY_DETAILS": self.agencies.get(record.get("AGENCY_ID")),
            "DETAIL_URL": DECISION_PAGE_URL.format(decision_id=decision_id),
            "FIELDS": matched_fields,
            "ATTACHMENTS": attachments,
            "PROCEDURES": {"NEW": new, "MODIFIED": modified, "RESCINDED": rescinded},
            "STATISTICS": {
                "TOTAL_NEW_PROCEDURES": len(new),
                "TOTAL_MODIFIED_PROCEDURES": len(modified),
                "TOTAL_RESCINDED_PROCEDURES": len(rescinded),
                "TOTAL_PROCEDURES": len(new) + len(modified) + len(rescinded),
                "TOTAL_ATTACHMENTS": len(attachments),
            },
        }

    async def fetch_decision_fields(self, decision_id: Any) -> List[Record]:
        payload = {
            "service": DECISION_FIELDS_SERVICE,
            "provider": PROVIDER,
            "type": "ref",
            "id": int(decision_id),
        }
        return self._expect_list(await self._rest_call(REST_URL, payload, decision_id), decision_id)

    async def fetch_procedures(self, decision_id: Any, kind: str) -> List[Record]:
        """Collect every page of one procedure list of a decision."""
        service = PROCEDURE_SERVICES[kind]

        async def fetch_procedure_page(page_index: int) -> Page:
            payload = {
                "service": service,
                "provider": PROVIDER,
                "type": "ref",
                "id": int(decision_id),
                "recordPerPage": self.procedure_page_size,
                "pageIndex": page_index,
            }
            item = f"{decision_id}/{kind.lower()}/{page_index}"
            records = self._expect_list(await self._rest_call(REST_URL, payload, item), item)
            return Page(index=page_index, records=records, total_records=_amount(records))

        harvester = PageHarvester(
            fetch_procedure_page,
            page_size=self.procedure_page_size,
            first_page_index=1,
            delay=self.procedure_delay,
            retry_policy=self.http_client.retry,
            name=f"{self.name}.{kind.lower()}",
        )
        return await harvester.harvest_all()

    async def fetch_attachments(self, decision_id: Any) -> List[Record]:
        document = await self._get_text(DECISION_PAGE_URL.format(decision_id=decision_id), decision_id)
        return parse_attachments(document)

    def attachments_for(self, record: Record) -> List[Attachment]:
        owner = f"ma_quyet_dinh={record.get('ID')}"
        return [
            Attachment(
                url=item["download_url"],
                filename=item.get("filename") or f"{item.get('code')}",
                owner_id=owner,
                label=item.get("filename"),
            )
            for item in record.get("ATTACHMENTS") or []
            if item.get("code")
        ]

    def build_test_records(self, ids: Sequence[str]) -> List[Record]:
        return [
            {
                "ID": decision_id,
                "CODE": f"TEST-{decision_id}",
                "NAME": f"Test Decision {decision_id}",
                "AGENCY_ID": "",
                "AGENCY_NAME": "Test Agency",
            }
            for decision_id in ids
        ]

    def log_statistics(self, records: Sequence[Record], phase: str) -> None:
        if not records:
            return

        agencies = Counter(record.get("AGENCY_NAME") for record in records)
        if phase == "list":
            self._log_ranking("Top 10 Agencies", agencies)
            return
        if phase != "details":
            return

        totals = Counter()
        field_counts: Counter = Counter()
        for record in records:
            statistics = record.get("STATISTICS") or {}
            for key in ("TOTAL_NEW_PROCEDURES", "TOTAL_MODIFIED_PROCEDURES", "TOTAL_RESCINDED_PROCEDURES", "TOTAL_ATTACHMENTS"):
                totals[key] += statistics.get(key) or 0
            for field in record.get("FIELDS") or []:
                field_counts[field.get("NAME") or field.get("FIELD_FULL_NAME")] += 1

        self.logger.info("Procedure Totals:")
        self.logger.info(f"  New procedures: {totals['TOTAL_NEW_PROCEDURES']}")
        self.logger.info(f"  Modified procedures: {totals['TOTAL_MODIFIED_PROCEDURES']}")
        self.logger.info(f"  Rescinded procedures: {totals['TOTAL_RESCINDED_PROCEDURES']}")
        self.logger.info(
            "  Total procedures: "
            f"{totals['TOTAL_NEW_PROCEDURES'] + totals['TOTAL_MODIFIED_PROCEDURES'] + totals['TOTAL_RESCINDED_PROCEDURES']}"
        )
        self.logger.info(f"  Total attachments: {totals['TOTAL_ATTACHMENTS']}")
        self._log_ranking("Top 10 Fields", field_counts)
        self._log_ranking("Top 10 Agencies", agencies)

    def _log_ranking(self, title: str, counts: Counter) -> None:
        self.logger.info(f"{title}:")
        for position, (label, count) in enumerate(counts.most_common(10), start=1):
            self.logger.info(f"  {position}. {label}: {count} decisions")
