"""Tests for batched detail enrichment."""

from asyncio import sleep as real_sleep
import json

import pytest

from src.govharvest.details import DetailHarvester, DetailOptions
from src.govharvest.errors import FetchError
from src.govharvest.models import DelayPolicy, PhaseStats
from src.govharvest.storage import Checkpoint, persist_final


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    async def noop_sleep(_):
        return None

    monkeypatch.setattr("src.govharvest.details.asyncio.sleep", noop_sleep)


def make_collection(count):
    return [{"ID": i, "NAME": f"record {i}"} for i in range(count)]


@pytest.mark.asyncio
async def test_enriched_records_merge_detail_fields():
    async def fetch(record):
        return {"DETAIL": record["ID"] * 10}

    collection = make_collection(3)
    detailed = await DetailHarvester(DetailOptions(batch_size=2)).harvest_details(collection, fetch)

    assert detailed == [
        {"ID": 0, "NAME": "record 0", "DETAIL": 0},
        {"ID": 1, "NAME": "record 1", "DETAIL": 10},
        {"ID": 2, "NAME": "record 2", "DETAIL": 20},
    ]
    assert "DETAIL" not in collection[0]


@pytest.mark.asyncio
async def test_failed_record_keeps_base_fields_with_error_and_fallback():
    async def fetch(record):
        if record["ID"] == 1:
            raise FetchError(record["ID"], "HTTP 500")
        return {"DETAIL_URL": f"https://example.com/{record['ID']}"}

    def fallback(record, exc):
        return {"DETAIL_URL": None}

    stats = PhaseStats(phase="details")
    detailed = await DetailHarvester(DetailOptions(batch_size=5)).harvest_details(
        make_collection(3),
        fetch,
        on_error=fallback,
        stats=stats,
    )

    assert len(detailed) == 3
    assert detailed[1] == {"ID": 1, "NAME": "record 1", "DETAIL_URL": None, "ERROR": "HTTP 500"}
    assert "ERROR" not in detailed[0]
    assert stats.total == 3
    assert stats.succeeded == 2
    assert stats.failed == 1
    assert stats.errors[0].item == "1"


@pytest.mark.asyncio
async def test_batches_run_concurrently_but_sequentially_between_batches():
    events = []

    async def fetch(record):
        events.append(("start", record["ID"]))
        await real_sleep(0)
        events.append(("end", record["ID"]))
        return {}

    await DetailHarvester(DetailOptions(batch_size=2)).harvest_details(make_collection(4), fetch)

    first_batch = events[:4]
    second_batch = events[4:]
    assert {event for event in first_batch} == {("start", 0), ("start", 1), ("end", 0), ("end", 1)}
    assert first_batch[:2] == [("start", 0), ("start", 1)]
    assert {record_id for _, record_id in second_batch} == {2, 3}


@pytest.mark.asyncio
async def test_output_order_matches_input_order():
    async def fetch(record):
        # Later records finish first
        await real_sleep(0 if record["ID"] else 0.001)
        return {"SEEN": True}

    detailed = await DetailHarvester(DetailOptions(batch_size=3)).harvest_details(make_collection(3), fetch)

    assert [record["ID"] for record in detailed] == [0, 1, 2]


@pytest.mark.asyncio
async def test_limit_and_start_index_select_a_slice():
    seen = []

    async def fetch(record):
        seen.append(record["ID"])
        return {}

    options = DetailOptions(batch_size=10, limit=3, start_index=2)
    detailed = await DetailHarvester(options).harvest_details(make_collection(10), fetch)

    assert seen == [2, 3, 4]
    assert len(detailed) == 3


@pytest.mark.asyncio
async def test_completed_records_lead_the_output_and_checkpoints():
    saves = []
    seen = []

    class RecordingCheckpoint:
        def save(self, records):
            saves.append([record["ID"] for record in records])

    async def fetch(record):
        seen.append(record["ID"])
        return {"DETAIL": record["ID"]}

    completed = [{"ID": 0, "DETAIL": 0}, {"ID": 1, "DETAIL": 1}]
    options = DetailOptions(batch_size=2, start_index=2)
    detailed = await DetailHarvester(options).harvest_details(
        make_collection(5), fetch, completed=completed, checkpoint=RecordingCheckpoint()
    )

    assert seen == [2, 3, 4]
    assert [record["ID"] for record in detailed] == [0, 1, 2, 3, 4]
    assert detailed[0] == {"ID": 0, "DETAIL": 0}
    assert saves == [[0, 1, 2, 3, 4]]
    assert completed == [{"ID": 0, "DETAIL": 0}, {"ID": 1, "DETAIL": 1}]


@pytest.mark.asyncio
async def test_checkpoint_is_written_periodically_and_after_last_batch():
    saves = []

    class RecordingCheckpoint:
        def save(self, records):
            saves.append(len(records))

    async def fetch(record):
        return {}

    options = DetailOptions(batch_size=2, checkpoint_every=2)
    await DetailHarvester(options).harvest_details(make_collection(9), fetch, checkpoint=RecordingCheckpoint())

    assert saves == [4, 8, 9]


@pytest.mark.asyncio
async def test_checkpoint_exists_until_final_artifact_is_persisted(tmp_path):
    async def fetch(record):
        return {"DONE": True}

    checkpoint = Checkpoint(tmp_path / "detailed_result_temp.json")
    final_path = tmp_path / "detailed_result.json"

    detailed = await DetailHarvester(DetailOptions(batch_size=2)).harvest_details(
        make_collection(3), fetch, checkpoint=checkpoint
    )

    assert checkpoint.exists()
    assert len(checkpoint.load()) == 3

    persist_final(final_path, detailed, checkpoint)

    assert not checkpoint.exists()
    assert json.loads(final_path.read_text(encoding="utf-8")) == detailed


@pytest.mark.asyncio
async def test_pause_between_batches_only(monkeypatch):
    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr("src.govharvest.details.asyncio.sleep", record_sleep)

    async def fetch(record):
        return {}

    options = DetailOptions(batch_size=1, batch_delay=DelayPolicy(min_seconds=0.5))
    await DetailHarvester(options).harvest_details(make_collection(3), fetch)

    assert sleeps == [0.5, 0.5]


@pytest.mark.asyncio
async def test_custom_label_is_used_for_failures():
    async def fetch(record):
        raise ValueError("bad html")

    stats = PhaseStats(phase="details")
    await DetailHarvester().harvest_details(
        [{"PAGE_ID": "7", "DOC_ID": "9"}],
        fetch,
        stats=stats,
        label=lambda record: f"pageid={record['PAGE_ID']}&docid={record['DOC_ID']}",
    )

    assert stats.errors[0].item == "pageid=7&docid=9"
    assert stats.errors[0].error_type == "ValueError"


def test_options_reject_non_positive_batch_size():
    with pytest.raises(ValueError):
        DetailOptions(batch_size=0)
    with pytest.raises(ValueError):
        DetailOptions(start_index=-1)
