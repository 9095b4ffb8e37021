"""Tests for collection persistence."""

import csv
import json

import pytest

from src.govharvest.errors import ConfigurationError
from src.govharvest.storage import Checkpoint, persist_final, read_collection, write_collection, write_csv


def test_write_and_read_collection_preserves_unicode(tmp_path):
    path = tmp_path / "nested" / "raw_result.json"
    records = [{"ID": 1, "TEN": "Thủ tục cấp giấy phép"}]

    write_collection(path, records)

    assert "Thủ tục" in path.read_text(encoding="utf-8")
    assert read_collection(path) == records


def test_write_collection_truncates_previous_file(tmp_path):
    path = tmp_path / "raw_result.json"
    write_collection(path, [{"ID": i} for i in range(10)])
    write_collection(path, [{"ID": 1}])

    assert read_collection(path) == [{"ID": 1}]


def test_read_collection_missing_file_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        read_collection(tmp_path / "missing.json")


def test_read_collection_rejects_non_array(tmp_path):
    path = tmp_path / "object.json"
    path.write_text(json.dumps({"ID": 1}), encoding="utf-8")

    with pytest.raises(ConfigurationError):
        read_collection(path)


def test_read_collection_rejects_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("[{", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        read_collection(path)


def test_csv_uses_first_record_header_and_quotes_when_needed(tmp_path):
    records = [
        {"ID": 1, "TITLE": 'Quyết định, "số 1"', "NOTE": None, "FIELDS": [{"ID": 3}]},
        {"ID": 2, "TITLE": "line\nbreak", "EXTRA": "ignored"},
    ]
    path = tmp_path / "result.csv"

    write_csv(path, records)

    with open(path, encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))

    assert list(rows[0].keys()) == ["ID", "TITLE", "NOTE", "FIELDS"]
    assert rows[0]["TITLE"] == 'Quyết định, "số 1"'
    assert rows[0]["NOTE"] == ""
    assert json.loads(rows[0]["FIELDS"]) == [{"ID": 3}]
    assert rows[1]["TITLE"] == "line\nbreak"
    assert rows[1]["FIELDS"] == ""
    assert "EXTRA" not in rows[1]


def test_csv_plain_values_are_not_quoted(tmp_path):
    path = tmp_path / "plain.csv"

    write_csv(path, [{"A": "x", "B": 2}])

    assert path.read_text(encoding="utf-8") == "A,B\nx,2\n"


def test_csv_with_no_records_writes_nothing(tmp_path):
    path = tmp_path / "empty.csv"

    assert write_csv(path, []) is None
    assert not path.exists()


def test_checkpoint_save_load_and_discard(tmp_path):
    checkpoint = Checkpoint(tmp_path / "detailed_result_temp.json")

    assert not checkpoint.exists()
    checkpoint.save([{"ID": 1}])
    checkpoint.save([{"ID": 1}, {"ID": 2}])

    assert checkpoint.load() == [{"ID": 1}, {"ID": 2}]

    checkpoint.discard()
    checkpoint.discard()
    assert not checkpoint.exists()


def test_persist_final_removes_checkpoint(tmp_path):
    checkpoint = Checkpoint(tmp_path / "detailed_result_temp.json")
    checkpoint.save([{"ID": 1}])

    persist_final(tmp_path / "detailed_result.json", [{"ID": 1, "DONE": True}], checkpoint)

    assert not checkpoint.exists()
    assert read_collection(tmp_path / "detailed_result.json") == [{"ID": 1, "DONE": True}]
