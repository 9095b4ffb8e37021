"""Persistence of collections: JSON, CSV and enrichment checkpoints."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from .errors import ConfigurationError
from .logging_config import get_logger
from .models import Record

logger = get_logger("storage")


def read_collection(path: Path) -> List[Record]:
    """Load a persisted collection; a missing or malformed file is fatal."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Input file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except ValueError as exc:
        raise ConfigurationError(f"Input file is not valid JSON: {path} ({exc})") from exc

    if not isinstance(data, list):
        raise ConfigurationError(f"Input file does not contain a JSON array: {path}")
    return data


def write_collection(path: Path, records: Sequence[Record]) -> Path:
    """Write records as pretty-printed JSON, truncating any previous file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(list(records), handle, ensure_ascii=False, indent=2)
    logger.info(f"Saved {len(records)} records to {path}")
    return path


def _csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def write_csv(path: Path, records: Sequence[Record], fieldnames: Optional[Iterable[str]] = None) -> Optional[Path]:
    """Write records as CSV with a header taken from the first record's keys.

    Keys missing from later records are written as empty cells; extra keys are
    ignored. Returns ``None`` when there is nothing to write.
    """
    if not records:
        logger.warning("No data to save to CSV")
        return None

    header = list(fieldnames) if fieldnames is not None else list(records[0].keys())
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
        writer.writerow(header)
        for record in records:
            writer.writerow([_csv_value(record.get(name)) for name in header])

    logger.info(f"CSV saved to: {path}")
    return path


class Checkpoint:
    """Temporary snapshot of in-progress results, overwritten on every save."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def save(self, records: Sequence[Record]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(list(records), handle, ensure_ascii=False, indent=2)
        logger.info(f"Intermediate results saved ({len(records)} records)")

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> List[Record]:
        return read_collection(self.path)

    def discard(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.debug(f"Removed checkpoint {self.path}")


def persist_final(path: Path, records: Sequence[Record], checkpoint: Optional[Checkpoint] = None) -> Path:
    """Write the final artifact, then remove the checkpoint it supersedes."""
    written = write_collection(path, records)
    if checkpoint is not None:
        checkpoint.discard()
    return written
