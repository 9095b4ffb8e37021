"""Data models shared by the harvester, sources and runner."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

Record = Dict[str, Any]
NaturalKey = Union[str, Sequence[str], None]

SKIP = "skip"
ABORT = "abort"

DOWNLOADED = "downloaded"
CACHED = "cached"


@dataclass
class RetryPolicy:
    """How often a request is attempted and what happens once it keeps failing.

    ``on_exhausted`` is ``"skip"`` (log, count and move to the next item) or
    ``"abort"`` (stop the run with ``HarvestAborted``).
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    exponential_base: float = 2.0
    max_delay: float = 30.0
    on_exhausted: str = SKIP

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.on_exhausted not in (SKIP, ABORT):
            raise ValueError(f"Unsupported retry outcome: {self.on_exhausted}")

    def delay_for(self, retry_number: int) -> float:
        delay = self.base_delay * (self.exponential_base ** (retry_number - 1))
        return min(delay, self.max_delay)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RetryPolicy":
        data = data or {}
        return cls(
            max_attempts=int(data.get("max_attempts", 3)),
            base_delay=float(data.get("base_delay", 1.0)),
            exponential_base=float(data.get("exponential_base", 2.0)),
            max_delay=float(data.get("max_delay", 30.0)),
            on_exhausted=data.get("on_exhausted", SKIP),
        )


@dataclass
class DelayPolicy:
    """Pause between consecutive requests: fixed, or uniform in [min, max]."""

    min_seconds: float = 0.0
    max_seconds: Optional[float] = None

    def next_delay(self) -> float:
        if self.max_seconds is None or self.max_seconds <= self.min_seconds:
            return self.min_seconds
        return random.uniform(self.min_seconds, self.max_seconds)

    @classmethod
    def from_ms(cls, min_ms: Optional[float], max_ms: Optional[float] = None) -> "DelayPolicy":
        min_seconds = (min_ms or 0) / 1000.0
        max_seconds = max_ms / 1000.0 if max_ms is not None else None
        return cls(min_seconds=min_seconds, max_seconds=max_seconds)


@dataclass
class ClientConfig:
    """Configuration for one site's HTTP client."""

    name: str
    timeout_seconds: float = 30.0
    headers: Dict[str, str] = field(default_factory=dict)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    legacy_tls: bool = False


@dataclass
class Page:
    """One bounded response unit of a paginated listing."""

    index: int
    records: List[Record] = field(default_factory=list)
    total_records: Optional[int] = None
    total_pages: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.records


@dataclass(frozen=True)
class Attachment:
    """A remote file owned by a record."""

    url: str
    filename: str
    owner_id: str
    label: Optional[str] = None


@dataclass
class AttachmentResult:
    """Outcome of a successful ``AttachmentDownloader.download`` call."""

    attachment: Attachment
    status: str
    path: Path
    bytes_written: int = 0

    @property
    def cached(self) -> bool:
        return self.status == CACHED


@dataclass
class FailureRecord:
    """A single per-item failure kept for the run summary."""

    phase: str
    item: str
    error_type: str
    message: str
    url: Optional[str] = None


@dataclass
class PhaseStats:
    """Counters for one phase of a run (list, details or download)."""

    phase: str
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    http_requests: int = 0
    retry_attempts: int = 0
    records_fetched: int = 0
    unique_records: int = 0
    bytes_downloaded: int = 0
    errors: List[FailureRecord] = field(default_factory=list)

    def add_error(self, item: Any, exc: BaseException, url: Optional[str] = None) -> None:
        self.failed += 1
        self.errors.append(
            FailureRecord(
                phase=self.phase,
                item=str(item),
                error_type=type(exc).__name__,
                message=str(exc),
                url=url,
            )
        )

    def finish(self) -> None:
        self.completed_at = datetime.utcnow()

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "http_requests": self.http_requests,
            "retry_attempts": self.retry_attempts,
            "records_fetched": self.records_fetched,
            "unique_records": self.unique_records,
            "bytes_downloaded": self.bytes_downloaded,
            "duration_seconds": self.duration_seconds,
            "errors": [
                {
                    "item": error.item,
                    "error_type": error.error_type,
                    "message": error.message,
                    "url": error.url,
                }
                for error in self.errors
            ],
        }
