"""Exception hierarchy for harvesting runs.

Per-item errors (``FetchError``, ``ParseError``, ``DownloadError``) are caught
where the item is processed and turned into counters. ``ConfigurationError``
and ``HarvestAborted`` end the run.
"""

from __future__ import annotations

from typing import Any, Optional


class HarvestError(Exception):
    """Base class for all govharvest errors."""


class FetchError(HarvestError):
    """A single page or detail request failed."""

    def __init__(self, item: Any, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.item = item
        self.cause = cause

    @property
    def page_index(self) -> Any:
        return self.item


class ParseError(FetchError):
    """Payload did not match the expected JSON shape or HTML pattern."""

    PREFIX_LENGTH = 200

    def __init__(
        self,
        item: Any,
        message: str,
        *,
        payload: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(item, message, cause=cause)
        self.payload_prefix = (payload or "")[: self.PREFIX_LENGTH]


class DownloadError(HarvestError):
    """An attachment download failed or was interrupted."""

    def __init__(self, attachment: Any, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.attachment = attachment
        self.cause = cause


class ConfigurationError(HarvestError):
    """Required input is missing or the source yielded no usable data."""


class HarvestAborted(HarvestError):
    """Retry policy demanded that the run stop instead of skipping an item."""

    def __init__(self, item: Any, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.item = item
        self.cause = cause
