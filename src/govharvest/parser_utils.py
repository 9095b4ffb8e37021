"""Parsing utilities: named extraction rules and text helpers."""

from __future__ import annotations

import html as html_lib
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from bs4.element import Tag
from dateutil import parser as date_parser

from .errors import ParseError

UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]')
WHITESPACE_PATTERN = re.compile(r"\s+")
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def parse_html(document: str) -> BeautifulSoup:
    """Parse an HTML document with the lxml backend."""
    return BeautifulSoup(document, "lxml")


def clean_text(value: Any) -> str:
    """Collapse whitespace and drop control characters."""
    if value is None:
        return ""
    text = html_lib.unescape(str(value))
    text = CONTROL_CHARS.sub(" ", text)
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def sanitize_filename(name: str, replacement: str = "_") -> str:
    """Make a record identifier or declared filename safe as a path segment."""
    cleaned = UNSAFE_FILENAME_CHARS.sub(replacement, str(name)).strip()
    if cleaned in ("", ".", ".."):
        return replacement
    return cleaned


def is_absolute_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


def rebase_url(url: str, origin: Optional[str]) -> str:
    """Resolve a relative URL against ``origin``; absolute URLs pass through."""
    url = (url or "").strip()
    if not url or is_absolute_url(url) or not origin:
        return url
    return urljoin(origin.rstrip("/") + "/", url.lstrip("/"))


def normalize_vn_date(value: Optional[str]) -> Optional[str]:
    """Parse a day-first date such as ``05/03/2024`` into ``2024-03-05``."""
    if not value:
        return None
    try:
        parsed = date_parser.parse(value.strip(), dayfirst=True)
    except (ValueError, OverflowError):
        return None
    return parsed.date().isoformat()


def parse_json_payload(text: str, item: Any) -> Any:
    """Decode a JSON response body, raising ``ParseError`` with the payload prefix."""
    try:
        return json.loads(text)
    except ValueError as exc:
        raise ParseError(item, f"Invalid JSON payload: {exc}", payload=text, cause=exc) from exc


def extract_js_json(document: str, var_name: str) -> Optional[Any]:
    """Decode an inline ``var <name> = '<json>'`` assignment from a page.

    Returns ``None`` when the variable is absent; raises ``ParseError`` when it
    is present but not valid JSON.
    """
    pattern = re.compile(r"var\s+" + re.escape(var_name) + r"\s*=\s*'(\[.*?\]|\{.*?\})'", re.S)
    match = pattern.search(document)
    if not match:
        return None
    raw = match.group(1)
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ParseError(var_name, f"Invalid inline JSON in '{var_name}': {exc}", payload=raw, cause=exc) from exc


@dataclass
class ExtractionRule:
    """Extract one field from an HTML element or a raw document string.

    ``selector`` is a CSS selector (soupsieve syntax, including
    ``:-soup-contains()``); without it the element itself is used. ``attr``
    reads an attribute instead of the text. ``regex`` is applied to the
    extracted text (or to the raw string when the input is a ``str``) and
    keeps ``regex_group`` (default: first group, else the whole match).
    ``transform`` post-processes the string value.
    """

    selector: Optional[str] = None
    attr: Optional[str] = None
    regex: Optional[str] = None
    regex_group: Optional[int] = None
    transform: Optional[Callable[[str], Any]] = None
    default: Any = None
    required: bool = False

    def extract(self, source: Union[Tag, str], field_name: str = "field") -> Any:
        value = self._raw_value(source)

        if value is not None and self.regex:
            match = re.search(self.regex, value, re.S)
            if match is None:
                value = None
            elif self.regex_group is not None:
                value = match.group(self.regex_group)
            else:
                value = match.group(1) if match.groups() else match.group(0)

        if value is None or value == "":
            if self.required:
                payload = source if isinstance(source, str) else str(source)
                raise ParseError(field_name, f"Required field '{field_name}' not found", payload=payload)
            return self.default

        value = value.strip()
        if self.transform is not None:
            return self.transform(value)
        return value

    def _raw_value(self, source: Union[Tag, str]) -> Optional[str]:
        if isinstance(source, str):
            if self.selector is None:
                return source
            source = parse_html(source)

        target = source.select_one(self.selector) if self.selector else source
        if target is None:
            return None

        if self.attr:
            value = target.get(self.attr)
            if isinstance(value, list):
                value = " ".join(value)
            return value

        return clean_text(target.get_text(" ", strip=True))


def extract_record(source: Union[Tag, str], rules: Mapping[str, ExtractionRule]) -> Dict[str, Any]:
    """Apply named rules to one element and return the extracted fields."""
    return {name: rule.extract(source, name) for name, rule in rules.items()}


def select_rows(document: Union[BeautifulSoup, Tag, str], selector: str) -> List[Tag]:
    """Select row elements from a document or a parsed tree."""
    if isinstance(document, str):
        document = parse_html(document)
    return document.select(selector)
