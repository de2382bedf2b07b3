"""Source configuration records.

A Source describes one scraped feed: where its listing page lives, how to
find article links on it, and which selectors pull the title, body and
images out of an article page. Records come from the `sources` table (or a
JSON seed file) and are validated here, once, when they are loaded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlparse

import soupsieve

FREQUENCIES = ("hourly", "3h", "6h", "9h", "12h", "daily", "weekly")
STATUSES = ("active", "suspended", "blocked")

DEFAULT_CONSENT_SELECTORS = (
    "button.fc-button.fc-cta-consent.fc-primary-button",
    "#onetrust-accept-btn-handler",
    "button#didomi-notice-agree-button",
    "button.qc-cmp2-summary-buttons button[mode=primary]",
)

# legacy document field name -> column name
_ALIASES = {
    "_id": "id",
    "baseUrl": "base_url",
    "listSelector": "list_selector",
    "linkSelector": "link_selector",
    "titleSelector": "title_selector",
    "contentSelector": "content_selector",
    "imageSelector": "image_selector",
    "lastScraped": "last_scraped",
    "requiresJs": "requires_js",
    "consentSelectors": "consent_selectors",
}


class SourceConfigError(ValueError):
    def __init__(self, field_name: str, message: str, source_id: str | None = None):
        self.field_name = field_name
        self.source_id = source_id
        super().__init__(f"{field_name}: {message}")


@dataclass(frozen=True)
class SourceSelectors:
    list: str = "article"
    link: str = "a"
    title: str = "h1"
    content: str = "article p"
    image: str = "img"


@dataclass(frozen=True)
class Source:
    id: str
    url: str
    name: str = ""
    base_url: Optional[str] = None
    language: str = "english"
    category: Optional[str] = None
    frequency: Optional[str] = None
    status: str = "active"
    selectors: SourceSelectors = field(default_factory=SourceSelectors)
    requires_js: bool = False
    consent_selectors: tuple[str, ...] = DEFAULT_CONSENT_SELECTORS
    last_scraped: Optional[datetime] = None

    @property
    def label(self) -> str:
        return self.name or self.id

    @property
    def site_base(self) -> str:
        """Base used for root- and protocol-relative links and images."""
        if self.base_url:
            return self.base_url
        p = urlparse(self.url)
        return f"{p.scheme}://{p.netloc}"

    @property
    def is_schedulable(self) -> bool:
        return self.status == "active"


def _is_http_url(value: str) -> bool:
    p = urlparse(value)
    return p.scheme in ("http", "https") and bool(p.netloc)


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def source_from_record(record: dict) -> Source:
    data = {_ALIASES.get(k, k): v for k, v in (record or {}).items()}
    source_id = _str_or_none(data.get("id"))
    if not source_id:
        raise SourceConfigError("id", "missing")

    url = _str_or_none(data.get("url"))
    if not url or not _is_http_url(url):
        raise SourceConfigError("url", f"not an absolute http(s) url: {url!r}", source_id)

    base_url = _str_or_none(data.get("base_url"))
    if base_url and not _is_http_url(base_url):
        raise SourceConfigError("base_url", f"not an absolute http(s) url: {base_url!r}", source_id)

    frequency = _str_or_none(data.get("frequency"))
    if frequency is not None and frequency not in FREQUENCIES:
        raise SourceConfigError("frequency", f"unknown value {frequency!r}", source_id)

    # Records written before the status column existed have no status; they
    # are active.
    status = (_str_or_none(data.get("status")) or "active").lower()
    if status not in STATUSES:
        raise SourceConfigError("status", f"unknown value {status!r}", source_id)

    defaults = SourceSelectors()
    selectors = SourceSelectors(
        list=_str_or_none(data.get("list_selector")) or defaults.list,
        link=_str_or_none(data.get("link_selector")) or defaults.link,
        title=_str_or_none(data.get("title_selector")) or defaults.title,
        content=_str_or_none(data.get("content_selector")) or defaults.content,
        image=_str_or_none(data.get("image_selector")) or defaults.image,
    )

    for name in ("list", "link", "title", "content", "image"):
        value = getattr(selectors, name)
        try:
            soupsieve.compile(value)
        except soupsieve.SelectorSyntaxError as e:
            raise SourceConfigError(f"{name}_selector", f"invalid selector {value!r}: {e}", source_id) from e

    consent = data.get("consent_selectors")
    if isinstance(consent, str):
        consent = [c.strip() for c in consent.split(",")]
    consent_selectors = tuple(c for c in (consent or []) if c) or DEFAULT_CONSENT_SELECTORS

    return Source(
        id=source_id,
        url=url,
        name=_str_or_none(data.get("name")) or "",
        base_url=base_url,
        language=_str_or_none(data.get("language")) or "english",
        category=_str_or_none(data.get("category")),
        frequency=frequency,
        status=status,
        selectors=selectors,
        requires_js=bool(data.get("requires_js")),
        consent_selectors=consent_selectors,
        last_scraped=_parse_ts(data.get("last_scraped")),
    )


def load_sources(records: list[dict]) -> tuple[list[Source], list[SourceConfigError]]:
    sources: list[Source] = []
    errors: list[SourceConfigError] = []
    for record in records:
        try:
            sources.append(source_from_record(record))
        except SourceConfigError as e:
            if e.source_id is None:
                e.source_id = _str_or_none((record or {}).get("id") or (record or {}).get("_id"))
            errors.append(e)
    return sources, errors


def source_to_row(source: Source) -> dict:
    return {
        "id": source.id,
        "name": source.name,
        "url": source.url,
        "base_url": source.base_url,
        "language": source.language,
        "category": source.category,
        "frequency": source.frequency,
        "status": source.status,
        "list_selector": source.selectors.list,
        "link_selector": source.selectors.link,
        "title_selector": source.selectors.title,
        "content_selector": source.selectors.content,
        "image_selector": source.selectors.image,
        "requires_js": source.requires_js,
        "consent_selectors": list(source.consent_selectors),
        "last_scraped": source.last_scraped.isoformat() if source.last_scraped else None,
    }
