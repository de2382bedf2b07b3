from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from .sources import Source

PLACEHOLDER_HREFS = {"#", ":", "/#", "javascript:void(0)", "javascript:;"}
SKIP_SCHEMES = ("javascript:", "mailto:", "tel:", "data:")


def normalize_url(url: str) -> str:
    """Drop query string, fragment and a trailing path slash."""
    raw = (url or "").strip()
    if not raw:
        return ""
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def _directory_base(base: str) -> str:
    parts = urlsplit(base)
    if parts.path.endswith("/"):
        return base
    return urlunsplit((parts.scheme, parts.netloc, parts.path + "/", "", ""))


def resolve_href(href: str | None, source: Source) -> str | None:
    href = (href or "").strip()
    if not href or href in PLACEHOLDER_HREFS or href.startswith("#"):
        return None
    if href.lower().startswith(SKIP_SCHEMES):
        return None
    parts = urlsplit(href)
    if parts.scheme in ("http", "https") and parts.netloc:
        return href
    if parts.scheme and parts.scheme not in ("http", "https"):
        return None
    # base_url is a directory the source's hrefs live under; without one,
    # only the scheme and host of the listing url are trusted.
    base = _directory_base(source.base_url) if source.base_url else source.site_base + "/"
    resolved = urljoin(base, href)
    if urlsplit(resolved).scheme not in ("http", "https"):
        return None
    return resolved


def extract_candidate_links(html: str, source: Source) -> tuple[list[str], int]:
    """Returns (links, rejected) for a listing page."""
    soup = BeautifulSoup(html or "", "html.parser")
    links: list[str] = []
    seen = set()
    rejected = 0
    for item in soup.select(source.selectors.list):
        anchor = item.select_one(source.selectors.link)
        if anchor is None and item.name == "a":
            anchor = item
        href = anchor.get("href") if anchor is not None else None
        url = resolve_href(href, source)
        if not url:
            rejected += 1
            print(f"LINK_REJECT source={source.id} href={(href or '')[:120]!r}")
            continue
        if url in seen:
            continue
        seen.add(url)
        links.append(url)
    return links, rejected
