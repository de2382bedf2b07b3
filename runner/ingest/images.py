import re
from typing import Iterable
from urllib.parse import urljoin, urlsplit

from .article_types import ExtractedDocument

CSS_URL_RE = re.compile(r"""^\s*url\(\s*['"]?([^'")]+?)['"]?\s*\)\s*$""", re.IGNORECASE)
WIDTH_PARAM_RE = re.compile(r"([?&](?:w|width)=)(\d+)", re.IGNORECASE)

TRACKER_MARKERS = ("1x1", "pixel", "tracker", "analytics")
CANONICAL_WIDTH = 800

SOCIAL_ICON_FILES = {
    "insta_icon_5.svg",
    "facebook.svg",
    "tiktok_icon.svg",
    "x_logo_1.svg",
    "whatsapp.svg",
    "mail.svg",
}
DECORATIVE_ASSET_RE = re.compile(r"/wp-content/themes/[^/]+/images/[^/]+\.svg$", re.IGNORECASE)


def unwrap_css_url(value: str) -> str:
    m = CSS_URL_RE.match(value or "")
    return m.group(1) if m else value


def _upscale_width(url: str) -> str:
    def repl(m: re.Match) -> str:
        if int(m.group(2)) >= CANONICAL_WIDTH:
            return m.group(0)
        return f"{m.group(1)}{CANONICAL_WIDTH}"

    return WIDTH_PARAM_RE.sub(repl, url)


def _is_tracker(url: str) -> bool:
    lower = url.lower()
    return any(marker in lower for marker in TRACKER_MARKERS)


def _is_decorative(url: str) -> bool:
    path = urlsplit(url).path
    name = path.rsplit("/", 1)[-1].lower()
    if name in SOCIAL_ICON_FILES:
        return True
    return bool(DECORATIVE_ASSET_RE.search(path))


def normalize_images(raw: Iterable[str], site_base: str, page_url: str | None = None) -> list[str]:
    """Clean, absolutize and filter image candidates, keeping first-seen order.

    Protocol- and root-relative forms resolve against the source's site base;
    anything else relative resolves against the page it was found on.
    """
    base = site_base.rstrip("/")
    scheme = urlsplit(base).scheme or "https"
    out: list[str] = []
    seen = set()
    for value in raw or []:
        if not value:
            continue
        url = unwrap_css_url(str(value)).strip()
        if not url or url.lower().startswith("data:"):
            continue
        if _is_tracker(url):
            continue
        url = _upscale_width(url)
        if url.startswith("//"):
            url = f"{scheme}:{url}"
        elif url.startswith("/"):
            url = urljoin(base + "/", url)
        else:
            url = urljoin(page_url or base + "/", url)
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            continue
        if _is_decorative(url):
            continue
        if url in seen:
            continue
        seen.add(url)
        out.append(url)
    return out


def select_images(doc: ExtractedDocument, site_base: str, page_url: str | None = None) -> list[str]:
    for candidates in (doc.images, doc.hero_images, doc.meta_images):
        images = normalize_images(candidates, site_base, page_url)
        if images:
            return images
    return []
