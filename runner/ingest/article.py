"""Article page extraction.

The content pass walks the parsed tree once, in document order, below the
containers named by the source's content selector. Each node is classified
by tag; a classified node is emitted (or dropped as noise) and never
descended into, so paragraphs inside a list or markup inside a social embed
are not captured twice.
"""

import re
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Tag

from .article_types import Embed, ExtractedDocument, Heading, ListBlock, Paragraph
from .sources import Source

CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]+")
HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.IGNORECASE)
BG_URL_RE = re.compile(r"""url\(\s*['"]?([^)'"]+)['"]?\s*\)""", re.IGNORECASE)

HIDDEN_CLASSES = {
    "hidden",
    "hide",
    "invisible",
    "sr-only",
    "screen-reader-only",
    "visually-hidden",
}
GARBAGE_MARKERS = ("advertisement", "banner", "popup", "modal", "overlay", "sidebar")
# "ad-" at the start of a class, id or one of its dash/underscore segments
AD_MARKER_RE = re.compile(r"(?:^|[-_])ad-")

MIN_FRAGMENT_CHARS = 10
CONTENT_TAGS = {"p", "h2", "h3", "ul", "ol", "li", "blockquote"}
SKIP_TAGS = {"script", "style", "noscript", "template", "head"}

EMBED_CLASSES = {
    "twitter-tweet": "twitter",
    "twitter-video": "twitter",
    "instagram-media": "instagram",
    "tiktok-embed": "tiktok",
    "fb-post": "facebook",
    "fb-video": "facebook",
    "reddit-card": "reddit",
}
EMBED_HOSTS = {
    "youtube.com": "youtube",
    "youtube-nocookie.com": "youtube",
    "youtu.be": "youtube",
    "player.vimeo.com": "vimeo",
    "platform.twitter.com": "twitter",
    "instagram.com": "instagram",
    "facebook.com": "facebook",
    "tiktok.com": "tiktok",
    "open.spotify.com": "spotify",
}

HERO_SELECTORS = (
    '[class*="hero"][style*="background"]',
    '[class*="hero"][data-bg]',
    '[class*="featured"][style*="background"]',
)
META_IMAGE_KEYS = (
    ("property", "og:image"),
    ("property", "og:image:url"),
    ("name", "twitter:image"),
    ("name", "twitter:image:src"),
)
LAZY_SRC_ATTRS = ("src", "data-src", "data-lazy-src", "data-original")


def clean_text(text: str | None) -> str:
    if not text:
        return ""
    return CONTROL_RE.sub("", text).strip()


def _node_text(el: Tag) -> str:
    text = el.get_text(" ", strip=True)
    return " ".join(CONTROL_RE.sub(" ", text).split())


def is_visible(el: Tag) -> bool:
    style = el.get("style") or ""
    if HIDDEN_STYLE_RE.search(style):
        return False
    if el.has_attr("hidden"):
        return False
    classes = [c.lower() for c in (el.get("class") or [])]
    if any(c in HIDDEN_CLASSES for c in classes):
        return False
    ident = (el.get("id") or "").lower()
    joined = " ".join(classes)
    if any(m in joined or m in ident for m in GARBAGE_MARKERS):
        return False
    if AD_MARKER_RE.search(ident) or any(AD_MARKER_RE.search(c) for c in classes):
        return False
    return True


def _host_provider(src: str) -> str | None:
    host = (urlsplit(src).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    for known, provider in EMBED_HOSTS.items():
        if host == known or host.endswith("." + known):
            return provider
    return None


def _embed_from(el: Tag) -> Embed | None:
    classes = [c.lower() for c in (el.get("class") or [])]
    provider = next((EMBED_CLASSES[c] for c in classes if c in EMBED_CLASSES), None)
    url = None
    if provider:
        url = el.get("data-instgrm-permalink") or el.get("data-href") or el.get("cite")
        if not url:
            anchors = el.find_all("a", href=True)
            if anchors:
                url = anchors[-1]["href"]
    elif el.name == "iframe":
        src = (el.get("src") or el.get("data-src") or "").strip()
        if src.startswith("//"):
            src = "https:" + src
        provider = _host_provider(src)
        url = src or None
    if not provider:
        return None
    return Embed(provider=provider, raw_markup=str(el), url=url)


_DESCEND = object()


def _nested_embeds(el: Tag) -> list[tuple[Tag, Embed]]:
    found = []
    for child in el.find_all(["iframe", "blockquote", "div"]):
        if any(p is node for p in child.parents for node, _ in found):
            continue
        if not is_visible(child):
            continue
        embed = _embed_from(child)
        if embed is not None:
            found.append((child, embed))
    return found


def _text_outside(el: Tag, skip: list[Tag]) -> str:
    chunks = []
    for s in el.find_all(string=True):
        if any(p is node for p in s.parents for node in skip):
            continue
        chunks.append(str(s))
    return " ".join(CONTROL_RE.sub(" ", " ".join(chunks)).split())


def _classify(el: Tag):
    """Returns the parts for `el`, or _DESCEND to walk its children."""
    embed = _embed_from(el)
    if embed is not None:
        return [embed]
    name = el.name
    if name in ("h2", "h3"):
        text = _node_text(el)
        return [Heading(level=int(name[1]), text=text)] if text else []
    if name in ("ul", "ol"):
        items = el.find_all("li", recursive=False) or el.find_all("li")
        texts = [_node_text(li) for li in items if is_visible(li)]
        texts = [t for t in texts if t]
        return [ListBlock(ordered=name == "ol", items=tuple(texts))] if texts else []
    if name in ("p", "blockquote"):
        # <p><iframe ...></p> and friends: text first, then the embeds it wraps
        nested = _nested_embeds(el)
        text = _text_outside(el, [node for node, _ in nested]) if nested else _node_text(el)
        parts = [Paragraph(text=text)] if len(text) > MIN_FRAGMENT_CHARS else []
        parts.extend(embed for _, embed in nested)
        return parts
    return _DESCEND


def _walk(node: Tag, parts: list) -> None:
    for child in node.children:
        if not isinstance(child, Tag) or child.name in SKIP_TAGS:
            continue
        if not is_visible(child):
            continue
        found = _classify(child)
        if found is _DESCEND:
            _walk(child, parts)
        else:
            parts.extend(found)


def content_scopes(selector: str) -> list[str]:
    """Container selectors under which the content pass runs.

    `.story p, .story h2` -> [`.story`]; a selector whose last step is not a
    bare content tag is used as the container itself.
    """
    scopes: list[str] = []
    for part in (selector or "").split(","):
        tokens = part.split()
        if tokens and tokens[-1].lower() in CONTENT_TAGS:
            tokens = tokens[:-1]
        while tokens and tokens[-1] in (">", "+", "~"):
            tokens = tokens[:-1]
        scope = " ".join(tokens)
        if scope not in scopes:
            scopes.append(scope)
    return scopes


def _containers(soup: BeautifulSoup, selector: str) -> list[Tag]:
    scopes = content_scopes(selector)
    if "" in scopes:
        return [soup.body or soup]
    matched = soup.select(", ".join(scopes))
    out: list[Tag] = []
    for el in matched:
        if any(parent in out for parent in el.parents):
            continue
        out.append(el)
    return out


def extract_content_parts(soup: BeautifulSoup, selector: str) -> list:
    parts: list = []
    for container in _containers(soup, selector):
        if not is_visible(container):
            continue
        found = _classify(container)
        if found is _DESCEND:
            _walk(container, parts)
        else:
            parts.extend(found)
    return parts


def render_content(parts: list) -> tuple[str, str]:
    """Returns (content, content_format)."""
    structured = any(isinstance(p, (Heading, ListBlock)) for p in parts)
    blocks: list[str] = []
    for part in parts:
        if isinstance(part, Paragraph):
            blocks.append(part.text)
        elif isinstance(part, Heading):
            blocks.append(f"{'#' * part.level} {part.text}")
        elif isinstance(part, ListBlock):
            if part.ordered:
                lines = [f"{i}. {item}" for i, item in enumerate(part.items, start=1)]
            else:
                lines = [f"- {item}" for item in part.items]
            blocks.append("\n".join(lines))
        elif isinstance(part, Embed):
            if structured:
                blocks.append(part.raw_markup)
            elif part.url:
                blocks.append(part.url)
    return "\n\n".join(blocks).strip(), ("markdown" if structured else "text")


def extract_title(soup: BeautifulSoup, selector: str) -> str:
    for el in soup.select(selector):
        if not is_visible(el):
            continue
        title = clean_text(_node_text(el))
        if title:
            return title
    return ""


def _bg_url(value: str | None) -> str | None:
    if not value:
        return None
    m = BG_URL_RE.search(value)
    return m.group(1) if m else None


def _image_src(el: Tag) -> str | None:
    if el.name == "img":
        for attr in LAZY_SRC_ATTRS:
            src = (el.get(attr) or "").strip()
            if src:
                return src
        srcset = (el.get("srcset") or el.get("data-srcset") or "").strip()
        if srcset:
            return srcset.split(",")[0].split()[0]
        return None
    return (el.get("data-bg") or "").strip() or _bg_url(el.get("style"))


def extract_images(soup: BeautifulSoup, selector: str) -> list[str]:
    out = []
    for el in soup.select(selector):
        if not is_visible(el):
            continue
        src = _image_src(el)
        if src:
            out.append(src)
    return out


def extract_hero_images(soup: BeautifulSoup) -> list[str]:
    out = []
    for selector in HERO_SELECTORS:
        for el in soup.select(selector):
            if not is_visible(el):
                continue
            src = (el.get("data-bg") or "").strip() or _bg_url(el.get("style"))
            if src:
                out.append(src)
    return out


def extract_meta_images(soup: BeautifulSoup) -> list[str]:
    out = []
    for attr, key in META_IMAGE_KEYS:
        tag = soup.find("meta", attrs={attr: key})
        if tag and (tag.get("content") or "").strip():
            out.append(tag["content"].strip())
    return out


def extract_document(html: str, source: Source) -> ExtractedDocument:
    soup = BeautifulSoup(html or "", "html.parser")
    selectors = source.selectors
    return ExtractedDocument(
        title=extract_title(soup, selectors.title),
        content_parts=extract_content_parts(soup, selectors.content),
        images=extract_images(soup, selectors.image),
        hero_images=extract_hero_images(soup),
        meta_images=extract_meta_images(soup),
    )
