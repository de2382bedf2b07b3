import re
import sys
import time
from typing import Optional

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from backend.config import get_bool, get_float, get_int
from .render import RENDER_TIMEOUT_MS, RenderEnvironmentError, RenderError, render_page
from .sources import Source

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,ar;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "close",
}
USER_AGENTS = [
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/121.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (X11; Linux x86_64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0 Safari/537.36"
    ),
]

DEFAULT_CONNECT_TIMEOUT = get_float("FETCH_CONNECT_TIMEOUT", 10.0) or 10.0
DEFAULT_READ_TIMEOUT = get_float("FETCH_READ_TIMEOUT", 20.0) or 20.0
FETCH_LOG = get_bool("FETCH_LOG", False)

# a 5xx is retried once, after the second delay; 401/403/429 never are
RETRY_BACKOFFS = [0, 2]
RETRY_STATUSES = {500, 502, 503, 504}

SPA_TEXT_THRESHOLD = get_int("SPA_TEXT_THRESHOLD", 400) or 400
BLOCK_TEXT_THRESHOLD = get_int("BLOCK_TEXT_THRESHOLD", 2000) or 2000

STRATEGY_DIRECT = "direct"
STRATEGY_RENDERED = "rendered"

_BLOCK_MARKERS = (
    "access denied",
    "request blocked",
    "enable javascript",
    "cloudflare",
    "captcha",
    "checking your browser",
    "bot detection",
    "incident id",
    "akamai",
    "incapsula",
    "perimeterx",
)

SPA_ROOT_RE = re.compile(
    r"""<div[^>]+id=["'](?:root|app|__next|__nuxt)["']"""
    r"|data-reactroot|ng-version=|window\.__NUXT__|id=[\"']__NEXT_DATA__",
    re.IGNORECASE,
)
SPA_BUNDLE_RE = re.compile(
    r"/_next/static/|/_nuxt/|chunk-vendors|\bmain\.[0-9a-f]{6,}\.js"
    r"|\bruntime\.[0-9a-f]{6,}\.js|\bbundle(?:\.[0-9a-f]+)?\.js",
    re.IGNORECASE,
)

_session = None


def _get_session() -> requests.Session:
    global _session
    if _session is not None:
        return _session

    session = requests.Session()
    retries = Retry(
        total=0,
        status_forcelist=[],
        allowed_methods=["GET", "HEAD"],
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    _session = session
    return _session


def _rotate_headers(url: str, headers: dict) -> dict:
    merged = dict(headers or {})
    if USER_AGENTS:
        merged["User-Agent"] = USER_AGENTS[sum(url.encode("utf-8")) % len(USER_AGENTS)]
    return merged


def _log_response(url: str, response, elapsed_ms: int) -> None:
    if not FETCH_LOG:
        return
    head = response.text[:120].replace("\n", " ")
    print(
        f"GET {url} status={response.status_code} "
        f"content-type={response.headers.get('content-type')} "
        f"bytes={len(response.content)} elapsed={elapsed_ms}ms head={head}"
    )


def fetch_url(url: str, headers: dict = HEADERS) -> tuple[Optional[str], Optional[str]]:
    try:
        session = _get_session()
        merged_headers = _rotate_headers(url, headers)
        last_response = None
        for attempt, delay in enumerate(RETRY_BACKOFFS):
            if delay:
                time.sleep(delay)
            start_ts = time.monotonic()
            response = session.get(
                url,
                timeout=(DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT),
                headers=merged_headers,
            )
            last_response = response
            _log_response(url, response, int((time.monotonic() - start_ts) * 1000))
            if response.status_code in RETRY_STATUSES:
                if attempt < len(RETRY_BACKOFFS) - 1:
                    continue
                break
            if response.status_code in (401, 403, 429):
                return None, f"blocked:{response.status_code}"
            response.raise_for_status()
            return response.text, None
        if last_response is not None:
            return None, f"request_error:HTTP{last_response.status_code}"
        return None, "request_error:unknown"
    except requests.exceptions.Timeout:
        if FETCH_LOG:
            print(f"GET {url} status=timeout")
        return None, "request_error:timeout"
    except requests.exceptions.HTTPError as e:
        code = e.response.status_code if e.response is not None else "unknown"
        return None, f"request_error:HTTP{code}"
    except requests.exceptions.RequestException as e:
        if FETCH_LOG:
            print(f"GET {url} status=error err={type(e).__name__}")
        return None, f"request_error:{type(e).__name__}"


def extract_main_text(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")

    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()

    text = soup.get_text(separator=" ")
    text = re.sub(r"\s+", " ", text).strip()
    return text


def looks_blocked(html: str | None) -> bool:
    """Short page whose visible text reads like a bot challenge."""
    if not html:
        return False
    text = extract_main_text(html)
    if len(text) > BLOCK_TEXT_THRESHOLD:
        return False
    lower = text.lower()
    return any(marker in lower for marker in _BLOCK_MARKERS)


def looks_like_spa(html: str | None) -> bool:
    if not html:
        return False
    if not (SPA_ROOT_RE.search(html) or SPA_BUNDLE_RE.search(html)):
        return False
    return len(extract_main_text(html)) < SPA_TEXT_THRESHOLD


def _render(url: str, source: Source, renderer) -> tuple[Optional[str], Optional[str]]:
    kwargs = {"consent_selectors": source.consent_selectors, "timeout_ms": RENDER_TIMEOUT_MS}
    try:
        return renderer(url, **kwargs), None
    except RenderError as e:
        print(f"RENDER_FAIL source={source.id} url={url} err={e}", file=sys.stderr)
        return None, f"render_error:{e.code}"
    except RenderEnvironmentError as e:
        if e.bundled:
            print(f"RENDER_ENV_FAIL source={source.id} url={url} err={e} retry=none", file=sys.stderr)
            return None, f"render_env:{e.code}"
        print(f"RENDER_ENV_FAIL source={source.id} url={url} err={e} retry=bundled", file=sys.stderr)
    try:
        return renderer(url, use_bundled=True, **kwargs), None
    except RenderEnvironmentError as e:
        print(f"RENDER_ENV_FAIL source={source.id} url={url} err={e} retry=none", file=sys.stderr)
        return None, f"render_env:{e.code}"
    except RenderError as e:
        print(f"RENDER_FAIL source={source.id} url={url} err={e}", file=sys.stderr)
        return None, f"render_error:{e.code}"


def _rendered(url: str, source: Source, renderer) -> tuple[Optional[str], str, Optional[str]]:
    html, err = _render(url, source, renderer)
    if err:
        return None, STRATEGY_RENDERED, err
    if looks_blocked(html):
        return None, STRATEGY_RENDERED, "blocked_html"
    return html, STRATEGY_RENDERED, None


def fetch_page(
    source: Source,
    url: str,
    *,
    renderer=None,
    http_get=None,
) -> tuple[Optional[str], str, Optional[str]]:
    """Fetch one listing or article page for a source.

    Returns (html, strategy, err). Each page moves Direct -> Rendered at most
    once: a blocked direct fetch or an SPA shell escalates to a render, a
    render that fails because the browser would not start is retried once
    with the bundled browser, and nothing else is retried.
    """
    renderer = renderer or render_page
    http_get = http_get or fetch_url

    if source.requires_js:
        return _rendered(url, source, renderer)

    html, err = http_get(url, HEADERS)
    if err:
        if err.startswith("blocked:"):
            print(f"FETCH_ESCALATE source={source.id} url={url} reason={err}")
            return _rendered(url, source, renderer)
        return None, STRATEGY_DIRECT, err

    if looks_blocked(html):
        print(f"FETCH_ESCALATE source={source.id} url={url} reason=blocked_html")
        return _rendered(url, source, renderer)

    if looks_like_spa(html):
        print(f"FETCH_ESCALATE source={source.id} url={url} reason=spa")
        rendered, strategy, rerr = _rendered(url, source, renderer)
        if rendered is not None:
            return rendered, strategy, None
        print(f"FETCH_RENDER_FALLBACK source={source.id} url={url} err={rerr}", file=sys.stderr)

    return html, STRATEGY_DIRECT, None
