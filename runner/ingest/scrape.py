import argparse
import fcntl
import random
import signal
import sys
import threading
import time
import traceback
from datetime import datetime, timezone

from backend.config import get_int, get_str
from backend.db import SupabaseStore, finish_ingest_run, get_client, start_ingest_run
from .article import extract_document, render_content
from .article_types import Article
from .enrich import enrich
from .fetch import fetch_page
from .images import select_images
from .links import extract_candidate_links, normalize_url
from .notify import notify_new_article
from .sources import FREQUENCIES, Source, load_sources

MIN_TITLE_CHARS = 5
MIN_CONTENT_CHARS = 50
LOCK_PATH = get_str("SCRAPE_LOCK_PATH", "/tmp/gulfio_scrape.lock")
MIN_LINK_DELAY_MS = get_int("MIN_LINK_DELAY_MS", 0) or 0
MAX_LINK_DELAY_MS = get_int("MAX_LINK_DELAY_MS", MIN_LINK_DELAY_MS) or 0


def _bump_err_bucket(bs: dict, err: str | None) -> None:
    if not err:
        return
    if err.startswith("blocked:"):
        code = err.split(":", 1)[1]
        if code in {"403", "429"}:
            bs[f"err_http_{code}"] = bs.get(f"err_http_{code}", 0) + 1
        else:
            bs["err_blocked"] = bs.get("err_blocked", 0) + 1
        return
    if err == "blocked_html":
        bs["err_blocked"] = bs.get("err_blocked", 0) + 1
        return
    if err.startswith(("render_env:", "render_error:")):
        bs["err_render"] = bs.get("err_render", 0) + 1
        return
    if err.startswith("request_error:"):
        code = err.split(":", 1)[1].lower()
        if "timeout" in code:
            bs["err_timeout"] = bs.get("err_timeout", 0) + 1
        elif "ssl" in code or "tls" in code:
            bs["err_tls"] = bs.get("err_tls", 0) + 1
        elif "connect" in code:
            bs["err_connect"] = bs.get("err_connect", 0) + 1
        elif code.startswith("http"):
            bs["err_http"] = bs.get("err_http", 0) + 1
        else:
            bs["err_other"] = bs.get("err_other", 0) + 1
        return
    bs["err_other"] = bs.get("err_other", 0) + 1


def is_qualifying(title: str, content: str) -> bool:
    return len(title or "") > MIN_TITLE_CHARS and len(content or "") > MIN_CONTENT_CHARS


class IngestionOrchestrator:
    """Scrapes due sources one at a time, links one at a time.

    `store` provides list_sources, mark_scraped, article_exists_by_url,
    article_exists_by_title, insert_article and list_push_recipients.
    """

    def __init__(
        self,
        store,
        *,
        fetcher=None,
        enricher=None,
        notifier=None,
        stop_event: threading.Event | None = None,
        delay_ms: tuple[int, int] = (MIN_LINK_DELAY_MS, MAX_LINK_DELAY_MS),
    ):
        self.store = store
        self.fetcher = fetcher or fetch_page
        self.enricher = enricher or enrich
        self.notifier = notifier or notify_new_article
        self.stop = stop_event or threading.Event()
        self.delay_ms = delay_ms
        self.stats: dict = {}

    def _maybe_delay(self) -> None:
        lo, hi = self.delay_ms
        if lo or hi:
            time.sleep(random.uniform(min(lo, hi), max(lo, hi)) / 1000.0)

    def _bs(self, source_id: str) -> dict:
        return self.stats["by_source"].setdefault(
            source_id,
            {
                "strategy": None,
                "links": 0,
                "rejected_links": 0,
                "new": 0,
                "skipped": 0,
                "rejected": 0,
                "failed": 0,
                "persist_failed": 0,
                "listing_failed": False,
                "interrupted": False,
                "last_error": None,
            },
        )

    def run(self, frequency: str | None = None) -> dict:
        self.stats = {
            "frequency": frequency,
            "sources": 0,
            "sources_skipped": 0,
            "sources_invalid": 0,
            "sources_failed": 0,
            "links": 0,
            "new": 0,
            "skipped": 0,
            "rejected": 0,
            "failed": 0,
            "notified": 0,
            "by_source": {},
        }
        records = self.store.list_sources(frequency)
        sources, errors = load_sources(records)
        for e in errors:
            self.stats["sources_invalid"] += 1
            print(f"SOURCE_INVALID source={e.source_id} field={e.field_name} err={e}", file=sys.stderr)

        sample = None
        for source in sources:
            if self.stop.is_set():
                print("SCRAPE_STOP reason=signal")
                break
            if not source.is_schedulable or (frequency and source.frequency != frequency):
                self.stats["sources_skipped"] += 1
                print(f"SOURCE_SKIP source={source.id} status={source.status} frequency={source.frequency}")
                continue
            self.stats["sources"] += 1
            try:
                created = self._run_source(source)
            except Exception as e:
                self.stats["sources_failed"] += 1
                bs = self._bs(source.id)
                bs["last_error"] = f"source_error:{type(e).__name__}"
                print(f"SOURCE_FAIL source={source.id} err={type(e).__name__}: {e}", file=sys.stderr)
                traceback.print_exc()
                continue
            if created and sample is None:
                sample = created[0]

        if self.stats["new"] and sample is not None:
            try:
                self.stats["notified"] = self.notifier(sample, self.store.list_push_recipients())
            except Exception as e:
                print(f"NOTIFY_FAIL err={type(e).__name__}: {e}", file=sys.stderr)

        print(
            f"SCRAPE_SUMMARY frequency={frequency or 'all'} sources={self.stats['sources']} "
            f"links={self.stats['links']} total_new={self.stats['new']} "
            f"skipped={self.stats['skipped']} rejected={self.stats['rejected']} "
            f"failed={self.stats['failed']} sources_failed={self.stats['sources_failed']} "
            f"notified={self.stats['notified']}"
        )
        return self.stats

    def _run_source(self, source: Source) -> list[dict]:
        bs = self._bs(source.id)
        html, strategy, err = self.fetcher(source, source.url)
        bs["strategy"] = strategy
        if err or not html:
            bs["listing_failed"] = True
            bs["last_error"] = err or "empty_listing"
            _bump_err_bucket(bs, err)
            print(
                f"SOURCE_LISTING_FAIL source={source.id} url={source.url} "
                f"strategy={strategy} err={bs['last_error']}",
                file=sys.stderr,
            )
            self._finish_source(source, bs)
            return []

        links, rejected = extract_candidate_links(html, source)
        bs["links"] = len(links)
        bs["rejected_links"] = rejected

        created: list[dict] = []
        fetched = False
        for url in links:
            if self.stop.is_set():
                bs["interrupted"] = True
                break
            try:
                row, fetched_now = self._ingest_link(source, url, bs, delay=fetched)
            except Exception as e:
                bs["failed"] += 1
                bs["last_error"] = f"link_error:{type(e).__name__}"
                print(f"LINK_FAIL source={source.id} url={url} err={type(e).__name__}: {e}", file=sys.stderr)
                continue
            fetched = fetched or fetched_now
            if row is not None:
                created.append(row)

        if not bs["interrupted"]:
            try:
                self.store.mark_scraped(source.id, datetime.now(timezone.utc))
            except Exception as e:
                print(f"MARK_SCRAPED_FAIL source={source.id} err={type(e).__name__}: {e}", file=sys.stderr)
        self._finish_source(source, bs)
        return created

    def _finish_source(self, source: Source, bs: dict) -> None:
        for key in ("links", "new", "skipped", "rejected", "failed"):
            self.stats[key] += bs[key]
        print(
            f"SOURCE_SUMMARY source={source.id} strategy={bs['strategy']} links={bs['links']} "
            f"new={bs['new']} skipped={bs['skipped']} rejected={bs['rejected']} "
            f"failed={bs['failed']} listing_failed={int(bs['listing_failed'])} "
            f"last_error={bs['last_error']}"
        )

    def _ingest_link(self, source: Source, url: str, bs: dict, *, delay: bool = False):
        """Returns (inserted_row | None, fetched)."""
        normalized = normalize_url(url)
        if self.store.article_exists_by_url(url, normalized):
            bs["skipped"] += 1
            print(f"SCRAPE_SKIP reason=exists source={source.id} url={url}")
            return None, False

        if delay:
            self._maybe_delay()
        html, strategy, err = self.fetcher(source, url)
        if err or not html:
            bs["failed"] += 1
            bs["last_error"] = err or "empty_page"
            _bump_err_bucket(bs, err)
            print(
                f"ARTICLE_FETCH_FAIL source={source.id} url={url} strategy={strategy} err={bs['last_error']}",
                file=sys.stderr,
            )
            return None, True

        doc = extract_document(html, source)
        content, content_format = render_content(doc.content_parts)
        title = doc.title
        if title and self.store.article_exists_by_title(title, source.id):
            bs["skipped"] += 1
            print(f"SCRAPE_SKIP reason=title_exists source={source.id} url={url}")
            return None, True
        if not is_qualifying(title, content):
            bs["rejected"] += 1
            print(
                f"SCRAPE_REJECT reason=too_short source={source.id} url={url} "
                f"title_len={len(title)} content_len={len(content)}"
            )
            return None, True

        images = select_images(doc, source.site_base, url)
        embedding, embedding_pca = self.enricher(title, content)
        article = Article(
            source_id=source.id,
            title=title,
            content=content,
            content_format=content_format,
            url=normalized,
            category=source.category,
            language=source.language,
            published_at=datetime.now(timezone.utc),
            image=images,
            embedding=embedding,
            embedding_pca=embedding_pca,
        )
        row = article.to_row()
        try:
            inserted = self.store.insert_article(row)
        except Exception as e:
            bs["persist_failed"] += 1
            bs["failed"] += 1
            bs["last_error"] = f"persist_error:{type(e).__name__}"
            print(f"ARTICLE_PERSIST_FAIL source={source.id} url={normalized} err={type(e).__name__}: {e}", file=sys.stderr)
            return None, True

        saved = {**row, **(inserted or {})}
        bs["new"] += 1
        print(
            f"ARTICLE_SAVED source={source.id} id={saved.get('id')} url={normalized} "
            f"strategy={strategy} format={content_format} images={len(images)} "
            f"embedding={len(embedding)} pca={int(embedding_pca is not None)}"
        )
        return saved, True


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Scrape due sources and store new articles.")
    parser.add_argument("--frequency", choices=FREQUENCIES, default=None)
    args = parser.parse_args(argv)

    try:
        lock_fd = open(LOCK_PATH, "w")
        fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        print("JOB_LOCKED exit=1")
        return 1

    stop = threading.Event()

    def _handle_term(signum, frame):
        print(f"SCRAPE_SIGNAL signum={signum}")
        stop.set()

    signal.signal(signal.SIGTERM, _handle_term)
    signal.signal(signal.SIGINT, _handle_term)

    sb = get_client()
    run_id = start_ingest_run(sb, f"scrape:{args.frequency or 'all'}")
    orchestrator = IngestionOrchestrator(SupabaseStore(sb), stop_event=stop)
    stats: dict = {}
    ok = False
    error_msg = None
    try:
        stats = orchestrator.run(args.frequency)
        ok = True
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        print(f"SCRAPE_FAILED err={error_msg}", file=sys.stderr)
        traceback.print_exc()
    finally:
        finish_ingest_run(sb, run_id, ok, stats or orchestrator.stats, error_msg)
        lock_fd.close()
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
