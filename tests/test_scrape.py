import threading
from datetime import datetime, timezone

import pytest

from runner.ingest.article_types import Article
from runner.ingest.enrich import enrich
from runner.ingest.scrape import IngestionOrchestrator, _bump_err_bucket, is_qualifying

LISTING = """
<main>
  <article><a href="/news/one">One</a></article>
  <article><a href="/news/two?utm_source=home">Two</a></article>
  <article><a href="/news/three/">Three</a></article>
</main>
"""

BODY = "<p>{} The story continues with enough detail to count as an article body.</p>"


def article_page(title, lead="Lead paragraph for this story."):
    return (
        f'<html><head><meta property="og:image" content="https://cdn.a.com/{title[:3]}.jpg"></head>'
        f"<body><h1>{title}</h1><article>{BODY.format(lead)}</article></body></html>"
    )


PAGES = {
    "https://a.com/news": LISTING,
    "https://a.com/news/one": article_page("First story headline"),
    "https://a.com/news/two?utm_source=home": article_page("Second story headline"),
    "https://a.com/news/three/": article_page("Third story headline"),
}


class FakeFetcher:
    def __init__(self, pages):
        self.pages = dict(pages)
        self.urls = []

    def __call__(self, source, url):
        self.urls.append(url)
        if url in self.pages:
            return self.pages[url], "direct", None
        return None, "direct", "request_error:HTTP404"


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def __call__(self, article, recipients):
        self.calls.append((article, recipients))
        return len(recipients)


def _orchestrator(store, pages=PAGES, **kwargs):
    kwargs.setdefault("enricher", lambda title, content: ([0.1] * 4, None))
    kwargs.setdefault("notifier", RecordingNotifier())
    return IngestionOrchestrator(store, fetcher=FakeFetcher(pages), delay_ms=(0, 0), **kwargs)


def _existing(url, title="Already stored headline"):
    return {"url": url, "title": title, "source_id": "src-1"}


def test_existing_normalized_url_is_skipped(make_store, capsys):
    store = make_store(articles=[_existing("https://a.com/news/three")])
    stats = _orchestrator(store).run()
    out = capsys.readouterr().out

    assert stats["new"] == 2
    assert stats["skipped"] == 1
    assert out.count("SCRAPE_SKIP reason=exists") == 1
    new_urls = [a["url"] for a in store.articles[1:]]
    assert new_urls == ["https://a.com/news/one", "https://a.com/news/two"]
    assert store.scraped == ["src-1"]
    assert "SOURCE_SUMMARY source=src-1" in out
    assert "SCRAPE_SUMMARY" in out and "total_new=2" in out


def test_second_pass_creates_nothing(make_store):
    store = make_store()
    first = _orchestrator(store).run()
    second = _orchestrator(store).run()
    assert first["new"] == 3
    assert second["new"] == 0
    assert second["skipped"] == 3
    assert len(store.articles) == 3


def test_saved_article_fields(make_store):
    store = make_store()
    _orchestrator(store).run()
    saved = store.articles[0]
    assert saved["title"] == "First story headline"
    assert saved["content_format"] == "text"
    assert saved["category"] == "business"
    assert saved["language"] == "english"
    assert saved["image"] == ["https://cdn.a.com/Fir.jpg"]
    assert saved["embedding"] == [0.1] * 4
    assert "embedding_pca" not in saved
    assert (saved["view_count"], saved["likes"], saved["dislikes"], saved["share_count"]) == (0, 0, 0, 0)


def test_short_title_is_rejected(make_store):
    pages = dict(PAGES)
    pages["https://a.com/news/one"] = article_page("Draw", lead="A very long body. " * 20)
    store = make_store()
    stats = _orchestrator(store, pages=pages).run()
    assert stats["rejected"] == 1
    assert "Draw" not in [a["title"] for a in store.articles]
    assert stats["new"] == 2


def test_same_title_under_new_url_is_skipped(make_store, capsys):
    store = make_store(
        articles=[_existing("https://a.com/old/path", title="Second story headline")],
    )
    stats = _orchestrator(store).run()
    assert stats["new"] == 2
    assert "SCRAPE_SKIP reason=title_exists" in capsys.readouterr().out


def test_listing_failure_does_not_mark_scraped(make_store):
    store = make_store()
    stats = _orchestrator(store, pages={}).run()
    assert store.scraped == []
    assert stats["by_source"]["src-1"]["listing_failed"] is True
    assert stats["by_source"]["src-1"]["err_http"] == 1


def test_failed_article_fetch_still_marks_scraped(make_store):
    pages = dict(PAGES)
    del pages["https://a.com/news/two?utm_source=home"]
    store = make_store()
    stats = _orchestrator(store, pages=pages).run()
    assert stats["new"] == 2
    assert stats["failed"] == 1
    assert store.scraped == ["src-1"]


def test_embedding_outage_still_persists(make_store):
    def embedder(text):
        raise RuntimeError("provider down")

    store = make_store()
    stats = _orchestrator(store, enricher=lambda t, c: enrich(t, c, embedder=embedder)).run()
    assert stats["new"] == 3
    assert all(a["embedding"] is None for a in store.articles)
    assert all("embedding_pca" not in a for a in store.articles)


def test_persistence_failure_is_counted_not_raised(make_store):
    store = make_store()
    store.fail_insert = True
    stats = _orchestrator(store).run()
    assert stats["new"] == 0
    assert stats["failed"] == 3
    assert store.scraped == ["src-1"]


def test_one_failing_source_does_not_stop_the_batch(make_store, source_record):
    broken = dict(source_record, id="src-0", url="https://broken.example/list")

    class ExplodingFetcher(FakeFetcher):
        def __call__(self, source, url):
            if source.id == "src-0":
                raise RuntimeError("parser crashed")
            return super().__call__(source, url)

    store = make_store(sources=[broken, dict(source_record)])
    orchestrator = IngestionOrchestrator(
        store,
        fetcher=ExplodingFetcher(PAGES),
        enricher=lambda t, c: ([], None),
        notifier=RecordingNotifier(),
        delay_ms=(0, 0),
    )
    stats = orchestrator.run()
    assert stats["sources_failed"] == 1
    assert stats["new"] == 3


def test_blocked_and_invalid_sources_are_never_fetched(make_store, source_record):
    blocked = dict(source_record, id="src-b", status="blocked")
    invalid = dict(source_record, id="src-x", url="not-a-url")
    store = make_store(sources=[blocked, invalid])
    orchestrator = _orchestrator(store)
    stats = orchestrator.run()
    assert orchestrator.fetcher.urls == []
    assert stats["sources_skipped"] == 1
    assert stats["sources_invalid"] == 1


def test_frequency_filter(make_store, source_record):
    daily = dict(source_record, id="src-d", frequency="daily")
    store = make_store(sources=[daily, dict(source_record)])
    stats = _orchestrator(store).run("daily")
    assert stats["sources"] == 1
    assert list(stats["by_source"]) == ["src-d"]


def test_notification_uses_first_new_article(make_store):
    recipients = [{"push_token": "ExponentPushToken[a]", "notification_settings": {"newsNotifications": True}}]
    store = make_store(recipients=recipients)
    notifier = RecordingNotifier()
    stats = _orchestrator(store, notifier=notifier).run()
    assert len(notifier.calls) == 1
    article, got = notifier.calls[0]
    assert article["title"] == "First story headline"
    assert article["id"] == "art-1"
    assert got == recipients
    assert stats["notified"] == 1


def test_no_notification_without_new_articles(make_store):
    store = make_store(articles=[_existing(u) for u in PAGES])
    notifier = RecordingNotifier()
    _orchestrator(store, notifier=notifier).run()
    assert notifier.calls == []


def test_stop_event_leaves_source_unmarked(make_store):
    stop = threading.Event()
    stop.set()
    store = make_store()
    stats = _orchestrator(store, stop_event=stop).run()
    assert stats["sources"] == 0
    assert store.scraped == []


@pytest.mark.parametrize(
    "title, content, ok",
    [("Draw", "x" * 500, False), ("Sixsix", "x" * 51, True), ("Sixsix", "x" * 50, False)],
)
def test_is_qualifying(title, content, ok):
    assert is_qualifying(title, content) is ok


def test_error_buckets():
    bs = {}
    for err in ["blocked:403", "blocked:429", "blocked_html", "render_env:browser_exited", "request_error:timeout", "request_error:HTTP503"]:
        _bump_err_bucket(bs, err)
    assert bs == {
        "err_http_403": 1,
        "err_http_429": 1,
        "err_blocked": 1,
        "err_render": 1,
        "err_timeout": 1,
        "err_http": 1,
    }


def test_article_row_without_embedding_stores_null():
    article = Article(
        source_id="src-1",
        title="Headline",
        content="Body",
        content_format="text",
        url="https://a.com/x",
        category=None,
        language="english",
        published_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )
    assert article.embedding == []
    row = article.to_row()
    assert row["embedding"] is None
    assert row["published_at"] == "2024-05-01T00:00:00+00:00"
    assert "embedding_pca" not in row
