import pytest

from runner.ingest.sources import source_from_record


class FakeStore:
    """In-memory stand-in for SupabaseStore."""

    def __init__(self, sources=None, articles=None, recipients=None):
        self.sources = list(sources or [])
        self.articles = list(articles or [])
        self.recipients = list(recipients or [])
        self.scraped: list[str] = []
        self.fail_insert = False

    def list_sources(self, frequency=None):
        return [s for s in self.sources if not frequency or s.get("frequency") == frequency]

    def mark_scraped(self, source_id, when=None):
        self.scraped.append(source_id)

    def article_exists_by_url(self, url, normalized):
        return any(a["url"] in (url, normalized) for a in self.articles)

    def article_exists_by_title(self, title, source_id):
        return any(a["title"] == title and a["source_id"] == source_id for a in self.articles)

    def insert_article(self, row):
        if self.fail_insert:
            raise RuntimeError("database unavailable")
        saved = {**row, "id": f"art-{len(self.articles) + 1}"}
        self.articles.append(saved)
        return saved

    def list_push_recipients(self):
        return self.recipients


SOURCE_RECORD = {
    "id": "src-1",
    "name": "Example News",
    "url": "https://a.com/news",
    "baseUrl": "https://a.com",
    "category": "business",
    "frequency": "hourly",
    "language": "english",
    "listSelector": "article",
    "linkSelector": "a",
    "titleSelector": "h1",
    "contentSelector": "article p",
    "imageSelector": "img",
}


@pytest.fixture
def source_record():
    return dict(SOURCE_RECORD)


@pytest.fixture
def make_source():
    def _make(**overrides):
        record = dict(SOURCE_RECORD)
        record.update(overrides)
        return source_from_record(record)

    return _make


@pytest.fixture
def store():
    return FakeStore(sources=[dict(SOURCE_RECORD)])


@pytest.fixture
def make_store():
    def _make(sources=None, articles=None, recipients=None):
        if sources is None:
            sources = [dict(SOURCE_RECORD)]
        return FakeStore(sources=sources, articles=articles, recipients=recipients)

    return _make
