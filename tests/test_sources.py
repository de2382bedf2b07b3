import pytest

from runner.ingest.sources import (
    DEFAULT_CONSENT_SELECTORS,
    SourceConfigError,
    load_sources,
    source_from_record,
    source_to_row,
)


def test_legacy_camel_case_record(source_record):
    source = source_from_record(source_record)
    assert source.id == "src-1"
    assert source.base_url == "https://a.com"
    assert source.selectors.content == "article p"
    assert source.site_base == "https://a.com"
    assert source.consent_selectors == DEFAULT_CONSENT_SELECTORS


def test_missing_status_is_active(source_record):
    source_record.pop("status", None)
    source = source_from_record(source_record)
    assert source.status == "active"
    assert source.is_schedulable


@pytest.mark.parametrize("status", ["blocked", "suspended"])
def test_non_active_sources_are_not_schedulable(source_record, status):
    source_record["status"] = status
    assert not source_from_record(source_record).is_schedulable


def test_selector_defaults():
    source = source_from_record({"id": "s", "url": "https://b.com/list"})
    assert (source.selectors.list, source.selectors.link, source.selectors.title) == ("article", "a", "h1")
    assert source.site_base == "https://b.com"
    assert source.language == "english"


@pytest.mark.parametrize(
    "field_name, value, reported",
    [
        ("url", "/relative/path", "url"),
        ("frequency", "every-minute", "frequency"),
        ("status", "paused", "status"),
        ("baseUrl", "ftp://a.com", "base_url"),
        ("contentSelector", "article p[", "content_selector"),
    ],
)
def test_invalid_fields_are_reported(source_record, field_name, value, reported):
    source_record[field_name] = value
    with pytest.raises(SourceConfigError) as exc:
        source_from_record(source_record)
    assert exc.value.field_name == reported
    assert exc.value.source_id == "src-1"


def test_load_sources_keeps_valid_and_collects_errors(source_record):
    bad = {"_id": "bad-1", "url": "not a url"}
    sources, errors = load_sources([source_record, bad, {"url": "https://c.com"}])
    assert [s.id for s in sources] == ["src-1"]
    assert [(e.source_id, e.field_name) for e in errors] == [("bad-1", "url"), (None, "id")]


def test_source_to_row_uses_column_names(source_record):
    row = source_to_row(source_from_record(source_record))
    assert row["list_selector"] == "article"
    assert row["base_url"] == "https://a.com"
    assert row["status"] == "active"
    assert row["last_scraped"] is None
