"""Dry-run one source: fetch its listing, print the candidate links, then
extract and print the first article that is not already stored.

Nothing is written to the database. Use --url to extract a specific
article page instead of walking the listing.
"""

import argparse
import json
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from backend.db import SupabaseStore
from runner.ingest.article import extract_document, render_content
from runner.ingest.fetch import fetch_page
from runner.ingest.images import select_images
from runner.ingest.links import extract_candidate_links, normalize_url
from runner.ingest.sources import SourceConfigError, source_from_record


def _find_record(store: SupabaseStore, source_id: str) -> dict | None:
    for record in store.list_sources():
        if str(record.get("id")) == source_id:
            return record
    return None


def _print_article(source, url: str) -> int:
    html, strategy, err = fetch_page(source, url)
    if err or not html:
        print(f"ARTICLE_FETCH_FAIL url={url} strategy={strategy} err={err}")
        return 1
    doc = extract_document(html, source)
    content, content_format = render_content(doc.content_parts)
    images = select_images(doc, source.site_base, url)
    print(
        json.dumps(
            {
                "url": normalize_url(url),
                "strategy": strategy,
                "title": doc.title,
                "content_format": content_format,
                "parts": [p.kind for p in doc.content_parts],
                "images": images,
                "content": content[:2000],
            },
            ensure_ascii=False,
            indent=2,
        )
    )
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Dry-run scrape of a single source.")
    parser.add_argument("source_id", help="Source id (sources.id)")
    parser.add_argument("--url", help="Extract this article URL instead of the first new link")
    parser.add_argument("--file", help="Read the source record from a JSON file instead of the database")
    args = parser.parse_args()

    store = None
    if args.file:
        with open(args.file, "r", encoding="utf-8") as f:
            data = json.load(f)
        records = data if isinstance(data, list) else [data]
        record = next((r for r in records if str(r.get("id") or r.get("_id")) == args.source_id), None)
    else:
        store = SupabaseStore()
        record = _find_record(store, args.source_id)
    if record is None:
        print(f"Unknown source: {args.source_id}")
        return 1
    try:
        source = source_from_record(record)
    except SourceConfigError as e:
        print(f"SOURCE_INVALID source={args.source_id} field={e.field_name} err={e}")
        return 1

    if args.url:
        return _print_article(source, args.url)

    html, strategy, err = fetch_page(source, source.url)
    if err or not html:
        print(f"SOURCE_LISTING_FAIL url={source.url} strategy={strategy} err={err}")
        return 1
    links, rejected = extract_candidate_links(html, source)
    print(f"LISTING source={source.id} name={source.label!r} strategy={strategy} links={len(links)} rejected={rejected}")
    for link in links:
        print(f"  {link}")

    for link in links:
        if store is not None and store.article_exists_by_url(link, normalize_url(link)):
            print(f"SCRAPE_SKIP reason=exists url={link}")
            continue
        return _print_article(source, link)
    print("No new links.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
