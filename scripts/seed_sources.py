import argparse
import json
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from backend.db import SupabaseStore
from runner.ingest.sources import load_sources, source_to_row

DEFAULT_PATH = BASE_DIR / "runner" / "ingest" / "sources.json"


def load_json(path: Path):
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def chunked(rows: list[dict], size: int = 100):
    for i in range(0, len(rows), size):
        yield rows[i : i + size]


def build_rows(records: list[dict]) -> tuple[list[dict], int]:
    sources, errors = load_sources(records)
    for e in errors:
        print(f"SOURCE_INVALID source={e.source_id} field={e.field_name} err={e}", file=sys.stderr)
    rows = []
    for source in sources:
        row = source_to_row(source)
        # last_scraped belongs to the scraper
        row.pop("last_scraped", None)
        rows.append(row)
    return rows, len(errors)


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate source records and upsert them.")
    parser.add_argument("--sources", help="Path to a JSON list of source records")
    parser.add_argument("--check", action="store_true", help="Validate only, write nothing")
    args = parser.parse_args()

    path = Path(args.sources) if args.sources else DEFAULT_PATH
    if not path.exists():
        print(f"No sources file at {path}")
        return 1
    records = load_json(path)
    rows, invalid = build_rows(records)
    print(f"SOURCES_LOADED valid={len(rows)} invalid={invalid}")
    if args.check or not rows:
        return 1 if invalid else 0

    store = SupabaseStore()
    written = 0
    for batch in chunked(rows, size=100):
        written += store.upsert_sources(batch)

    print(f"Seeded/updated {written} sources.")
    return 1 if invalid else 0


if __name__ == "__main__":
    raise SystemExit(main())
