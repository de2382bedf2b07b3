import json
import os
import random
import time
from datetime import datetime, timezone

import httpx
from dotenv import load_dotenv
from supabase import create_client as _create_client

_ENV_PATH = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(_ENV_PATH)

_sb = None


def create_client(url: str | None = None, key: str | None = None):
    url = url or os.getenv("SUPABASE_URL")
    key = key or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")
    if not url or not key:
        missing = []
        if not url:
            missing.append("SUPABASE_URL")
        if not (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")):
            missing.append("SUPABASE_SERVICE_ROLE_KEY or SUPABASE_KEY")
        raise RuntimeError(f"Missing {', '.join(missing)}")
    return _create_client(url, key)


def get_client():
    global _sb
    if _sb:
        return _sb

    _sb = create_client()
    return _sb


class SupabaseStore:
    """Source registry, article store and recipient lookup over Supabase."""

    def __init__(self, sb=None):
        self.sb = sb or get_client()

    def list_sources(self, frequency: str | None = None) -> list[dict]:
        # status is filtered after validation: rows without a status are
        # active, and a PostgREST neq() would drop their NULLs
        query = self.sb.table("sources").select("*")
        if frequency:
            query = query.eq("frequency", frequency)
        res = query.order("id").execute()
        return res.data or []

    def upsert_sources(self, rows: list[dict]) -> int:
        if not rows:
            return 0
        res = self.sb.table("sources").upsert(rows, on_conflict="id").execute()
        return len(res.data or [])

    def mark_scraped(self, source_id: str, when: datetime | None = None) -> None:
        when = when or datetime.now(timezone.utc)
        self.sb.table("sources").update({"last_scraped": when.isoformat()}).eq(
            "id", source_id
        ).execute()

    def article_exists_by_url(self, url: str, normalized: str) -> bool:
        candidates = [u for u in dict.fromkeys([url, normalized]) if u]
        if not candidates:
            return False
        res = self.sb.table("articles").select("id").in_("url", candidates).limit(1).execute()
        return bool(res.data)

    def article_exists_by_title(self, title: str, source_id: str) -> bool:
        res = (
            self.sb.table("articles")
            .select("id")
            .eq("source_id", source_id)
            .eq("title", title)
            .limit(1)
            .execute()
        )
        return bool(res.data)

    def insert_article(self, row: dict) -> dict:
        res = self.sb.table("articles").insert(row).execute()
        if not res.data:
            raise RuntimeError("insert returned no row")
        return res.data[0]

    def list_push_recipients(self) -> list[dict]:
        res = (
            self.sb.table("users")
            .select("id,push_token,notification_settings")
            .not_.is_("push_token", "null")
            .execute()
        )
        return res.data or []

    def sample_embeddings(self, limit: int = 2000) -> list[list[float]]:
        res = (
            self.sb.table("articles")
            .select("embedding")
            .not_.is_("embedding", "null")
            .order("published_at", desc=True)
            .limit(limit)
            .execute()
        )
        out = []
        for row in res.data or []:
            value = row.get("embedding")
            # pgvector columns come back as "[0.1,0.2,...]" strings
            if isinstance(value, str):
                try:
                    value = json.loads(value)
                except ValueError:
                    continue
            if value:
                out.append(value)
        return out


def _is_transient_run_row_error(err: Exception) -> bool:
    if isinstance(err, (httpx.ConnectError, httpx.ReadError, httpx.RemoteProtocolError)):
        return True
    msg = str(err)
    transient_markers = [
        "UNEXPECTED_EOF_WHILE_READING",
        "SSL",
        "Connection reset",
        "Broken pipe",
        "timeout",
    ]
    return any(m in msg for m in transient_markers)


def _run_row_retry(fn, *args, **kwargs):
    delays = [1, 2, 4, 8, 16]
    for i, delay in enumerate(delays, start=1):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            if not _is_transient_run_row_error(e) or i == len(delays):
                raise
            jitter = random.uniform(0, 0.2)
            print(f"RUN_ROW_RETRY attempt={i} error={str(e)[:200]}")
            time.sleep(delay + jitter)


def start_ingest_run(sb, job_name: str) -> str | None:
    try:
        res = _run_row_retry(
            lambda: sb.table("ingest_runs").insert({"job_name": job_name}).execute()
        )
        return res.data[0]["id"]
    except Exception:
        print("RUN_ROW_UNAVAILABLE proceeding_without_run_row=1")
        return None


def finish_ingest_run(
    sb, run_id: str | None, ok: bool, stats: dict, error: str | None = None
):
    if not run_id:
        return
    payload = {
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "ok": ok,
        "stats": stats or {},
        "error": error,
    }
    try:
        _run_row_retry(
            lambda: sb.table("ingest_runs").update(payload).eq("id", run_id).execute()
        )
    except Exception as e:
        if _is_transient_run_row_error(e):
            print("RUN_ROW_UNAVAILABLE finish_failed=1")
        else:
            print(f"RUN_ROW_UNAVAILABLE finish_failed=1 error={str(e)[:200]}")
