from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional, Tuple

import orjson


# ──────────────────────────────────────────────────────────────
# Connections
# ──────────────────────────────────────────────────────────────

def connect_sqlite(path: str) -> sqlite3.Connection:
    """
    Open a RW SQLite connection with sane pragmas.

    IMPORTANT:
    - SQLite will NOT create parent directories.
    - WAL mode requires the directory to be writable (creates -wal/-shm).
    - isolation_level=None: callers manage transactions explicitly
      (the quota counter needs BEGIN IMMEDIATE).
    """
    if path != ":memory:":
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=3000;")
    return conn


# ──────────────────────────────────────────────────────────────
# Schema
# ──────────────────────────────────────────────────────────────

def ensure_schema(conn: sqlite3.Connection) -> None:
    # Resolved identities keyed by coordinate bucket (see keying.coord_bucket)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS place_cache (
            bucket TEXT PRIMARY KEY,
            source_id TEXT,
            inserted_at TEXT NOT NULL,
            place_json BLOB NOT NULL,
            photo_urls_json BLOB NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_place_cache_source_id ON place_cache(source_id);")

    # Paid-provider daily counters; a new day is a new row, nothing is reset
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS quota_counters (
            client_key TEXT NOT NULL,
            day TEXT NOT NULL,
            count INTEGER NOT NULL,
            PRIMARY KEY (client_key, day)
        );
        """
    )


# ──────────────────────────────────────────────────────────────
# Place cache rows
# ──────────────────────────────────────────────────────────────

def put_place_row(
    conn: sqlite3.Connection,
    *,
    bucket: str,
    source_id: str | None,
    inserted_at: str,
    place: dict,
    photo_urls: list[str],
) -> int:
    place_blob = orjson.dumps(place)
    photos_blob = orjson.dumps(photo_urls)
    conn.execute(
        """
        INSERT OR REPLACE INTO place_cache (bucket, source_id, inserted_at, place_json, photo_urls_json)
        VALUES (?, ?, ?, ?, ?);
        """,
        (bucket, source_id, inserted_at, place_blob, photos_blob),
    )
    return len(place_blob) + len(photos_blob)


def get_place_row(conn: sqlite3.Connection, bucket: str) -> Optional[Tuple[str, dict, list]]:
    cur = conn.execute(
        "SELECT inserted_at, place_json, photo_urls_json FROM place_cache WHERE bucket=?;",
        (bucket,),
    )
    row = cur.fetchone()
    if not row:
        return None
    return str(row[0]), orjson.loads(row[1]), orjson.loads(row[2])


def get_photos_by_source_id(conn: sqlite3.Connection, source_id: str) -> Optional[Tuple[str, list]]:
    """Newest row for a provider place id, whichever bucket it was stored under."""
    cur = conn.execute(
        """
        SELECT inserted_at, photo_urls_json FROM place_cache
        WHERE source_id=? ORDER BY inserted_at DESC LIMIT 1;
        """,
        (source_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    return str(row[0]), orjson.loads(row[1])


# ──────────────────────────────────────────────────────────────
# Quota counters
# ──────────────────────────────────────────────────────────────

def increment_quota_row(
    conn: sqlite3.Connection,
    *,
    client_key: str,
    day: str,
    ceiling: int,
) -> Tuple[bool, int]:
    """
    Atomically bump (client_key, day) unless it already reached `ceiling`.

    Returns (incremented, count_after).
    """
    conn.execute("BEGIN IMMEDIATE;")
    try:
        cur = conn.execute(
            """
            INSERT INTO quota_counters (client_key, day, count)
            VALUES (?, ?, 1)
            ON CONFLICT(client_key, day) DO UPDATE SET count = count + 1
            WHERE quota_counters.count < ?;
            """,
            (client_key, day, int(ceiling)),
        )
        incremented = cur.rowcount > 0
        row = conn.execute(
            "SELECT count FROM quota_counters WHERE client_key=? AND day=?;",
            (client_key, day),
        ).fetchone()
        conn.execute("COMMIT;")
    except Exception:
        conn.execute("ROLLBACK;")
        raise
    return incremented, int(row[0]) if row else 0


def get_quota_count(conn: sqlite3.Connection, *, client_key: str, day: str) -> int:
    row = conn.execute(
        "SELECT count FROM quota_counters WHERE client_key=? AND day=?;",
        (client_key, day),
    ).fetchone()
    return int(row[0]) if row else 0
