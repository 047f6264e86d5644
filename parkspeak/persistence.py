from __future__ import annotations

import secrets
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .hearing_core import HearingResult
from .results import HearingTestRecord, trials_to_json

SCHEMA_VERSION = 1


class PersistenceStore(Protocol):
    def save_result(self, record: HearingTestRecord) -> str:
        """Store a finished screening and return its id."""
        ...


@dataclass(frozen=True, slots=True)
class StoredHearingTest:
    id: str
    tested_at_utc: str
    srt_db: float
    result: HearingResult
    trials_json: str | None
    ambient_noise_db: float | None
    language: str


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _generate_id() -> str:
    return f"{int(time.time() * 1000):x}{secrets.token_hex(3)}"


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS hearing_test (
                id TEXT PRIMARY KEY,
                tested_at_utc TEXT NOT NULL,
                srt_db REAL NOT NULL,
                result TEXT NOT NULL,
                trials_json TEXT,
                ambient_noise_db REAL,
                language TEXT NOT NULL DEFAULT 'en'
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_hearing_test_tested_at ON hearing_test(tested_at_utc);"
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteHearingStore:
    """PersistenceStore backed by a local sqlite file.

    Each call opens and closes its own connection.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def save_result(self, record: HearingTestRecord) -> str:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = open_db(self._path)
        try:
            return _insert_hearing_test(conn=conn, record=record)
        finally:
            conn.close()

    def latest_result(self) -> StoredHearingTest | None:
        rows = self.history(limit=1)
        return rows[0] if rows else None

    def history(self, *, limit: int = 20) -> list[StoredHearingTest]:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        if not self._path.exists():
            return []
        conn = open_db(self._path)
        try:
            rows = conn.execute(
                """
                SELECT id, tested_at_utc, srt_db, result, trials_json, ambient_noise_db, language
                FROM hearing_test
                ORDER BY tested_at_utc DESC, rowid DESC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        finally:
            conn.close()

        return [
            StoredHearingTest(
                id=str(r[0]),
                tested_at_utc=str(r[1]),
                srt_db=float(r[2]),
                result=HearingResult(r[3]),
                trials_json=None if r[4] is None else str(r[4]),
                ambient_noise_db=None if r[5] is None else float(r[5]),
                language=str(r[6]),
            )
            for r in rows
        ]


def _insert_hearing_test(*, conn: sqlite3.Connection, record: HearingTestRecord) -> str:
    test_id = _generate_id()
    with conn:
        conn.execute(
            """
            INSERT INTO hearing_test(
                id, tested_at_utc, srt_db, result, trials_json, ambient_noise_db, language
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                test_id,
                _utc_now_iso(),
                float(record.srt_db),
                str(record.result.value),
                trials_to_json(record.trials),
                None if record.ambient_noise_db is None else float(record.ambient_noise_db),
                str(record.language),
            ),
        )
    return test_id
