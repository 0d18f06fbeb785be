"""SQLite lifelog store: records, content items and ingestion run lineage."""
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from lifelog_ingestor.db.base import LifelogStore
from lifelog_ingestor.utils.errors import StorageError
from lifelog_ingestor.utils.logger import logger
from lifelog_ingestor.utils.schemas import (
    ContentItem,
    IngestionResult,
    IngestionWindow,
    LifelogEntry,
    LifelogRecord,
    Stats,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

_RECORD_COLUMNS = "id, title, markdown, raw_data, created_at, ingested_at, is_parsed, parsed_at"


class SqliteLifelogStore(LifelogStore):
    """One short-lived connection per operation; WAL keeps readers off the writer's lock."""

    def __init__(self, db_path: str, busy_timeout_seconds: float = 5.0):
        self.db_path = db_path
        self.busy_timeout_seconds = busy_timeout_seconds

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_seconds)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error("sqlite_error", db_path=self.db_path, error=str(e))
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def create_tables(self) -> None:
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory for {self.db_path}: {e}") from e
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS lifelogs (
                    id TEXT PRIMARY KEY,
                    title TEXT,
                    markdown TEXT,
                    raw_data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    ingested_at TEXT NOT NULL,
                    is_parsed INTEGER NOT NULL DEFAULT 0,
                    parsed_at TEXT DEFAULT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_lifelogs_created_at ON lifelogs(created_at);
                CREATE INDEX IF NOT EXISTS idx_lifelogs_is_parsed ON lifelogs(is_parsed);
                CREATE TABLE IF NOT EXISTS lifelog_contents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    lifelog_id TEXT NOT NULL REFERENCES lifelogs(id),
                    parent_id INTEGER REFERENCES lifelog_contents(id),
                    position INTEGER NOT NULL,
                    type TEXT,
                    content TEXT,
                    start_time TEXT,
                    end_time TEXT,
                    start_offset_ms INTEGER,
                    end_offset_ms INTEGER,
                    speaker_name TEXT,
                    speaker_identifier TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_lifelog_contents_lifelog ON lifelog_contents(lifelog_id);
                CREATE TABLE IF NOT EXISTS ingestion_runs (
                    run_id TEXT PRIMARY KEY,
                    status TEXT,
                    fetch_window TEXT,
                    fetched_count INTEGER,
                    stored_count INTEGER,
                    skipped_count INTEGER,
                    error TEXT,
                    started_at TEXT,
                    finished_at TEXT
                );
            """)
        logger.info("database_tables_ready", db_path=self.db_path)

    def upsert_if_absent(self, entry: LifelogEntry) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                f"""
                INSERT INTO lifelogs ({_RECORD_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, 0, NULL)
                ON CONFLICT(id) DO NOTHING
                """,
                (
                    entry.id,
                    entry.title,
                    entry.markdown,
                    json.dumps(entry.raw_payload, default=str),
                    format_timestamp(entry.created_at),
                    format_timestamp(utcnow()),
                ),
            )
            if cur.rowcount == 0:
                return False
            self._insert_contents(conn, entry.id, entry.contents, parent_id=None)
            return True

    def _insert_contents(self, conn, lifelog_id: str, items: list[ContentItem], parent_id: int | None):
        for position, item in enumerate(items):
            cur = conn.execute(
                """
                INSERT INTO lifelog_contents (
                    lifelog_id, parent_id, position, type, content, start_time, end_time,
                    start_offset_ms, end_offset_ms, speaker_name, speaker_identifier
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    lifelog_id,
                    parent_id,
                    position,
                    item.type,
                    item.content,
                    item.start_time,
                    item.end_time,
                    item.start_offset_ms,
                    item.end_offset_ms,
                    item.speaker_name,
                    item.speaker_identifier,
                ),
            )
            if item.children:
                self._insert_contents(conn, lifelog_id, item.children, parent_id=cur.lastrowid)

    def latest_created_at(self) -> datetime | None:
        with self._connect() as conn:
            row = conn.execute("SELECT MAX(created_at) FROM lifelogs").fetchone()
        return parse_timestamp(row[0])

    def list_records(self, limit: int = 20, offset: int = 0) -> list[LifelogRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM lifelogs ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def list_unparsed(self) -> list[LifelogRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM lifelogs WHERE is_parsed = 0 ORDER BY created_at ASC, id ASC"
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def mark_parsed(self, lifelog_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE lifelogs SET is_parsed = 1, parsed_at = ? WHERE id = ?",
                (format_timestamp(utcnow()), lifelog_id),
            )
            return cur.rowcount > 0

    def compute_stats(self) -> Stats:
        # One statement, so the counts come from a single snapshot.
        with self._connect() as conn:
            total, parsed, latest = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(is_parsed), 0), MAX(created_at) FROM lifelogs"
            ).fetchone()
        return Stats(total=total, parsed=parsed, unparsed=total - parsed, latest=parse_timestamp(latest))

    def get_record(self, lifelog_id: str) -> LifelogRecord | None:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_RECORD_COLUMNS} FROM lifelogs WHERE id = ?", (lifelog_id,)).fetchone()
            if row is None:
                return None
            content_rows = conn.execute(
                "SELECT * FROM lifelog_contents WHERE lifelog_id = ? ORDER BY id",
                (lifelog_id,),
            ).fetchall()
        record = _row_to_record(row)
        record.contents = _build_content_tree(content_rows)
        return record

    def record_run(self, result: IngestionResult) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO ingestion_runs (
                    run_id, status, fetch_window, fetched_count, stored_count, skipped_count, error, started_at, finished_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.run_id,
                    result.status,
                    result.window.model_dump_json(),
                    result.fetched_count,
                    result.stored_count,
                    result.skipped_count,
                    result.error,
                    format_timestamp(result.started_at),
                    format_timestamp(result.finished_at) if result.finished_at else None,
                ),
            )

    def list_runs(self, limit: int = 20) -> list[IngestionResult]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM ingestion_runs ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            IngestionResult(
                run_id=r["run_id"],
                status=r["status"],
                window=IngestionWindow.model_validate_json(r["fetch_window"]) if r["fetch_window"] else IngestionWindow(),
                fetched_count=r["fetched_count"] or 0,
                stored_count=r["stored_count"] or 0,
                skipped_count=r["skipped_count"] or 0,
                error=r["error"],
                started_at=parse_timestamp(r["started_at"]),
                finished_at=parse_timestamp(r["finished_at"]),
            )
            for r in rows
        ]


def _row_to_record(row) -> LifelogRecord:
    return LifelogRecord(
        id=row["id"],
        title=row["title"],
        markdown=row["markdown"],
        raw_payload=json.loads(row["raw_data"]) if row["raw_data"] else {},
        created_at=parse_timestamp(row["created_at"]),
        ingested_at=parse_timestamp(row["ingested_at"]),
        parsed=bool(row["is_parsed"]),
        parsed_at=parse_timestamp(row["parsed_at"]),
    )


def _build_content_tree(rows) -> list[ContentItem]:
    """Rows arrive in insertion order, so every parent precedes its children."""
    nodes: dict[int, ContentItem] = {}
    roots: list[ContentItem] = []
    for r in rows:
        item = ContentItem(
            type=r["type"],
            content=r["content"],
            start_time=r["start_time"],
            end_time=r["end_time"],
            start_offset_ms=r["start_offset_ms"],
            end_offset_ms=r["end_offset_ms"],
            speaker_name=r["speaker_name"],
            speaker_identifier=r["speaker_identifier"],
        )
        nodes[r["id"]] = item
        if r["parent_id"] is None:
            roots.append(item)
        else:
            nodes[r["parent_id"]].children.append(item)
    return roots
