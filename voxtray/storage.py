"""SQLite backed persistence for voxtray history."""

from __future__ import annotations

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union

from . import export
from .config import DB_PATH
from .errors import HistoryItemNotFound, StorageError
from .models import ExportFormat, HistoryItem

SCHEMA_VERSION = 1

_COLUMNS = (
    "id, created_at, mode_key, audio_path, transcript_raw, output_final, "
    "stt_provider, stt_model, llm_provider, llm_model, duration_ms, error"
)


class HistoryStore:
    """Append-only log of transcription cycles."""

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path
        self._write_lock = threading.Lock()
        self._ensure_initialised()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open history database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.DatabaseError as exc:
            raise StorageError(f"History database error: {exc}") from exc
        finally:
            conn.close()

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS history_items (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    mode_key TEXT NOT NULL,
                    audio_path TEXT,
                    transcript_raw TEXT NOT NULL,
                    output_final TEXT NOT NULL,
                    stt_provider TEXT NOT NULL,
                    stt_model TEXT NOT NULL,
                    llm_provider TEXT,
                    llm_model TEXT,
                    duration_ms INTEGER NOT NULL,
                    error TEXT
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_created_at ON history_items(created_at DESC)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_history_mode_key ON history_items(mode_key)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cur = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",))
            if cur.fetchone() is None:
                conn.execute(
                    "INSERT INTO metadata(key, value) VALUES(?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )

    def create(
        self,
        *,
        mode_key: str,
        transcript_raw: str,
        output_final: str,
        stt_provider: str,
        stt_model: str,
        duration_ms: int,
        audio_path: Optional[Union[str, Path]] = None,
        llm_provider: Optional[str] = None,
        llm_model: Optional[str] = None,
        error: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> HistoryItem:
        item = HistoryItem(
            id=item_id or uuid.uuid4().hex,
            created_at=datetime.now(timezone.utc),
            mode_key=mode_key,
            audio_path=str(audio_path) if audio_path else None,
            transcript_raw=transcript_raw,
            output_final=output_final,
            stt_provider=stt_provider,
            stt_model=stt_model,
            llm_provider=llm_provider,
            llm_model=llm_model,
            duration_ms=int(duration_ms),
            error=error,
        )
        with self._write_lock, self._connect() as conn:
            conn.execute(
                f"INSERT INTO history_items ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    item.id,
                    item.created_at.isoformat(),
                    item.mode_key,
                    item.audio_path,
                    item.transcript_raw,
                    item.output_final,
                    item.stt_provider,
                    item.stt_model,
                    item.llm_provider,
                    item.llm_model,
                    item.duration_ms,
                    item.error,
                ),
            )
        return item

    def list(self, query: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[HistoryItem]:
        """Return items newest first, optionally filtered by a text search."""

        sql = f"SELECT {_COLUMNS} FROM history_items"
        params: list = []
        if query:
            sql += " WHERE transcript_raw LIKE ? ESCAPE '\\' OR output_final LIKE ? ESCAPE '\\'"
            pattern = f"%{_escape_like(query)}%"
            params.extend([pattern, pattern])
        sql += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([max(limit, 0), max(offset, 0)])
        with self._connect() as conn:
            return [_row_to_item(row) for row in conn.execute(sql, params)]

    def get(self, item_id: str) -> HistoryItem:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM history_items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            raise HistoryItemNotFound(item_id)
        return _row_to_item(row)

    def delete(self, item_id: str) -> None:
        with self._write_lock, self._connect() as conn:
            cur = conn.execute("DELETE FROM history_items WHERE id = ?", (item_id,))
        if cur.rowcount == 0:
            raise HistoryItemNotFound(item_id)

    def count(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM history_items").fetchone()[0])

    def clear(self) -> int:
        with self._write_lock, self._connect() as conn:
            cur = conn.execute("DELETE FROM history_items")
        return cur.rowcount

    def export(self, item_id: str, fmt: Union[ExportFormat, str]) -> str:
        return export.render(self.get(item_id), fmt)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_item(row: sqlite3.Row) -> HistoryItem:
    try:
        created_at = datetime.fromisoformat(row["created_at"])
    except ValueError as exc:
        raise StorageError(f"Corrupted timestamp for history item {row['id']}: {exc}") from exc
    return HistoryItem(
        id=row["id"],
        created_at=created_at,
        mode_key=row["mode_key"],
        audio_path=row["audio_path"],
        transcript_raw=row["transcript_raw"],
        output_final=row["output_final"],
        stt_provider=row["stt_provider"],
        stt_model=row["stt_model"],
        llm_provider=row["llm_provider"],
        llm_model=row["llm_model"],
        duration_ms=int(row["duration_ms"]),
        error=row["error"],
    )
