"""Database repository for note data."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.contracts import NoteInput
from .domain.note import Note

_COLUMNS = "note_id, title, content, created_at, updated_at"


def _parse_note_id(note_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(note_id)
    except (TypeError, ValueError):
        return None


class NoteRepository:
    """Postgres-backed note persistence."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def ensure_schema(self) -> None:
        """Create the notes table and its ordering index when missing."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS notes (
                        note_id UUID PRIMARY KEY,
                        title TEXT NOT NULL,
                        content TEXT NOT NULL,
                        created_at TIMESTAMPTZ NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL
                    )
                    """
                )
                cur.execute(
                    "CREATE INDEX IF NOT EXISTS notes_created_at_idx ON notes (created_at DESC)"
                )
                conn.commit()

    def list_notes(self) -> list[Note]:
        """Return every note, newest first."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM notes ORDER BY created_at DESC")
                rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def get_note(self, note_id: str) -> Note | None:
        """Fetch a note by identifier or return ``None``."""
        key = _parse_note_id(note_id)
        if key is None:
            return None
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM notes WHERE note_id = %s", (key,))
                row = cur.fetchone()
                if not row:
                    return None
        return self._map_record(row)

    def create_note(self, payload: NoteInput) -> Note:
        """Insert a note and return the stored row."""
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO notes ({_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (uuid.uuid4(), payload.title, payload.content, now, now),
                )
                row = cur.fetchone()
                conn.commit()
        return self._map_record(row)

    def update_note(self, note_id: str, payload: NoteInput) -> Note | None:
        """Replace title and content, bumping ``updated_at``; ``None`` if absent."""
        key = _parse_note_id(note_id)
        if key is None:
            return None
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE notes
                    SET title = %s, content = %s, updated_at = %s
                    WHERE note_id = %s
                    RETURNING {_COLUMNS}
                    """,
                    (payload.title, payload.content, datetime.now(timezone.utc), key),
                )
                row = cur.fetchone()
                conn.commit()
        if not row:
            return None
        return self._map_record(row)

    def delete_note(self, note_id: str) -> bool:
        """Delete a note, returning whether a row was removed."""
        key = _parse_note_id(note_id)
        if key is None:
            return False
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM notes WHERE note_id = %s", (key,))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    def _map_record(self, row: tuple) -> Note:
        """Convert a raw database tuple into the domain ``Note`` dataclass."""
        return Note(
            note_id=str(row[0]),
            title=row[1],
            content=row[2],
            created_at=row[3],
            updated_at=row[4],
        )
