import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from app.data.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)

_NOTE_COLUMNS = "id, user_id, title, content, created_at, updated_at"


class RepositoryError(RuntimeError):
    pass


class Repository:
    """Relational store for note rows.

    Writes made inside ``transaction()`` are committed together when the block
    exits normally and rolled back when it raises. Writes made outside a
    transaction are committed immediately.
    """

    def __init__(self, db_path: str) -> None:
        # Autocommit mode; transactions are opened explicitly with BEGIN.
        self._conn = sqlite3.connect(db_path, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._in_transaction = False
        self._init_schema()

    def close(self) -> None:
        self._conn.close()

    def _init_schema(self) -> None:
        self._conn.executescript(SCHEMA_SQL)

    @contextmanager
    def transaction(self) -> Iterator["Repository"]:
        if self._in_transaction:
            raise RepositoryError("Nested transactions are not supported")
        self._conn.execute("BEGIN")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._in_transaction = False
            self._conn.execute("ROLLBACK")
            raise
        self._in_transaction = False
        try:
            self.commit()
        except sqlite3.Error:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise

    def commit(self) -> None:
        self._conn.execute("COMMIT")

    def create_note(self, user_id: str, title: str, content: str | None) -> dict:
        note_id = uuid.uuid4().hex
        self._conn.execute(
            "INSERT INTO notes(id, user_id, title, content) VALUES (?, ?, ?, ?)",
            (note_id, user_id, title, content),
        )
        note = self.get_note(note_id)
        assert note is not None
        return note

    def update_note(
        self,
        note_id: str,
        user_id: str,
        title: str,
        content: str | None = None,
        keep_content: bool = False,
    ) -> dict | None:
        """Update title/content of a note owned by *user_id*.

        With ``keep_content`` the stored content is left as it is.
        Returns the updated row, or None when no row matched.
        """
        if keep_content:
            cur = self._conn.execute(
                """
                UPDATE notes
                SET title = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND user_id = ?
                """,
                (title, note_id, user_id),
            )
        else:
            cur = self._conn.execute(
                """
                UPDATE notes
                SET title = ?, content = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND user_id = ?
                """,
                (title, content, note_id, user_id),
            )
        if cur.rowcount == 0:
            return None
        return self.get_note(note_id)

    def delete_note(self, note_id: str, user_id: str) -> bool:
        cur = self._conn.execute(
            "DELETE FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id)
        )
        deleted = cur.rowcount > 0
        logger.debug(f"Delete note {note_id}: {'removed' if deleted else 'no match'}")
        return deleted

    def get_note(self, note_id: str) -> dict | None:
        cur = self._conn.execute(
            f"SELECT {_NOTE_COLUMNS} FROM notes WHERE id = ?", (note_id,)
        )
        row = cur.fetchone()
        return dict(row) if row else None

    def list_notes(self, user_id: str) -> list[dict]:
        cur = self._conn.execute(
            f"""
            SELECT {_NOTE_COLUMNS}
            FROM notes
            WHERE user_id = ?
            ORDER BY updated_at DESC, rowid DESC
            """,
            (user_id,),
        )
        return [dict(row) for row in cur.fetchall()]

    def get_notes(self, note_ids: list[str]) -> dict[str, dict]:
        if not note_ids:
            return {}
        placeholders = ",".join(["?"] * len(note_ids))
        cur = self._conn.execute(
            f"SELECT {_NOTE_COLUMNS} FROM notes WHERE id IN ({placeholders})",
            note_ids,
        )
        return {row["id"]: dict(row) for row in cur.fetchall()}

    def mark_index_stale(self, note_id: str, stale: bool = True) -> None:
        self._conn.execute(
            "UPDATE notes SET index_stale = ? WHERE id = ?", (int(stale), note_id)
        )

    def list_stale_notes(self) -> list[dict]:
        cur = self._conn.execute(
            f"SELECT {_NOTE_COLUMNS} FROM notes WHERE index_stale = 1"
        )
        return [dict(row) for row in cur.fetchall()]
