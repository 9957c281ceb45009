from __future__ import annotations

import logging
import sqlite3
import struct
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import sqlite_vec

from app.data.schema import VECTOR_SCHEMA_SQL

logger = logging.getLogger(__name__)


class VectorIndexError(RuntimeError):
    pass


@dataclass(frozen=True)
class VectorRecord:
    note_id: str
    user_id: str
    vector: list[float]


@runtime_checkable
class VectorIndex(Protocol):
    def upsert(self, note_id: str, vector: list[float], user_id: str) -> None: ...

    def fetch(self, note_id: str) -> VectorRecord | None: ...

    def delete(self, note_id: str) -> None: ...

    def query(
        self, vector: list[float], user_id: str, top_k: int
    ) -> list[tuple[str, float]]: ...

    def close(self) -> None: ...


def serialize_vector(vec: list[float]) -> bytes:
    """Encode a float list as a little-endian float32 BLOB."""
    return struct.pack(f"<{len(vec)}f", *vec)


def deserialize_vector(blob: bytes) -> list[float]:
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


class SqliteVecIndex:
    """Vector index stored in its own SQLite database with sqlite-vec loaded.

    Every write commits immediately; the index does not take part in the
    relational store's transactions.
    """

    def __init__(self, db_path: str, dimensions: int) -> None:
        self._dimensions = dimensions
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._load_sqlite_vec()
        self._conn.executescript(VECTOR_SCHEMA_SQL)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def _load_sqlite_vec(self) -> None:
        try:
            self._conn.enable_load_extension(True)
            sqlite_vec.load(self._conn)
            self._conn.enable_load_extension(False)
            self._conn.execute("SELECT vec_version()")
        except Exception as exc:
            raise VectorIndexError(
                "sqlite-vec is required for the vector index, but could not "
                "be loaded in SQLite"
            ) from exc

    def _check_dimensions(self, vector: list[float]) -> None:
        if len(vector) != self._dimensions:
            raise VectorIndexError(
                f"Vector has {len(vector)} dimensions, "
                f"index expects {self._dimensions}"
            )

    def upsert(self, note_id: str, vector: list[float], user_id: str) -> None:
        self._check_dimensions(vector)
        self._conn.execute(
            """
            INSERT INTO note_vectors(note_id, user_id, vector, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(note_id) DO UPDATE SET
                user_id = excluded.user_id,
                vector = excluded.vector,
                updated_at = CURRENT_TIMESTAMP
            """,
            (note_id, user_id, serialize_vector(vector)),
        )
        self._conn.commit()
        logger.debug(f"Upserted vector for note {note_id}")

    def fetch(self, note_id: str) -> VectorRecord | None:
        cur = self._conn.execute(
            "SELECT note_id, user_id, vector FROM note_vectors WHERE note_id = ?",
            (note_id,),
        )
        row = cur.fetchone()
        if row is None:
            return None
        return VectorRecord(
            note_id=row["note_id"],
            user_id=row["user_id"],
            vector=deserialize_vector(row["vector"]),
        )

    def delete(self, note_id: str) -> None:
        self._conn.execute("DELETE FROM note_vectors WHERE note_id = ?", (note_id,))
        self._conn.commit()
        logger.debug(f"Deleted vector for note {note_id}")

    def query(
        self, vector: list[float], user_id: str, top_k: int
    ) -> list[tuple[str, float]]:
        """Return ``(note_id, cosine_distance)`` pairs owned by *user_id*."""
        self._check_dimensions(vector)
        cur = self._conn.execute(
            """
            SELECT note_id, vec_distance_cosine(vector, ?) AS distance
            FROM note_vectors
            WHERE user_id = ?
            ORDER BY distance ASC
            LIMIT ?
            """,
            (serialize_vector(vector), user_id, top_k),
        )
        results = [(row["note_id"], float(row["distance"])) for row in cur.fetchall()]
        logger.info(f"Vector query returned {len(results)} results (top_k={top_k})")
        return results
