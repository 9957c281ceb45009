from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from app.config import Config
from app.data.repository import Repository
from app.data.vector_index import SqliteVecIndex, VectorIndex, VectorRecord
from app.embedding.embedder import Embedder, note_text
from app.notes.models import (
    NoteCreate,
    NoteDelete,
    NoteHit,
    NoteSearch,
    NoteUpdate,
    note_out,
)
from app.notes.results import Err, NoteError, Ok, Result

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
R = TypeVar("R")

_UNAUTHORIZED = Err(NoteError.UNAUTHORIZED, "Unauthorized")
_NOT_FOUND = Err(NoteError.NOT_FOUND, "Note not found")
_FORBIDDEN = Err(NoteError.FORBIDDEN, "Forbidden")


def _internal_errors(func: Callable[..., Result[Any]]) -> Callable[..., Result[Any]]:
    """Turn unexpected exceptions into an INTERNAL result."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Result[Any]:
        try:
            return func(*args, **kwargs)
        except Exception:
            logger.exception("Unexpected failure in %s", func.__name__)
            return Err(NoteError.INTERNAL, "Internal server error")

    return wrapper


def _parse(model: type[M], payload: Any) -> M | Err:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        details = [
            {"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()
        ]
        logger.info("Rejected %s payload: %d error(s)", model.__name__, len(details))
        return Err(NoteError.VALIDATION, "Invalid request body", details)


class NoteService:
    """Note operations for one unit of work.

    Embeddings are computed before the row transaction opens. Every mutation
    then writes the relational row, then the vector index, then commits the
    row. An index failure rolls the row back; a commit failure after the
    index write is compensated on the index side, and when that also fails
    the row is flagged for reconciliation.
    """

    def __init__(
        self,
        repo: Repository,
        index: VectorIndex | None = None,
        embedder: Embedder | None = None,
        search_limit: int = 5,
    ) -> None:
        self._repo = repo
        self._index = index
        self._embedder = embedder
        self._search_limit = search_limit

    @property
    def embeddings_enabled(self) -> bool:
        return self._index is not None and self._embedder is not None

    def close(self) -> None:
        self._repo.close()
        if self._index is not None:
            self._index.close()

    # -- operations ----------------------------------------------------------

    @_internal_errors
    def create(self, user_id: str | None, payload: Any) -> Result[dict]:
        if not user_id:
            return _UNAUTHORIZED
        parsed = _parse(NoteCreate, payload)
        if isinstance(parsed, Err):
            return parsed

        vector = self._embed(parsed.title, parsed.content)
        note = self._saga(
            None,
            lambda: self._repo.create_note(user_id, parsed.title, parsed.content),
            lambda row: self._write_vector(row, vector),
        )
        logger.info("Created note %s for user %s", note["id"], user_id)
        return Ok(note_out(note))

    @_internal_errors
    def update(self, user_id: str | None, payload: Any) -> Result[dict]:
        if not user_id:
            return _UNAUTHORIZED
        parsed = _parse(NoteUpdate, payload)
        if isinstance(parsed, Err):
            return parsed

        current = self._owned_note(parsed.id, user_id)
        if isinstance(current, Err):
            return current

        # An omitted content field leaves the stored content untouched.
        keep_content = "content" not in parsed.model_fields_set
        content = current["content"] if keep_content else parsed.content
        vector = self._embed(parsed.title, content)
        note = self._saga(
            parsed.id,
            lambda: self._repo.update_note(
                parsed.id,
                user_id,
                parsed.title,
                parsed.content,
                keep_content=keep_content,
            ),
            lambda row: self._write_vector(row, vector),
        )
        if note is None:
            # Deleted between the ownership check and the write.
            return _NOT_FOUND
        logger.info("Updated note %s", parsed.id)
        return Ok(note_out(note))

    @_internal_errors
    def delete(self, user_id: str | None, payload: Any) -> Result[None]:
        if not user_id:
            return _UNAUTHORIZED
        parsed = _parse(NoteDelete, payload)
        if isinstance(parsed, Err):
            return parsed

        current = self._owned_note(parsed.id, user_id)
        if isinstance(current, Err):
            return current

        deleted = self._saga(
            parsed.id,
            lambda: self._repo.delete_note(parsed.id, user_id),
            lambda _deleted: self._index.delete(parsed.id),  # type: ignore[union-attr]
        )
        if not deleted:
            return _NOT_FOUND
        logger.info("Deleted note %s", parsed.id)
        return Ok(None)

    @_internal_errors
    def get(self, user_id: str | None, note_id: str) -> Result[dict]:
        if not user_id:
            return _UNAUTHORIZED
        note = self._repo.get_note(note_id)
        if note is None:
            return _NOT_FOUND
        if note["user_id"] != user_id:
            logger.warning("User %s denied read of note %s", user_id, note_id)
            return _FORBIDDEN
        return Ok(note_out(note))

    @_internal_errors
    def list_notes(self, user_id: str | None) -> Result[list[dict]]:
        if not user_id:
            return _UNAUTHORIZED
        return Ok([note_out(note) for note in self._repo.list_notes(user_id)])

    @_internal_errors
    def search(self, user_id: str | None, payload: Any) -> Result[list[dict]]:
        if not user_id:
            return _UNAUTHORIZED
        parsed = _parse(NoteSearch, payload)
        if isinstance(parsed, Err):
            return parsed
        if not self.embeddings_enabled:
            return Err(NoteError.CONFLICT, "Semantic search is disabled")
        assert self._index is not None and self._embedder is not None

        vector = self._embedder.embed(parsed.query)
        hits = self._index.query(vector, user_id, parsed.limit or self._search_limit)
        rows = self._repo.get_notes([note_id for note_id, _ in hits])
        results = []
        for note_id, distance in hits:
            row = rows.get(note_id)
            if row is None or row["user_id"] != user_id:
                continue
            results.append(
                NoteHit(**row, distance=distance).model_dump(by_alias=True)
            )
        logger.info("Search for user %s returned %d note(s)", user_id, len(results))
        return Ok(results)

    def reconcile_index(self) -> int:
        """Re-embed every note flagged as stale. Returns how many were fixed."""
        if not self.embeddings_enabled:
            return 0
        fixed = 0
        stale = self._repo.list_stale_notes()
        if stale:
            logger.info("Reconciling %d stale note(s)", len(stale))
        for note in stale:
            try:
                vector = self._embed(note["title"], note["content"])
                self._write_vector(note, vector)
                self._repo.mark_index_stale(note["id"], stale=False)
                fixed += 1
            except Exception:
                logger.exception("Reconciliation failed for note %s", note["id"])
        return fixed

    # -- helpers -------------------------------------------------------------

    def _owned_note(self, note_id: str, user_id: str) -> dict | Err:
        note = self._repo.get_note(note_id)
        if note is None:
            return _NOT_FOUND
        if note["user_id"] != user_id:
            logger.warning("User %s denied mutation of note %s", user_id, note_id)
            return _FORBIDDEN
        return note

    def _embed(self, title: str, content: str | None) -> list[float] | None:
        """Embed a note's text. Runs before any row transaction is opened."""
        if not self.embeddings_enabled:
            return None
        assert self._embedder is not None
        return self._embedder.embed(note_text(title, content))

    def _write_vector(self, note: dict, vector: list[float] | None) -> None:
        assert self._index is not None and vector is not None
        self._index.upsert(note["id"], vector, note["user_id"])

    def _saga(
        self,
        note_id: str | None,
        write_row: Callable[[], R],
        write_index: Callable[[Any], None],
    ) -> R:
        if not self.embeddings_enabled:
            with self._repo.transaction():
                return write_row()

        assert self._index is not None
        previous = self._index.fetch(note_id) if note_id is not None else None
        written_id: str | None = None
        try:
            with self._repo.transaction():
                result = write_row()
                if result:
                    write_index(result)
                    written_id = note_id or result["id"]  # type: ignore[index]
        except Exception:
            if written_id is not None:
                self._compensate(written_id, previous)
            raise
        return result

    def _compensate(self, note_id: str, previous: VectorRecord | None) -> None:
        assert self._index is not None
        logger.error("Row commit failed after index write for note %s", note_id)
        try:
            if previous is not None:
                self._index.upsert(previous.note_id, previous.vector, previous.user_id)
            else:
                self._index.delete(note_id)
            logger.info("Restored index entry for note %s", note_id)
            return
        except Exception:
            logger.exception("Index compensation failed for note %s", note_id)
        try:
            self._repo.mark_index_stale(note_id)
            logger.error("Note %s marked for index reconciliation", note_id)
        except Exception:
            logger.exception("Could not mark note %s for reconciliation", note_id)


class NoteServiceFactory:
    """Process-wide handles; opens a ``NoteService`` per request."""

    def __init__(self, config: Config, embedder: Embedder | None = None) -> None:
        self._config = config
        self._embedder = embedder if config.embeddings_enabled else None

    @property
    def embedder(self) -> Embedder | None:
        return self._embedder

    def open(self) -> NoteService:
        repo = Repository(self._config.db_path)
        index: VectorIndex | None = None
        if self._embedder is not None:
            try:
                index = SqliteVecIndex(
                    self._config.vector_db_path, self._config.embed_dimensions
                )
            except Exception:
                repo.close()
                raise
        return NoteService(
            repo,
            index=index,
            embedder=self._embedder,
            search_limit=self._config.search_limit,
        )
