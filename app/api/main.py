from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from app.api.auth import get_current_user
from app.config import Config
from app.embedding.client_factory import create_embedder
from app.embedding.embedder import Embedder
from app.notes.results import Err, NoteError, Ok, Result
from app.notes.service import NoteService, NoteServiceFactory

logger = logging.getLogger(__name__)

_INTERNAL = Err(NoteError.INTERNAL, "Internal server error")


def create_app(config: Config | None = None, embedder: Embedder | None = None) -> FastAPI:
    config = config or Config()
    config.validate()
    if embedder is None and config.embeddings_enabled:
        embedder = create_embedder(config)
    notes = NoteServiceFactory(config, embedder)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Starting AI Notes API (db=%s, embeddings=%s)",
            config.db_path,
            config.embeddings_enabled,
        )
        fixed = await run_in_threadpool(_startup, config, notes)
        if fixed:
            logger.info("Reconciled %d note(s) with the vector index", fixed)
        yield
        logger.info("AI Notes API stopped")

    app = FastAPI(title="AI Notes API", lifespan=lifespan)
    app.state.config = config
    app.state.notes = notes

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(_INTERNAL.to_body(), status_code=500)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.post("/api/notes")
    async def create_note(
        request: Request, user_id: Optional[str] = Depends(get_current_user)
    ) -> Response:
        if not user_id:
            return _respond(Err(NoteError.UNAUTHORIZED, "Unauthorized"))
        body = await _read_json(request)
        if isinstance(body, Err):
            return _respond(body)
        result = await _call(notes, lambda service: service.create(user_id, body))
        return _respond(result, key="note", status_code=201)

    @app.put("/api/notes")
    async def update_note(
        request: Request, user_id: Optional[str] = Depends(get_current_user)
    ) -> Response:
        if not user_id:
            return _respond(Err(NoteError.UNAUTHORIZED, "Unauthorized"))
        body = await _read_json(request)
        if isinstance(body, Err):
            return _respond(body)
        result = await _call(notes, lambda service: service.update(user_id, body))
        return _respond(result, key="updatedNote")

    @app.delete("/api/notes")
    async def delete_note(
        request: Request, user_id: Optional[str] = Depends(get_current_user)
    ) -> Response:
        if not user_id:
            return _respond(Err(NoteError.UNAUTHORIZED, "Unauthorized"))
        body = await _read_json(request)
        if isinstance(body, Err):
            return _respond(body)
        result = await _call(notes, lambda service: service.delete(user_id, body))
        return _respond(result)

    @app.get("/api/notes")
    async def list_notes(user_id: Optional[str] = Depends(get_current_user)) -> Response:
        result = await _call(notes, lambda service: service.list_notes(user_id))
        return _respond(result, key="notes")

    @app.get("/api/notes/{note_id}")
    async def get_note(
        note_id: str, user_id: Optional[str] = Depends(get_current_user)
    ) -> Response:
        result = await _call(notes, lambda service: service.get(user_id, note_id))
        return _respond(result, key="note")

    @app.post("/api/notes/search")
    async def search_notes(
        request: Request, user_id: Optional[str] = Depends(get_current_user)
    ) -> Response:
        if not user_id:
            return _respond(Err(NoteError.UNAUTHORIZED, "Unauthorized"))
        body = await _read_json(request)
        if isinstance(body, Err):
            return _respond(body)
        result = await _call(notes, lambda service: service.search(user_id, body))
        return _respond(result, key="notes")

    return app


def _startup(config: Config, notes: NoteServiceFactory) -> int:
    for path in (config.db_path, config.vector_db_path):
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    service = notes.open()
    try:
        return service.reconcile_index()
    finally:
        service.close()


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return Err(NoteError.VALIDATION, "Request body must be valid JSON")


def _run(notes: NoteServiceFactory, op: Callable[[NoteService], Result[Any]]) -> Result[Any]:
    try:
        service = notes.open()
    except Exception:
        logger.exception("Could not open note storage")
        return _INTERNAL
    try:
        return op(service)
    finally:
        service.close()


async def _call(
    notes: NoteServiceFactory, op: Callable[[NoteService], Result[Any]]
) -> Result[Any]:
    # SQLite connections are bound to the thread that opened them, so the
    # whole open/op/close sequence runs in one worker thread.
    return await run_in_threadpool(_run, notes, op)


def _respond(
    result: Result[Any], key: str | None = None, status_code: int = 200
) -> Response:
    if isinstance(result, Err):
        return JSONResponse(result.to_body(), status_code=result.error.status_code)
    assert isinstance(result, Ok)
    if key is None:
        return Response(status_code=204)
    return JSONResponse({key: result.value}, status_code=status_code)
