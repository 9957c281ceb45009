from __future__ import annotations

import threading
from pathlib import Path

import pytest

from app.data.repository import Repository
from app.notes.results import Err, NoteError, Ok
from app.notes.service import NoteService

from test_helpers import FailingCommitRepository, FakeEmbedder, FakeIndex


@pytest.fixture()
def index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def repo(tmp_path: Path) -> FailingCommitRepository:
    return FailingCommitRepository(str(tmp_path / "notes.db"))


@pytest.fixture()
def service(repo, index, embedder):
    svc = NoteService(repo, index=index, embedder=embedder)
    yield svc
    svc.close()


def _ok(result):
    assert isinstance(result, Ok), result
    return result.value


def _err(result) -> NoteError:
    assert isinstance(result, Err), result
    return result.error


class TestCreate:
    def test_owner_is_caller_and_vector_is_tagged(self, service, index, embedder):
        note = _ok(service.create("user_a", {"title": "Groceries", "content": "milk, eggs"}))
        assert note["userId"] == "user_a"
        assert note["title"] == "Groceries"
        assert note["content"] == "milk, eggs"
        assert embedder.calls == ["Groceries\n\nmilk, eggs"]
        assert index.records[note["id"]].user_id == "user_a"

    def test_content_is_optional(self, service):
        note = _ok(service.create("user_a", {"title": "Just a title"}))
        assert note["content"] is None
        note = _ok(service.create("user_a", {"title": "Null body", "content": None}))
        assert note["content"] is None

    def test_requires_identity_before_validation(self, service, repo):
        assert _err(service.create(None, {"title": ""})) == NoteError.UNAUTHORIZED
        assert _err(service.create("", "garbage")) == NoteError.UNAUTHORIZED
        assert repo.list_notes("user_a") == []

    @pytest.mark.parametrize(
        "payload",
        [{}, {"title": ""}, {"title": 42}, {"title": "ok", "content": 7}, [], "x", None],
    )
    def test_invalid_body_creates_nothing(self, service, repo, index, payload):
        result = service.create("user_a", payload)
        assert _err(result) == NoteError.VALIDATION
        assert result.details
        assert repo.list_notes("user_a") == []
        assert index.records == {}

    def test_index_failure_rolls_back_row(self, service, repo, index):
        index.fail_upsert = True
        assert _err(service.create("user_a", {"title": "Lost"})) == NoteError.INTERNAL
        assert repo.list_notes("user_a") == []

    def test_embedding_failure_rolls_back_row(self, service, repo, embedder):
        embedder.fail = True
        assert _err(service.create("user_a", {"title": "Lost"})) == NoteError.INTERNAL
        assert repo.list_notes("user_a") == []

    def test_commit_failure_removes_new_vector(self, service, repo, index):
        repo.fail_commit = True
        assert _err(service.create("user_a", {"title": "Lost"})) == NoteError.INTERNAL
        repo.fail_commit = False
        assert repo.list_notes("user_a") == []
        assert index.records == {}


class TestUpdate:
    def test_round_trip_keeps_id_and_owner(self, service, index, embedder):
        created = _ok(service.create("user_a", {"title": "Groceries", "content": "milk"}))
        updated = _ok(
            service.update("user_a", {"id": created["id"], "title": "Groceries v2"})
        )
        assert updated["id"] == created["id"]
        assert updated["userId"] == "user_a"

        fetched = _ok(service.get("user_a", created["id"]))
        assert fetched["title"] == "Groceries v2"
        assert fetched["content"] == "milk"
        assert embedder.calls[-1] == "Groceries v2\n\nmilk"
        assert index.records[created["id"]].user_id == "user_a"

    def test_explicit_content_replaces_or_clears(self, service, embedder):
        created = _ok(service.create("user_a", {"title": "Groceries", "content": "milk"}))
        updated = _ok(
            service.update(
                "user_a", {"id": created["id"], "title": "Groceries", "content": "eggs"}
            )
        )
        assert updated["content"] == "eggs"

        cleared = _ok(
            service.update(
                "user_a", {"id": created["id"], "title": "Groceries", "content": None}
            )
        )
        assert cleared["content"] is None
        assert embedder.calls[-1] == "Groceries\n\n"

    @pytest.mark.parametrize(
        "changes",
        [{"title": ""}, {"title": 5}, {"title": "ok", "content": 7}, {}],
    )
    def test_invalid_body_leaves_row_and_vector(
        self, service, index, embedder, changes
    ):
        created = _ok(service.create("user_a", {"title": "Groceries", "content": "milk"}))
        vector_before = index.records[created["id"]]
        calls_before = len(embedder.calls)

        result = service.update("user_a", {"id": created["id"], **changes})
        assert _err(result) == NoteError.VALIDATION
        assert result.details

        fetched = _ok(service.get("user_a", created["id"]))
        assert (fetched["title"], fetched["content"]) == ("Groceries", "milk")
        assert fetched["updatedAt"] == created["updatedAt"]
        assert index.records[created["id"]] == vector_before
        assert len(embedder.calls) == calls_before

    def test_non_owner_is_forbidden_and_nothing_changes(self, service, index, embedder):
        created = _ok(service.create("user_a", {"title": "Groceries"}))
        vector_before = index.records[created["id"]]
        calls_before = len(embedder.calls)

        result = service.update("user_b", {"id": created["id"], "title": "Mine now"})
        assert _err(result) == NoteError.FORBIDDEN
        assert _ok(service.get("user_a", created["id"]))["title"] == "Groceries"
        assert index.records[created["id"]] == vector_before
        assert len(embedder.calls) == calls_before

    def test_missing_note(self, service):
        assert _err(service.update("user_a", {"id": "nope", "title": "x"})) == NoteError.NOT_FOUND

    def test_missing_id_is_validation_error(self, service):
        assert _err(service.update("user_a", {"title": "x"})) == NoteError.VALIDATION

    def test_index_failure_keeps_old_row(self, service, index):
        created = _ok(service.create("user_a", {"title": "Groceries"}))
        index.fail_upsert = True
        result = service.update("user_a", {"id": created["id"], "title": "Travel plans"})
        assert _err(result) == NoteError.INTERNAL
        assert _ok(service.get("user_a", created["id"]))["title"] == "Groceries"

    def test_commit_failure_restores_previous_vector(self, service, repo, index):
        created = _ok(service.create("user_a", {"title": "Groceries"}))
        before = index.records[created["id"]]

        repo.fail_commit = True
        result = service.update("user_a", {"id": created["id"], "title": "Travel plans"})
        repo.fail_commit = False

        assert _err(result) == NoteError.INTERNAL
        assert index.records[created["id"]] == before
        assert _ok(service.get("user_a", created["id"]))["title"] == "Groceries"


class TestDelete:
    def test_scenario_owner_delete_then_repeat(self, service, index):
        created = _ok(service.create("user_a", {"title": "Groceries", "content": "milk, eggs"}))
        assert _err(
            service.update("user_b", {"id": created["id"], "title": "Groceries v2"})
        ) == NoteError.FORBIDDEN

        assert _ok(service.delete("user_a", {"id": created["id"]})) is None
        assert created["id"] not in index.records
        assert _err(service.delete("user_a", {"id": created["id"]})) == NoteError.NOT_FOUND

    def test_non_owner_is_forbidden(self, service, index):
        created = _ok(service.create("user_a", {"title": "Keep"}))
        assert _err(service.delete("user_b", {"id": created["id"]})) == NoteError.FORBIDDEN
        assert created["id"] in index.records
        assert _ok(service.get("user_a", created["id"]))["title"] == "Keep"

    def test_index_failure_keeps_row(self, service, index):
        created = _ok(service.create("user_a", {"title": "Keep"}))
        index.fail_delete = True
        assert _err(service.delete("user_a", {"id": created["id"]})) == NoteError.INTERNAL
        assert _ok(service.get("user_a", created["id"]))["id"] == created["id"]
        assert created["id"] in index.records

    def test_failed_compensation_marks_row_stale_until_reconciled(
        self, service, repo, index
    ):
        created = _ok(service.create("user_a", {"title": "Groceries"}))

        repo.fail_commit = True
        index.fail_upsert = True
        assert _err(service.delete("user_a", {"id": created["id"]})) == NoteError.INTERNAL
        repo.fail_commit = False

        # Row survived the rollback but its vector is gone.
        assert created["id"] not in index.records
        assert [n["id"] for n in repo.list_stale_notes()] == [created["id"]]

        # Still failing: the row stays stale.
        assert service.reconcile_index() == 0
        assert repo.list_stale_notes()

        index.fail_upsert = False
        assert service.reconcile_index() == 1
        assert repo.list_stale_notes() == []
        assert index.records[created["id"]].user_id == "user_a"


class TestReadAndSearch:
    def test_get_checks_owner(self, service):
        created = _ok(service.create("user_a", {"title": "Private"}))
        assert _err(service.get("user_b", created["id"])) == NoteError.FORBIDDEN
        assert _err(service.get("user_a", "missing")) == NoteError.NOT_FOUND
        assert _err(service.get(None, created["id"])) == NoteError.UNAUTHORIZED

    def test_list_is_scoped(self, service):
        _ok(service.create("user_a", {"title": "A1"}))
        _ok(service.create("user_b", {"title": "B1"}))
        titles = [n["title"] for n in _ok(service.list_notes("user_a"))]
        assert titles == ["A1"]
        assert _err(service.list_notes(None)) == NoteError.UNAUTHORIZED

    def test_search_only_returns_callers_notes(self, service):
        mine = _ok(service.create("user_a", {"title": "Groceries"}))
        _ok(service.create("user_b", {"title": "Groceries too"}))
        hits = _ok(service.search("user_a", {"query": "groceries"}))
        assert [h["id"] for h in hits] == [mine["id"]]
        assert "distance" in hits[0]

    def test_search_validation(self, service):
        assert _err(service.search("user_a", {"query": ""})) == NoteError.VALIDATION
        assert _err(service.search("user_a", {"query": "x", "limit": 0})) == NoteError.VALIDATION


class TestWithoutEmbeddings:
    def test_crud_skips_index(self, tmp_path: Path):
        service = NoteService(Repository(str(tmp_path / "notes.db")))
        created = _ok(service.create("user_a", {"title": "Plain"}))
        _ok(service.update("user_a", {"id": created["id"], "title": "Plain v2"}))
        assert service.reconcile_index() == 0
        assert _ok(service.delete("user_a", {"id": created["id"]})) is None
        service.close()

    def test_search_is_a_conflict(self, tmp_path: Path):
        service = NoteService(Repository(str(tmp_path / "notes.db")))
        assert _err(service.search("user_a", {"query": "x"})) == NoteError.CONFLICT
        service.close()


class BlockingEmbedder(FakeEmbedder):
    """Holds every embed call until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def embed(self, text: str) -> list[float]:
        self.entered.set()
        if not self.release.wait(timeout=10):
            raise RuntimeError("embedder was never released")
        return super().embed(text)


class TestConcurrentWriters:
    def test_slow_embedding_does_not_block_other_writers(self, tmp_path: Path, repo):
        db_path = str(tmp_path / "notes.db")
        slow_embedder = BlockingEmbedder()
        fast = NoteService(Repository(db_path), index=FakeIndex(), embedder=FakeEmbedder())
        results = {}

        def slow_create() -> None:
            # sqlite3 connections stay on the thread that opened them.
            slow = NoteService(
                Repository(db_path), index=FakeIndex(), embedder=slow_embedder
            )
            try:
                results["slow"] = slow.create("user_a", {"title": "Slow"})
            finally:
                slow.close()

        worker = threading.Thread(target=slow_create)
        worker.start()
        try:
            assert slow_embedder.entered.wait(timeout=5)
            # A held write lock would make this fail with "database is locked".
            created = _ok(fast.create("user_b", {"title": "Fast"}))
            _ok(fast.update("user_b", {"id": created["id"], "title": "Fast v2"}))
        finally:
            slow_embedder.release.set()
            worker.join(timeout=10)
            fast.close()

        assert _ok(results["slow"])["title"] == "Slow"
        assert [n["title"] for n in repo.list_notes("user_a")] == ["Slow"]
        assert [n["title"] for n in repo.list_notes("user_b")] == ["Fast v2"]
