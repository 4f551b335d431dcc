"""Tests for the in-memory run store and job queue."""

from __future__ import annotations

import pytest

from product_research.domain.entities import ResearchRun
from product_research.domain.enums import RunStatus
from product_research.domain.exceptions import DuplicateJobError, RunNotFoundError
from product_research.infrastructure.job_queue import (
    InMemoryJobQueue,
    ResearchJob,
    is_resume_key,
    resume_job_key,
    run_job_key,
)
from product_research.infrastructure.run_store import InMemoryRunStore


def _job(run_id: str = "r1") -> ResearchJob:
    return ResearchJob(run_id=run_id, subject_id="s1", owner_id="o1")


class TestInMemoryRunStore:

    def test_create_and_get_are_copies(self) -> None:
        store = InMemoryRunStore()
        run = store.create(ResearchRun("s1", "o1"))
        run.status = RunStatus.SUCCESS
        assert store.require(run.run_id).status is RunStatus.PENDING

    def test_duplicate_create_rejected(self) -> None:
        store = InMemoryRunStore()
        run = store.create(ResearchRun("s1", "o1"))
        with pytest.raises(ValueError):
            store.create(run)

    def test_update_touches_only_named_columns(self) -> None:
        ticks = iter([100.0, 200.0])
        store = InMemoryRunStore(clock=lambda: next(ticks))
        run = store.create(ResearchRun("s1", "o1"))
        store.update(run.run_id, pause_requested=True)
        updated = store.update(run.run_id, status=RunStatus.RUNNING)
        assert updated.pause_requested is True
        assert updated.status is RunStatus.RUNNING
        assert updated.updated_at == 200.0

    def test_update_unknown_column(self) -> None:
        store = InMemoryRunStore()
        run = store.create(ResearchRun("s1", "o1"))
        with pytest.raises(ValueError, match="Unknown run columns"):
            store.update(run.run_id, colour="red")

    def test_update_missing_run(self) -> None:
        with pytest.raises(RunNotFoundError):
            InMemoryRunStore().update("nope", status=RunStatus.RUNNING)

    def test_require_missing_run(self) -> None:
        with pytest.raises(RunNotFoundError) as info:
            InMemoryRunStore().require("nope")
        assert info.value.run_id == "nope"

    def test_list_by_status(self) -> None:
        store = InMemoryRunStore()
        a = store.create(ResearchRun("s1", "o1"))
        store.create(ResearchRun("s2", "o1", status=RunStatus.RUNNING))
        assert [r.run_id for r in store.list_by_status(RunStatus.PENDING)] == [a.run_id]
        assert len(store.list_by_status()) == 2

    def test_delete(self) -> None:
        store = InMemoryRunStore()
        run = store.create(ResearchRun("s1", "o1"))
        assert store.delete(run.run_id)
        assert not store.delete(run.run_id)
        assert len(store) == 0


class TestJobKeys:

    def test_keys(self) -> None:
        assert run_job_key("abc") == "run-abc"
        assert resume_job_key("abc") == "resume-abc"
        assert is_resume_key("resume-abc")
        assert not is_resume_key("run-abc")

    def test_job_requires_ids(self) -> None:
        with pytest.raises(ValueError):
            ResearchJob(run_id="", subject_id="s1", owner_id="o1")


class TestInMemoryJobQueue:

    def test_fifo(self) -> None:
        queue = InMemoryJobQueue()
        queue.enqueue("run-a", _job("a"))
        queue.enqueue("run-b", _job("b"))
        assert queue.dequeue()[0] == "run-a"
        assert queue.dequeue()[0] == "run-b"
        assert queue.dequeue() is None

    def test_duplicate_key_rejected_while_live(self) -> None:
        queue = InMemoryJobQueue()
        queue.enqueue("run-a", _job("a"))
        with pytest.raises(DuplicateJobError) as info:
            queue.enqueue("run-a", _job("a"))
        assert info.value.job_key == "run-a"

        queue.dequeue()
        with pytest.raises(DuplicateJobError):
            queue.enqueue("run-a", _job("a"))

        queue.ack("run-a")
        queue.enqueue("run-a", _job("a"))

    def test_waiting_and_active(self) -> None:
        queue = InMemoryJobQueue()
        queue.enqueue("run-a", _job("a"))
        queue.enqueue("resume-b", _job("b"))
        queue.dequeue()
        assert queue.waiting == 1
        assert queue.active == 1
        assert [k for k, _ in queue.jobs()] == ["resume-b", "run-a"]

    def test_remove(self) -> None:
        queue = InMemoryJobQueue()
        queue.enqueue("run-a", _job("a"))
        assert queue.remove("run-a")
        assert not queue.remove("run-a")

    def test_lookups_by_run(self) -> None:
        queue = InMemoryJobQueue()
        queue.enqueue("run-a", _job("a"))
        queue.enqueue("resume-a", _job("a"))
        assert sorted(queue.jobs_for_run("a")) == ["resume-a", "run-a"]
        assert queue.has_job("resume-a")
        assert queue.has_job_for_run("a")
        assert not queue.has_job_for_run("b")
