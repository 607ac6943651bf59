from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

pymongo = pytest.importorskip("pymongo")

from pymongo.errors import DuplicateKeyError  # noqa: E402

from microq.adapters.store.mongo import (  # noqa: E402
    MongoJobStore,
    _from_document,
    _to_document,
    _to_mongo_filter,
)
from microq.domain.errors import StorageError  # noqa: E402
from microq.domain.models import Job, JobStatus  # noqa: E402
from microq.domain.query import CLAIM_ORDER, JobFilter  # noqa: E402
from microq.ports.store import JobStorePort  # noqa: E402

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_store() -> tuple[MongoJobStore, MagicMock, MagicMock]:
    jobs = MagicMock()
    for method in ("insert_one", "update_one", "update_many", "delete_many", "find_one_and_update"):
        setattr(jobs, method, AsyncMock())
    counters = MagicMock()
    counters.find_one_and_update = AsyncMock()

    db = MagicMock()
    db.__getitem__.side_effect = {"jobs": jobs, "counters": counters}.__getitem__
    client = MagicMock()
    client.__getitem__.return_value = db

    return MongoJobStore(client=client), jobs, counters


def _document(job_id: int = 1, **fields) -> dict:
    doc = {
        "_id": job_id,
        "name": "task",
        "status": "enqueued",
        "params": {"a": 1},
        "priority": None,
        "enqueued_at": datetime(2024, 1, 1, tzinfo=UTC),
    }
    doc.update(fields)
    return doc


def test_satisfies_port():
    store, _, _ = _make_store()
    assert isinstance(store, JobStorePort)


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def test_empty_filter_translates_to_empty_query():
    assert _to_mongo_filter(JobFilter()) == {}


def test_filter_translation():
    cutoff = datetime(2024, 1, 1, tzinfo=UTC)
    query = JobFilter(
        ids=frozenset({2, 1}),
        names=frozenset({"b", "a"}),
        statuses=frozenset({JobStatus.FAILED, JobStatus.COMPLETED}),
        enqueued_before=cutoff,
    )
    assert _to_mongo_filter(query) == {
        "_id": {"$in": [1, 2]},
        "name": {"$in": ["a", "b"]},
        "status": {"$in": ["completed", "failed"]},
        "enqueued_at": {"$lte": cutoff},
    }


def test_document_roundtrip():
    job = Job.new("task", {"a": 1}, priority=4).with_id(9)
    doc = _to_document(job)
    assert doc["_id"] == 9
    assert "id" not in doc
    assert doc["status"] == "enqueued"
    assert _from_document(doc) == job


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def test_insert_draws_id_from_counter():
    store, jobs, counters = _make_store()
    counters.find_one_and_update.return_value = {"_id": "jobs", "seq": 12}

    job = await store.insert(Job.new("task", {"a": 1}))

    assert job.id == 12
    args, kwargs = counters.find_one_and_update.call_args
    assert args == ({"_id": "jobs"}, {"$inc": {"seq": 1}})
    assert kwargs["upsert"] is True
    assert kwargs["return_document"] == pymongo.ReturnDocument.AFTER
    inserted = jobs.insert_one.call_args.args[0]
    assert inserted["_id"] == 12
    assert inserted["name"] == "task"


async def test_insert_retries_counter_after_duplicate_key():
    store, jobs, counters = _make_store()
    counters.find_one_and_update.side_effect = [
        DuplicateKeyError("E11000 duplicate key"),
        {"_id": "jobs", "seq": 2},
    ]

    job = await store.insert(Job.new("task"))

    assert job.id == 2
    assert counters.find_one_and_update.await_count == 2
    assert jobs.insert_one.call_args.args[0]["_id"] == 2


async def test_insert_gives_up_after_second_duplicate_key():
    store, jobs, counters = _make_store()
    counters.find_one_and_update.side_effect = DuplicateKeyError(
        "E11000 duplicate key"
    )

    with pytest.raises(StorageError):
        await store.insert(Job.new("task"))
    assert counters.find_one_and_update.await_count == 2
    jobs.insert_one.assert_not_called()


async def test_find_sorts_by_id():
    store, jobs, _ = _make_store()
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[_document(1), _document(2)])
    jobs.find.return_value = cursor

    found = await store.find(JobFilter(statuses=frozenset({JobStatus.ENQUEUED})))

    assert [j.id for j in found] == [1, 2]
    jobs.find.assert_called_once_with({"status": {"$in": ["enqueued"]}})
    cursor.sort.assert_called_once_with("_id", 1)


async def test_update_multi_uses_update_many():
    store, jobs, _ = _make_store()
    jobs.update_many.return_value = MagicMock(modified_count=3)

    count = await store.update(
        JobFilter(statuses=frozenset({JobStatus.DEQUEUED})),
        {"status": JobStatus.ENQUEUED},
        multi=True,
    )

    assert count == 3
    args = jobs.update_many.call_args.args
    assert args[1] == {"$set": {"status": "enqueued"}}
    jobs.update_one.assert_not_called()


async def test_update_single_uses_update_one():
    store, jobs, _ = _make_store()
    jobs.update_one.return_value = MagicMock(modified_count=1)
    assert await store.update(JobFilter(), {"priority": 1}) == 1
    jobs.update_many.assert_not_called()


async def test_remove_returns_deleted_count():
    store, jobs, _ = _make_store()
    jobs.delete_many.return_value = MagicMock(deleted_count=4)
    assert await store.remove(JobFilter()) == 4


async def test_find_and_modify_passes_claim_sort():
    store, jobs, _ = _make_store()
    jobs.find_one_and_update.return_value = _document(3, status="dequeued")

    job = await store.find_and_modify(
        JobFilter(statuses=frozenset({JobStatus.ENQUEUED})),
        {"status": JobStatus.DEQUEUED},
        sort=CLAIM_ORDER,
    )

    assert job is not None
    assert job.id == 3
    assert job.status == JobStatus.DEQUEUED
    kwargs = jobs.find_one_and_update.call_args.kwargs
    assert kwargs["sort"] == [("priority", -1), ("_id", 1)]
    assert kwargs["return_document"] == pymongo.ReturnDocument.AFTER


async def test_find_and_modify_old_document():
    store, jobs, _ = _make_store()
    jobs.find_one_and_update.return_value = _document(1)
    await store.find_and_modify(JobFilter(), {"priority": 1}, new=False)
    kwargs = jobs.find_one_and_update.call_args.kwargs
    assert kwargs["return_document"] == pymongo.ReturnDocument.BEFORE
    assert "sort" not in kwargs


async def test_find_and_modify_no_match_returns_none():
    store, jobs, _ = _make_store()
    jobs.find_one_and_update.return_value = None
    assert await store.find_and_modify(JobFilter(), {"priority": 1}) is None


async def test_driver_error_raises_storage_error():
    store, jobs, _ = _make_store()
    jobs.delete_many.side_effect = RuntimeError("connection refused")
    with pytest.raises(StorageError, match="connection refused"):
        await store.remove(JobFilter())


async def test_counter_error_raises_storage_error():
    store, jobs, counters = _make_store()
    counters.find_one_and_update.side_effect = RuntimeError("timeout")
    with pytest.raises(StorageError):
        await store.insert(Job.new("task"))
    jobs.insert_one.assert_not_called()
