import asyncio

import pytest

from microq.adapters.store.memory import InMemoryJobStore
from microq.domain.models import Job, JobStatus
from microq.domain.query import CLAIM_ORDER, JobFilter
from microq.domain.snapshot import StoreSnapshot
from microq.ports.store import JobStorePort


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


def test_satisfies_port(store: InMemoryJobStore):
    assert isinstance(store, JobStorePort)


async def test_find_empty_returns_empty(store: InMemoryJobStore):
    assert await store.find(JobFilter()) == []


async def test_insert_assigns_id(store: InMemoryJobStore):
    first = await store.insert(Job.new("task"))
    second = await store.insert(Job.new("task"))
    assert first.id == 1
    assert second.id == 2


async def test_find_after_insert(store: InMemoryJobStore):
    job = await store.insert(Job.new("task", {"a": 1}))
    assert await store.find(JobFilter()) == [job]


async def test_update_multi_returns_count(store: InMemoryJobStore):
    await store.insert(Job.new("task"))
    await store.insert(Job.new("task"))
    count = await store.update(JobFilter(), {"priority": 2}, multi=True)
    assert count == 2
    assert all(j.priority == 2 for j in await store.find(JobFilter()))


async def test_remove_returns_count(store: InMemoryJobStore):
    await store.insert(Job.new("a"))
    await store.insert(Job.new("b"))
    assert await store.remove(JobFilter(names=frozenset({"a"}))) == 1
    assert [j.name for j in await store.find(JobFilter())] == ["b"]


async def test_find_and_modify_returns_new_document(store: InMemoryJobStore):
    await store.insert(Job.new("task"))
    job = await store.find_and_modify(JobFilter(), {"status": JobStatus.DEQUEUED})
    assert job is not None
    assert job.status == JobStatus.DEQUEUED


async def test_find_and_modify_returns_old_document(store: InMemoryJobStore):
    await store.insert(Job.new("task"))
    job = await store.find_and_modify(
        JobFilter(), {"status": JobStatus.DEQUEUED}, new=False
    )
    assert job is not None
    assert job.status == JobStatus.ENQUEUED
    [stored] = await store.find(JobFilter())
    assert stored.status == JobStatus.DEQUEUED


async def test_find_and_modify_no_match_returns_none(store: InMemoryJobStore):
    assert await store.find_and_modify(JobFilter(), {"priority": 1}) is None


async def test_find_and_modify_respects_sort(store: InMemoryJobStore):
    await store.insert(Job.new("task", "low", priority=1))
    await store.insert(Job.new("task", "high", priority=9))
    job = await store.find_and_modify(JobFilter(), {"priority": 0}, sort=CLAIM_ORDER)
    assert job is not None
    assert job.params == "high"


async def test_concurrent_claims_exactly_one_wins(store: InMemoryJobStore):
    await store.insert(Job.new("task"))
    eligible = JobFilter(statuses=frozenset({JobStatus.ENQUEUED}))

    results = await asyncio.gather(
        *(
            store.find_and_modify(eligible, {"status": JobStatus.DEQUEUED})
            for _ in range(10)
        )
    )
    assert sum(r is not None for r in results) == 1


async def test_initial_snapshot_constructor():
    initial = StoreSnapshot(jobs=(Job(id=5, name="task"),), next_id=6)
    store = InMemoryJobStore(initial=initial)
    job = await store.insert(Job.new("task"))
    assert job.id == 6
    assert len(store.snapshot.jobs) == 2
