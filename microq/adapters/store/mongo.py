"""
MongoJobStore — MongoDB adapter using the pymongo async API.

Install extras: pip install "microq[mongo]"

Atomicity
---------
MongoDB updates a single document atomically. find_and_modify maps onto
find_one_and_update, which selects the first matching document under the
requested sort and applies the $set in one server-side step, so concurrent
dispatchers racing on the same job never both claim it.

Ids
---
Jobs use integer ids (the document _id) drawn from a counters collection
with an upserting $inc. They grow monotonically in insertion order, which
CLAIM_ORDER relies on as its tie-break.

Document layout: every Job field except id is stored under its own name;
id is stored as _id and status as its string value.
"""
from __future__ import annotations

import contextlib
import dataclasses
from collections.abc import Iterator, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

from microq.domain.errors import MicroqError, StorageError
from microq.domain.models import Job
from microq.domain.query import JobFilter, Sort

if TYPE_CHECKING:
    from pymongo import AsyncMongoClient


@dataclasses.dataclass
class MongoJobStore:
    """
    MongoDB job store.

    Parameters
    ----------
    url                 : MongoDB connection string (used when client is omitted)
    database            : database name
    collection          : collection holding the job documents
    counters_collection : collection holding the id sequence
    client              : pymongo.AsyncMongoClient — created lazily if omitted
    """

    url: str = "mongodb://localhost:27017"
    database: str = "microq"
    collection: str = "jobs"
    counters_collection: str = "counters"
    client: AsyncMongoClient | None = None

    def _get_client(self) -> AsyncMongoClient:
        if self.client is not None:
            return self.client
        try:
            from pymongo import AsyncMongoClient
        except ImportError as exc:
            raise ImportError(
                "MongoJobStore requires pymongo. Install with: pip install 'microq[mongo]'"
            ) from exc
        self.client = AsyncMongoClient(self.url, tz_aware=True)
        return self.client

    def _collections(self) -> tuple[Any, Any]:
        db = self._get_client()[self.database]
        return db[self.collection], db[self.counters_collection]

    async def insert(self, job: Job) -> Job:
        jobs, counters = self._collections()
        with _wrap_errors("MongoDB insert failed"):
            stored = job.with_id(await self._next_id(counters))
            await jobs.insert_one(_to_document(stored))
        return stored

    async def _next_id(self, counters: Any) -> int:
        from pymongo.errors import DuplicateKeyError

        async def _bump() -> Any:
            return await counters.find_one_and_update(
                {"_id": self.collection},
                {"$inc": {"seq": 1}},
                upsert=True,
                return_document=_return_document(after=True),
            )

        try:
            counter = await _bump()
        except DuplicateKeyError:
            # Two first inserts raced to create the counter; it exists now.
            counter = await _bump()
        return int(counter["seq"])

    async def find(self, query: JobFilter) -> list[Job]:
        jobs, _ = self._collections()
        with _wrap_errors("MongoDB find failed"):
            cursor = jobs.find(_to_mongo_filter(query)).sort("_id", 1)
            documents = await cursor.to_list()
        return [_from_document(doc) for doc in documents]

    async def update(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        *,
        multi: bool = False,
    ) -> int:
        jobs, _ = self._collections()
        spec = _to_mongo_filter(query)
        update = {"$set": _to_set(changes)}
        with _wrap_errors("MongoDB update failed"):
            if multi:
                result = await jobs.update_many(spec, update)
            else:
                result = await jobs.update_one(spec, update)
        return int(result.modified_count)

    async def remove(self, query: JobFilter) -> int:
        jobs, _ = self._collections()
        with _wrap_errors("MongoDB remove failed"):
            result = await jobs.delete_many(_to_mongo_filter(query))
        return int(result.deleted_count)

    async def find_and_modify(
        self,
        query: JobFilter,
        changes: Mapping[str, Any],
        *,
        sort: Sort = (),
        new: bool = True,
    ) -> Job | None:
        jobs, _ = self._collections()
        kwargs: dict[str, Any] = {"return_document": _return_document(after=new)}
        if sort:
            kwargs["sort"] = _to_mongo_sort(sort)
        with _wrap_errors("MongoDB find_and_modify failed"):
            document = await jobs.find_one_and_update(
                _to_mongo_filter(query),
                {"$set": _to_set(changes)},
                **kwargs,
            )
        return None if document is None else _from_document(document)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def _field(name: str) -> str:
    return "_id" if name == "id" else name


def _bson_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _to_set(changes: Mapping[str, Any]) -> dict[str, Any]:
    return {_field(k): _bson_value(v) for k, v in changes.items()}


def _to_document(job: Job) -> dict[str, Any]:
    return _to_set(job.model_dump())


def _from_document(document: Mapping[str, Any]) -> Job:
    fields = {("id" if k == "_id" else k): v for k, v in document.items()}
    return Job.model_validate(fields)


def _to_mongo_filter(query: JobFilter) -> dict[str, Any]:
    """Translate a JobFilter into a MongoDB query document."""
    spec: dict[str, Any] = {}
    if query.ids is not None:
        spec["_id"] = {"$in": sorted(query.ids)}
    if query.names is not None:
        spec["name"] = {"$in": sorted(query.names)}
    if query.statuses is not None:
        spec["status"] = {"$in": sorted(s.value for s in query.statuses)}
    if query.enqueued_before is not None:
        spec["enqueued_at"] = {"$lte": query.enqueued_before}
    return spec


def _to_mongo_sort(sort: Sort) -> list[tuple[str, int]]:
    return [(_field(name), direction) for name, direction in sort]


def _return_document(after: bool) -> Any:
    try:
        from pymongo import ReturnDocument
    except ImportError as exc:
        raise ImportError(
            "MongoJobStore requires pymongo. Install with: pip install 'microq[mongo]'"
        ) from exc
    return ReturnDocument.AFTER if after else ReturnDocument.BEFORE


@contextlib.contextmanager
def _wrap_errors(message: str) -> Iterator[None]:
    """Re-raise driver failures as StorageError; microq errors pass through."""
    try:
        yield
    except MicroqError:
        raise
    except ImportError:
        raise
    except Exception as exc:
        raise StorageError(message, exc) from exc
