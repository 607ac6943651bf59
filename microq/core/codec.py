"""
Snapshot codec used by LocalFileSystemJobStore.

The file holds one JSON object: {"jobs": [...], "next_id": N}. Each job is
Job.model_dump_json output, so datetimes are ISO-8601 and status is its
string value. params and result must be JSON-compatible.

An empty file decodes to an empty store.
"""
from __future__ import annotations

from microq.domain.snapshot import StoreSnapshot


def encode(snapshot: StoreSnapshot) -> bytes:
    """Serialize StoreSnapshot to UTF-8 JSON bytes."""
    return snapshot.model_dump_json(indent=2).encode("utf-8")


def decode(data: bytes) -> StoreSnapshot:
    """Deserialize UTF-8 JSON bytes to StoreSnapshot."""
    if not data:
        return StoreSnapshot()
    return StoreSnapshot.model_validate_json(data)
