"""Persistent worker state: last run record per job, kept across restarts.

Uses a lightweight `worker_state` collection in MongoDB.
"""

from datetime import datetime
from typing import Any, Optional

import sharetips.database as _db
from sharetips.utils import utcnow


async def set_synced(worker_id: str) -> None:
    """Mark a worker (or one league of a worker) as just synced."""
    await _db.db.worker_state.update_one(
        {"_id": worker_id},
        {"$set": {"synced_at": utcnow()}},
        upsert=True,
    )


async def get_synced_at(worker_id: str) -> datetime | None:
    doc = await _db.db.worker_state.find_one({"_id": worker_id})
    return doc.get("synced_at") if doc else None


async def record_run(
    job_id: str,
    outcome: str,
    summary: Optional[dict[str, Any]] = None,
    error: Optional[str] = None,
) -> None:
    """Store the outcome of the latest run of a job."""
    await _db.db.worker_state.update_one(
        {"_id": job_id},
        {"$set": {
            "last_run_at": utcnow(),
            "last_outcome": outcome,
            "last_summary": summary,
            "last_error": error,
        }},
        upsert=True,
    )


async def get_run_records(job_ids: list[str]) -> dict[str, dict[str, Any]]:
    docs = await _db.db.worker_state.find({"_id": {"$in": job_ids}}).to_list(length=len(job_ids))
    return {doc["_id"]: doc for doc in docs}
