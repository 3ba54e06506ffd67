"""
backend/sharetips/services/match_repository.py

Purpose:
    Persistence access for match documents. Writes are guarded so that a
    finished match can never be moved back to scheduled/live.

Dependencies:
    - sharetips.database
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from bson import ObjectId
from bson.errors import InvalidId

import sharetips.database as _db
from sharetips.models.match import MatchStatus


def to_object_ids(ids: Iterable[str]) -> list[ObjectId]:
    """Convert string ids to ObjectIds, dropping malformed ones."""
    out = []
    for raw in ids:
        try:
            out.append(ObjectId(raw))
        except (InvalidId, TypeError):
            continue
    return out


class MatchRepository:
    async def get_by_ids(self, match_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Load matches keyed by string id. Unknown or malformed ids are absent."""
        oids = to_object_ids(set(match_ids))
        if not oids:
            return {}
        docs = await _db.db.matches.find({"_id": {"$in": oids}}).to_list(length=len(oids))
        return {str(doc["_id"]): doc for doc in docs}

    async def get_by_external_ids(self, external_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        ids = list({e for e in external_ids if e})
        if not ids:
            return {}
        docs = await _db.db.matches.find({"external_id": {"$in": ids}}).to_list(length=len(ids))
        return {doc["external_id"]: doc for doc in docs}

    async def apply_score_update(self, match_id: ObjectId, fields: dict[str, Any]) -> bool:
        """Write status/score fields unless the match is already finished."""
        result = await _db.db.matches.update_one(
            {"_id": match_id, "status": {"$ne": MatchStatus.finished.value}},
            {"$set": fields},
        )
        return result.modified_count == 1

    async def any_unfinished_started_before(
        self, match_ids: Iterable[str], cutoff: datetime,
    ) -> bool:
        oids = to_object_ids(set(match_ids))
        if not oids:
            return False
        doc = await _db.db.matches.find_one({
            "_id": {"$in": oids},
            "status": {"$ne": MatchStatus.finished.value},
            "start_time": {"$lt": cutoff},
        })
        return doc is not None


match_repository = MatchRepository()
