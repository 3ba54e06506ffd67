"""Read-only user lookups (display names and emails for notifications)."""

from __future__ import annotations

from typing import Any, Iterable

import sharetips.database as _db
from sharetips.services.match_repository import to_object_ids


class UserRepository:
    async def get_many(self, user_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        oids = to_object_ids(set(user_ids))
        if not oids:
            return {}
        docs = await _db.db.users.find(
            {"_id": {"$in": oids}},
            {"username": 1, "email": 1},
        ).to_list(length=len(oids))
        return {str(doc["_id"]): doc for doc in docs}

    async def get_username(self, user_id: str, default: str) -> str:
        users = await self.get_many([user_id])
        return (users.get(user_id) or {}).get("username") or default


user_repository = UserRepository()
