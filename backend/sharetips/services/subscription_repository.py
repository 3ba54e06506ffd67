"""
backend/sharetips/services/subscription_repository.py

Purpose:
    Persistence access for tipster subscriptions. Notification flags are
    claimed with a conditional update so each one fires at most once per
    subscription, whatever the number of concurrent or repeated runs.

Dependencies:
    - sharetips.database
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from bson import ObjectId

import sharetips.database as _db
from sharetips.models.subscription import SubscriptionStatus

NOTIFICATION_FLAGS = ("notified_expiring_j3", "notified_expiring_j1", "notified_expired")


class SubscriptionRepository:
    async def active_subscriber_ids(self, tipster_id: str, now: datetime) -> list[str]:
        ids = await _db.db.subscriptions.distinct(
            "subscriber_id",
            {
                "tipster_id": tipster_id,
                "status": SubscriptionStatus.active.value,
                "end_date": {"$gt": now},
            },
        )
        return [str(i) for i in ids]

    async def find_expiring(self, now: datetime, horizon: timedelta) -> list[dict[str, Any]]:
        """Active subscriptions ending within the warning horizon with a warning still unsent."""
        return await _db.db.subscriptions.find({
            "status": SubscriptionStatus.active.value,
            "end_date": {"$gt": now, "$lte": now + horizon},
            "$or": [
                {"notified_expiring_j3": {"$ne": True}},
                {"notified_expiring_j1": {"$ne": True}},
            ],
        }).to_list(length=None)

    async def find_due_for_expiry(self, now: datetime) -> list[dict[str, Any]]:
        return await _db.db.subscriptions.find({
            "status": SubscriptionStatus.active.value,
            "end_date": {"$lte": now},
        }).to_list(length=None)

    async def mark_expired(self, subscription_id: ObjectId, now: datetime) -> bool:
        result = await _db.db.subscriptions.update_one(
            {"_id": subscription_id, "status": SubscriptionStatus.active.value},
            {"$set": {"status": SubscriptionStatus.expired.value, "expired_at": now}},
        )
        return result.modified_count == 1

    async def claim_flag(self, subscription_id: ObjectId, flag: str) -> bool:
        """Set a one-shot notification flag. True only for the caller that set it."""
        if flag not in NOTIFICATION_FLAGS:
            raise ValueError(f"Unknown notification flag: {flag}")
        result = await _db.db.subscriptions.update_one(
            {"_id": subscription_id, flag: {"$ne": True}},
            {"$set": {flag: True}},
        )
        return result.modified_count == 1

    async def release_flag(self, subscription_id: ObjectId, flag: str) -> None:
        """Undo a claim whose notification could not be stored."""
        if flag not in NOTIFICATION_FLAGS:
            raise ValueError(f"Unknown notification flag: {flag}")
        await _db.db.subscriptions.update_one(
            {"_id": subscription_id, flag: True},
            {"$set": {flag: False}},
        )


subscription_repository = SubscriptionRepository()
