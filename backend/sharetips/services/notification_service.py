"""
backend/sharetips/services/notification_service.py

Purpose:
    In-app notification sink. Persists one notification document per
    recipient after filtering out users who disabled the category and users
    who already received an identical notification within the duplicate
    window. Push/email transport is handled elsewhere.

Dependencies:
    - sharetips.database
    - sharetips.config
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Iterable, Optional

import sharetips.database as _db
from sharetips.config import settings
from sharetips.models.notification import PREFERENCE_FIELD, NotificationInDB, NotificationType
from sharetips.monitoring.engine_metrics import METRIC_NOTIFICATIONS
from sharetips.utils import utcnow

logger = logging.getLogger("sharetips.notifications")


def make_data_key(data: Optional[dict[str, Any]]) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))


class NotificationService:
    async def notify_user(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> int:
        return await self.notify_many([user_id], type, title, message, data)

    async def notify_many(
        self,
        user_ids: Iterable[str],
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> int:
        """Create notifications for every eligible user. Returns the number created."""
        recipients = list(dict.fromkeys(str(u) for u in user_ids if u))
        if not recipients:
            return 0

        enabled = await self._filter_enabled(recipients, type)
        data_key = make_data_key(data)
        fresh = await self._filter_non_duplicates(enabled, type, data_key)
        if not fresh:
            logger.debug(
                "No %s notifications to send (%d requested, %d enabled)",
                type.value, len(recipients), len(enabled),
            )
            return 0

        now = utcnow()
        created = 0
        batch_size = max(1, settings.NOTIFICATION_BATCH_SIZE)
        for start in range(0, len(fresh), batch_size):
            batch = fresh[start:start + batch_size]
            await _db.db.notifications.insert_many([
                NotificationInDB(
                    user_id=uid, type=type, title=title, message=message,
                    data=data, data_key=data_key, created_at=now,
                ).model_dump()
                for uid in batch
            ])
            created += len(batch)

        METRIC_NOTIFICATIONS.labels(type=type.value).inc(created)
        logger.info(
            "Created %d %s notifications (%d requested)", created, type.value, len(recipients),
        )
        return created

    async def _filter_enabled(self, user_ids: list[str], type: NotificationType) -> list[str]:
        field = PREFERENCE_FIELD[type]
        disabled = await _db.db.notification_preferences.distinct(
            "user_id",
            {"user_id": {"$in": user_ids}, field: False},
        )
        disabled_set = {str(u) for u in disabled}
        return [u for u in user_ids if u not in disabled_set]

    async def _filter_non_duplicates(
        self, user_ids: list[str], type: NotificationType, data_key: Optional[str],
    ) -> list[str]:
        if not user_ids:
            return []
        cutoff = utcnow() - timedelta(minutes=settings.NOTIFICATION_DUPLICATE_WINDOW_MINUTES)
        already = await _db.db.notifications.distinct(
            "user_id",
            {
                "user_id": {"$in": user_ids},
                "type": type.value,
                "data_key": data_key,
                "created_at": {"$gte": cutoff},
            },
        )
        already_set = {str(u) for u in already}
        return [u for u in user_ids if u not in already_set]


notification_service = NotificationService()
