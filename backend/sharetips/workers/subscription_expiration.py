"""Subscription expiration worker.

Warns subscribers three days and one day before their subscription ends
(in-app + email), then expires it and sends a last in-app notification.
Each notice is claimed through a one-shot flag before it is sent; a notice
that cannot be stored releases its flag and goes out on the next cycle.
One failing subscription never stops the others.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from pymongo.errors import PyMongoError

from sharetips.models.notification import NotificationType
from sharetips.services.email_service import EmailDeliveryError, EmailService, email_service
from sharetips.services.notification_service import NotificationService, notification_service
from sharetips.services.subscription_repository import (
    SubscriptionRepository,
    subscription_repository,
)
from sharetips.services.user_repository import UserRepository, user_repository
from sharetips.utils import ensure_utc, utcnow

logger = logging.getLogger("sharetips.subscription_expiration")

# (flag, days remaining, lower bound exclusive, upper bound inclusive) in days
WARNING_WINDOWS = (
    ("notified_expiring_j3", 3, 2.0, 3.0),
    ("notified_expiring_j1", 1, 0.0, 1.0),
)


@dataclass
class ExpirationResult:
    warnings_sent: int = 0
    emails_sent: int = 0
    email_failures: int = 0
    expired: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class SubscriptionExpirationJob:
    def __init__(
        self,
        subscriptions: SubscriptionRepository = subscription_repository,
        notifier: NotificationService = notification_service,
        email: EmailService = email_service,
        users: UserRepository = user_repository,
    ):
        self.subscriptions = subscriptions
        self.notifier = notifier
        self.email = email
        self.users = users

    async def run(self, now: Optional[datetime] = None) -> ExpirationResult:
        now = now or utcnow()
        result = ExpirationResult()
        await self._send_warnings(now, result)
        await self._expire(now, result)
        if result.errors:
            logger.warning("Subscription expiration finished with %d error(s)", result.errors)
        return result

    async def _send_warnings(self, now: datetime, result: ExpirationResult) -> None:
        horizon = timedelta(days=WARNING_WINDOWS[0][3])
        subs = await self.subscriptions.find_expiring(now, horizon)
        if not subs:
            return
        users = await self.users.get_many(
            {s["subscriber_id"] for s in subs} | {s["tipster_id"] for s in subs}
        )

        for sub in subs:
            days_left = (ensure_utc(sub["end_date"]) - now).total_seconds() / 86400
            for flag, days_remaining, low, high in WARNING_WINDOWS:
                if sub.get(flag) or not (low < days_left <= high):
                    continue
                try:
                    if not await self.subscriptions.claim_flag(sub["_id"], flag):
                        continue
                    await self._warn(sub, users, flag, days_remaining, result)
                except PyMongoError:
                    raise
                except Exception:
                    result.errors += 1
                    logger.exception(
                        "J-%d expiration warning failed for subscription %s",
                        days_remaining, sub["_id"],
                    )

    async def _warn(
        self, sub: dict, users: dict[str, dict], flag: str, days_remaining: int,
        result: ExpirationResult,
    ) -> None:
        tipster_name = (users.get(sub["tipster_id"]) or {}).get("username") or "a tipster"
        subscriber = users.get(sub["subscriber_id"]) or {}
        when = "tomorrow" if days_remaining == 1 else f"in {days_remaining} days"

        await self._notify_or_release(
            sub, flag,
            "Subscription expiring soon",
            f"Your subscription to {tipster_name} expires {when}",
            {
                "subscription_id": str(sub["_id"]),
                "tipster_id": sub["tipster_id"],
                "days_remaining": days_remaining,
            },
        )
        result.warnings_sent += 1
        logger.info("Sent J-%d expiration notice for subscription %s", days_remaining, sub["_id"])

        email = subscriber.get("email")
        if not email:
            return
        try:
            if await self.email.send_subscription_expiring_email(
                email, subscriber.get("username") or "there", tipster_name, days_remaining,
            ):
                result.emails_sent += 1
        except EmailDeliveryError:
            result.email_failures += 1
            logger.error(
                "Failed to send J-%d expiration email for subscription %s",
                days_remaining, sub["_id"], exc_info=True,
            )

    async def _notify_or_release(
        self, sub: dict, flag: str, title: str, message: str, data: dict[str, Any],
    ) -> None:
        """In-app notice for a claimed flag. The flag is released if the notice
        cannot be stored, so the next cycle sends it again."""
        try:
            await self.notifier.notify_user(
                sub["subscriber_id"], NotificationType.subscription_expire, title, message, data,
            )
        except Exception:
            await self.subscriptions.release_flag(sub["_id"], flag)
            raise

    async def _expire(self, now: datetime, result: ExpirationResult) -> None:
        subs = await self.subscriptions.find_due_for_expiry(now)
        if not subs:
            return
        users = await self.users.get_many({s["tipster_id"] for s in subs})

        for sub in subs:
            try:
                await self._expire_one(sub, users, now, result)
            except PyMongoError:
                raise
            except Exception:
                result.errors += 1
                logger.exception("Expiring subscription %s failed", sub["_id"])

        if result.expired:
            logger.info("Expired %d subscription(s)", result.expired)

    async def _expire_one(
        self, sub: dict, users: dict[str, dict], now: datetime, result: ExpirationResult,
    ) -> None:
        # Notify first: a failed notice leaves the subscription active for a retry
        if not sub.get("notified_expired") and await self.subscriptions.claim_flag(
            sub["_id"], "notified_expired",
        ):
            tipster_name = (users.get(sub["tipster_id"]) or {}).get("username") or "a tipster"
            await self._notify_or_release(
                sub, "notified_expired",
                "Subscription expired",
                f"Your subscription to {tipster_name} has expired",
                {"subscription_id": str(sub["_id"]), "tipster_id": sub["tipster_id"], "expired": True},
            )
            logger.info("Sent expiration notification for subscription %s", sub["_id"])

        if await self.subscriptions.mark_expired(sub["_id"], now):
            result.expired += 1


subscription_expiration_job = SubscriptionExpirationJob()


async def run() -> dict:
    """Scheduler entry point."""
    return (await subscription_expiration_job.run()).as_dict()
