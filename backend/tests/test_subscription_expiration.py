"""
backend/tests/test_subscription_expiration.py

Purpose:
    J-3 / J-1 expiration warnings (in-app + email), expiry transition, the
    one-shot flags that keep reruns from notifying twice, and isolation of
    a subscription whose notice cannot be stored (flag released, retried).

Dependencies:
    - sharetips.workers.subscription_expiration
    - httpx.MockTransport
"""

from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest

from seed import T0, add_subscription, add_user
from sharetips.services.email_service import EmailService
from sharetips.services.notification_service import NotificationService
from sharetips.workers.subscription_expiration import SubscriptionExpirationJob

NOW = T0


class _FailingNotifier(NotificationService):
    """Stores notices like the real sink except for one broken recipient."""

    def __init__(self, failing_user: str):
        self.failing_user = failing_user

    async def notify_user(self, user_id, type, title, message, data=None):
        if user_id == self.failing_user:
            raise RuntimeError("notification sink unavailable")
        return await super().notify_user(user_id, type, title, message, data)


def _email_service(sent: list, status_code: int = 200, api_key: str = "re_test") -> EmailService:
    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(status_code, json={"id": "msg-1"})

    return EmailService(api_key=api_key, transport=httpx.MockTransport(handler))


async def _people(db):
    tipster = await add_user(db, "kingtips", "king@example.com")
    subscriber = await add_user(db, "lea", "lea@example.com")
    return tipster, subscriber


@pytest.mark.asyncio
async def test_j3_warning_is_sent_once(fake_db):
    tipster, subscriber = await _people(fake_db)
    sub = await add_subscription(fake_db, subscriber, tipster, NOW + timedelta(days=2, hours=12))
    sent: list = []
    job = SubscriptionExpirationJob(email=_email_service(sent))

    first = await job.run(now=NOW)
    second = await job.run(now=NOW + timedelta(minutes=5))

    assert (first.warnings_sent, first.emails_sent) == (1, 1)
    assert (second.warnings_sent, second.emails_sent) == (0, 0)
    stored = await fake_db.subscriptions.find_one({"_id": sub["_id"]})
    assert stored["notified_expiring_j3"] is True
    assert stored["notified_expiring_j1"] is False
    assert stored["status"] == "active"

    notes = await fake_db.notifications.find({"user_id": subscriber}).to_list(length=None)
    assert len(notes) == 1
    assert notes[0]["type"] == "subscription_expire"
    assert notes[0]["data"]["days_remaining"] == 3
    assert "kingtips" in notes[0]["message"]

    assert len(sent) == 1
    assert sent[0]["to"] == ["lea@example.com"]
    assert "kingtips" in sent[0]["subject"]


@pytest.mark.asyncio
async def test_j1_warning_follows_j3(fake_db):
    tipster, subscriber = await _people(fake_db)
    await add_subscription(fake_db, subscriber, tipster, NOW + timedelta(days=2, hours=12))
    sent: list = []
    job = SubscriptionExpirationJob(email=_email_service(sent))

    await job.run(now=NOW)
    await job.run(now=NOW + timedelta(days=1, hours=14))   # 22h left

    notes = await fake_db.notifications.find({"user_id": subscriber}).to_list(length=None)
    assert [n["data"]["days_remaining"] for n in notes] == [3, 1]
    assert len(sent) == 2
    assert "tomorrow" in sent[1]["subject"]


@pytest.mark.asyncio
async def test_outside_windows_nothing_is_sent(fake_db):
    tipster, subscriber = await _people(fake_db)
    await add_subscription(fake_db, subscriber, tipster, NOW + timedelta(days=10))
    await add_subscription(fake_db, subscriber, tipster, NOW + timedelta(days=1, hours=12))
    sent: list = []

    result = await SubscriptionExpirationJob(email=_email_service(sent)).run(now=NOW)

    assert result.warnings_sent == 0
    assert sent == []


@pytest.mark.asyncio
async def test_expired_subscription_is_closed_and_notified_once(fake_db):
    tipster, subscriber = await _people(fake_db)
    sub = await add_subscription(
        fake_db, subscriber, tipster, NOW - timedelta(minutes=1),
        notified_expiring_j3=True, notified_expiring_j1=True,
    )
    job = SubscriptionExpirationJob(email=_email_service([]))

    first = await job.run(now=NOW)
    second = await job.run(now=NOW + timedelta(minutes=5))

    assert (first.expired, second.expired) == (1, 0)
    stored = await fake_db.subscriptions.find_one({"_id": sub["_id"]})
    assert stored["status"] == "expired"
    assert stored["expired_at"] == NOW
    assert stored["notified_expired"] is True
    notes = await fake_db.notifications.find({"user_id": subscriber}).to_list(length=None)
    assert len(notes) == 1
    assert notes[0]["data"]["expired"] is True


@pytest.mark.asyncio
async def test_email_failure_keeps_flag_and_in_app_notice(fake_db, caplog):
    tipster, subscriber = await _people(fake_db)
    sub = await add_subscription(fake_db, subscriber, tipster, NOW + timedelta(hours=20))
    sent: list = []

    result = await SubscriptionExpirationJob(email=_email_service(sent, status_code=422)).run(now=NOW)

    assert result.email_failures == 1
    assert result.warnings_sent == 1
    assert (await fake_db.subscriptions.find_one({"_id": sub["_id"]}))["notified_expiring_j1"] is True
    assert await fake_db.notifications.count_documents({"user_id": subscriber}) == 1
    assert "Failed to send J-1 expiration email" in caplog.text


@pytest.mark.asyncio
async def test_subscriber_without_email_gets_in_app_only(fake_db):
    tipster = await add_user(fake_db, "kingtips")
    subscriber = await add_user(fake_db, "ghost", None)
    await add_subscription(fake_db, subscriber, tipster, NOW + timedelta(days=2, hours=6))
    sent: list = []

    result = await SubscriptionExpirationJob(email=_email_service(sent)).run(now=NOW)

    assert result.warnings_sent == 1
    assert sent == []


@pytest.mark.asyncio
async def test_disabled_email_is_not_a_failure(fake_db):
    tipster, subscriber = await _people(fake_db)
    await add_subscription(fake_db, subscriber, tipster, NOW + timedelta(days=2, hours=6))
    sent: list = []

    result = await SubscriptionExpirationJob(email=_email_service(sent, api_key="")).run(now=NOW)

    assert (result.warnings_sent, result.emails_sent, result.email_failures) == (1, 0, 0)
    assert sent == []


@pytest.mark.asyncio
async def test_failing_subscription_does_not_stop_the_others(fake_db, caplog):
    tipster = await add_user(fake_db, "kingtips")
    broken = await add_user(fake_db, "broken")
    healthy = await add_user(fake_db, "lea")
    lapsed = await add_user(fake_db, "tom")
    broken_sub = await add_subscription(fake_db, broken, tipster, NOW + timedelta(days=2, hours=12))
    healthy_sub = await add_subscription(fake_db, healthy, tipster, NOW + timedelta(days=2, hours=6))
    overdue = await add_subscription(
        fake_db, lapsed, tipster, NOW - timedelta(hours=1),
        notified_expiring_j3=True, notified_expiring_j1=True,
    )

    job = SubscriptionExpirationJob(notifier=_FailingNotifier(broken), email=_email_service([]))
    result = await job.run(now=NOW)

    assert result.errors == 1
    assert result.warnings_sent == 1
    assert result.expired == 1
    assert f"J-3 expiration warning failed for subscription {broken_sub['_id']}" in caplog.text

    assert (await fake_db.subscriptions.find_one({"_id": healthy_sub["_id"]}))["notified_expiring_j3"] is True
    assert await fake_db.notifications.count_documents({"user_id": healthy}) == 1
    stored = await fake_db.subscriptions.find_one({"_id": overdue["_id"]})
    assert stored["status"] == "expired"
    assert await fake_db.notifications.count_documents({"user_id": lapsed}) == 1


@pytest.mark.asyncio
async def test_warning_is_retried_after_the_notice_failed(fake_db):
    tipster = await add_user(fake_db, "kingtips")
    subscriber = await add_user(fake_db, "lea", "lea@example.com")
    sub = await add_subscription(fake_db, subscriber, tipster, NOW + timedelta(days=2, hours=12))
    sent: list = []

    first = await SubscriptionExpirationJob(
        notifier=_FailingNotifier(subscriber), email=_email_service(sent),
    ).run(now=NOW)

    assert first.errors == 1
    assert (await fake_db.subscriptions.find_one({"_id": sub["_id"]}))["notified_expiring_j3"] is False
    assert sent == []

    second = await SubscriptionExpirationJob(email=_email_service(sent)).run(now=NOW + timedelta(minutes=5))

    assert (second.warnings_sent, second.emails_sent, second.errors) == (1, 1, 0)
    assert (await fake_db.subscriptions.find_one({"_id": sub["_id"]}))["notified_expiring_j3"] is True
    assert await fake_db.notifications.count_documents({"user_id": subscriber}) == 1


@pytest.mark.asyncio
async def test_expiry_notice_failure_keeps_subscription_for_retry(fake_db):
    tipster = await add_user(fake_db, "kingtips")
    subscriber = await add_user(fake_db, "lea")
    sub = await add_subscription(
        fake_db, subscriber, tipster, NOW - timedelta(minutes=1),
        notified_expiring_j3=True, notified_expiring_j1=True,
    )

    first = await SubscriptionExpirationJob(
        notifier=_FailingNotifier(subscriber), email=_email_service([]),
    ).run(now=NOW)

    assert (first.expired, first.errors) == (0, 1)
    stored = await fake_db.subscriptions.find_one({"_id": sub["_id"]})
    assert stored["status"] == "active"
    assert stored["notified_expired"] is False

    second = await SubscriptionExpirationJob(email=_email_service([])).run(now=NOW + timedelta(minutes=5))

    assert (second.expired, second.errors) == (1, 0)
    stored = await fake_db.subscriptions.find_one({"_id": sub["_id"]})
    assert stored["status"] == "expired"
    assert stored["notified_expired"] is True
    notes = await fake_db.notifications.find({"user_id": subscriber}).to_list(length=None)
    assert len(notes) == 1
    assert notes[0]["data"]["expired"] is True
