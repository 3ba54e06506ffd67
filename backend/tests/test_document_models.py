"""
backend/tests/test_document_models.py

Purpose:
    Documents written by the engine (and the fixtures that stand in for the
    rest of the platform) parse against the stored-document models.

Dependencies:
    - sharetips.models
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from seed import T0, add_match, add_subscription
from sharetips.models.match import MatchInDB, MatchStatus
from sharetips.models.notification import NotificationInDB, NotificationType
from sharetips.models.subscription import SubscriptionInDB, SubscriptionStatus
from sharetips.models.wallet import TransactionType, WalletInDB, WalletTransactionInDB
from sharetips.services import wallet_service
from sharetips.services.match_repository import match_repository
from sharetips.services.notification_service import NotificationService


@pytest.mark.asyncio
async def test_match_after_score_update(fake_db):
    match = await add_match(fake_db, status="live")

    await match_repository.apply_score_update(
        match["_id"],
        {"status": "finished", "home_score": 2, "away_score": 1, "updated_at": T0},
    )

    stored = MatchInDB.model_validate(await fake_db.matches.find_one({"_id": match["_id"]}))
    assert stored.status == MatchStatus.finished
    assert (stored.home_score, stored.away_score) == (2, 1)


@pytest.mark.asyncio
async def test_wallet_and_ledger_entry(fake_db):
    await wallet_service.credit_win("buyer-1", "ticket-1", 2500, "Winnings for ticket Saturday combo")

    wallet = WalletInDB.model_validate(await fake_db.wallets.find_one({"user_id": "buyer-1"}))
    assert wallet.balance_cents == 2500
    assert wallet.posted_refs == []

    entry = WalletTransactionInDB.model_validate(
        await fake_db.wallet_transactions.find_one({"user_id": "buyer-1"})
    )
    assert entry.type == TransactionType.win
    assert entry.balance_after_cents == 2500
    assert entry.reference_id == "ticket-1"


@pytest.mark.asyncio
async def test_subscription_fixture(fake_db):
    doc = await add_subscription(fake_db, "sub-1", "tipster-1", T0 + timedelta(days=3))

    stored = SubscriptionInDB.model_validate(doc)
    assert stored.status == SubscriptionStatus.active
    assert not (stored.notified_expiring_j3 or stored.notified_expiring_j1 or stored.notified_expired)


@pytest.mark.asyncio
async def test_notification_is_stored_with_plain_type(fake_db):
    await NotificationService().notify_user(
        "user-1", NotificationType.ticket_won, "Ticket won", "kingtips's ticket is a winner!",
        {"ticket_id": "t-1", "tipster_id": "tipster-1"},
    )

    raw = await fake_db.notifications.find_one({"user_id": "user-1"})
    assert raw["type"] == "ticket_won"
    assert type(raw["type"]) is str
    assert NotificationInDB.model_validate(raw).is_read is False
