"""
backend/tests/test_wallet_service.py

Purpose:
    Winnings arithmetic and exactly-once win credits, including credits
    interrupted between the ledger write and the balance update, or between
    the balance update and the ledger completion.

Dependencies:
    - sharetips.services.wallet_service
"""

from __future__ import annotations

import pytest
from pymongo.errors import DuplicateKeyError

import sharetips.database as _db
from sharetips.services import wallet_service
from sharetips.services.wallet_service import (
    CREDIT_DUPLICATE,
    CREDIT_POSTED,
    calculate_winnings_cents,
    credit_win,
    get_wallet_transactions,
)


async def _ensure_indexes(db):
    await db.wallets.create_index("user_id", unique=True)
    await db.wallet_transactions.create_index(
        [("type", 1), ("reference_id", 1), ("user_id", 1)],
        unique=True,
        partialFilterExpression={"type": "win"},
    )


def test_winnings_are_floored_in_decimal():
    assert calculate_winnings_cents(1000, 1.85) == 1850
    assert calculate_winnings_cents(999, 2.33) == 2327     # 2327.67
    assert calculate_winnings_cents(100, 1.15) == 115      # float 1.15 * 100 = 114.999...
    assert calculate_winnings_cents(0, 3.0) == 0


@pytest.mark.asyncio
async def test_credit_win_posts_once(fake_db):
    await _ensure_indexes(fake_db)

    first = await credit_win("buyer-1", "ticket-1", 1850, "Winnings for ticket Sunday combo")
    second = await credit_win("buyer-1", "ticket-1", 1850, "Winnings for ticket Sunday combo")

    assert first == CREDIT_POSTED
    assert second == CREDIT_DUPLICATE

    wallet = await fake_db.wallets.find_one({"user_id": "buyer-1"})
    assert wallet["balance_cents"] == 1850
    assert wallet["total_won_cents"] == 1850
    assert wallet["posted_refs"] == []

    txs = await get_wallet_transactions(str(wallet["_id"]))
    assert len(txs) == 1
    assert txs[0]["type"] == "win"
    assert txs[0]["reference_id"] == "ticket-1"
    assert txs[0]["amount_cents"] == 1850
    assert txs[0]["balance_after_cents"] == 1850
    assert txs[0]["status"] == "completed"


@pytest.mark.asyncio
async def test_different_tickets_accumulate(fake_db):
    await _ensure_indexes(fake_db)

    await credit_win("buyer-1", "ticket-1", 500, "a")
    await credit_win("buyer-1", "ticket-2", 700, "b")
    await credit_win("buyer-2", "ticket-1", 300, "c")

    w1 = await fake_db.wallets.find_one({"user_id": "buyer-1"})
    w2 = await fake_db.wallets.find_one({"user_id": "buyer-2"})
    assert w1["balance_cents"] == 1200
    assert w2["balance_cents"] == 300
    assert await fake_db.wallet_transactions.count_documents({"type": "win"}) == 3


@pytest.mark.asyncio
async def test_interrupted_credit_is_completed_without_second_credit(fake_db, caplog, monkeypatch):
    await _ensure_indexes(fake_db)

    calls = {"n": 0}
    original = wallet_service._complete_entry

    async def _crash_once(entry_id, balance_after_cents):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("process died after balance update")
        return await original(entry_id, balance_after_cents)

    monkeypatch.setattr(wallet_service, "_complete_entry", _crash_once)
    with pytest.raises(RuntimeError):
        await credit_win("buyer-1", "ticket-9", 2000, "retry me")

    entry = await fake_db.wallet_transactions.find_one({"reference_id": "ticket-9"})
    assert entry["status"] == "pending"
    assert (await fake_db.wallets.find_one({"user_id": "buyer-1"}))["posted_refs"] == ["win:ticket-9"]

    outcome = await credit_win("buyer-1", "ticket-9", 2000, "retry me")

    assert outcome == CREDIT_DUPLICATE
    wallet = await fake_db.wallets.find_one({"user_id": "buyer-1"})
    assert wallet["balance_cents"] == 2000
    assert wallet["posted_refs"] == []
    entry = await fake_db.wallet_transactions.find_one({"reference_id": "ticket-9"})
    assert entry["status"] == "completed"
    assert entry["balance_after_cents"] == 2000
    assert "Completed interrupted win credit" in caplog.text


@pytest.mark.asyncio
async def test_interrupted_credit_survives_many_later_wins(fake_db, monkeypatch):
    await _ensure_indexes(fake_db)
    original = wallet_service._complete_entry

    async def _crash(entry_id, balance_after_cents):
        raise RuntimeError("process died after balance update")

    monkeypatch.setattr(wallet_service, "_complete_entry", _crash)
    with pytest.raises(RuntimeError):
        await credit_win("buyer-1", "stuck", 1000, "x")
    monkeypatch.setattr(wallet_service, "_complete_entry", original)

    for i in range(600):
        await credit_win("buyer-1", f"t{i}", 1, "x")
    outcome = await credit_win("buyer-1", "stuck", 1000, "x")

    assert outcome == CREDIT_DUPLICATE
    wallet = await fake_db.wallets.find_one({"user_id": "buyer-1"})
    assert wallet["balance_cents"] == 1000 + 600
    assert wallet["posted_refs"] == []


@pytest.mark.asyncio
async def test_crash_before_balance_update_posts_on_rerun(fake_db, monkeypatch):
    await _ensure_indexes(fake_db)
    original = wallet_service._apply_to_balance

    async def _crash(wallet_oid, key, amount_cents):
        raise RuntimeError("process died after ledger write")

    monkeypatch.setattr(wallet_service, "_apply_to_balance", _crash)
    with pytest.raises(RuntimeError):
        await credit_win("buyer-1", "ticket-3", 700, "x")
    monkeypatch.setattr(wallet_service, "_apply_to_balance", original)

    # Rerun keeps the amount fixed by the first attempt
    assert await credit_win("buyer-1", "ticket-3", 999, "x") == CREDIT_POSTED
    wallet = await fake_db.wallets.find_one({"user_id": "buyer-1"})
    assert wallet["balance_cents"] == 700
    assert await fake_db.wallet_transactions.count_documents({"reference_id": "ticket-3"}) == 1


@pytest.mark.asyncio
async def test_unique_ledger_index_rejects_second_win(fake_db):
    await _ensure_indexes(fake_db)
    doc = {"type": "win", "reference_id": "t1", "user_id": "u1", "amount_cents": 1}
    await _db.db.wallet_transactions.insert_one(dict(doc))
    with pytest.raises(DuplicateKeyError):
        await _db.db.wallet_transactions.insert_one(dict(doc))
