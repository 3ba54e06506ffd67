"""Wallet ledger: idempotent balance credits with an append-only transaction log.

A settlement credit touches two documents (ledger entry, wallet balance)
without a multi-document transaction. The ledger entry is written first
and drives the rest:

1. Upsert the entry as ``pending``, keyed on (type, reference_id, user_id)
   and backed by a unique partial index.
2. Increment the balance only if the posting key is absent from the
   wallet's ``posted_refs``, pushing the key in the same atomic update.
3. Mark the entry ``completed`` with the resulting balance.
4. Pull the key from ``posted_refs``.

A completed entry means the balance was moved, so ``posted_refs`` only
has to remember credits still in flight. Re-running a credit after a
crash at any step finishes the missing steps and never applies the amount
twice.
"""

import logging
from decimal import ROUND_FLOOR, Decimal
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import sharetips.database as _db
from sharetips.models.wallet import TransactionStatus, TransactionType, WalletInDB
from sharetips.monitoring.engine_metrics import METRIC_WALLET_CREDITS
from sharetips.utils import utcnow

logger = logging.getLogger("sharetips.wallet_service")

CREDIT_POSTED = "posted"
CREDIT_DUPLICATE = "duplicate"


def calculate_winnings_cents(price_cents: int, avg_odds: float) -> int:
    """floor(price paid × average odds), computed in decimal to avoid float drift."""
    amount = Decimal(int(price_cents)) * Decimal(str(avg_odds))
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))


def posting_key(tx_type: TransactionType, reference_id: str) -> str:
    return f"{tx_type.value}:{reference_id}"


async def get_or_create_wallet(user_id: str) -> dict:
    """Get existing wallet or create an empty one."""
    now = utcnow()
    return await _db.db.wallets.find_one_and_update(
        {"user_id": user_id},
        {"$setOnInsert": WalletInDB(user_id=user_id, created_at=now, updated_at=now).model_dump()},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


async def credit_win(
    user_id: str, ticket_id: str, amount_cents: int, description: str,
) -> str:
    """Credit ticket winnings to a buyer exactly once.

    Returns ``"posted"`` when this call moved the balance and ``"duplicate"``
    when the credit had already been applied by an earlier run.
    """
    key = posting_key(TransactionType.win, ticket_id)
    wallet = await get_or_create_wallet(user_id)
    entry = await _open_entry(
        wallet_id=str(wallet["_id"]),
        user_id=user_id,
        tx_type=TransactionType.win,
        amount_cents=amount_cents,
        reference_id=ticket_id,
        description=description,
    )

    if entry["status"] == TransactionStatus.completed.value:
        # Interrupted before the key was released
        await _release_ref(wallet["_id"], key)
        logger.debug("Win credit already applied: user=%s ticket=%s", user_id, ticket_id)
        METRIC_WALLET_CREDITS.labels(outcome=CREDIT_DUPLICATE).inc()
        return CREDIT_DUPLICATE

    # The first run fixed the amount; a rerun never changes it
    amount_cents = entry["amount_cents"]
    balance_after = await _apply_to_balance(wallet["_id"], key, amount_cents)
    if balance_after is not None:
        outcome = CREDIT_POSTED
    else:
        outcome = CREDIT_DUPLICATE
        current = await _db.db.wallets.find_one({"_id": wallet["_id"]})
        balance_after = (current or wallet)["balance_cents"]

    await _complete_entry(entry["_id"], balance_after)
    await _release_ref(wallet["_id"], key)

    if outcome == CREDIT_POSTED:
        logger.info(
            "Credited %d cents to user %s for winning ticket %s",
            amount_cents, user_id, ticket_id,
        )
    else:
        logger.warning(
            "Completed interrupted win credit for user %s ticket %s", user_id, ticket_id,
        )

    METRIC_WALLET_CREDITS.labels(outcome=outcome).inc()
    return outcome


async def get_wallet_transactions(
    wallet_id: str, limit: int = 50, skip: int = 0,
) -> list[dict]:
    """Get transaction history for a wallet."""
    return await _db.db.wallet_transactions.find(
        {"wallet_id": wallet_id},
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)


async def _open_entry(
    wallet_id: str, user_id: str,
    tx_type: TransactionType, amount_cents: int,
    description: str, reference_id: Optional[str] = None,
) -> dict:
    """Ledger record for (type, reference, user), created as pending if absent."""
    query = {"type": tx_type.value, "reference_id": reference_id, "user_id": user_id}
    try:
        return await _db.db.wallet_transactions.find_one_and_update(
            query,
            {"$setOnInsert": {
                "wallet_id": wallet_id,
                "amount_cents": amount_cents,
                "balance_after_cents": None,
                "status": TransactionStatus.pending.value,
                "description": description,
                "created_at": utcnow(),
            }},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # Concurrent upsert from another instance won the race
        return await _db.db.wallet_transactions.find_one(query)


async def _apply_to_balance(wallet_oid, key: str, amount_cents: int) -> Optional[int]:
    """Move the balance unless ``key`` is in flight already. Returns the new balance."""
    updated = await _db.db.wallets.find_one_and_update(
        {"_id": wallet_oid, "posted_refs": {"$ne": key}},
        {
            "$inc": {"balance_cents": amount_cents, "total_won_cents": amount_cents},
            "$push": {"posted_refs": key},
            "$set": {"updated_at": utcnow()},
        },
        return_document=ReturnDocument.AFTER,
    )
    return updated["balance_cents"] if updated else None


async def _complete_entry(entry_id, balance_after_cents: int) -> None:
    await _db.db.wallet_transactions.update_one(
        {"_id": entry_id, "status": TransactionStatus.pending.value},
        {"$set": {
            "status": TransactionStatus.completed.value,
            "balance_after_cents": balance_after_cents,
        }},
    )


async def _release_ref(wallet_oid, key: str) -> None:
    await _db.db.wallets.update_one({"_id": wallet_oid}, {"$pull": {"posted_refs": key}})
