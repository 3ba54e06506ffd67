"""
backend/sharetips/database.py

Purpose:
    MongoDB connection bootstrap and index management for the collections
    touched by the settlement engine. The unique ledger index is the last line
    of defence against double payouts.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - sharetips.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, OperationFailure

from sharetips.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("sharetips.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
        tz_aware=True,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Matches ----
    await db.matches.create_index("external_id", unique=True, sparse=True)
    await db.matches.create_index([("sport_key", 1), ("status", 1)])
    await db.matches.create_index([("status", 1), ("start_time", 1)])

    # ---- Tickets ----
    # Locking scan: open tickets whose first match has started
    await db.tickets.create_index([("status", 1), ("first_match_time", 1)])
    # Settlement scan + recovery pass
    await db.tickets.create_index([("status", 1), ("deleted_at", 1)])
    await db.tickets.create_index([("status", 1), ("payout_state", 1)])
    await db.tickets.create_index([("status", 1), ("notify_state", 1)])
    await db.tickets.create_index("selections.match_id")
    await db.tickets.create_index([("creator_id", 1), ("created_at", -1)])

    # ---- Purchases ----
    await db.ticket_purchases.create_index(
        [("ticket_id", 1), ("buyer_id", 1)], unique=True,
    )
    await db.ticket_purchases.create_index("buyer_id")

    # ---- Wallets ----
    await db.wallets.create_index("user_id", unique=True)
    await db.wallet_transactions.create_index([("wallet_id", 1), ("created_at", -1)])
    try:
        # One win per (ticket, buyer)
        await db.wallet_transactions.create_index(
            [("type", 1), ("reference_id", 1), ("user_id", 1)],
            unique=True,
            partialFilterExpression={"type": "win"},
            name="win_once_per_reference",
        )
    except (DuplicateKeyError, OperationFailure) as exc:
        logger.error(
            "Could not create unique win ledger index (duplicate data?): %s", exc,
        )

    # ---- Subscriptions ----
    await db.subscriptions.create_index([("status", 1), ("end_date", 1)])
    await db.subscriptions.create_index([("tipster_id", 1), ("status", 1)])
    await db.subscriptions.create_index("subscriber_id")

    # ---- Notifications ----
    await db.notifications.create_index([("user_id", 1), ("created_at", -1)])
    await db.notifications.create_index(
        [("user_id", 1), ("type", 1), ("data_key", 1), ("created_at", -1)]
    )
    await db.notification_preferences.create_index("user_id", unique=True)

    # ---- Users ----
    await db.users.create_index("email", unique=True, sparse=True)

    logger.info("MongoDB indexes ensured")
