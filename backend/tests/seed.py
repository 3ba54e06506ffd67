"""
backend/tests/seed.py

Purpose:
    Document builders for engine tests (matches, tickets, purchases,
    subscriptions, users) written straight into the fake database.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from bson import ObjectId

T0 = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)


async def add_match(db, *, status="scheduled", home_score=None, away_score=None,
                    start_time=T0, home_team="Arsenal", away_team="Chelsea",
                    external_id=None, sport_key="soccer_epl", **extra) -> dict:
    doc = {
        "_id": ObjectId(),
        "external_id": external_id or f"evt-{ObjectId()}",
        "sport_code": "FOOTBALL",
        "sport_key": sport_key,
        "home_team": home_team,
        "away_team": away_team,
        "start_time": start_time,
        "status": status,
        "home_score": home_score,
        "away_score": away_score,
        "created_at": start_time - timedelta(days=3),
        "updated_at": start_time - timedelta(days=3),
        **extra,
    }
    await db.matches.insert_one(doc)
    return doc


def selection(match: dict | str, market_type="h2h", label="Home", odds=2.0) -> dict:
    match_id = match if isinstance(match, str) else str(match["_id"])
    return {
        "match_id": match_id,
        "market_type": market_type,
        "selection_label": label,
        "odds": odds,
        "match_label": "Arsenal vs Chelsea",
    }


async def add_ticket(db, selections: list[dict], *, status="locked", creator_id="tipster-1",
                     price_cents=1000, avg_odds=2.0, first_match_time=T0, **extra) -> dict:
    doc = {
        "_id": ObjectId(),
        "creator_id": creator_id,
        "title": "Saturday combo",
        "is_public": True,
        "price_cents": price_cents,
        "selections": selections,
        "avg_odds": avg_odds,
        "first_match_time": first_match_time,
        "status": status,
        "result": "pending",
        "payout_state": None,
        "notify_state": None,
        "deleted_at": None,
        "created_at": first_match_time - timedelta(days=1),
        "updated_at": first_match_time - timedelta(days=1),
        **extra,
    }
    await db.tickets.insert_one(doc)
    return doc


async def add_purchase(db, ticket: dict, buyer_id: str, price_cents: int | None = None) -> dict:
    doc = {
        "ticket_id": str(ticket["_id"]),
        "buyer_id": buyer_id,
        "price_cents": ticket["price_cents"] if price_cents is None else price_cents,
        "created_at": T0 - timedelta(hours=5),
    }
    await db.ticket_purchases.insert_one(doc)
    return doc


async def add_user(db, username: str, email: str | None = None) -> str:
    user_id = ObjectId()
    await db.users.insert_one({"_id": user_id, "username": username, "email": email})
    return str(user_id)


async def add_subscription(db, subscriber_id: str, tipster_id: str, end_date: datetime,
                           status="active", **flags) -> dict:
    doc = {
        "_id": ObjectId(),
        "subscriber_id": subscriber_id,
        "tipster_id": tipster_id,
        "price_cents": 990,
        "start_date": end_date - timedelta(days=30),
        "end_date": end_date,
        "status": status,
        "notified_expiring_j3": False,
        "notified_expiring_j1": False,
        "notified_expired": False,
        "created_at": end_date - timedelta(days=30),
        **flags,
    }
    await db.subscriptions.insert_one(doc)
    return doc
