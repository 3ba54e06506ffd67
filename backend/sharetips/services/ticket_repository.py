"""
backend/sharetips/services/ticket_repository.py

Purpose:
    Persistence access for tickets and their purchases. Every status write is
    a compare-and-set on the previous status, so the lifecycle
    open -> locked -> finished can only move forward even when several
    engine instances run the same job.

Dependencies:
    - sharetips.database
    - sharetips.models.ticket
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, AsyncIterator, Iterable

from bson import ObjectId
from pymongo import ReturnDocument

import sharetips.database as _db
from sharetips.models.ticket import (
    NotifyState,
    PayoutState,
    SelectionInDB,
    TicketInDB,
    TicketPurchaseInDB,
    TicketResult,
    TicketStatus,
)
from sharetips.services.match_repository import match_repository
from sharetips.utils import utcnow


async def _iter_tickets(query: dict[str, Any], page_size: int) -> AsyncIterator[dict[str, Any]]:
    """Every ticket matching `query`, fetched in `_id` order one page at a time.

    Paging resumes after the last seen id, so tickets that leave the
    query while being processed never shift the remaining pages.
    """
    page_size = max(1, page_size)
    last_id = None
    while True:
        page_query = dict(query)
        if last_id is not None:
            page_query["_id"] = {"$gt": last_id}
        page = await _db.db.tickets.find(page_query).sort("_id", 1).limit(page_size).to_list(
            length=page_size,
        )
        for ticket in page:
            yield ticket
        if len(page) < page_size:
            return
        last_id = page[-1]["_id"]


def calculate_average_odds(odds: Iterable[float]) -> float:
    """Mean of selection odds rounded to 2 decimals (0 for an empty ticket)."""
    values = [Decimal(str(o)) for o in odds]
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return float(mean.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class TicketRepository:
    async def create_ticket(
        self,
        creator_id: str,
        title: str,
        selections: list[dict[str, Any]],
        *,
        price_cents: int = 0,
        is_public: bool = True,
    ) -> dict[str, Any]:
        """Insert a ticket, freezing selections, average odds and first kickoff.

        Raises ValueError when a selection references an unknown match.
        """
        parsed = [SelectionInDB(**s) for s in selections]
        if not parsed:
            raise ValueError("A ticket needs at least one selection.")
        matches = await match_repository.get_by_ids(s.match_id for s in parsed)
        missing = [s.match_id for s in parsed if s.match_id not in matches]
        if missing:
            raise ValueError(f"Unknown match ids: {', '.join(missing)}")

        for sel in parsed:
            if not sel.match_label:
                m = matches[sel.match_id]
                sel.match_label = f"{m.get('home_team', '?')} vs {m.get('away_team', '?')}"

        now = utcnow()
        ticket = TicketInDB(
            creator_id=creator_id,
            title=title,
            is_public=is_public,
            price_cents=price_cents,
            selections=parsed,
            avg_odds=calculate_average_odds(s.odds for s in parsed),
            first_match_time=min(m["start_time"] for m in matches.values()),
            created_at=now,
            updated_at=now,
        )
        doc = ticket.model_dump(mode="python")
        doc["status"] = ticket.status.value
        doc["result"] = ticket.result.value
        result = await _db.db.tickets.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def add_purchase(self, ticket_id: ObjectId, buyer_id: str, price_cents: int) -> dict[str, Any]:
        purchase = TicketPurchaseInDB(
            ticket_id=str(ticket_id),
            buyer_id=buyer_id,
            price_cents=price_cents,
            created_at=utcnow(),
        ).model_dump()
        result = await _db.db.ticket_purchases.insert_one(purchase)
        purchase["_id"] = result.inserted_id
        return purchase

    async def get(self, ticket_id: ObjectId) -> dict[str, Any] | None:
        return await _db.db.tickets.find_one({"_id": ticket_id})

    async def lock_started(self, now: datetime) -> int:
        """open -> locked for every live ticket whose first match has started."""
        result = await _db.db.tickets.update_many(
            {
                "status": TicketStatus.open.value,
                "deleted_at": None,
                "first_match_time": {"$lte": now},
            },
            {"$set": {
                "status": TicketStatus.locked.value,
                "locked_at": now,
                "updated_at": now,
            }},
        )
        return result.modified_count

    def iter_locked(self, page_size: int) -> AsyncIterator[dict[str, Any]]:
        return _iter_tickets(
            {"status": TicketStatus.locked.value, "deleted_at": None}, page_size,
        )

    async def locked_match_ids(self) -> set[str]:
        ids = await _db.db.tickets.distinct(
            "selections.match_id",
            {"status": TicketStatus.locked.value, "deleted_at": None},
        )
        return {str(i) for i in ids}

    async def finish(
        self, ticket_id: ObjectId, result: TicketResult, now: datetime,
    ) -> dict[str, Any] | None:
        """Compare-and-set locked -> finished. Returns the updated ticket, or
        None when another run already settled it."""
        payout_state = PayoutState.pending if result == TicketResult.win else PayoutState.none
        return await _db.db.tickets.find_one_and_update(
            {"_id": ticket_id, "status": TicketStatus.locked.value},
            {"$set": {
                "status": TicketStatus.finished.value,
                "result": result.value,
                "payout_state": payout_state.value,
                "notify_state": NotifyState.pending.value,
                "finished_at": now,
                "updated_at": now,
            }},
            return_document=ReturnDocument.AFTER,
        )

    def iter_pending_payouts(self, page_size: int) -> AsyncIterator[dict[str, Any]]:
        return _iter_tickets(
            {"status": TicketStatus.finished.value, "payout_state": PayoutState.pending.value},
            page_size,
        )

    async def mark_payout_completed(self, ticket_id: ObjectId) -> None:
        await _db.db.tickets.update_one(
            {"_id": ticket_id, "payout_state": PayoutState.pending.value},
            {"$set": {"payout_state": PayoutState.completed.value, "updated_at": utcnow()}},
        )

    def iter_pending_notifications(self, page_size: int) -> AsyncIterator[dict[str, Any]]:
        return _iter_tickets(
            {"status": TicketStatus.finished.value, "notify_state": NotifyState.pending.value},
            page_size,
        )

    async def claim_notification(self, ticket_id: ObjectId) -> bool:
        """pending -> sent. Only the caller that flips the flag may notify."""
        result = await _db.db.tickets.update_one(
            {"_id": ticket_id, "notify_state": NotifyState.pending.value},
            {"$set": {"notify_state": NotifyState.sent.value, "updated_at": utcnow()}},
        )
        return result.modified_count == 1

    async def purchases_for(self, ticket_id: ObjectId) -> list[dict[str, Any]]:
        return await _db.db.ticket_purchases.find(
            {"ticket_id": str(ticket_id)},
        ).to_list(length=100_000)


ticket_repository = TicketRepository()
