"""
backend/sharetips/workers/settlement.py

Purpose:
    Settlement worker. Resolves locked tickets once all their matches are
    finished, credits winning buyers and notifies buyers and subscribers.

    Each cycle:
        1. Recovery: finish payouts and notifications left pending by an
           interrupted run.
        2. Settle: locked -> finished (compare-and-set), credit, notify.

    Every step is idempotent on its own, so a crash at any point is
    resumed by the next cycle without double credits or duplicate
    notifications.

Dependencies:
    - sharetips.services.market_rules
    - sharetips.services.ticket_repository
    - sharetips.services.wallet_service
    - sharetips.services.notification_service
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from pymongo.errors import PyMongoError

from sharetips.config import settings
from sharetips.models.match import MatchStatus
from sharetips.models.notification import NotificationType
from sharetips.models.ticket import PayoutState, TicketResult
from sharetips.monitoring.engine_metrics import METRIC_TICKET_ERRORS, METRIC_TICKETS_SETTLED
from sharetips.services import wallet_service
from sharetips.services.market_rules import is_selection_correct
from sharetips.services.match_repository import MatchRepository, match_repository
from sharetips.services.notification_service import NotificationService, notification_service
from sharetips.services.subscription_repository import (
    SubscriptionRepository,
    subscription_repository,
)
from sharetips.services.ticket_repository import TicketRepository, ticket_repository
from sharetips.services.user_repository import UserRepository, user_repository
from sharetips.utils import utcnow

logger = logging.getLogger("sharetips.settlement")


@dataclass
class SettlementResult:
    settled_win: int = 0
    settled_lose: int = 0
    still_pending: int = 0
    credits_posted: int = 0
    payouts_recovered: int = 0
    notifications_recovered: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def resolve_ticket(ticket: dict, matches: dict[str, dict]) -> Optional[TicketResult]:
    """Outcome of a locked ticket, or None while one of its matches is still running.

    Missing matches and finished matches without a score resolve their
    selection as incorrect. A ticket without selections loses.
    """
    selections = ticket.get("selections") or []
    for sel in selections:
        match = matches.get(str(sel.get("match_id")))
        if match is not None and match.get("status") != MatchStatus.finished.value:
            return None

    if not selections:
        logger.warning("Ticket %s has no selections, settling as lose", ticket.get("_id"))
        return TicketResult.lose

    for sel in selections:
        match_id = str(sel.get("match_id"))
        match = matches.get(match_id)
        if match is None:
            logger.warning("Match %s not found for ticket %s", match_id, ticket.get("_id"))
            return TicketResult.lose

        home, away = match.get("home_score"), match.get("away_score")
        if home is None or away is None:
            logger.warning("Match %s finished without a score (ticket %s)", match_id, ticket.get("_id"))
            return TicketResult.lose

        if not is_selection_correct(
            sel.get("market_type", ""), sel.get("selection_label", ""),
            home, away, match.get("home_team", ""), match.get("away_team", ""),
        ):
            logger.info(
                "Ticket %s lost on %r (%s) for match %s (%s-%s)",
                ticket.get("_id"), sel.get("selection_label"), sel.get("market_type"),
                match_id, home, away,
            )
            return TicketResult.lose

    return TicketResult.win


class SettlementJob:
    def __init__(
        self,
        tickets: TicketRepository = ticket_repository,
        matches: MatchRepository = match_repository,
        notifier: NotificationService = notification_service,
        subscriptions: SubscriptionRepository = subscription_repository,
        users: UserRepository = user_repository,
    ):
        self.tickets = tickets
        self.matches = matches
        self.notifier = notifier
        self.subscriptions = subscriptions
        self.users = users

    async def run(self, now: Optional[datetime] = None) -> SettlementResult:
        now = now or utcnow()
        result = SettlementResult()
        page_size = settings.SETTLEMENT_PAGE_SIZE

        await self._recover(result, page_size, now)

        async for ticket in self.tickets.iter_locked(page_size):
            try:
                await self._settle(ticket, result, now)
            except PyMongoError:
                raise
            except Exception:
                result.errors += 1
                METRIC_TICKET_ERRORS.inc()
                logger.exception("Settlement failed for ticket %s", ticket.get("_id"))

        if result.settled_win or result.settled_lose or result.errors:
            logger.info(
                "Settlement done: %d win, %d lose, %d still pending, %d credit(s), %d error(s)",
                result.settled_win, result.settled_lose, result.still_pending,
                result.credits_posted, result.errors,
            )
        return result

    async def _recover(self, result: SettlementResult, page_size: int, now: datetime) -> None:
        async for ticket in self.tickets.iter_pending_payouts(page_size):
            try:
                result.credits_posted += await self._pay_buyers(ticket)
                result.payouts_recovered += 1
            except PyMongoError:
                raise
            except Exception:
                result.errors += 1
                METRIC_TICKET_ERRORS.inc()
                logger.exception("Payout recovery failed for ticket %s", ticket.get("_id"))

        async for ticket in self.tickets.iter_pending_notifications(page_size):
            if ticket.get("payout_state") == PayoutState.pending.value:
                # Payout still incomplete, notify once it went through
                continue
            try:
                if await self._notify_result(ticket, now):
                    result.notifications_recovered += 1
            except PyMongoError:
                raise
            except Exception:
                result.errors += 1
                METRIC_TICKET_ERRORS.inc()
                logger.exception("Notification recovery failed for ticket %s", ticket.get("_id"))

        if result.payouts_recovered or result.notifications_recovered:
            logger.warning(
                "Recovered %d pending payout(s) and %d pending notification(s)",
                result.payouts_recovered, result.notifications_recovered,
            )

    async def _settle(self, ticket: dict, result: SettlementResult, now: datetime) -> None:
        match_ids = [str(s.get("match_id")) for s in ticket.get("selections") or []]
        matches = await self.matches.get_by_ids(match_ids)

        outcome = resolve_ticket(ticket, matches)
        if outcome is None:
            result.still_pending += 1
            return

        finished = await self.tickets.finish(ticket["_id"], outcome, now)
        if finished is None:
            logger.debug("Ticket %s already settled by another run", ticket["_id"])
            return

        METRIC_TICKETS_SETTLED.labels(result=outcome.value).inc()
        logger.info("Ticket %s finished with result: %s", ticket["_id"], outcome.value)
        if outcome == TicketResult.win:
            result.settled_win += 1
            result.credits_posted += await self._pay_buyers(finished)
        else:
            result.settled_lose += 1

        try:
            await self._notify_result(finished, now)
        except PyMongoError:
            raise
        except Exception:
            logger.exception("Result notification failed for ticket %s", ticket["_id"])

    async def _pay_buyers(self, ticket: dict) -> int:
        """Credit every buyer of a winning ticket. Returns credits newly posted."""
        ticket_id = str(ticket["_id"])
        avg_odds = ticket.get("avg_odds") or 0.0
        posted = 0
        for purchase in await self.tickets.purchases_for(ticket["_id"]):
            amount = wallet_service.calculate_winnings_cents(purchase["price_cents"], avg_odds)
            outcome = await wallet_service.credit_win(
                purchase["buyer_id"], ticket_id, amount,
                f"Winnings for ticket {ticket.get('title') or ticket_id}",
            )
            if outcome == wallet_service.CREDIT_POSTED:
                posted += 1
        await self.tickets.mark_payout_completed(ticket["_id"])
        return posted

    async def _notify_result(self, ticket: dict, now: datetime) -> bool:
        """Notify buyers and active subscribers once. False if already claimed."""
        if not await self.tickets.claim_notification(ticket["_id"]):
            return False

        is_win = ticket.get("result") == TicketResult.win.value
        creator_id = str(ticket.get("creator_id"))
        tipster_name = await self.users.get_username(creator_id, "A tipster")

        buyer_ids = [p["buyer_id"] for p in await self.tickets.purchases_for(ticket["_id"])]
        subscriber_ids = await self.subscriptions.active_subscriber_ids(creator_id, now)
        recipients = list(dict.fromkeys(buyer_ids + subscriber_ids))
        if not recipients:
            return True

        if is_win:
            ntype = NotificationType.ticket_won
            title = "Ticket won"
            message = f"{tipster_name}'s ticket is a winner!"
        else:
            ntype = NotificationType.ticket_lost
            title = "Ticket lost"
            message = f"{tipster_name}'s ticket did not come through."

        await self.notifier.notify_many(
            recipients, ntype, title, message,
            {"ticket_id": str(ticket["_id"]), "tipster_id": creator_id},
        )
        return True


settlement_job = SettlementJob()


async def run() -> dict:
    """Scheduler entry point."""
    return (await settlement_job.run()).as_dict()
