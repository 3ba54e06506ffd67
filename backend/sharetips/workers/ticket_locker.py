"""Ticket locking worker.

Locks every open ticket whose first match has kicked off, so it can no
longer be edited or sold. A single bulk update; overlapping runs are
harmless because the filter only matches open tickets.
"""

import logging
from datetime import datetime
from typing import Optional

from sharetips.monitoring.engine_metrics import METRIC_TICKETS_LOCKED
from sharetips.services.ticket_repository import TicketRepository, ticket_repository
from sharetips.utils import utcnow

logger = logging.getLogger("sharetips.ticket_locker")


async def lock_started_tickets(
    tickets: TicketRepository = ticket_repository,
    now: Optional[datetime] = None,
) -> int:
    """Lock started tickets. Returns the number of tickets locked."""
    now = now or utcnow()
    locked = await tickets.lock_started(now)
    if locked:
        METRIC_TICKETS_LOCKED.inc(locked)
        logger.info("Locked %d ticket(s) whose first match has started", locked)
    return locked


async def run() -> dict:
    """Scheduler entry point."""
    return {"locked": await lock_started_tickets()}
