from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class TicketStatus(str, Enum):
    open = "open"          # Purchasable, no match started yet
    locked = "locked"      # First match started, awaiting results
    finished = "finished"  # Settled, result is final


class TicketResult(str, Enum):
    pending = "pending"
    win = "win"
    lose = "lose"


class PayoutState(str, Enum):
    none = "none"            # Lost ticket, nothing to post
    pending = "pending"      # Won, buyer credits not all confirmed yet
    completed = "completed"


class NotifyState(str, Enum):
    pending = "pending"
    sent = "sent"


class SelectionInDB(BaseModel):
    """One pick inside a ticket, frozen at creation time.

    `match_id` is a value reference: the label snapshot keeps historical
    tickets readable if match metadata changes later.
    """
    match_id: str
    market_type: str                  # h2h | 1x2 | totals | double_chance | btts
    selection_label: str              # "Home", "Over 2.5", "1X", "Yes", "Arsenal"
    odds: float = Field(gt=1.0)
    match_label: Optional[str] = None  # "Arsenal vs Chelsea"


class TicketInDB(BaseModel):
    """Ticket document as stored in MongoDB."""
    creator_id: str
    title: str
    is_public: bool = True
    price_cents: int = 0
    selections: List[SelectionInDB]
    avg_odds: float
    first_match_time: datetime
    status: TicketStatus = TicketStatus.open
    result: TicketResult = TicketResult.pending
    payout_state: Optional[PayoutState] = None
    notify_state: Optional[NotifyState] = None
    locked_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TicketPurchaseInDB(BaseModel):
    """Immutable purchase record; the buyer list for settlement."""
    ticket_id: str
    buyer_id: str
    price_cents: int
    created_at: datetime
