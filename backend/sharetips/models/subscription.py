from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class SubscriptionStatus(str, Enum):
    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class SubscriptionInDB(BaseModel):
    """Subscriber -> tipster access window.

    The three notified_* flags are one-shot: claimed before the notice is sent,
    released only when the notice could not be stored.
    """
    subscriber_id: str
    tipster_id: str
    price_cents: int = 0
    start_date: datetime
    end_date: datetime
    status: SubscriptionStatus = SubscriptionStatus.active
    notified_expiring_j3: bool = False
    notified_expiring_j1: bool = False
    notified_expired: bool = False
    created_at: datetime
