from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class NotificationType(str, Enum):
    new_ticket = "new_ticket"
    match_start = "match_start"
    ticket_won = "ticket_won"
    ticket_lost = "ticket_lost"
    subscription_expire = "subscription_expire"


# Preference switch that governs each notification type
PREFERENCE_FIELD = {
    NotificationType.new_ticket: "new_ticket",
    NotificationType.match_start: "match_start",
    NotificationType.ticket_won: "ticket_result",
    NotificationType.ticket_lost: "ticket_result",
    NotificationType.subscription_expire: "subscription_expire",
}


class NotificationInDB(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    type: NotificationType
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    data_key: Optional[str] = None  # canonical JSON of data, duplicate lookup
    is_read: bool = False
    created_at: datetime
