"""Wallet models: balance tracking and the append-only ledger."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class TransactionType(str, Enum):
    deposit = "deposit"
    purchase = "purchase"
    sale = "sale"
    commission = "commission"
    win = "win"
    withdraw_request = "withdraw_request"
    withdraw_approved = "withdraw_approved"
    withdraw_rejected = "withdraw_rejected"
    refund = "refund"
    subscription_purchase = "subscription_purchase"
    subscription_sale = "subscription_sale"


class TransactionStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class WalletInDB(BaseModel):
    """One wallet per user. Amounts are integer cents."""
    user_id: str
    balance_cents: int = 0
    total_won_cents: int = 0
    posted_refs: List[str] = []   # keys of credits applied but not yet completed in the ledger
    created_at: datetime
    updated_at: datetime


class WalletTransactionInDB(BaseModel):
    """Immutable audit trail for every balance movement."""
    wallet_id: str
    user_id: str
    type: TransactionType
    amount_cents: int  # positive = credit, negative = debit
    balance_after_cents: Optional[int] = None  # set once the credit completes
    reference_id: Optional[str] = None  # ticket id for wins
    status: TransactionStatus = TransactionStatus.completed
    description: str = ""
    created_at: datetime
