"""Profile model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from typing import TypedDict
from uuid import UUID


class Profile(TypedDict):
    """Profile table row representation.

    Holds the two cashback buckets for a user. Both are mutated only by
    the order ledger and the withdrawal workflow.
    """

    id: UUID
    email: str | None
    full_name: str | None
    role: str
    available_balance: Decimal
    pending_balance: Decimal
    created_at: datetime
    updated_at: datetime


class BalanceSnapshot(TypedDict):
    """Current balance buckets for one user."""

    available_balance: Decimal
    pending_balance: Decimal
