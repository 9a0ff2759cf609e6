"""
Prediction Pool Escrow & Settlement Core

This package provides:
- A ledger of user balances with an append-only journal
- Pools, mini-pools and peer-to-peer offers: open → locked → settled
- Atomic escrow of stakes and exactly-once settlement of pots
- Admin-only locking and settlement
"""

from .errors import WageringError
from .models import (
    EventStatus,
    OfferStatus,
    PoolType,
    Event,
    Entry,
    MiniPool,
    MiniPoolEntry,
    P2POffer,
    LedgerEntry,
    UserAccount,
)
from .service import WageringService

__all__ = [
    "WageringError",
    "EventStatus",
    "OfferStatus",
    "PoolType",
    "Event",
    "Entry",
    "MiniPool",
    "MiniPoolEntry",
    "P2POffer",
    "LedgerEntry",
    "UserAccount",
    "WageringService",
]
