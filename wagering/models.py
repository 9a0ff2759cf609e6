from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from .errors import InvalidAmountError

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce a value to a two-place Decimal, rejecting sub-cent precision."""
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise InvalidAmountError(f"{value!r} is not a valid amount")
        quantized = amount.quantize(CENT, rounding=ROUND_DOWN)
    except ArithmeticError:
        raise InvalidAmountError(f"{value!r} is not a valid amount")
    if quantized != amount:
        raise InvalidAmountError(f"Amount {value} has more than two decimal places")
    return quantized


class EntryType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class LedgerReason(str, Enum):
    ENTRY_STAKE = "entry_stake"
    MINI_POOL_STAKE = "mini_pool_stake"
    OFFER_STAKE = "offer_stake"
    MATCH_STAKE = "match_stake"
    POOL_PAYOUT = "pool_payout"
    MINI_POOL_PAYOUT = "mini_pool_payout"
    OFFER_PAYOUT = "offer_payout"
    OFFER_REFUND = "offer_refund"


class PoolType(str, Enum):
    POOL = "pool"
    ONE_VS_ONE = "1v1"


class EventStatus(str, Enum):
    OPEN = "open"
    LOCKED = "locked"
    SETTLED = "settled"


class MiniPoolStatus(str, Enum):
    OPEN = "open"
    SETTLED = "settled"


class OfferStatus(str, Enum):
    OPEN = "open"
    MATCHED = "matched"
    SETTLED = "settled"
    REFUNDED = "refunded"


# Records

class UserAccount(BaseModel):
    id: UUID
    username: str
    balance: Decimal
    is_admin: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Event(BaseModel):
    id: UUID
    creator_id: UUID
    title: str
    description: str = ""
    stake_amount: Optional[Decimal] = None
    pool_type: PoolType = PoolType.POOL
    outcomes: list[str]
    status: EventStatus = EventStatus.OPEN
    max_entries: Optional[int] = None
    winning_outcome: Optional[str] = None
    created_at: datetime
    locked_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def is_open(self) -> bool:
        return self.status == EventStatus.OPEN

    def can_lock(self) -> bool:
        return self.status == EventStatus.OPEN

    def can_settle(self) -> bool:
        return self.status == EventStatus.LOCKED

    @property
    def is_fixed_stake(self) -> bool:
        return self.stake_amount is not None


class Entry(BaseModel):
    id: UUID
    event_id: UUID
    user_id: UUID
    chosen_outcome: str
    stake_amount: Decimal
    is_winner: bool = False
    payout: Decimal = Decimal("0.00")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MiniPool(BaseModel):
    id: UUID
    event_id: UUID
    creator_id: UUID
    name: str
    min_stake: Decimal
    status: MiniPoolStatus = MiniPoolStatus.OPEN
    created_at: datetime
    settled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MiniPoolEntry(BaseModel):
    id: UUID
    mini_pool_id: UUID
    user_id: UUID
    chosen_outcome: str
    stake_amount: Decimal
    is_winner: bool = False
    payout: Decimal = Decimal("0.00")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class P2POffer(BaseModel):
    id: UUID
    event_id: UUID
    creator_id: UUID
    chosen_outcome: str
    stake_amount: Decimal
    min_match_amount: Decimal
    status: OfferStatus = OfferStatus.OPEN
    taker_id: Optional[UUID] = None
    taker_outcome: Optional[str] = None
    taker_stake: Optional[Decimal] = None
    winner_id: Optional[UUID] = None
    created_at: datetime
    matched_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def is_open(self) -> bool:
        return self.status == OfferStatus.OPEN

    @property
    def pot(self) -> Decimal:
        return self.stake_amount + (self.taker_stake or Decimal("0.00"))


class LedgerEntry(BaseModel):
    id: UUID
    user_id: UUID
    entry_type: EntryType
    amount: Decimal
    balance_after: Decimal
    reason: LedgerReason
    reference_id: Optional[UUID] = None
    description: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Requests

class RegisterUserRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)


class CreateEventRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    outcomes: list[str] = Field(default_factory=lambda: ["Yes", "No"])
    pool_type: PoolType = PoolType.POOL
    stake_amount: Optional[Decimal] = Field(default=None, description="Fixed stake; omit for variable stakes")
    max_entries: Optional[int] = Field(default=None, ge=2)
    creator_outcome: Optional[str] = Field(default=None, description="Join the new event on this outcome")
    creator_stake: Optional[Decimal] = Field(default=None, description="Creator stake on a variable-stake event")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Will it rain in Nairobi on Friday?",
            "description": "Settled from the KMD daily report",
            "outcomes": ["Yes", "No"],
            "pool_type": "pool",
            "stake_amount": 100.00,
            "creator_outcome": "Yes"
        }
    })


class JoinEventRequest(BaseModel):
    outcome: str
    stake_amount: Optional[Decimal] = None


class CreateMiniPoolRequest(BaseModel):
    name: str = Field(..., min_length=1)
    min_stake: Optional[Decimal] = None


class JoinMiniPoolRequest(BaseModel):
    outcome: str
    stake_amount: Decimal


class CreateOfferRequest(BaseModel):
    side: str = Field(..., description="Outcome the offer creator backs")
    stake_amount: Decimal
    min_match_amount: Optional[Decimal] = Field(default=None, description="Defaults to the full stake")


class MatchOfferRequest(BaseModel):
    stake_amount: Decimal
    outcome: Optional[str] = Field(default=None, description="Required when the event has more than two outcomes")


class SettleEventRequest(BaseModel):
    winning_outcome: str


# Responses

class UserBalance(BaseModel):
    user_id: UUID
    username: str
    current_balance: Decimal
    currency: str
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    current_balance: Decimal


class EventResponse(BaseModel):
    event: Event
    entry: Optional[Entry] = None
    message: str


class EntryResponse(BaseModel):
    entry: Entry
    ledger_entry: LedgerEntry
    message: str


class MiniPoolResponse(BaseModel):
    mini_pool: MiniPool
    message: str


class MiniPoolEntryResponse(BaseModel):
    entry: MiniPoolEntry
    ledger_entry: LedgerEntry
    message: str


class OfferResponse(BaseModel):
    offer: P2POffer
    ledger_entry: Optional[LedgerEntry] = None
    message: str


class EventDetail(BaseModel):
    event: Event
    entries: list[Entry]
    mini_pools: list[MiniPool]
    outcome_counts: dict[str, int]
    total_pot: Decimal


class MiniPoolDetail(BaseModel):
    mini_pool: MiniPool
    outcomes: list[str]
    entries: list[MiniPoolEntry]
    total_pot: Decimal


class Payout(BaseModel):
    user_id: UUID
    reference_id: UUID
    amount: Decimal


class PoolSettlement(BaseModel):
    pool_id: UUID
    is_mini_pool: bool = False
    total_pot: Decimal
    winner_count: int
    payout_per_winner: Decimal
    remainder: Decimal
    payouts: list[Payout]


class OfferSettlement(BaseModel):
    offer_id: UUID
    status: OfferStatus
    winner_id: Optional[UUID] = None
    payouts: list[Payout]


class SettlementReport(BaseModel):
    event: Event
    pools: list[PoolSettlement]
    offers: list[OfferSettlement]
    message: str
