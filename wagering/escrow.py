"""
Escrow / matching engine.

Moves stakes from user balances into escrow when events are created and
joined, mini-pools are joined, and P2P offers are posted or matched. Every
operation is a single storage transaction: the preconditions are read inside
the same unit of work that debits the ledger and writes the entity.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .config import Config
from .errors import (
    BelowMinimumMatchError,
    DuplicateEntryError,
    EventFullError,
    EventNotOpenError,
    InvalidOutcomeError,
    InvalidStakeError,
    InvalidTransitionError,
    NotFoundError,
    OfferNotOpenError,
    SelfMatchError,
)
from .ledger import Ledger
from .logger import setup_logger
from .models import (
    CreateEventRequest,
    CreateMiniPoolRequest,
    CreateOfferRequest,
    Entry,
    EntryResponse,
    Event,
    EventResponse,
    EventStatus,
    JoinEventRequest,
    JoinMiniPoolRequest,
    LedgerEntry,
    LedgerReason,
    MatchOfferRequest,
    MiniPool,
    MiniPoolEntry,
    MiniPoolEntryResponse,
    MiniPoolResponse,
    MiniPoolStatus,
    OfferResponse,
    OfferStatus,
    P2POffer,
    PoolType,
    to_money,
)
from .policy import AccessPolicy
from .storage import InMemoryStorage

logger = setup_logger(__name__)


def normalize_outcomes(outcomes: list[str]) -> list[str]:
    cleaned = [o.strip() for o in outcomes]
    if any(not o for o in cleaned):
        raise InvalidOutcomeError("Outcome names must not be blank")
    if len(cleaned) < 2:
        raise InvalidOutcomeError("An event needs at least two outcomes")
    if len({o.casefold() for o in cleaned}) != len(cleaned):
        raise InvalidOutcomeError("Outcome names must be unique")
    return cleaned


def require_outcome(event: Event, outcome: str) -> str:
    if outcome not in event.outcomes:
        raise InvalidOutcomeError(f"{outcome!r} is not an outcome of event {event.id}")
    return outcome


def positive_stake(value, label: str = "Stake") -> Decimal:
    stake = to_money(value)
    if stake <= 0:
        raise InvalidStakeError(f"{label} must be positive, got {stake}")
    return stake


class EscrowEngine:
    def __init__(self, storage: InMemoryStorage, ledger: Ledger, policy: AccessPolicy):
        self.storage = storage
        self.ledger = ledger
        self.policy = policy

    # Events

    def create_event(self, caller_id: UUID, request: CreateEventRequest) -> EventResponse:
        with self.storage.transaction():
            caller = self.ledger.get_account(caller_id)
            self.policy.require(caller, "create_event")

            outcomes = normalize_outcomes(request.outcomes)
            stake = positive_stake(request.stake_amount) if request.stake_amount is not None else None
            max_entries = request.max_entries
            if request.pool_type == PoolType.ONE_VS_ONE:
                max_entries = Config.ONE_VS_ONE_MAX_ENTRIES

            event_data = {
                "id": uuid4(),
                "creator_id": caller.id,
                "title": request.title.strip(),
                "description": request.description,
                "stake_amount": stake,
                "pool_type": request.pool_type,
                "outcomes": outcomes,
                "status": EventStatus.OPEN,
                "max_entries": max_entries,
                "winning_outcome": None,
                "created_at": datetime.now(timezone.utc),
                "locked_at": None,
                "settled_at": None,
            }
            self.storage.put("events", event_data)
            event = Event(**event_data)
            logger.info(f"Event {event.id} created by {caller.username}: {event.title!r} {event.outcomes}")

            entry = None
            if request.creator_outcome is not None:
                creator_stake = request.creator_stake if request.creator_stake is not None else stake
                entry, _ = self._join(caller.id, event, request.creator_outcome, creator_stake)
            elif request.creator_stake is not None:
                raise InvalidStakeError("creator_stake needs a creator_outcome")

        return EventResponse(event=event, entry=entry, message="Event created successfully")

    def join_event(self, caller_id: UUID, event_id: UUID, request: JoinEventRequest) -> EntryResponse:
        with self.storage.transaction():
            event = self._load_event(event_id)
            entry, ledger_entry = self._join(caller_id, event, request.outcome, request.stake_amount)

        return EntryResponse(entry=entry, ledger_entry=ledger_entry, message="Joined event successfully")

    def lock_event(self, caller_id: UUID, event_id: UUID) -> EventResponse:
        with self.storage.transaction():
            caller = self.ledger.get_account(caller_id)
            self.policy.require(caller, "lock_event")

            event_data = self._load_event_data(event_id)
            event = Event(**event_data)
            if not event.can_lock():
                raise InvalidTransitionError(f"Cannot lock event in {event.status.value} state")

            event_data["status"] = EventStatus.LOCKED
            event_data["locked_at"] = datetime.now(timezone.utc)
            self.storage.put("events", event_data)

        logger.info(f"Event {event_id} locked by {caller.username}")
        return EventResponse(event=Event(**event_data), message="Event locked successfully")

    def _join(self, user_id: UUID, event: Event, outcome: str, stake) -> tuple[Entry, LedgerEntry]:
        if not event.is_open():
            raise EventNotOpenError(f"Event {event.id} is {event.status.value}, not open")
        require_outcome(event, outcome)

        existing = self.storage.find("entries", event_id=event.id)
        if any(e["user_id"] == user_id for e in existing):
            raise DuplicateEntryError(f"User {user_id} already has an entry in event {event.id}")
        if event.max_entries is not None and len(existing) >= event.max_entries:
            raise EventFullError(f"Event {event.id} already has {event.max_entries} entries")

        if event.is_fixed_stake:
            stake = event.stake_amount if stake is None else to_money(stake)
            if stake != event.stake_amount:
                raise InvalidStakeError(f"This event takes a fixed stake of {event.stake_amount}")
        else:
            if stake is None:
                raise InvalidStakeError("This event needs an explicit stake")
            stake = positive_stake(stake)

        entry_data = {
            "id": uuid4(),
            "event_id": event.id,
            "user_id": user_id,
            "chosen_outcome": outcome,
            "stake_amount": stake,
            "is_winner": False,
            "payout": Decimal("0.00"),
            "created_at": datetime.now(timezone.utc),
        }
        ledger_entry = self.ledger.debit(
            user_id, stake, LedgerReason.ENTRY_STAKE,
            reference_id=entry_data["id"], description=f"Stake on {outcome!r} in {event.title!r}",
        )
        self.storage.put("entries", entry_data)

        logger.info(f"User {user_id} joined event {event.id} on {outcome!r} with {stake}")
        return Entry(**entry_data), ledger_entry

    # Mini-pools

    def create_mini_pool(self, caller_id: UUID, event_id: UUID, request: CreateMiniPoolRequest) -> MiniPoolResponse:
        with self.storage.transaction():
            caller = self.ledger.get_account(caller_id)
            event = self._load_event(event_id)
            if not event.is_open():
                raise EventNotOpenError(f"Event {event.id} is {event.status.value}, not open")

            min_stake = Config.MINI_POOL_MIN_STAKE if request.min_stake is None else request.min_stake
            mini_pool_data = {
                "id": uuid4(),
                "event_id": event.id,
                "creator_id": caller.id,
                "name": request.name.strip(),
                "min_stake": positive_stake(min_stake, "Minimum stake"),
                "status": MiniPoolStatus.OPEN,
                "created_at": datetime.now(timezone.utc),
                "settled_at": None,
            }
            self.storage.put("mini_pools", mini_pool_data)

        logger.info(f"Mini-pool {mini_pool_data['id']} created under event {event_id} by {caller.username}")
        return MiniPoolResponse(mini_pool=MiniPool(**mini_pool_data), message="Mini-pool created successfully")

    def join_mini_pool(self, caller_id: UUID, mini_pool_id: UUID, request: JoinMiniPoolRequest) -> MiniPoolEntryResponse:
        with self.storage.transaction():
            mini_pool = self._load_mini_pool(mini_pool_id)
            event = self._load_event(mini_pool.event_id)
            if mini_pool.status != MiniPoolStatus.OPEN or not event.is_open():
                raise EventNotOpenError(f"Mini-pool {mini_pool.id} is no longer accepting entries")
            require_outcome(event, request.outcome)

            existing = self.storage.find("mini_pool_entries", mini_pool_id=mini_pool.id, user_id=caller_id)
            if existing:
                raise DuplicateEntryError(f"User {caller_id} already has an entry in mini-pool {mini_pool.id}")

            stake = positive_stake(request.stake_amount)
            if stake < mini_pool.min_stake:
                raise InvalidStakeError(f"Minimum stake is {mini_pool.min_stake}")

            entry_data = {
                "id": uuid4(),
                "mini_pool_id": mini_pool.id,
                "user_id": caller_id,
                "chosen_outcome": request.outcome,
                "stake_amount": stake,
                "is_winner": False,
                "payout": Decimal("0.00"),
                "created_at": datetime.now(timezone.utc),
            }
            ledger_entry = self.ledger.debit(
                caller_id, stake, LedgerReason.MINI_POOL_STAKE,
                reference_id=entry_data["id"], description=f"Stake on {request.outcome!r} in {mini_pool.name!r}",
            )
            self.storage.put("mini_pool_entries", entry_data)

        logger.info(f"User {caller_id} joined mini-pool {mini_pool_id} on {request.outcome!r} with {stake}")
        return MiniPoolEntryResponse(
            entry=MiniPoolEntry(**entry_data), ledger_entry=ledger_entry, message="Joined mini-pool successfully"
        )

    # P2P offers

    def create_offer(self, caller_id: UUID, event_id: UUID, request: CreateOfferRequest) -> OfferResponse:
        with self.storage.transaction():
            event = self._load_event(event_id)
            if not event.is_open():
                raise EventNotOpenError(f"Event {event.id} is {event.status.value}, not open")
            require_outcome(event, request.side)

            stake = positive_stake(request.stake_amount)
            min_match = stake
            if request.min_match_amount is not None:
                min_match = positive_stake(request.min_match_amount, "Minimum match")
                if min_match > stake:
                    raise InvalidStakeError("Minimum match cannot exceed the offer stake")

            offer_data = {
                "id": uuid4(),
                "event_id": event.id,
                "creator_id": caller_id,
                "chosen_outcome": request.side,
                "stake_amount": stake,
                "min_match_amount": min_match,
                "status": OfferStatus.OPEN,
                "taker_id": None,
                "taker_outcome": None,
                "taker_stake": None,
                "winner_id": None,
                "created_at": datetime.now(timezone.utc),
                "matched_at": None,
                "settled_at": None,
            }
            ledger_entry = self.ledger.debit(
                caller_id, stake, LedgerReason.OFFER_STAKE,
                reference_id=offer_data["id"], description=f"Offer on {request.side!r} in {event.title!r}",
            )
            self.storage.put("offers", offer_data)

        logger.info(f"Offer {offer_data['id']} posted by {caller_id} on {request.side!r} for {stake}")
        return OfferResponse(offer=P2POffer(**offer_data), ledger_entry=ledger_entry, message="Offer created successfully")

    def match_offer(self, caller_id: UUID, offer_id: UUID, request: MatchOfferRequest) -> OfferResponse:
        with self.storage.transaction():
            offer_data = self.storage.get("offers", offer_id)
            if not offer_data:
                raise NotFoundError(f"Offer {offer_id} not found")
            offer = P2POffer(**offer_data)
            if not offer.is_open():
                raise OfferNotOpenError(f"Offer {offer.id} is {offer.status.value}, not open")

            event = self._load_event(offer.event_id)
            if not event.is_open():
                raise EventNotOpenError(f"Event {event.id} is {event.status.value}, not open")
            if caller_id == offer.creator_id:
                raise SelfMatchError("You cannot match your own offer")

            stake = to_money(request.stake_amount)
            if stake < offer.min_match_amount:
                raise BelowMinimumMatchError(f"Minimum match amount is {offer.min_match_amount}")
            taker_outcome = self._taker_outcome(event, offer, request.outcome)

            ledger_entry = self.ledger.debit(
                caller_id, stake, LedgerReason.MATCH_STAKE,
                reference_id=offer.id, description=f"Matched offer on {taker_outcome!r} in {event.title!r}",
            )
            offer_data.update({
                "status": OfferStatus.MATCHED,
                "taker_id": caller_id,
                "taker_outcome": taker_outcome,
                "taker_stake": stake,
                "matched_at": datetime.now(timezone.utc),
            })
            self.storage.put("offers", offer_data)

        matched = P2POffer(**offer_data)
        logger.info(f"Offer {offer_id} matched by {caller_id} for {stake}; {matched.pot} in escrow")
        return OfferResponse(offer=matched, ledger_entry=ledger_entry, message="Offer matched successfully")

    def _taker_outcome(self, event: Event, offer: P2POffer, declared: Optional[str]) -> str:
        if declared is not None:
            require_outcome(event, declared)
            if declared == offer.chosen_outcome:
                raise InvalidOutcomeError("The taker must back a different outcome than the offer creator")
            return declared
        if len(event.outcomes) != 2:
            raise InvalidOutcomeError("Events with more than two outcomes need the taker to declare an outcome")
        return next(o for o in event.outcomes if o != offer.chosen_outcome)

    # Loaders

    def _load_event_data(self, event_id: UUID) -> dict:
        event_data = self.storage.get("events", event_id)
        if not event_data:
            raise NotFoundError(f"Event {event_id} not found")
        return event_data

    def _load_event(self, event_id: UUID) -> Event:
        return Event(**self._load_event_data(event_id))

    def _load_mini_pool(self, mini_pool_id: UUID) -> MiniPool:
        mini_pool_data = self.storage.get("mini_pools", mini_pool_id)
        if not mini_pool_data:
            raise NotFoundError(f"Mini-pool {mini_pool_id} not found")
        return MiniPool(**mini_pool_data)
