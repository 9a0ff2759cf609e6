from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .config import Config
from .errors import DuplicateUsernameError, NotFoundError
from .escrow import EscrowEngine
from .ledger import Ledger
from .logger import setup_logger
from .models import (
    CreateEventRequest,
    CreateMiniPoolRequest,
    CreateOfferRequest,
    Entry,
    EntryResponse,
    Event,
    EventDetail,
    EventResponse,
    EventStatus,
    JoinEventRequest,
    JoinMiniPoolRequest,
    LedgerHistoryResponse,
    MatchOfferRequest,
    MiniPool,
    MiniPoolDetail,
    MiniPoolEntry,
    MiniPoolEntryResponse,
    MiniPoolResponse,
    OfferResponse,
    OfferStatus,
    P2POffer,
    SettleEventRequest,
    SettlementReport,
    UserAccount,
    UserBalance,
)
from .policy import AccessPolicy
from .settlement import SettlementEngine
from .storage import InMemoryStorage

logger = setup_logger(__name__)


class WageringService:
    """Entry point used by the API: wires storage, ledger, policy and engines."""

    def __init__(self, storage: Optional[InMemoryStorage] = None, policy: Optional[AccessPolicy] = None):
        self.storage = storage or InMemoryStorage()
        self.policy = policy or AccessPolicy()
        self.ledger = Ledger(self.storage)
        self.escrow = EscrowEngine(self.storage, self.ledger, self.policy)
        self.settlement = SettlementEngine(self.storage, self.ledger, self.policy)

    # Users

    def register_user(self, username: str, is_admin: bool = False) -> UserAccount:
        username = username.strip()
        with self.storage.transaction():
            taken = any(u["username"].casefold() == username.casefold() for u in self.storage.find("users"))
            if taken:
                raise DuplicateUsernameError(f"Username {username!r} is already taken")
            user_data = {
                "id": uuid4(),
                "username": username,
                "balance": Config.STARTING_BALANCE,
                "is_admin": is_admin,
                "created_at": datetime.now(timezone.utc),
            }
            self.storage.put("users", user_data)

        logger.info(f"Registered user {username} ({user_data['id']}) with {Config.STARTING_BALANCE}")
        return UserAccount(**user_data)

    def get_user(self, user_id: UUID) -> UserAccount:
        return self.ledger.get_account(user_id)

    def get_balance(self, user_id: UUID) -> UserBalance:
        return self.ledger.get_balance(user_id)

    def get_ledger_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        return self.ledger.get_history(user_id, limit, offset)

    # Events

    def create_event(self, caller_id: UUID, request: CreateEventRequest) -> EventResponse:
        return self.escrow.create_event(caller_id, request)

    def join_event(self, caller_id: UUID, event_id: UUID, request: JoinEventRequest) -> EntryResponse:
        return self.escrow.join_event(caller_id, event_id, request)

    def lock_event(self, caller_id: UUID, event_id: UUID) -> EventResponse:
        return self.escrow.lock_event(caller_id, event_id)

    def settle_event(self, caller_id: UUID, event_id: UUID, request: SettleEventRequest) -> SettlementReport:
        return self.settlement.settle_event(caller_id, event_id, request)

    def get_event(self, event_id: UUID) -> Event:
        event_data = self.storage.get("events", event_id)
        if not event_data:
            raise NotFoundError(f"Event {event_id} not found")
        return Event(**event_data)

    def list_events(self, status: Optional[EventStatus] = None) -> list[Event]:
        filters = {"status": status} if status else {}
        events = [Event(**e) for e in self.storage.find("events", **filters)]
        events.reverse()
        return events

    def get_event_detail(self, event_id: UUID) -> EventDetail:
        with self.storage.transaction():
            event = self.get_event(event_id)
            entries = [Entry(**e) for e in self.storage.find("entries", event_id=event_id)]
            mini_pools = [MiniPool(**m) for m in self.storage.find("mini_pools", event_id=event_id)]

        return EventDetail(
            event=event,
            entries=entries,
            mini_pools=mini_pools,
            outcome_counts={o: sum(1 for e in entries if e.chosen_outcome == o) for o in event.outcomes},
            total_pot=sum((e.stake_amount for e in entries), Decimal("0.00")),
        )

    # Mini-pools

    def create_mini_pool(self, caller_id: UUID, event_id: UUID, request: CreateMiniPoolRequest) -> MiniPoolResponse:
        return self.escrow.create_mini_pool(caller_id, event_id, request)

    def join_mini_pool(self, caller_id: UUID, mini_pool_id: UUID, request: JoinMiniPoolRequest) -> MiniPoolEntryResponse:
        return self.escrow.join_mini_pool(caller_id, mini_pool_id, request)

    def get_mini_pool_detail(self, mini_pool_id: UUID) -> MiniPoolDetail:
        with self.storage.transaction():
            mini_pool_data = self.storage.get("mini_pools", mini_pool_id)
            if not mini_pool_data:
                raise NotFoundError(f"Mini-pool {mini_pool_id} not found")
            mini_pool = MiniPool(**mini_pool_data)
            event = self.get_event(mini_pool.event_id)
            entries = [MiniPoolEntry(**e) for e in self.storage.find("mini_pool_entries", mini_pool_id=mini_pool_id)]

        return MiniPoolDetail(
            mini_pool=mini_pool,
            outcomes=event.outcomes,
            entries=entries,
            total_pot=sum((e.stake_amount for e in entries), Decimal("0.00")),
        )

    # P2P offers

    def create_offer(self, caller_id: UUID, event_id: UUID, request: CreateOfferRequest) -> OfferResponse:
        return self.escrow.create_offer(caller_id, event_id, request)

    def match_offer(self, caller_id: UUID, offer_id: UUID, request: MatchOfferRequest) -> OfferResponse:
        return self.escrow.match_offer(caller_id, offer_id, request)

    def get_offer(self, offer_id: UUID) -> P2POffer:
        offer_data = self.storage.get("offers", offer_id)
        if not offer_data:
            raise NotFoundError(f"Offer {offer_id} not found")
        return P2POffer(**offer_data)

    def list_offers(
        self,
        event_id: UUID,
        status: Optional[OfferStatus] = OfferStatus.OPEN,
        side: Optional[str] = None,
    ) -> list[P2POffer]:
        """Offer feed for an event, newest first."""
        self.get_event(event_id)
        filters = {"event_id": event_id}
        if status:
            filters["status"] = status
        if side:
            filters["chosen_outcome"] = side
        offers = [P2POffer(**o) for o in self.storage.find("offers", **filters)]
        offers.reverse()
        return offers
