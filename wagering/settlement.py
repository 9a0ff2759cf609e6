"""
Settlement engine.

Settling an event pays out the main pool, every mini-pool nested under it
and every P2P offer tied to it, then marks the event settled. All of it runs
in one storage transaction, so either every credit and status write lands or
none does, and the status check that guards against double payment is made
inside that same transaction.

Pots are split equally between winners in whole cents. Leftover cents go one
at a time to the earliest winning entries, so the credited payouts always sum
to the pot exactly.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN
from uuid import UUID

from .errors import AlreadySettledError, InvalidTransitionError, NotFoundError
from .escrow import require_outcome
from .ledger import Ledger
from .logger import setup_logger
from .models import (
    CENT,
    Event,
    EventStatus,
    LedgerReason,
    MiniPoolStatus,
    OfferSettlement,
    OfferStatus,
    P2POffer,
    Payout,
    PoolSettlement,
    SettleEventRequest,
    SettlementReport,
)
from .policy import AccessPolicy
from .storage import InMemoryStorage

logger = setup_logger(__name__)

ZERO = Decimal("0.00")


def split_pot(total_pot: Decimal, winner_count: int) -> list[Decimal]:
    """Split a pot into ``winner_count`` cent-exact shares, larger shares first."""
    if winner_count <= 0:
        return []
    share = (total_pot / winner_count).quantize(CENT, rounding=ROUND_DOWN)
    extra_cents = int((total_pot - share * winner_count) / CENT)
    return [share + CENT if i < extra_cents else share for i in range(winner_count)]


class SettlementEngine:
    def __init__(self, storage: InMemoryStorage, ledger: Ledger, policy: AccessPolicy):
        self.storage = storage
        self.ledger = ledger
        self.policy = policy

    def settle_event(self, caller_id: UUID, event_id: UUID, request: SettleEventRequest) -> SettlementReport:
        with self.storage.transaction():
            caller = self.ledger.get_account(caller_id)
            self.policy.require(caller, "settle_event")

            event_data = self.storage.get("events", event_id)
            if not event_data:
                raise NotFoundError(f"Event {event_id} not found")
            event = Event(**event_data)
            if event.status == EventStatus.SETTLED:
                raise AlreadySettledError(f"Event {event.id} was already settled on {event.winning_outcome!r}")
            if not event.can_settle():
                raise InvalidTransitionError(f"Event {event.id} must be locked before it can be settled")
            winning_outcome = require_outcome(event, request.winning_outcome)
            now = datetime.now(timezone.utc)

            pools = [
                self._settle_pool(
                    "entries", self.storage.find("entries", event_id=event.id),
                    winning_outcome, LedgerReason.POOL_PAYOUT, event.id, is_mini_pool=False,
                )
            ]
            for mini_pool_data in self.storage.find("mini_pools", event_id=event.id):
                if mini_pool_data["status"] == MiniPoolStatus.SETTLED:
                    continue
                pools.append(self._settle_pool(
                    "mini_pool_entries", self.storage.find("mini_pool_entries", mini_pool_id=mini_pool_data["id"]),
                    winning_outcome, LedgerReason.MINI_POOL_PAYOUT, mini_pool_data["id"], is_mini_pool=True,
                ))
                mini_pool_data["status"] = MiniPoolStatus.SETTLED
                mini_pool_data["settled_at"] = now
                self.storage.put("mini_pools", mini_pool_data)

            offers = [
                self._settle_offer(offer_data, winning_outcome, now)
                for offer_data in self.storage.find("offers", event_id=event.id)
                if offer_data["status"] in (OfferStatus.OPEN, OfferStatus.MATCHED)
            ]

            event_data["status"] = EventStatus.SETTLED
            event_data["winning_outcome"] = winning_outcome
            event_data["settled_at"] = now
            self.storage.put("events", event_data)

        paid = sum((p.amount for pool in pools for p in pool.payouts), ZERO)
        logger.info(
            f"Event {event_id} settled on {winning_outcome!r} by {caller.username}: "
            f"{len(pools)} pool(s), {len(offers)} offer(s), {paid} paid to pool winners"
        )
        return SettlementReport(
            event=Event(**event_data), pools=pools, offers=offers, message="Event settled successfully"
        )

    def _settle_pool(
        self,
        table: str,
        entries: list[dict],
        winning_outcome: str,
        reason: LedgerReason,
        pool_id: UUID,
        is_mini_pool: bool,
    ) -> PoolSettlement:
        total_pot = sum((e["stake_amount"] for e in entries), ZERO)
        winners = [e for e in entries if e["chosen_outcome"] == winning_outcome]
        amounts = split_pot(total_pot, len(winners))

        payouts = []
        for entry_data, amount in zip(winners, amounts):
            self.ledger.credit(
                entry_data["user_id"], amount, reason,
                reference_id=entry_data["id"], description=f"Winnings on {winning_outcome!r}",
            )
            entry_data["is_winner"] = True
            entry_data["payout"] = amount
            self.storage.put(table, entry_data)
            payouts.append(Payout(user_id=entry_data["user_id"], reference_id=entry_data["id"], amount=amount))

        share = amounts[-1] if amounts else ZERO
        if not winners:
            logger.info(f"Pool {pool_id} has no winners on {winning_outcome!r}; pot of {total_pot} is not redistributed")

        return PoolSettlement(
            pool_id=pool_id,
            is_mini_pool=is_mini_pool,
            total_pot=total_pot,
            winner_count=len(winners),
            payout_per_winner=share,
            remainder=total_pot - share * len(winners) if winners else ZERO,
            payouts=payouts,
        )

    def _settle_offer(self, offer_data: dict, winning_outcome: str, now: datetime) -> OfferSettlement:
        offer = P2POffer(**offer_data)
        payouts = []

        if offer.status == OfferStatus.OPEN:
            # Never matched: the creator's escrowed stake goes back
            payouts.append(self._pay(offer.creator_id, offer.stake_amount, LedgerReason.OFFER_REFUND, offer.id))
            offer_data["status"] = OfferStatus.REFUNDED
        elif offer.chosen_outcome == winning_outcome:
            payouts.append(self._pay(offer.creator_id, offer.pot, LedgerReason.OFFER_PAYOUT, offer.id))
            offer_data["winner_id"] = offer.creator_id
            offer_data["status"] = OfferStatus.SETTLED
        elif offer.taker_outcome == winning_outcome:
            payouts.append(self._pay(offer.taker_id, offer.pot, LedgerReason.OFFER_PAYOUT, offer.id))
            offer_data["winner_id"] = offer.taker_id
            offer_data["status"] = OfferStatus.SETTLED
        else:
            # Neither side backed the result: both stakes go back
            payouts.append(self._pay(offer.creator_id, offer.stake_amount, LedgerReason.OFFER_REFUND, offer.id))
            payouts.append(self._pay(offer.taker_id, offer.taker_stake, LedgerReason.OFFER_REFUND, offer.id))
            offer_data["status"] = OfferStatus.SETTLED

        offer_data["settled_at"] = now
        self.storage.put("offers", offer_data)
        return OfferSettlement(
            offer_id=offer.id, status=offer_data["status"], winner_id=offer_data["winner_id"], payouts=payouts
        )

    def _pay(self, user_id: UUID, amount: Decimal, reason: LedgerReason, offer_id: UUID) -> Payout:
        self.ledger.credit(user_id, amount, reason, reference_id=offer_id)
        return Payout(user_id=user_id, reference_id=offer_id, amount=amount)
