"""
Unit Tests for the escrow / matching engine

Tests cover:
1. Event creation and access policy
2. Joining events
3. Locking events
4. Mini-pools
5. P2P offers and matching
"""

import pytest
from decimal import Decimal
from uuid import UUID

from wagering.errors import (
    BelowMinimumMatchError,
    DuplicateEntryError,
    EventFullError,
    EventNotOpenError,
    InsufficientFundsError,
    InvalidOutcomeError,
    InvalidStakeError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    OfferNotOpenError,
    SelfMatchError,
)
from wagering.models import (
    CreateEventRequest,
    CreateMiniPoolRequest,
    CreateOfferRequest,
    EventStatus,
    JoinEventRequest,
    JoinMiniPoolRequest,
    MatchOfferRequest,
    OfferStatus,
    PoolType,
)
from wagering.service import WageringService
from wagering.storage import InMemoryStorage, DEMO_ADMIN_ID, DEMO_ALICE_ID, DEMO_BOB_ID


def make_service():
    return WageringService(InMemoryStorage(seed=True))


def make_event(service, **overrides):
    fields = {"title": "Will it rain on Friday?", "outcomes": ["Yes", "No"], "stake_amount": Decimal("100.00")}
    fields.update(overrides)
    return service.create_event(DEMO_ADMIN_ID, CreateEventRequest(**fields)).event


def balance(service, user_id):
    return service.get_balance(user_id).current_balance


class TestCreateEvent:
    """Tests for event creation."""

    def test_admin_creates_event(self):
        service = make_service()

        event = make_event(service)

        assert event.status == EventStatus.OPEN
        assert event.outcomes == ["Yes", "No"]
        assert event.winning_outcome is None
        assert event.locked_at is None and event.settled_at is None

    def test_non_admin_cannot_create_event(self):
        service = make_service()

        with pytest.raises(NotAuthorizedError):
            service.create_event(DEMO_ALICE_ID, CreateEventRequest(title="Mine", stake_amount=Decimal("10.00")))

    def test_creator_outcome_places_entry(self):
        """Test the creator's own stake is placed with the event."""
        service = make_service()

        response = service.create_event(DEMO_ADMIN_ID, CreateEventRequest(
            title="Derby winner", stake_amount=Decimal("100.00"), creator_outcome="No",
        ))

        assert response.entry is not None
        assert response.entry.chosen_outcome == "No"
        assert balance(service, DEMO_ADMIN_ID) == Decimal("900.00")

    def test_creator_stake_on_variable_event(self):
        """Test the creator can pick a stake when the event has none fixed."""
        service = make_service()

        response = service.create_event(DEMO_ADMIN_ID, CreateEventRequest(
            title="Derby winner", creator_outcome="Yes", creator_stake=Decimal("250.00"),
        ))

        assert response.entry.stake_amount == Decimal("250.00")
        assert balance(service, DEMO_ADMIN_ID) == Decimal("750.00")

    def test_variable_event_creator_needs_stake(self):
        service = make_service()

        with pytest.raises(InvalidStakeError):
            service.create_event(DEMO_ADMIN_ID, CreateEventRequest(title="Derby winner", creator_outcome="Yes"))

        assert service.list_events() == []

    def test_creator_stake_without_outcome_rejected(self):
        service = make_service()

        with pytest.raises(InvalidStakeError):
            make_event(service, stake_amount=None, creator_stake=Decimal("50.00"))

        assert service.list_events() == []
        assert balance(service, DEMO_ADMIN_ID) == Decimal("1000.00")

    def test_failed_creator_entry_rolls_back_event(self):
        """Test an invalid creator outcome leaves no event behind."""
        service = make_service()

        with pytest.raises(InvalidOutcomeError):
            service.create_event(DEMO_ADMIN_ID, CreateEventRequest(
                title="Derby winner", stake_amount=Decimal("100.00"), creator_outcome="Maybe",
            ))

        assert service.list_events() == []
        assert balance(service, DEMO_ADMIN_ID) == Decimal("1000.00")

    @pytest.mark.parametrize("outcomes", [["Yes"], ["Yes", "yes"], ["Yes", "  "]])
    def test_outcomes_validated(self, outcomes):
        service = make_service()

        with pytest.raises(InvalidOutcomeError):
            make_event(service, outcomes=outcomes)

    def test_one_vs_one_capped_at_two_entries(self):
        service = make_service()

        event = make_event(service, pool_type=PoolType.ONE_VS_ONE, max_entries=10)

        assert event.max_entries == 2


class TestJoinEvent:
    """Tests for joining an event."""

    def test_join_debits_stake(self):
        service = make_service()
        event = make_event(service)

        response = service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="Yes"))

        assert response.entry.stake_amount == Decimal("100.00")
        assert response.entry.is_winner is False
        assert response.ledger_entry.balance_after == Decimal("900.00")
        assert balance(service, DEMO_ALICE_ID) == Decimal("900.00")

    def test_duplicate_entry_rejected(self):
        """Test a user can hold only one entry per event."""
        service = make_service()
        event = make_event(service)
        service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="Yes"))

        with pytest.raises(DuplicateEntryError):
            service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="No"))

        assert balance(service, DEMO_ALICE_ID) == Decimal("900.00")

    def test_fixed_stake_must_match(self):
        service = make_service()
        event = make_event(service)

        with pytest.raises(InvalidStakeError):
            service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="Yes", stake_amount=Decimal("50.00")))

    def test_variable_stake_event(self):
        service = make_service()
        event = make_event(service, stake_amount=None)

        service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="Yes", stake_amount=Decimal("42.50")))

        assert balance(service, DEMO_ALICE_ID) == Decimal("957.50")
        with pytest.raises(InvalidStakeError):
            service.join_event(DEMO_BOB_ID, event.id, JoinEventRequest(outcome="No"))

    def test_insufficient_funds_creates_no_entry(self):
        """Test that a failed debit leaves no entry behind."""
        service = make_service()
        event = make_event(service, stake_amount=Decimal("1500.00"))

        with pytest.raises(InsufficientFundsError):
            service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="Yes"))

        assert service.get_event_detail(event.id).entries == []

    def test_unknown_outcome_rejected(self):
        service = make_service()
        event = make_event(service)

        with pytest.raises(InvalidOutcomeError):
            service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="Maybe"))

    def test_one_vs_one_full(self):
        service = make_service()
        event = make_event(service, pool_type=PoolType.ONE_VS_ONE)
        service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="Yes"))
        service.join_event(DEMO_BOB_ID, event.id, JoinEventRequest(outcome="No"))

        with pytest.raises(EventFullError):
            service.join_event(DEMO_ADMIN_ID, event.id, JoinEventRequest(outcome="No"))

    def test_join_missing_event(self):
        service = make_service()

        with pytest.raises(NotFoundError):
            service.join_event(DEMO_ALICE_ID, UUID("00000000-0000-0000-0000-000000000000"), JoinEventRequest(outcome="Yes"))

    def test_event_detail_counts(self):
        service = make_service()
        event = make_event(service)
        service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="Yes"))
        service.join_event(DEMO_BOB_ID, event.id, JoinEventRequest(outcome="Yes"))

        detail = service.get_event_detail(event.id)

        assert detail.outcome_counts == {"Yes": 2, "No": 0}
        assert detail.total_pot == Decimal("200.00")


class TestLockEvent:
    """Tests for locking an event."""

    def test_lock_stops_new_entries(self):
        service = make_service()
        event = make_event(service)

        locked = service.lock_event(DEMO_ADMIN_ID, event.id).event

        assert locked.status == EventStatus.LOCKED
        assert locked.locked_at is not None
        with pytest.raises(EventNotOpenError):
            service.join_event(DEMO_ALICE_ID, event.id, JoinEventRequest(outcome="Yes"))

    def test_only_admin_locks(self):
        """Test that creators have no special lock rights."""
        service = make_service()
        event = make_event(service)

        with pytest.raises(NotAuthorizedError):
            service.lock_event(DEMO_ALICE_ID, event.id)

    def test_cannot_lock_twice(self):
        service = make_service()
        event = make_event(service)
        service.lock_event(DEMO_ADMIN_ID, event.id)

        with pytest.raises(InvalidTransitionError):
            service.lock_event(DEMO_ADMIN_ID, event.id)


class TestMiniPools:
    """Tests for mini-pools nested under an event."""

    def test_create_with_default_min_stake(self):
        service = make_service()
        event = make_event(service)

        mini_pool = service.create_mini_pool(DEMO_ALICE_ID, event.id, CreateMiniPoolRequest(name="Office")).mini_pool

        assert mini_pool.min_stake == Decimal("200.00")
        assert mini_pool.creator_id == DEMO_ALICE_ID

    def test_join_mini_pool(self):
        service = make_service()
        event = make_event(service)
        mini_pool = service.create_mini_pool(DEMO_ALICE_ID, event.id, CreateMiniPoolRequest(name="Office")).mini_pool

        response = service.join_mini_pool(DEMO_BOB_ID, mini_pool.id, JoinMiniPoolRequest(outcome="No", stake_amount=Decimal("250.00")))

        assert response.entry.stake_amount == Decimal("250.00")
        assert balance(service, DEMO_BOB_ID) == Decimal("750.00")
        assert service.get_mini_pool_detail(mini_pool.id).total_pot == Decimal("250.00")

    def test_below_min_stake_rejected(self):
        service = make_service()
        event = make_event(service)
        mini_pool = service.create_mini_pool(DEMO_ALICE_ID, event.id, CreateMiniPoolRequest(name="Office")).mini_pool

        with pytest.raises(InvalidStakeError):
            service.join_mini_pool(DEMO_BOB_ID, mini_pool.id, JoinMiniPoolRequest(outcome="No", stake_amount=Decimal("199.99")))

    def test_duplicate_mini_pool_entry_rejected(self):
        service = make_service()
        event = make_event(service)
        mini_pool = service.create_mini_pool(DEMO_ALICE_ID, event.id, CreateMiniPoolRequest(name="Office")).mini_pool
        service.join_mini_pool(DEMO_BOB_ID, mini_pool.id, JoinMiniPoolRequest(outcome="No", stake_amount=Decimal("200.00")))

        with pytest.raises(DuplicateEntryError):
            service.join_mini_pool(DEMO_BOB_ID, mini_pool.id, JoinMiniPoolRequest(outcome="Yes", stake_amount=Decimal("200.00")))

    def test_locked_parent_closes_mini_pool(self):
        service = make_service()
        event = make_event(service)
        mini_pool = service.create_mini_pool(DEMO_ALICE_ID, event.id, CreateMiniPoolRequest(name="Office")).mini_pool
        service.lock_event(DEMO_ADMIN_ID, event.id)

        with pytest.raises(EventNotOpenError):
            service.join_mini_pool(DEMO_BOB_ID, mini_pool.id, JoinMiniPoolRequest(outcome="No", stake_amount=Decimal("200.00")))
        with pytest.raises(EventNotOpenError):
            service.create_mini_pool(DEMO_BOB_ID, event.id, CreateMiniPoolRequest(name="Late"))


class TestOffers:
    """Tests for posting and matching P2P offers."""

    def test_create_offer_debits_creator(self):
        """Test the creator's stake is escrowed at posting time."""
        service = make_service()
        event = make_event(service, stake_amount=None)

        offer = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(side="Yes", stake_amount=Decimal("500.00"))).offer

        assert offer.status == OfferStatus.OPEN
        assert offer.min_match_amount == Decimal("500.00")
        assert balance(service, DEMO_ALICE_ID) == Decimal("500.00")

    def test_match_offer(self):
        service = make_service()
        event = make_event(service, stake_amount=None)
        offer = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(side="Yes", stake_amount=Decimal("500.00"))).offer

        matched = service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("500.00"))).offer

        assert matched.status == OfferStatus.MATCHED
        assert matched.taker_id == DEMO_BOB_ID
        assert matched.taker_outcome == "No"
        assert matched.pot == Decimal("1000.00")
        assert balance(service, DEMO_BOB_ID) == Decimal("500.00")

    def test_self_match_rejected(self):
        service = make_service()
        event = make_event(service)
        offer = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(side="Yes", stake_amount=Decimal("100.00"))).offer

        with pytest.raises(SelfMatchError):
            service.match_offer(DEMO_ALICE_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("100.00")))

    def test_below_minimum_match(self):
        service = make_service()
        event = make_event(service)
        offer = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(
            side="Yes", stake_amount=Decimal("300.00"), min_match_amount=Decimal("100.00"),
        )).offer

        with pytest.raises(BelowMinimumMatchError):
            service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("99.99")))

        matched = service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("100.00"))).offer
        assert matched.pot == Decimal("400.00")

    def test_default_minimum_is_symmetric(self):
        service = make_service()
        event = make_event(service)
        offer = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(side="Yes", stake_amount=Decimal("300.00"))).offer

        with pytest.raises(BelowMinimumMatchError):
            service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("299.00")))

    def test_min_match_cannot_exceed_stake(self):
        service = make_service()
        event = make_event(service)

        with pytest.raises(InvalidStakeError):
            service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(
                side="Yes", stake_amount=Decimal("100.00"), min_match_amount=Decimal("150.00"),
            ))

    def test_matched_offer_not_open(self):
        service = make_service()
        event = make_event(service)
        offer = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(side="Yes", stake_amount=Decimal("100.00"))).offer
        service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("100.00")))

        with pytest.raises(OfferNotOpenError):
            service.match_offer(DEMO_ADMIN_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("100.00")))

    def test_insufficient_funds_to_match(self):
        service = make_service()
        event = make_event(service)
        offer = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(
            side="Yes", stake_amount=Decimal("100.00"),
        )).offer

        with pytest.raises(InsufficientFundsError):
            service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("1000.01")))

        assert service.get_offer(offer.id).status == OfferStatus.OPEN

    def test_no_offers_once_locked(self):
        service = make_service()
        event = make_event(service)
        offer = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(side="Yes", stake_amount=Decimal("100.00"))).offer
        service.lock_event(DEMO_ADMIN_ID, event.id)

        with pytest.raises(EventNotOpenError):
            service.create_offer(DEMO_BOB_ID, event.id, CreateOfferRequest(side="No", stake_amount=Decimal("100.00")))
        with pytest.raises(EventNotOpenError):
            service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("100.00")))

    def test_multi_outcome_taker_must_declare(self):
        """Test the opposite side is only inferred for binary events."""
        service = make_service()
        event = make_event(service, outcomes=["Home", "Draw", "Away"])
        offer = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(side="Home", stake_amount=Decimal("100.00"))).offer

        with pytest.raises(InvalidOutcomeError):
            service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("100.00")))
        with pytest.raises(InvalidOutcomeError):
            service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("100.00"), outcome="Home"))

        matched = service.match_offer(DEMO_BOB_ID, offer.id, MatchOfferRequest(stake_amount=Decimal("100.00"), outcome="Away")).offer
        assert matched.taker_outcome == "Away"

    def test_offer_feed_newest_first(self):
        service = make_service()
        event = make_event(service)
        first = service.create_offer(DEMO_ALICE_ID, event.id, CreateOfferRequest(side="Yes", stake_amount=Decimal("10.00"))).offer
        second = service.create_offer(DEMO_BOB_ID, event.id, CreateOfferRequest(side="No", stake_amount=Decimal("20.00"))).offer

        feed = service.list_offers(event.id)

        assert [o.id for o in feed] == [second.id, first.id]
        assert [o.id for o in service.list_offers(event.id, side="Yes")] == [first.id]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
