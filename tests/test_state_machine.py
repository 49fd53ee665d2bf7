"""Tests for bid evaluation and lifecycle transitions.

The state machine is pure, so these tests need no store and no event loop.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from auction_engine.core.exceptions import InvalidTransition, RejectionReason
from auction_engine.models.auction import AuctionStatus
from auction_engine.schemas.bid import CandidateBid
from auction_engine.services.state_machine import (
    Accepted,
    AuctionStateMachine,
    BiddingPolicy,
    Rejected,
)
from tests.conftest import T0


def _bid(auction, amount, bidder_id=None):
    return CandidateBid(
        auction_id=auction.auction_id,
        bidder_id=bidder_id or uuid4(),
        amount=amount,
        submitted_at=T0,
    )


class TestBidEvaluation:
    """Test acceptance rules in evaluation order."""

    def test_increment_rules(self, make_auction, state_machine):
        """Starting at 100 with increment 5: 80 too low, 103 too small, 105 accepted."""
        auction = make_auction(min_increment=5)
        now = T0 + timedelta(minutes=1)

        assert state_machine.evaluate(auction, _bid(auction, 80), now) == Rejected(
            RejectionReason.BID_TOO_LOW
        )
        assert state_machine.evaluate(auction, _bid(auction, 103), now) == Rejected(
            RejectionReason.INCREMENT_TOO_SMALL
        )

        decision = state_machine.evaluate(auction, _bid(auction, 105), now)
        assert isinstance(decision, Accepted)
        assert decision.new_state.current_high_bid == 105

    def test_tie_is_too_low(self, make_auction, state_machine):
        auction = make_auction(current_high_bid=150)
        decision = state_machine.evaluate(auction, _bid(auction, 150), T0)
        assert decision == Rejected(RejectionReason.BID_TOO_LOW)

    def test_accept_bumps_version_and_keeps_status(self, make_auction, state_machine):
        auction = make_auction(version=7)
        bidder = uuid4()

        decision = state_machine.evaluate(auction, _bid(auction, 101, bidder), T0)

        assert isinstance(decision, Accepted)
        assert decision.new_state.version == 8
        assert decision.new_state.current_high_bidder_id == bidder
        assert decision.new_state.status == AuctionStatus.OPEN
        # Input snapshot is untouched
        assert auction.version == 7
        assert auction.current_high_bidder_id is None

    def test_self_outbid_rejected(self, make_auction, state_machine):
        """X holds 105; X raising to 110 is refused, Y bidding 110 is accepted."""
        x, y = uuid4(), uuid4()
        auction = make_auction(current_high_bid=105, current_high_bidder_id=x, version=1)

        assert state_machine.evaluate(auction, _bid(auction, 110, x), T0) == Rejected(
            RejectionReason.SELF_OUTBID
        )

        decision = state_machine.evaluate(auction, _bid(auction, 110, y), T0)
        assert isinstance(decision, Accepted)
        assert decision.new_state.current_high_bidder_id == y

    def test_self_outbid_allowed_by_policy(self, make_auction):
        machine = AuctionStateMachine(BiddingPolicy(allow_self_outbid=True))
        x = uuid4()
        auction = make_auction(current_high_bid=105, current_high_bidder_id=x)

        assert isinstance(machine.evaluate(auction, _bid(auction, 110, x), T0), Accepted)

    @pytest.mark.parametrize("amount", [1, 100, 101, 10_000_000])
    def test_owner_cannot_bid_any_amount(self, make_auction, state_machine, owner, amount):
        auction = make_auction()
        decision = state_machine.evaluate(auction, _bid(auction, amount, owner.user_id), T0)
        assert decision == Rejected(RejectionReason.OWNER_CANNOT_BID)

    def test_expired_while_still_flagged_open(self, make_auction, state_machine):
        auction = make_auction()
        decision = state_machine.evaluate(auction, _bid(auction, 500), auction.end_time)
        assert decision == Rejected(RejectionReason.AUCTION_EXPIRED)

    def test_before_start_is_not_open(self, make_auction, state_machine):
        auction = make_auction(start_time=T0 + timedelta(minutes=10))
        decision = state_machine.evaluate(auction, _bid(auction, 500), T0)
        assert decision == Rejected(RejectionReason.AUCTION_NOT_OPEN)

    @pytest.mark.parametrize(
        "status",
        [
            AuctionStatus.SCHEDULED,
            AuctionStatus.CLOSED,
            AuctionStatus.SETTLED,
            AuctionStatus.CANCELLED,
        ],
    )
    def test_not_open_statuses(self, make_auction, state_machine, status):
        auction = make_auction(status=status)
        decision = state_machine.evaluate(auction, _bid(auction, 500), T0)
        assert decision == Rejected(RejectionReason.AUCTION_NOT_OPEN)

    def test_per_auction_increment_overrides_policy(self, make_auction):
        machine = AuctionStateMachine(BiddingPolicy(min_increment=50))
        auction = make_auction(min_increment=2)

        assert machine.min_increment_for(auction) == 2
        assert isinstance(machine.evaluate(auction, _bid(auction, 102), T0), Accepted)
        assert machine.min_increment_for(make_auction()) == 50


class TestLifecycleTransitions:
    """Test the transition table and its time gates."""

    def test_open_requires_start_time(self, make_auction, state_machine):
        auction = make_auction(status=AuctionStatus.SCHEDULED, start_time=T0 + timedelta(minutes=5))

        with pytest.raises(InvalidTransition):
            state_machine.transition(auction, AuctionStatus.OPEN, T0)

        opened = state_machine.transition(auction, AuctionStatus.OPEN, T0 + timedelta(minutes=5))
        assert opened.status == AuctionStatus.OPEN
        assert opened.version == auction.version + 1

    def test_close_requires_end_time(self, make_auction, state_machine):
        auction = make_auction()

        with pytest.raises(InvalidTransition):
            state_machine.transition(auction, AuctionStatus.CLOSED, T0)

        closed = state_machine.transition(auction, AuctionStatus.CLOSED, auction.end_time)
        assert closed.status == AuctionStatus.CLOSED

    def test_settle_only_from_closed(self, make_auction, state_machine):
        with pytest.raises(InvalidTransition):
            state_machine.transition(make_auction(), AuctionStatus.SETTLED, T0)

        closed = make_auction(status=AuctionStatus.CLOSED)
        assert state_machine.transition(closed, AuctionStatus.SETTLED, T0).status == AuctionStatus.SETTLED

    @pytest.mark.parametrize("status", [AuctionStatus.SCHEDULED, AuctionStatus.OPEN])
    def test_cancel_from_live_states(self, make_auction, state_machine, status):
        auction = make_auction(status=status)
        assert state_machine.transition(auction, AuctionStatus.CANCELLED, T0).status == AuctionStatus.CANCELLED

    @pytest.mark.parametrize(
        "terminal", [AuctionStatus.CLOSED, AuctionStatus.SETTLED, AuctionStatus.CANCELLED]
    )
    @pytest.mark.parametrize(
        "target", [AuctionStatus.SCHEDULED, AuctionStatus.OPEN, AuctionStatus.CANCELLED]
    )
    def test_terminal_states_do_not_reopen(self, make_auction, state_machine, terminal, target):
        auction = make_auction(status=terminal)
        with pytest.raises(InvalidTransition):
            state_machine.transition(auction, target, T0 + timedelta(days=1))

    def test_due_transition(self, make_auction, state_machine):
        scheduled = make_auction(status=AuctionStatus.SCHEDULED)
        assert state_machine.due_transition(scheduled, T0 - timedelta(seconds=1)) is None
        assert state_machine.due_transition(scheduled, T0) == AuctionStatus.OPEN

        opened = make_auction()
        assert state_machine.due_transition(opened, T0) is None
        assert state_machine.due_transition(opened, opened.end_time) == AuctionStatus.CLOSED

        assert state_machine.due_transition(make_auction(status=AuctionStatus.CLOSED), T0 + timedelta(days=1)) is None
