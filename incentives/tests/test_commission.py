"""
Tests for the commission cascade to a user's inviter.
"""

from decimal import Decimal

import pytest

from ledger.errors import AlreadyProcessedError
from ledger.models import EntryKind
from workflows.models import OrderCompleted, OrderStatus


INVITER_ID = "agent-alice"
INVITE_CODE = "ALICE01"
WORKER_ID = "bob"


@pytest.fixture
def invited_worker(task_platform, fund):
    task_platform.agents.add(INVITER_ID, INVITE_CODE)
    edge = task_platform.register_invite(WORKER_ID, INVITE_CODE)
    fund(WORKER_ID, "1000")
    return edge


def run_order(platform, order_id, amount="100", commission="10"):
    platform.create_order(WORKER_ID, Decimal(amount), Decimal(commission), order_id=order_id)
    platform.start_order(WORKER_ID, order_id)
    return platform.complete_order(WORKER_ID, order_id)


class TestCommissionCascade:
    """Tests for payouts driven by OrderCompleted."""

    def test_inviter_earns_tier_percentage(self, task_platform, invited_worker):
        """The first order validates the invite, then pays 5% of the commission."""
        run_order(task_platform, "ord-1", commission="10")

        payout = task_platform.ledger.find_entry(INVITER_ID, "ord-1", EntryKind.COMMISSION)
        assert payout.amount == Decimal("0.50")
        assert payout.metadata["source_user_id"] == WORKER_ID
        assert payout.metadata["tier_level"] == 1
        # Invite reward 10 plus the commission share.
        assert task_platform.get_balance(INVITER_ID).available == Decimal("10.50")
        assert task_platform.get_balance(WORKER_ID).available == Decimal("910")

    def test_payout_rounds_half_up(self, task_platform, invited_worker):
        run_order(task_platform, "ord-1", commission="0.30")
        payout = task_platform.ledger.find_entry(INVITER_ID, "ord-1", EntryKind.COMMISSION)
        assert payout.amount == Decimal("0.02")

    def test_replayed_completion_pays_once(self, task_platform, invited_worker):
        run_order(task_platform, "ord-1")

        with pytest.raises(AlreadyProcessedError):
            task_platform.complete_order(WORKER_ID, "ord-1")

        payouts = task_platform.ledger.list_entries(INVITER_ID, [EntryKind.COMMISSION])
        assert len(payouts) == 1

    def test_no_payout_without_valid_inviter(self, make_platform, fund):
        platform = make_platform(auto_validate_invites=False)
        platform.agents.add(INVITER_ID, INVITE_CODE)
        platform.register_invite(WORKER_ID, INVITE_CODE)
        fund(WORKER_ID, "1000", target=platform)

        run_order(platform, "ord-1")

        assert platform.get_balance(INVITER_ID).available == Decimal("0")
        assert platform.commissions.on_order_completed(_event(platform, "ord-1")) is None

    def test_zero_commission_order(self, task_platform, invited_worker):
        run_order(task_platform, "ord-1", commission="0")
        assert task_platform.ledger.find_entry(INVITER_ID, "ord-1", EntryKind.COMMISSION) is None

    def test_uses_inviter_current_tier(self, task_platform, invited_worker):
        """Once the inviter reaches tier 2 the share rises to 8%."""
        for i in range(9):
            edge = task_platform.register_invite(f"filler-{i}", INVITE_CODE)
            task_platform.validate_invite(edge.id)
        run_order(task_platform, "ord-1", commission="10")

        assert task_platform.invites.tier_for_user(INVITER_ID).level == 2
        payout = task_platform.ledger.find_entry(INVITER_ID, "ord-1", EntryKind.COMMISSION)
        assert payout.amount == Decimal("0.80")

    def test_failed_cascade_is_finished_by_retry(self, task_platform, invited_worker):
        """A listener failure leaves the order completed; a retry pays the inviter."""
        calls = []

        def flaky(event):
            calls.append(event.order_id)
            if len(calls) == 1:
                raise RuntimeError("listener down")

        task_platform.orders.listeners.insert(0, flaky)
        task_platform.create_order(WORKER_ID, Decimal("100"), Decimal("10"), order_id="ord-1")
        task_platform.start_order(WORKER_ID, "ord-1")

        with pytest.raises(RuntimeError):
            task_platform.complete_order(WORKER_ID, "ord-1")

        assert task_platform.orders.get_order("ord-1").status == OrderStatus.COMPLETED
        assert task_platform.ledger.find_entry(INVITER_ID, "ord-1", EntryKind.COMMISSION) is None

        with pytest.raises(AlreadyProcessedError):
            task_platform.complete_order(WORKER_ID, "ord-1")

        assert task_platform.ledger.find_entry(INVITER_ID, "ord-1", EntryKind.COMMISSION) is not None
        assert task_platform.get_balance(WORKER_ID).available == Decimal("910")


def _event(platform, order_id):
    order = platform.orders.get_order(order_id)
    return OrderCompleted(user_id=order.user_id, order_id=order.order_id, amount=order.amount,
                          commission=order.commission, completed_at=order.completed_at)
