"""
Tests for priced VIP upgrades and the effective VIP profile.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from ledger.errors import IdempotencyConflictError, InsufficientFundsError, InvalidTargetError
from ledger.models import EntryKind


USER_ID = "member-1"


class TestVipUpgrade:
    """Tests for buying a higher VIP level."""

    def test_upgrade_debits_price(self, task_platform, fund, clock):
        fund(USER_ID, "500")

        order = task_platform.upgrade_vip(USER_ID, 2)

        assert (order.from_level, order.to_level) == (1, 2)
        assert order.price == Decimal("99")
        assert order.expire_at == clock.now + timedelta(days=30)
        assert task_platform.get_balance(USER_ID).available == Decimal("401")
        debit = task_platform.ledger.find_entry(USER_ID, order.id, EntryKind.VIP_UPGRADE)
        assert debit.amount == Decimal("-99")

        status = task_platform.get_vip_status(USER_ID)
        assert status.level == 2
        assert status.name == "Silver"
        assert status.effective_level == 2
        assert status.daily_task_limit == 15
        assert not status.is_expired

    def test_target_must_be_higher(self, task_platform, fund):
        fund(USER_ID, "500")
        task_platform.upgrade_vip(USER_ID, 3)

        with pytest.raises(InvalidTargetError):
            task_platform.upgrade_vip(USER_ID, 3)
        with pytest.raises(InvalidTargetError):
            task_platform.upgrade_vip(USER_ID, 2)
        assert task_platform.get_balance(USER_ID).available == Decimal("201")

    def test_base_level_is_not_a_target(self, task_platform):
        with pytest.raises(InvalidTargetError):
            task_platform.upgrade_vip(USER_ID, 1)

    def test_unknown_level(self, task_platform, fund):
        fund(USER_ID, "5000")
        with pytest.raises(InvalidTargetError):
            task_platform.upgrade_vip(USER_ID, 9)

    def test_insufficient_funds_changes_nothing(self, task_platform, fund):
        fund(USER_ID, "50")

        with pytest.raises(InsufficientFundsError):
            task_platform.upgrade_vip(USER_ID, 2, request_id="vip-1")

        assert task_platform.get_vip_status(USER_ID).level == 1
        assert task_platform.vip.list_vip_orders(USER_ID).total_count == 0
        assert task_platform.get_balance(USER_ID).available == Decimal("50")

    def test_retry_with_request_id(self, task_platform, fund):
        fund(USER_ID, "500")
        first = task_platform.upgrade_vip(USER_ID, 2, request_id="vip-1")
        second = task_platform.upgrade_vip(USER_ID, 2, request_id="vip-1")

        assert first == second
        assert task_platform.get_balance(USER_ID).available == Decimal("401")
        with pytest.raises(IdempotencyConflictError):
            task_platform.upgrade_vip(USER_ID, 3, request_id="vip-1")


class TestVipExpiry:
    """Tests for the effective profile after the paid period."""

    def test_expired_vip_falls_back_to_base(self, task_platform, fund, clock):
        fund(USER_ID, "500")
        task_platform.upgrade_vip(USER_ID, 2)
        clock.advance(days=31)

        status = task_platform.get_vip_status(USER_ID)

        assert status.level == 2
        assert status.is_expired
        assert status.effective_level == 1
        assert status.daily_task_limit == 10
        assert task_platform.vip.daily_task_limit(USER_ID) == 10

    def test_expired_vip_can_upgrade_again(self, task_platform, fund, clock):
        fund(USER_ID, "500")
        task_platform.upgrade_vip(USER_ID, 2)
        clock.advance(days=31)

        order = task_platform.upgrade_vip(USER_ID, 2)

        assert order.from_level == 1
        assert task_platform.get_balance(USER_ID).available == Decimal("302")
        history = task_platform.vip.list_vip_orders(USER_ID)
        assert history.total_count == 2
        assert history.items[0].id == order.id

    def test_task_limit_follows_vip_level(self, task_platform, fund):
        """A Silver member may create fifteen orders a day."""
        fund(USER_ID, "1000")
        task_platform.upgrade_vip(USER_ID, 2)
        for i in range(15):
            task_platform.create_order(USER_ID, Decimal("10"), order_id=f"ord-{i}")
        assert len(task_platform.orders.user_orders(USER_ID)) == 15
