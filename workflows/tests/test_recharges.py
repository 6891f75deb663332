"""
Tests for the recharge workflow, including lazy expiry.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from ledger.errors import (
    AlreadyProcessedError,
    ExpiredError,
    InvalidAmountError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from ledger.models import EntryKind
from workflows.models import RechargeStatus


USER_ID = "payer-1"


class TestRechargeFlow:
    """Tests for pending -> processing -> completed."""

    def test_confirm_and_approve_credits_amount(self, task_platform):
        order = task_platform.create_recharge(USER_ID, Decimal("500"), "alipay", recharge_id="rc-1")
        assert order.status == RechargeStatus.PENDING
        assert order.actual_amount == Decimal("500")
        assert task_platform.get_balance(USER_ID).available == Decimal("0")

        task_platform.confirm_recharge(USER_ID, "rc-1", proof_ref="receipt-77")
        order = task_platform.approve_recharge("rc-1", performed_by="admin-1")

        assert order.status == RechargeStatus.COMPLETED
        assert task_platform.get_balance(USER_ID).available == Decimal("500")
        entries = task_platform.ledger.list_entries(USER_ID, [EntryKind.RECHARGE])
        assert len(entries) == 1
        assert entries[0].related_id == "rc-1"

    def test_second_approve_rejected(self, task_platform):
        task_platform.create_recharge(USER_ID, Decimal("100"), "bank", recharge_id="rc-1")
        task_platform.confirm_recharge(USER_ID, "rc-1")
        task_platform.approve_recharge("rc-1")

        with pytest.raises(AlreadyProcessedError):
            task_platform.approve_recharge("rc-1")
        assert task_platform.get_balance(USER_ID).available == Decimal("100")

    def test_approve_requires_confirmation(self, task_platform):
        task_platform.create_recharge(USER_ID, Decimal("100"), "bank", recharge_id="rc-1")
        with pytest.raises(InvalidStateTransitionError):
            task_platform.approve_recharge("rc-1")

    def test_reject_from_processing(self, task_platform):
        task_platform.create_recharge(USER_ID, Decimal("100"), "bank", recharge_id="rc-1")
        task_platform.confirm_recharge(USER_ID, "rc-1")

        order = task_platform.reject_recharge("rc-1", remark="no transfer found")

        assert order.status == RechargeStatus.REJECTED
        assert task_platform.get_balance(USER_ID).available == Decimal("0")
        with pytest.raises(InvalidStateTransitionError):
            task_platform.approve_recharge("rc-1")

    def test_owner_cancels_pending(self, task_platform):
        task_platform.create_recharge(USER_ID, Decimal("100"), "bank", recharge_id="rc-1")
        with pytest.raises(PermissionDeniedError):
            task_platform.cancel_recharge("intruder", "rc-1")

        order = task_platform.cancel_recharge(USER_ID, "rc-1")
        assert order.status == RechargeStatus.CANCELLED

    def test_cannot_cancel_after_confirm(self, task_platform):
        task_platform.create_recharge(USER_ID, Decimal("100"), "bank", recharge_id="rc-1")
        task_platform.confirm_recharge(USER_ID, "rc-1")
        with pytest.raises(InvalidStateTransitionError):
            task_platform.cancel_recharge(USER_ID, "rc-1")


class TestRechargeValidation:
    def test_method_bounds(self, task_platform):
        with pytest.raises(InvalidAmountError):
            task_platform.create_recharge(USER_ID, Decimal("5"), "bank")
        with pytest.raises(InvalidAmountError):
            task_platform.create_recharge(USER_ID, Decimal("10000.01"), "wechat")

    def test_unknown_method(self, task_platform):
        with pytest.raises(NotFoundError):
            task_platform.create_recharge(USER_ID, Decimal("50"), "paypal")


class TestRechargeExpiry:
    """Tests for orders left open past their deadline."""

    def test_expired_order_cannot_be_confirmed(self, task_platform, clock):
        task_platform.create_recharge(USER_ID, Decimal("100"), "bank", recharge_id="rc-1")
        clock.advance(hours=24, seconds=1)

        with pytest.raises(ExpiredError):
            task_platform.confirm_recharge(USER_ID, "rc-1")

        # The expiry sticks even though the confirm failed.
        assert task_platform.recharges.get_recharge("rc-1").status == RechargeStatus.EXPIRED
        with pytest.raises(ExpiredError):
            task_platform.approve_recharge("rc-1")

    def test_confirmed_order_still_expires(self, task_platform, clock):
        task_platform.create_recharge(USER_ID, Decimal("100"), "bank", recharge_id="rc-1")
        task_platform.confirm_recharge(USER_ID, "rc-1")
        clock.advance(hours=25)

        with pytest.raises(ExpiredError):
            task_platform.approve_recharge("rc-1")
        assert task_platform.get_balance(USER_ID).available == Decimal("0")

    def test_expiry_window_from_settings(self, make_platform, clock):
        platform = make_platform(recharge_expiry_hours=1)
        order = platform.create_recharge(USER_ID, Decimal("100"), "bank", recharge_id="rc-1")
        assert order.expires_at == clock.now + timedelta(hours=1)

        clock.advance(minutes=59)
        platform.confirm_recharge(USER_ID, "rc-1")
        platform.approve_recharge("rc-1")
        assert platform.get_balance(USER_ID).available == Decimal("100")
