import logging
from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal
from typing import Iterator, Optional
from uuid import uuid4

from ledger.config import ConfigProvider
from ledger.directory import UserDirectory
from ledger.errors import (
    AlreadyProcessedError,
    ExpiredError,
    IdempotencyConflictError,
    InvalidAmountError,
    InvalidStateTransitionError,
    NotFoundError,
)
from ledger.models import EntryKind, Page, paginate
from ledger.service import LedgerService

from .base import Workflow
from .models import RechargeOrder, RechargeStatus

logger = logging.getLogger(__name__)


class RechargeWorkflow(Workflow):
    """pending -> processing -> completed; no funds move before approval.

    Expiry is checked lazily: the first transition attempted after
    ``expires_at`` moves an open order to ``expired`` and fails.
    """

    RECHARGES = "recharge_orders"

    def __init__(
        self,
        ledger: LedgerService,
        config: ConfigProvider,
        users: Optional[UserDirectory] = None,
        expiry_hours: int = 24,
    ):
        super().__init__(ledger, users)
        self.config = config
        self.expiry = timedelta(hours=expiry_hours)
        self.storage.register_collection(self.RECHARGES, RechargeOrder)

    def create_recharge(
        self,
        user_id: str,
        amount: Decimal,
        method_id: str,
        recharge_id: Optional[str] = None,
    ) -> RechargeOrder:
        if amount <= 0:
            raise InvalidAmountError(f"Recharge amount must be positive, got {amount}")
        self._require_user(user_id)
        method = self.config.current.recharge_method(method_id)
        if method is None or not method.is_enabled:
            raise NotFoundError(f"Recharge method {method_id} is not available", method_id=method_id)
        if amount < method.min_amount or amount > method.max_amount:
            raise InvalidAmountError(
                f"Recharge amount must be between {method.min_amount} and {method.max_amount}"
            )
        recharge_id = recharge_id or uuid4().hex

        with self.ledger.atomic(user_id):
            existing = self.storage.get(self.RECHARGES, recharge_id)
            if existing:
                order = RechargeOrder(**existing)
                if order.user_id == user_id and order.amount == amount and order.method_id == method_id:
                    return order
                raise IdempotencyConflictError(f"Recharge {recharge_id} already exists with different parameters")

            fee = method.fee_for(amount)
            now = self.now()
            order = RechargeOrder(
                id=recharge_id,
                user_id=user_id,
                method_id=method.id,
                method_name=method.name,
                amount=amount,
                fee=fee,
                actual_amount=amount + fee,
                status=RechargeStatus.PENDING,
                created_at=now,
                expires_at=now + self.expiry,
            )
            self.storage.put(self.RECHARGES, recharge_id, order.model_dump())

        logger.info("recharge created id=%s user=%s amount=%s method=%s", recharge_id, user_id, amount, method_id)
        return order

    def confirm_recharge(self, recharge_id: str, user_id: Optional[str] = None,
                         proof_ref: Optional[str] = None) -> RechargeOrder:
        order = self.get_recharge(recharge_id)
        self._check_owner(order.user_id, user_id, f"Recharge {recharge_id}")
        with self._transition(order.user_id, recharge_id) as order:
            if order.status == RechargeStatus.PROCESSING:
                raise AlreadyProcessedError(f"Recharge {recharge_id} already confirmed", result=order)
            if order.status != RechargeStatus.PENDING:
                raise InvalidStateTransitionError(f"Cannot confirm recharge in {order.status.value} state")
            order.status = RechargeStatus.PROCESSING
            order.confirmed_at = self.now()
            order.proof_ref = proof_ref
            self._save(order)
        logger.info("recharge confirmed id=%s", recharge_id)
        return order

    def approve_recharge(self, recharge_id: str, performed_by: Optional[str] = None,
                         remark: Optional[str] = None) -> RechargeOrder:
        order = self.get_recharge(recharge_id)
        with self._transition(order.user_id, recharge_id) as order:
            if order.status == RechargeStatus.COMPLETED:
                raise AlreadyProcessedError(f"Recharge {recharge_id} already completed", result=order)
            if order.status != RechargeStatus.PROCESSING:
                raise InvalidStateTransitionError(f"Cannot approve recharge in {order.status.value} state")
            self.ledger.credit(order.user_id, order.amount, EntryKind.RECHARGE, recharge_id,
                               f"Recharge via {order.method_name or order.method_id}: {order.amount}")
            self._close(order, RechargeStatus.COMPLETED, performed_by, remark)
        logger.info("recharge approved id=%s user=%s amount=%s", recharge_id, order.user_id, order.amount)
        return order

    def reject_recharge(self, recharge_id: str, performed_by: Optional[str] = None,
                        remark: Optional[str] = None) -> RechargeOrder:
        order = self.get_recharge(recharge_id)
        with self._transition(order.user_id, recharge_id) as order:
            if order.status == RechargeStatus.REJECTED:
                raise AlreadyProcessedError(f"Recharge {recharge_id} already rejected", result=order)
            if not order.is_open():
                raise InvalidStateTransitionError(f"Cannot reject recharge in {order.status.value} state")
            self._close(order, RechargeStatus.REJECTED, performed_by, remark)
        logger.info("recharge rejected id=%s user=%s", recharge_id, order.user_id)
        return order

    def cancel_recharge(self, recharge_id: str, user_id: str) -> RechargeOrder:
        order = self.get_recharge(recharge_id)
        self._check_owner(order.user_id, user_id, f"Recharge {recharge_id}")
        with self._transition(order.user_id, recharge_id) as order:
            if order.status == RechargeStatus.CANCELLED:
                raise AlreadyProcessedError(f"Recharge {recharge_id} already cancelled", result=order)
            if order.status != RechargeStatus.PENDING:
                raise InvalidStateTransitionError(f"Cannot cancel recharge in {order.status.value} state")
            self._close(order, RechargeStatus.CANCELLED, user_id, None)
        logger.info("recharge cancelled id=%s user=%s", recharge_id, user_id)
        return order

    def get_recharge(self, recharge_id: str) -> RechargeOrder:
        record = self.storage.get(self.RECHARGES, recharge_id)
        if not record:
            raise NotFoundError(f"Recharge {recharge_id} not found", recharge_id=recharge_id)
        return RechargeOrder(**record)

    def list_recharges(
        self,
        user_id: str,
        status: Optional[RechargeStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Page:
        orders = [RechargeOrder(**o) for o in self.storage.values(self.RECHARGES) if o["user_id"] == user_id]
        if status is not None:
            orders = [o for o in orders if o.status == status]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return paginate(orders, page, page_size)

    @contextmanager
    def _transition(self, user_id: str, recharge_id: str) -> Iterator[RechargeOrder]:
        # The expiry is committed in its own unit so the order stays expired
        # even though the requested transition fails.
        with self.ledger.atomic(user_id):
            expired = self._expire_if_due(recharge_id)
        if expired is not None:
            raise ExpiredError(f"Recharge {recharge_id} expired at {expired.expires_at}", recharge_id=recharge_id)
        with self.ledger.atomic(user_id):
            yield self.get_recharge(recharge_id)

    def _expire_if_due(self, recharge_id: str) -> Optional[RechargeOrder]:
        order = self.get_recharge(recharge_id)
        if order.status == RechargeStatus.EXPIRED:
            return order
        if order.is_open() and self.now() > order.expires_at:
            order.status = RechargeStatus.EXPIRED
            order.processed_at = self.now()
            self._save(order)
            logger.info("recharge expired id=%s user=%s", recharge_id, order.user_id)
            return order
        return None

    def _close(self, order: RechargeOrder, status: RechargeStatus, performed_by: Optional[str],
               remark: Optional[str]) -> None:
        order.status = status
        order.processed_at = self.now()
        order.processed_by = performed_by
        order.remark = remark
        self._save(order)

    def _save(self, order: RechargeOrder) -> None:
        self.storage.put(self.RECHARGES, order.id, order.model_dump())

