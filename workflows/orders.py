import logging
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import uuid4

from ledger.config import quantize_money
from ledger.directory import UserDirectory
from ledger.errors import (
    AlreadyProcessedError,
    IdempotencyConflictError,
    InvalidAmountError,
    InvalidStateTransitionError,
    LimitExceededError,
    NotFoundError,
)
from ledger.models import EntryKind, Page, Posting, paginate
from ledger.service import LedgerService

from .base import Workflow, on_day
from .models import Order, OrderCompleted, OrderStats, OrderStatus

logger = logging.getLogger(__name__)

OrderListener = Callable[[OrderCompleted], Any]


class OrderWorkflow(Workflow):
    """pending -> processing -> completed, with cancel from either open state.

    The order amount is frozen for as long as the order is open. Completion
    consumes the frozen amount and credits the commission in one ledger unit
    keyed by the order id, then publishes ``OrderCompleted`` to the
    subscribed listeners. Cancelling returns the frozen amount to available.
    """

    ORDERS = "orders"

    def __init__(
        self,
        ledger: LedgerService,
        users: Optional[UserDirectory] = None,
        default_commission_rate: Decimal = Decimal("0.10"),
        task_limit: Optional[Callable[[str], Optional[int]]] = None,
    ):
        super().__init__(ledger, users)
        self.default_commission_rate = default_commission_rate
        self.task_limit = task_limit
        self.listeners: list[OrderListener] = []
        self.storage.register_collection(self.ORDERS, Order)

    def subscribe(self, listener: OrderListener) -> None:
        self.listeners.append(listener)

    def create_order(
        self,
        user_id: str,
        amount: Decimal,
        commission: Optional[Decimal] = None,
        order_id: Optional[str] = None,
        product_name: str = "",
    ) -> Order:
        if amount <= 0:
            raise InvalidAmountError(f"Order amount must be positive, got {amount}")
        if commission is not None and commission < 0:
            raise InvalidAmountError(f"Commission must not be negative, got {commission}")
        self._require_user(user_id)
        order_id = order_id or uuid4().hex

        with self.ledger.atomic(user_id):
            existing = self.storage.get(self.ORDERS, order_id)
            if existing:
                order = Order(**existing)
                if order.user_id == user_id and order.amount == amount:
                    return order
                raise IdempotencyConflictError(f"Order {order_id} already exists with different parameters")

            self._check_task_limit(user_id)

            if commission is None:
                commission = amount * self.default_commission_rate
            order = Order(
                order_id=order_id,
                user_id=user_id,
                amount=amount,
                commission=quantize_money(commission),
                status=OrderStatus.PENDING,
                product_name=product_name,
                created_at=self.now(),
            )
            self.ledger.freeze(user_id, amount, EntryKind.ORDER_FREEZE, order_id,
                               f"Order {order_id} frozen: {amount}")
            self.storage.put(self.ORDERS, order_id, order.model_dump())

        logger.info("order created id=%s user=%s amount=%s commission=%s",
                    order_id, user_id, amount, order.commission)
        return order

    def start_order(self, order_id: str, user_id: Optional[str] = None) -> Order:
        order = self.get_order(order_id)
        self._check_owner(order.user_id, user_id, f"Order {order_id}")
        with self.ledger.atomic(order.user_id):
            order = self.get_order(order_id)
            if order.status == OrderStatus.PROCESSING:
                raise AlreadyProcessedError(f"Order {order_id} already started", result=order)
            if not order.can_start():
                raise InvalidStateTransitionError(f"Cannot start order in {order.status.value} state")
            order.status = OrderStatus.PROCESSING
            order.started_at = self.now()
            self.storage.put(self.ORDERS, order_id, order.model_dump())
        logger.info("order started id=%s", order_id)
        return order

    def complete_order(self, order_id: str, user_id: Optional[str] = None) -> Order:
        order = self.get_order(order_id)
        self._check_owner(order.user_id, user_id, f"Order {order_id}")
        replay = False
        with self.ledger.atomic(order.user_id):
            order = self.get_order(order_id)
            if order.status == OrderStatus.COMPLETED:
                replay = True
            elif not order.can_complete():
                raise InvalidStateTransitionError(f"Cannot complete order in {order.status.value} state")
            else:
                postings = [Posting(
                    kind=EntryKind.ORDER_RELEASE,
                    related_id=order_id,
                    frozen_delta=-order.amount,
                    amount=-order.amount,
                    description=f"Order {order_id} settled, frozen amount consumed: {order.amount}",
                )]
                if order.commission > 0:
                    postings.append(Posting(
                        kind=EntryKind.COMMISSION,
                        related_id=order_id,
                        available_delta=order.commission,
                        description=f"Order {order_id} commission: {order.commission}",
                    ))
                self.ledger.post(order.user_id, *postings)
                order.status = OrderStatus.COMPLETED
                order.completed_at = self.now()
                self.storage.put(self.ORDERS, order_id, order.model_dump())
                logger.info("order completed id=%s user=%s commission=%s",
                            order_id, order.user_id, order.commission)

        # Listeners are idempotent, so a replay re-publishes to finish any
        # cascade that failed after the owner's unit was committed.
        self._publish(OrderCompleted(
            user_id=order.user_id,
            order_id=order.order_id,
            amount=order.amount,
            commission=order.commission,
            completed_at=order.completed_at,
        ))
        if replay:
            raise AlreadyProcessedError(f"Order {order_id} already completed", result=order)
        return order

    def cancel_order(self, order_id: str, user_id: Optional[str] = None) -> Order:
        order = self.get_order(order_id)
        self._check_owner(order.user_id, user_id, f"Order {order_id}")
        with self.ledger.atomic(order.user_id):
            order = self.get_order(order_id)
            if order.status == OrderStatus.CANCELLED:
                raise AlreadyProcessedError(f"Order {order_id} already cancelled", result=order)
            if not order.can_cancel():
                raise InvalidStateTransitionError(f"Cannot cancel order in {order.status.value} state")
            self.ledger.unfreeze(order.user_id, order.amount, EntryKind.ORDER_RELEASE, order_id,
                                 f"Order {order_id} cancelled, released: {order.amount}")
            order.status = OrderStatus.CANCELLED
            order.cancelled_at = self.now()
            self.storage.put(self.ORDERS, order_id, order.model_dump())
        logger.info("order cancelled id=%s user=%s", order_id, order.user_id)
        return order

    def get_order(self, order_id: str) -> Order:
        record = self.storage.get(self.ORDERS, order_id)
        if not record:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        return Order(**record)

    def user_orders(self, user_id: str) -> list[Order]:
        orders = [Order(**o) for o in self.storage.values(self.ORDERS) if o["user_id"] == user_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    def list_orders(
        self,
        user_id: str,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Page:
        orders = self.user_orders(user_id)
        if status is not None:
            orders = [o for o in orders if o.status == status]
        return paginate(orders, page, page_size)

    def get_stats(self, user_id: str) -> OrderStats:
        orders = self.user_orders(user_id)
        today = self.today()
        completed = [o for o in orders if o.status == OrderStatus.COMPLETED]
        return OrderStats(
            user_id=user_id,
            pending_orders=sum(1 for o in orders if o.status == OrderStatus.PENDING),
            processing_orders=sum(1 for o in orders if o.status == OrderStatus.PROCESSING),
            completed_orders=len(completed),
            cancelled_orders=sum(1 for o in orders if o.status == OrderStatus.CANCELLED),
            total_earnings=sum((o.commission for o in completed), Decimal("0")),
            today_earnings=sum((o.commission for o in completed if on_day(o.completed_at, today)), Decimal("0")),
        )

    def _check_task_limit(self, user_id: str) -> None:
        if self.task_limit is None:
            return
        limit = self.task_limit(user_id)
        if limit is None:
            return
        today = self.today()
        created_today = sum(
            1 for o in self.user_orders(user_id)
            if o.status != OrderStatus.CANCELLED and on_day(o.created_at, today)
        )
        if created_today >= limit:
            logger.warning("order rejected user=%s daily task limit %d reached", user_id, limit)
            raise LimitExceededError(f"Daily task limit of {limit} orders reached", user_id=user_id)

    def _publish(self, event: OrderCompleted) -> None:
        for listener in self.listeners:
            listener(event)
