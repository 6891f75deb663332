import logging
import re
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from ledger.config import ConfigProvider
from ledger.directory import UserDirectory
from ledger.errors import (
    AlreadyProcessedError,
    IdempotencyConflictError,
    InvalidAmountError,
    InvalidRequestError,
    InvalidStateTransitionError,
    LimitExceededError,
    NotFoundError,
)
from ledger.models import EntryKind, Page, paginate
from ledger.service import LedgerService

from .base import Workflow, on_day
from .models import BankCard, WithdrawOrder, WithdrawStats, WithdrawStatus

logger = logging.getLogger(__name__)

CARD_NUMBER_RE = re.compile(r"^\d{13,19}$")


def normalize_card_number(card_number: str) -> str:
    return card_number.strip().replace(" ", "").replace("-", "")


class WithdrawWorkflow(Workflow):
    """Withdrawal requests plus the bank cards they pay out to.

    Requesting freezes the full amount; approval deducts it from frozen (the
    fee stays on the platform, ``actual_amount`` leaves it); rejection or a
    cancel by the owner releases it back to available.
    """

    WITHDRAWALS = "withdraw_orders"
    BANK_CARDS = "bank_cards"

    def __init__(self, ledger: LedgerService, config: ConfigProvider, users: Optional[UserDirectory] = None):
        super().__init__(ledger, users)
        self.config = config
        self.storage.register_collection(self.WITHDRAWALS, WithdrawOrder)
        self.storage.register_collection(self.BANK_CARDS, BankCard)

    # Bank cards

    def add_bank_card(
        self,
        user_id: str,
        bank_name: str,
        card_number: str,
        card_holder: str,
        is_default: bool = False,
    ) -> BankCard:
        self._require_user(user_id)
        number = normalize_card_number(card_number)
        if not CARD_NUMBER_RE.match(number):
            raise InvalidRequestError("Card number must be 13-19 digits")
        if not bank_name.strip() or not card_holder.strip():
            raise InvalidRequestError("Bank name and card holder are required")

        with self.ledger.atomic(user_id):
            cards = self.list_bank_cards(user_id)
            if any(c.card_number == number for c in cards):
                raise InvalidRequestError("This bank card is already registered")
            make_default = is_default or not cards
            if make_default:
                for card in cards:
                    if card.is_default:
                        card.is_default = False
                        self.storage.put(self.BANK_CARDS, card.id, card.model_dump())
            card = BankCard(
                id=uuid4().hex,
                user_id=user_id,
                bank_name=bank_name.strip(),
                card_number=number,
                card_holder=card_holder.strip(),
                is_default=make_default,
                created_at=self.now(),
            )
            self.storage.put(self.BANK_CARDS, card.id, card.model_dump())
        logger.info("bank card added user=%s card=%s default=%s", user_id, card.masked_number, card.is_default)
        return card

    def list_bank_cards(self, user_id: str) -> list[BankCard]:
        cards = [
            BankCard(**c) for c in self.storage.values(self.BANK_CARDS)
            if c["user_id"] == user_id and not c["is_deleted"]
        ]
        cards.sort(key=lambda c: c.created_at)
        return cards

    def set_default_card(self, user_id: str, card_id: str) -> BankCard:
        with self.ledger.atomic(user_id):
            target = self._live_card(user_id, card_id)
            for card in self.list_bank_cards(user_id):
                should_default = card.id == card_id
                if card.is_default != should_default:
                    card.is_default = should_default
                    self.storage.put(self.BANK_CARDS, card.id, card.model_dump())
            target.is_default = True
        return target

    def delete_bank_card(self, user_id: str, card_id: str) -> BankCard:
        with self.ledger.atomic(user_id):
            card = self._live_card(user_id, card_id)
            card.is_deleted = True
            was_default, card.is_default = card.is_default, False
            self.storage.put(self.BANK_CARDS, card.id, card.model_dump())
            if was_default:
                remaining = self.list_bank_cards(user_id)
                if remaining:
                    remaining[0].is_default = True
                    self.storage.put(self.BANK_CARDS, remaining[0].id, remaining[0].model_dump())
        return card

    def _live_card(self, user_id: str, card_id: str) -> BankCard:
        record = self.storage.get(self.BANK_CARDS, card_id)
        if not record or record["user_id"] != user_id or record["is_deleted"]:
            raise NotFoundError(f"Bank card {card_id} not found", card_id=card_id)
        return BankCard(**record)

    # Withdrawals

    def create_withdraw(
        self,
        user_id: str,
        amount: Decimal,
        bank_ref: str,
        withdraw_id: Optional[str] = None,
    ) -> WithdrawOrder:
        if amount <= 0:
            raise InvalidAmountError(f"Withdraw amount must be positive, got {amount}")
        self._require_user(user_id)
        config = self.config.current.withdraw
        if amount < config.min_amount or amount > config.max_amount:
            raise InvalidAmountError(
                f"Withdraw amount must be between {config.min_amount} and {config.max_amount}"
            )
        fee = config.fee_for(amount)
        actual_amount = amount - fee
        if actual_amount <= 0:
            raise InvalidAmountError(f"Withdraw amount {amount} does not cover the fee {fee}")
        withdraw_id = withdraw_id or uuid4().hex

        with self.ledger.atomic(user_id):
            existing = self.storage.get(self.WITHDRAWALS, withdraw_id)
            if existing:
                order = WithdrawOrder(**existing)
                if order.user_id == user_id and order.amount == amount and order.bank_ref == bank_ref:
                    return order
                raise IdempotencyConflictError(f"Withdraw {withdraw_id} already exists with different parameters")

            self._live_card(user_id, bank_ref)

            approved_today = self.approved_amount_on(user_id)
            if approved_today + amount > config.daily_limit:
                logger.warning("withdraw rejected user=%s daily limit %s (approved today %s, requested %s)",
                               user_id, config.daily_limit, approved_today, amount)
                raise LimitExceededError(f"Daily withdraw limit of {config.daily_limit} exceeded", user_id=user_id)

            order = WithdrawOrder(
                id=withdraw_id,
                user_id=user_id,
                amount=amount,
                fee=fee,
                actual_amount=actual_amount,
                status=WithdrawStatus.PENDING,
                bank_ref=bank_ref,
                created_at=self.now(),
            )
            self.ledger.freeze(user_id, amount, EntryKind.WITHDRAW_FREEZE, withdraw_id,
                               f"Withdraw request frozen: {amount}")
            self.storage.put(self.WITHDRAWALS, withdraw_id, order.model_dump())

        logger.info("withdraw created id=%s user=%s amount=%s fee=%s", withdraw_id, user_id, amount, fee)
        return order

    def approve_withdraw(self, withdraw_id: str, performed_by: Optional[str] = None,
                         remark: Optional[str] = None) -> WithdrawOrder:
        order = self.get_withdraw(withdraw_id)
        with self.ledger.atomic(order.user_id):
            order = self._pending(withdraw_id, WithdrawStatus.APPROVED)
            self.ledger.deduct_frozen(order.user_id, order.amount, EntryKind.WITHDRAW, withdraw_id,
                                      f"Withdraw paid out: {order.actual_amount}")
            order = self._close(order, WithdrawStatus.APPROVED, performed_by, remark)
        logger.info("withdraw approved id=%s user=%s actual=%s", withdraw_id, order.user_id, order.actual_amount)
        return order

    def reject_withdraw(self, withdraw_id: str, performed_by: Optional[str] = None,
                        remark: Optional[str] = None) -> WithdrawOrder:
        order = self.get_withdraw(withdraw_id)
        with self.ledger.atomic(order.user_id):
            order = self._pending(withdraw_id, WithdrawStatus.REJECTED)
            self.ledger.unfreeze(order.user_id, order.amount, EntryKind.WITHDRAW_UNFREEZE, withdraw_id,
                                 f"Withdraw rejected, released: {order.amount}")
            order = self._close(order, WithdrawStatus.REJECTED, performed_by, remark)
        logger.info("withdraw rejected id=%s user=%s", withdraw_id, order.user_id)
        return order

    def cancel_withdraw(self, withdraw_id: str, user_id: str) -> WithdrawOrder:
        order = self.get_withdraw(withdraw_id)
        self._check_owner(order.user_id, user_id, f"Withdraw {withdraw_id}")
        with self.ledger.atomic(order.user_id):
            order = self._pending(withdraw_id, WithdrawStatus.CANCELLED)
            self.ledger.unfreeze(order.user_id, order.amount, EntryKind.WITHDRAW_UNFREEZE, withdraw_id,
                                 f"Withdraw cancelled, released: {order.amount}")
            order = self._close(order, WithdrawStatus.CANCELLED, user_id, None)
        logger.info("withdraw cancelled id=%s user=%s", withdraw_id, user_id)
        return order

    def get_withdraw(self, withdraw_id: str) -> WithdrawOrder:
        record = self.storage.get(self.WITHDRAWALS, withdraw_id)
        if not record:
            raise NotFoundError(f"Withdraw {withdraw_id} not found", withdraw_id=withdraw_id)
        return WithdrawOrder(**record)

    def user_withdraws(self, user_id: str) -> list[WithdrawOrder]:
        orders = [WithdrawOrder(**o) for o in self.storage.values(self.WITHDRAWALS) if o["user_id"] == user_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    def list_withdraws(
        self,
        user_id: str,
        status: Optional[WithdrawStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Page:
        orders = self.user_withdraws(user_id)
        if status is not None:
            orders = [o for o in orders if o.status == status]
        return paginate(orders, page, page_size)

    def approved_amount_on(self, user_id: str, day=None) -> Decimal:
        day = day or self.today()
        return sum(
            (o.amount for o in self.user_withdraws(user_id)
             if o.status == WithdrawStatus.APPROVED and on_day(o.processed_at, day)),
            Decimal("0"),
        )

    def get_stats(self, user_id: str) -> WithdrawStats:
        orders = self.user_withdraws(user_id)
        approved = [o for o in orders if o.status == WithdrawStatus.APPROVED]
        today = self.today()
        month_start = today.replace(day=1)
        last = max(approved, key=lambda o: o.processed_at, default=None)
        return WithdrawStats(
            user_id=user_id,
            total_amount=sum((o.actual_amount for o in approved), Decimal("0")),
            total_count=len(approved),
            pending_count=sum(1 for o in orders if o.is_pending()),
            today_amount=sum((o.actual_amount for o in approved if on_day(o.processed_at, today)), Decimal("0")),
            monthly_amount=sum(
                (o.actual_amount for o in approved if o.processed_at and o.processed_at.date() >= month_start),
                Decimal("0"),
            ),
            last_withdraw_at=last.processed_at if last else None,
        )

    def _pending(self, withdraw_id: str, target: WithdrawStatus) -> WithdrawOrder:
        order = self.get_withdraw(withdraw_id)
        if order.status == target:
            raise AlreadyProcessedError(f"Withdraw {withdraw_id} already {target.value}", result=order)
        if not order.is_pending():
            raise InvalidStateTransitionError(
                f"Cannot move withdraw from {order.status.value} to {target.value}"
            )
        return order

    def _close(self, order: WithdrawOrder, status: WithdrawStatus, performed_by: Optional[str],
               remark: Optional[str]) -> WithdrawOrder:
        order.status = status
        order.processed_at = self.now()
        order.processed_by = performed_by
        order.remark = remark
        self.storage.put(self.WITHDRAWALS, order.id, order.model_dump())
        return order
