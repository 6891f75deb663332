from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WithdrawStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RechargeStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Order(BaseModel):
    order_id: str
    user_id: str
    amount: Decimal
    commission: Decimal
    status: OrderStatus
    product_name: str = ""
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def can_start(self) -> bool:
        return self.status == OrderStatus.PENDING

    def can_complete(self) -> bool:
        return self.status == OrderStatus.PROCESSING

    def can_cancel(self) -> bool:
        return self.status in (OrderStatus.PENDING, OrderStatus.PROCESSING)

    @property
    def frozen_amount(self) -> Decimal:
        return self.amount if self.can_cancel() else Decimal("0")


class OrderCompleted(BaseModel):
    """Emitted after an order's release and commission are committed."""

    user_id: str
    order_id: str
    amount: Decimal
    commission: Decimal
    completed_at: datetime


class WithdrawOrder(BaseModel):
    id: str
    user_id: str
    amount: Decimal
    fee: Decimal
    actual_amount: Decimal
    status: WithdrawStatus
    bank_ref: str
    created_at: datetime
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    remark: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def is_pending(self) -> bool:
        return self.status == WithdrawStatus.PENDING


class RechargeOrder(BaseModel):
    id: str
    user_id: str
    method_id: str
    method_name: str = ""
    amount: Decimal
    fee: Decimal
    actual_amount: Decimal
    status: RechargeStatus
    created_at: datetime
    expires_at: datetime
    confirmed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    proof_ref: Optional[str] = None
    remark: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def is_open(self) -> bool:
        return self.status in (RechargeStatus.PENDING, RechargeStatus.PROCESSING)


class BankCard(BaseModel):
    id: str
    user_id: str
    bank_name: str
    card_number: str
    card_holder: str
    is_default: bool = False
    is_deleted: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def masked_number(self) -> str:
        if len(self.card_number) < 8:
            return self.card_number
        return self.card_number[:4] + "****" + self.card_number[-4:]


class BankCardView(BaseModel):
    id: str
    bank_name: str
    card_number: str
    card_holder: str
    is_default: bool
    created_at: datetime

    @classmethod
    def from_card(cls, card: BankCard) -> "BankCardView":
        return cls(
            id=card.id, bank_name=card.bank_name, card_number=card.masked_number,
            card_holder=card.card_holder, is_default=card.is_default, created_at=card.created_at,
        )


class OrderStats(BaseModel):
    user_id: str
    pending_orders: int
    processing_orders: int
    completed_orders: int
    cancelled_orders: int
    total_earnings: Decimal
    today_earnings: Decimal


class WithdrawStats(BaseModel):
    user_id: str
    total_amount: Decimal
    total_count: int
    pending_count: int
    today_amount: Decimal
    monthly_amount: Decimal
    last_withdraw_at: Optional[datetime] = None


class CreateOrderRequest(BaseModel):
    user_id: str
    order_id: Optional[str] = Field(default=None, description="Caller-chosen id; retries with the same id are idempotent")
    amount: Decimal = Field(..., gt=0)
    commission: Optional[Decimal] = Field(default=None, ge=0)
    product_name: str = ""


class OrderActionRequest(BaseModel):
    user_id: Optional[str] = None


class CreateWithdrawRequest(BaseModel):
    user_id: str
    withdraw_id: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    bank_ref: str


class ReviewRequest(BaseModel):
    performed_by: Optional[str] = None
    remark: Optional[str] = None


class CancelRequest(BaseModel):
    user_id: str


class CreateRechargeRequest(BaseModel):
    user_id: str
    recharge_id: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    method_id: str


class ConfirmRechargeRequest(BaseModel):
    user_id: Optional[str] = None
    proof_ref: Optional[str] = None


class AddBankCardRequest(BaseModel):
    bank_name: str = Field(..., min_length=1)
    card_number: str = Field(..., min_length=1)
    card_holder: str = Field(..., min_length=1)
    is_default: bool = False
