from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, Optional, TypeVar
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, computed_field

T = TypeVar("T")


class EntryKind(str, Enum):
    RECHARGE = "recharge"
    WITHDRAW_FREEZE = "withdraw_freeze"
    WITHDRAW = "withdraw"
    WITHDRAW_UNFREEZE = "withdraw_unfreeze"
    ORDER_FREEZE = "order_freeze"
    ORDER_RELEASE = "order_release"
    COMMISSION = "commission"
    INVITE_REWARD = "invite_reward"
    LEVEL_UPGRADE = "level_upgrade"
    VIP_UPGRADE = "vip_upgrade"


INCENTIVE_KINDS = (EntryKind.INVITE_REWARD, EntryKind.LEVEL_UPGRADE, EntryKind.COMMISSION)


class Account(BaseModel):
    user_id: str
    available: Decimal = Decimal("0")
    frozen: Decimal = Decimal("0")
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def total(self) -> Decimal:
        return self.available + self.frozen


class Posting(BaseModel):
    """One balance movement requested of the ledger, keyed for idempotency."""

    kind: EntryKind
    related_id: str
    available_delta: Decimal = Decimal("0")
    frozen_delta: Decimal = Decimal("0")
    amount: Optional[Decimal] = None
    description: str = ""
    metadata: dict = Field(default_factory=dict)

    @property
    def signed_amount(self) -> Decimal:
        if self.amount is not None:
            return self.amount
        return self.available_delta


class LedgerEntry(BaseModel):
    id: UUID
    user_id: str
    kind: EntryKind
    amount: Decimal
    available_delta: Decimal
    frozen_delta: Decimal
    available_after: Decimal
    frozen_after: Decimal
    related_id: str
    description: str
    created_at: datetime
    sequence: int = 0
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True, frozen=True)


class UserBalance(BaseModel):
    user_id: str
    currency: str
    available: Decimal
    frozen: Decimal
    total: Decimal
    total_entries: int
    last_transaction_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LedgerHistoryResponse(BaseModel):
    user_id: str
    entries: list[LedgerEntry]
    total_count: int
    page: int
    page_size: int
    kind: Optional[EntryKind] = None
    balance: UserBalance


class Page(BaseModel, Generic[T]):
    items: list[T]
    total_count: int
    page: int
    page_size: int

    @computed_field
    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size


def paginate(items: list, page: int, page_size: int) -> Page:
    page = max(page, 1)
    page_size = max(page_size, 1)
    start = (page - 1) * page_size
    return Page(items=items[start:start + page_size], total_count=len(items), page=page, page_size=page_size)
