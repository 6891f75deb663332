from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

from ledger.config import InviteTier
from ledger.models import LedgerEntry


class InviteEdge(BaseModel):
    id: str
    inviter_id: str
    invitee_id: str
    invite_code: str
    is_valid: bool = False
    reward: Decimal
    created_at: datetime
    validated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def can_validate(self) -> bool:
        return not self.is_valid


class InviteValidation(BaseModel):
    edge: InviteEdge
    reward_entry: Optional[LedgerEntry] = None
    level_upgrade_entry: Optional[LedgerEntry] = None
    previous_tier: InviteTier
    current_tier: InviteTier
    valid_invites: int


class NextTierProgress(BaseModel):
    tier: InviteTier
    progress: int
    target: int


class InviteStats(BaseModel):
    user_id: str
    total_invites: int
    today_invites: int
    valid_invites: int
    total_reward: Decimal
    today_reward: Decimal
    month_reward: Decimal
    current_tier: InviteTier
    next_tier: Optional[NextTierProgress] = None


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    invite_count: int
    total_reward: Decimal


class VipProfile(BaseModel):
    user_id: str
    vip_level: int
    vip_expire_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class VipStatus(BaseModel):
    user_id: str
    level: int
    name: str
    expire_at: Optional[datetime] = None
    is_expired: bool = False
    effective_level: int
    task_bonus_percent: Decimal
    withdraw_fee_percent: Decimal
    daily_task_limit: int
    benefits: list[str] = Field(default_factory=list)


class VipOrder(BaseModel):
    id: str
    user_id: str
    from_level: int
    to_level: int
    price: Decimal
    duration_days: int
    status: str = "completed"
    created_at: datetime
    expire_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RegisterInviteRequest(BaseModel):
    invitee_id: str
    invite_code: str = Field(..., min_length=1)


class AddAgentRequest(BaseModel):
    inviter_id: str
    invite_code: str = Field(..., min_length=1)
    name: str = ""
    is_active: bool = True


class VipUpgradeRequest(BaseModel):
    user_id: str
    target_level: int = Field(..., ge=1)
    request_id: Optional[str] = Field(default=None, description="Retries with the same id are idempotent")
