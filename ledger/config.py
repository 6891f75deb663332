"""
Platform tables consumed by the ledger engines.

Invite tiers, VIP tiers, withdraw limits and recharge methods are read-only
configuration. They ship with the platform defaults and can be replaced by a
JSON document (see ``Settings.config_file``) and reloaded on demand.
"""

import logging
import threading
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class FeeType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


def compute_fee(amount: Decimal, fee: Decimal, fee_type: FeeType) -> Decimal:
    if fee_type == FeeType.PERCENTAGE:
        return quantize_money(amount * fee / 100)
    return quantize_money(fee)


class InviteTier(BaseModel):
    level: int = Field(..., ge=1)
    name: str = ""
    min_valid_invites: int = Field(..., ge=0)
    flat_reward: Decimal = Field(..., ge=0)
    commission_percent: Decimal = Field(..., ge=0, le=100)
    description: str = ""

    model_config = ConfigDict(from_attributes=True)


class VipTier(BaseModel):
    level: int = Field(..., ge=1)
    name: str = ""
    price: Decimal = Field(..., ge=0)
    duration_days: int = Field(..., gt=0)
    task_bonus_percent: Decimal = Field(default=Decimal("0"), ge=0)
    withdraw_fee_percent: Decimal = Field(default=Decimal("0"), ge=0)
    daily_task_limit: int = Field(..., ge=0)
    benefits: list[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class WithdrawConfig(BaseModel):
    min_amount: Decimal = Field(default=Decimal("100"), ge=0)
    max_amount: Decimal = Field(default=Decimal("50000"), gt=0)
    daily_limit: Decimal = Field(default=Decimal("100000"), gt=0)
    fee: Decimal = Field(default=Decimal("5"), ge=0)
    fee_type: FeeType = FeeType.FIXED

    def fee_for(self, amount: Decimal) -> Decimal:
        return compute_fee(amount, self.fee, self.fee_type)


class RechargeMethod(BaseModel):
    id: str
    name: str
    min_amount: Decimal = Field(..., ge=0)
    max_amount: Decimal = Field(..., gt=0)
    fee: Decimal = Field(default=Decimal("0"), ge=0)
    fee_type: FeeType = FeeType.FIXED
    is_enabled: bool = True
    description: str = ""

    def fee_for(self, amount: Decimal) -> Decimal:
        return compute_fee(amount, self.fee, self.fee_type)


def default_invite_tiers() -> list[InviteTier]:
    return [
        InviteTier(level=1, name="Junior Promoter", min_valid_invites=0, flat_reward=Decimal("10"),
                   commission_percent=Decimal("5"), description="10 per valid invite, 5% of invitee task earnings"),
        InviteTier(level=2, name="Intermediate Promoter", min_valid_invites=10, flat_reward=Decimal("20"),
                   commission_percent=Decimal("8"), description="10 valid invites: 20 per invite, 8% commission"),
        InviteTier(level=3, name="Senior Promoter", min_valid_invites=50, flat_reward=Decimal("50"),
                   commission_percent=Decimal("12"), description="50 valid invites: 50 per invite, 12% commission"),
        InviteTier(level=4, name="Gold Promoter", min_valid_invites=100, flat_reward=Decimal("100"),
                   commission_percent=Decimal("15"), description="100 valid invites: 100 per invite, 15% commission"),
    ]


def default_vip_tiers() -> list[VipTier]:
    return [
        VipTier(level=1, name="Bronze", price=Decimal("0"), duration_days=30, task_bonus_percent=Decimal("20"),
                withdraw_fee_percent=Decimal("0.5"), daily_task_limit=10,
                benefits=["Task reward +20%", "10 tasks per day", "Withdraw fee 0.5%"]),
        VipTier(level=2, name="Silver", price=Decimal("99"), duration_days=30, task_bonus_percent=Decimal("30"),
                withdraw_fee_percent=Decimal("0.3"), daily_task_limit=15,
                benefits=["Task reward +30%", "15 tasks per day", "Withdraw fee 0.3%"]),
        VipTier(level=3, name="Gold", price=Decimal("299"), duration_days=30, task_bonus_percent=Decimal("50"),
                withdraw_fee_percent=Decimal("0.2"), daily_task_limit=20,
                benefits=["Task reward +50%", "20 tasks per day", "Withdraw fee 0.2%"]),
        VipTier(level=4, name="Platinum", price=Decimal("599"), duration_days=30, task_bonus_percent=Decimal("80"),
                withdraw_fee_percent=Decimal("0.1"), daily_task_limit=30,
                benefits=["Task reward +80%", "30 tasks per day", "Withdraw fee 0.1%"]),
        VipTier(level=5, name="Diamond", price=Decimal("1299"), duration_days=30, task_bonus_percent=Decimal("100"),
                withdraw_fee_percent=Decimal("0"), daily_task_limit=50,
                benefits=["Task reward +100%", "50 tasks per day", "No withdraw fee"]),
    ]


def default_recharge_methods() -> list[RechargeMethod]:
    return [
        RechargeMethod(id="bank", name="Bank transfer", min_amount=Decimal("10"), max_amount=Decimal("50000"),
                       description="Bank transfer, credited within 1-3 working days"),
        RechargeMethod(id="alipay", name="Alipay transfer", min_amount=Decimal("1"), max_amount=Decimal("10000"),
                       description="Alipay transfer"),
        RechargeMethod(id="wechat", name="WeChat transfer", min_amount=Decimal("1"), max_amount=Decimal("10000"),
                       description="WeChat transfer"),
    ]


class PlatformConfig(BaseModel):
    invite_tiers: list[InviteTier] = Field(default_factory=default_invite_tiers)
    vip_tiers: list[VipTier] = Field(default_factory=default_vip_tiers)
    withdraw: WithdrawConfig = Field(default_factory=WithdrawConfig)
    recharge_methods: list[RechargeMethod] = Field(default_factory=default_recharge_methods)

    @model_validator(mode="after")
    def _check_tables(self) -> "PlatformConfig":
        if not self.invite_tiers:
            raise ValueError("at least one invite tier is required")
        if not self.vip_tiers:
            raise ValueError("at least one VIP tier is required")
        self.invite_tiers.sort(key=lambda t: t.level)
        self.vip_tiers.sort(key=lambda t: t.level)
        for lower, higher in zip(self.invite_tiers, self.invite_tiers[1:]):
            if lower.level == higher.level:
                raise ValueError(f"duplicate invite tier level {lower.level}")
            if higher.min_valid_invites < lower.min_valid_invites:
                raise ValueError("invite tier thresholds must not decrease with level")
            if higher.flat_reward < lower.flat_reward:
                raise ValueError("invite tier rewards must not decrease with level")
        levels = [t.level for t in self.vip_tiers]
        if len(levels) != len(set(levels)):
            raise ValueError("duplicate VIP tier level")
        if self.withdraw.min_amount > self.withdraw.max_amount:
            raise ValueError("withdraw min_amount exceeds max_amount")
        return self

    def invite_tier_for(self, valid_invites: int) -> InviteTier:
        qualifying = [t for t in self.invite_tiers if t.min_valid_invites <= valid_invites]
        if not qualifying:
            return self.invite_tiers[0]
        return max(qualifying, key=lambda t: t.level)

    def next_invite_tier(self, tier: InviteTier) -> Optional[InviteTier]:
        for candidate in self.invite_tiers:
            if candidate.level > tier.level:
                return candidate
        return None

    def vip_tier(self, level: int) -> Optional[VipTier]:
        for tier in self.vip_tiers:
            if tier.level == level:
                return tier
        return None

    @property
    def base_vip_tier(self) -> VipTier:
        return self.vip_tiers[0]

    def recharge_method(self, method_id: str) -> Optional[RechargeMethod]:
        for method in self.recharge_methods:
            if method.id == method_id:
                return method
        return None


def load_platform_config(path: Path) -> PlatformConfig:
    return PlatformConfig.model_validate_json(Path(path).read_text(encoding="utf-8"))


class ConfigProvider:
    """Holds the active tables; ``refresh`` re-reads the backing file."""

    def __init__(self, config: Optional[PlatformConfig] = None, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        if config is None:
            config = load_platform_config(self.path) if self.path else PlatformConfig()
        self._config = config

    @property
    def current(self) -> PlatformConfig:
        return self._config

    def replace(self, config: PlatformConfig) -> None:
        with self._lock:
            self._config = config
        logger.info("platform config replaced: %d invite tiers, %d vip tiers",
                    len(config.invite_tiers), len(config.vip_tiers))

    def refresh(self) -> PlatformConfig:
        if self.path is None:
            return self._config
        self.replace(load_platform_config(self.path))
        return self._config
