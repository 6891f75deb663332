import logging
from datetime import timedelta
from typing import Optional
from uuid import uuid4

from ledger.config import ConfigProvider, VipTier
from ledger.directory import UserDirectory
from ledger.errors import IdempotencyConflictError, InvalidTargetError, NotFoundError
from ledger.models import EntryKind, Page, paginate
from ledger.service import LedgerService

from .models import VipOrder, VipProfile, VipStatus

logger = logging.getLogger(__name__)


class VipEngine:
    PROFILES = "vip_profiles"
    ORDERS = "vip_orders"

    def __init__(self, ledger: LedgerService, config: ConfigProvider, users: Optional[UserDirectory] = None):
        self.ledger = ledger
        self.storage = ledger.storage
        self.config = config
        self.users = users
        self.storage.register_collection(self.PROFILES, VipProfile)
        self.storage.register_collection(self.ORDERS, VipOrder)

    def get_profile(self, user_id: str) -> VipProfile:
        record = self.storage.get(self.PROFILES, user_id)
        if record is None:
            return VipProfile(user_id=user_id, vip_level=self.config.current.base_vip_tier.level)
        return VipProfile(**record)

    def is_expired(self, profile: VipProfile) -> bool:
        return profile.vip_expire_at is not None and self.ledger.clock() > profile.vip_expire_at

    def effective_tier(self, user_id: str) -> VipTier:
        config = self.config.current
        profile = self.get_profile(user_id)
        if self.is_expired(profile):
            return config.base_vip_tier
        return config.vip_tier(profile.vip_level) or config.base_vip_tier

    def daily_task_limit(self, user_id: str) -> int:
        return self.effective_tier(user_id).daily_task_limit

    def get_vip_status(self, user_id: str) -> VipStatus:
        profile = self.get_profile(user_id)
        tier = self.config.current.vip_tier(profile.vip_level) or self.config.current.base_vip_tier
        effective = self.effective_tier(user_id)
        return VipStatus(
            user_id=user_id,
            level=profile.vip_level,
            name=tier.name,
            expire_at=profile.vip_expire_at,
            is_expired=self.is_expired(profile),
            effective_level=effective.level,
            task_bonus_percent=effective.task_bonus_percent,
            withdraw_fee_percent=effective.withdraw_fee_percent,
            daily_task_limit=effective.daily_task_limit,
            benefits=effective.benefits,
        )

    def upgrade_vip(self, user_id: str, target_level: int, request_id: Optional[str] = None) -> VipOrder:
        if self.users is not None and not self.users.exists(user_id):
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        target = self.config.current.vip_tier(target_level)
        if target is None:
            raise InvalidTargetError(f"VIP level {target_level} does not exist")
        order_id = request_id or uuid4().hex

        with self.ledger.atomic(user_id):
            existing = self.storage.get(self.ORDERS, order_id)
            if existing:
                order = VipOrder(**existing)
                if order.user_id == user_id and order.to_level == target_level:
                    return order
                raise IdempotencyConflictError(f"VIP order {order_id} already exists with different parameters")

            current = self.effective_tier(user_id)
            if target.level <= current.level:
                logger.warning("vip upgrade rejected user=%s current=%d target=%d",
                               user_id, current.level, target.level)
                raise InvalidTargetError(
                    f"Target VIP level {target.level} must be above the current level {current.level}"
                )

            now = self.ledger.clock()
            self.ledger.debit(user_id, target.price, EntryKind.VIP_UPGRADE, order_id,
                              f"VIP upgrade to level {target.level}: {target.price}")
            expire_at = now + timedelta(days=target.duration_days)
            profile = VipProfile(user_id=user_id, vip_level=target.level, vip_expire_at=expire_at)
            order = VipOrder(
                id=order_id,
                user_id=user_id,
                from_level=current.level,
                to_level=target.level,
                price=target.price,
                duration_days=target.duration_days,
                created_at=now,
                expire_at=expire_at,
            )
            self.storage.put(self.PROFILES, user_id, profile.model_dump())
            self.storage.put(self.ORDERS, order_id, order.model_dump())

        logger.info("vip upgraded user=%s %d -> %d price=%s", user_id, current.level, target.level, target.price)
        return order

    def list_vip_orders(self, user_id: str, page: int = 1, page_size: int = 20) -> Page:
        orders = [VipOrder(**o) for o in self.storage.values(self.ORDERS) if o["user_id"] == user_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return paginate(orders, page, page_size)
