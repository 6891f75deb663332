"""
Wiring for the whole engine: one ledger shared by the order, withdraw and
recharge workflows and by the invite, commission and VIP engines.

``TaskPlatform`` is the single entry point the HTTP layer talks to. Its
operations take the acting user first and the target id second.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from incentives.commission import CommissionCascade
from incentives.invites import InviteEngine
from incentives.models import InviteEdge, InviteStats, InviteValidation, VipOrder, VipStatus
from incentives.vip import VipEngine
from workflows.models import Order, RechargeOrder, WithdrawOrder
from workflows.orders import OrderWorkflow
from workflows.recharges import RechargeWorkflow
from workflows.withdrawals import WithdrawWorkflow

from .config import ConfigProvider, PlatformConfig
from .directory import InMemoryAgentDirectory, InviteCodeResolver, UserDirectory
from .models import EntryKind, LedgerEntry, LedgerHistoryResponse, Page, UserBalance
from .service import LedgerService
from .settings import Settings
from .storage import InMemoryStorage, JsonFileStorage

logger = logging.getLogger(__name__)


class TaskPlatform:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[ConfigProvider] = None,
        users: Optional[UserDirectory] = None,
        agents: Optional[InviteCodeResolver] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        settings = settings or Settings()
        self.settings = settings
        self.config = config or ConfigProvider(path=settings.config_file)
        self.users = users
        self.agents = agents if agents is not None else InMemoryAgentDirectory()
        self.ledger = LedgerService(storage=storage, currency=settings.currency, clock=clock)

        self.vip = VipEngine(self.ledger, self.config, users)
        self.orders = OrderWorkflow(
            self.ledger,
            users,
            default_commission_rate=settings.default_commission_rate,
            task_limit=self.vip.daily_task_limit if settings.enforce_daily_task_limit else None,
        )
        self.withdrawals = WithdrawWorkflow(self.ledger, self.config, users)
        self.recharges = RechargeWorkflow(self.ledger, self.config, users,
                                          expiry_hours=settings.recharge_expiry_hours)
        self.invites = InviteEngine(self.ledger, self.config, self.agents, users,
                                    auto_validate=settings.auto_validate_invites)
        self.commissions = CommissionCascade(self.ledger, self.invites)

        # Validation first so a first order already pays the new inviter.
        self.orders.subscribe(self.invites.on_order_completed)
        self.orders.subscribe(self.commissions.on_order_completed)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "TaskPlatform":
        if settings.data_dir is not None:
            storage = JsonFileStorage(settings.data_dir)
            logger.info("using json storage at %s", settings.data_dir)
        else:
            storage = InMemoryStorage()
            logger.info("using in-memory storage")
        return cls(storage=storage, settings=settings, **kwargs)

    # Orders

    def create_order(self, user_id: str, amount: Decimal, commission: Optional[Decimal] = None,
                     order_id: Optional[str] = None, product_name: str = "") -> Order:
        return self.orders.create_order(user_id, amount, commission, order_id, product_name)

    def start_order(self, user_id: str, order_id: str) -> Order:
        return self.orders.start_order(order_id, user_id)

    def complete_order(self, user_id: str, order_id: str) -> Order:
        return self.orders.complete_order(order_id, user_id)

    def cancel_order(self, user_id: str, order_id: str) -> Order:
        return self.orders.cancel_order(order_id, user_id)

    # Withdrawals

    def create_withdraw(self, user_id: str, amount: Decimal, bank_ref: str,
                        withdraw_id: Optional[str] = None) -> WithdrawOrder:
        return self.withdrawals.create_withdraw(user_id, amount, bank_ref, withdraw_id)

    def approve_withdraw(self, withdraw_id: str, performed_by: Optional[str] = None,
                         remark: Optional[str] = None) -> WithdrawOrder:
        return self.withdrawals.approve_withdraw(withdraw_id, performed_by, remark)

    def reject_withdraw(self, withdraw_id: str, performed_by: Optional[str] = None,
                        remark: Optional[str] = None) -> WithdrawOrder:
        return self.withdrawals.reject_withdraw(withdraw_id, performed_by, remark)

    def cancel_withdraw(self, user_id: str, withdraw_id: str) -> WithdrawOrder:
        return self.withdrawals.cancel_withdraw(withdraw_id, user_id)

    # Recharges

    def create_recharge(self, user_id: str, amount: Decimal, method_id: str,
                        recharge_id: Optional[str] = None) -> RechargeOrder:
        return self.recharges.create_recharge(user_id, amount, method_id, recharge_id)

    def confirm_recharge(self, user_id: str, recharge_id: str, proof_ref: Optional[str] = None) -> RechargeOrder:
        return self.recharges.confirm_recharge(recharge_id, user_id, proof_ref)

    def approve_recharge(self, recharge_id: str, performed_by: Optional[str] = None,
                         remark: Optional[str] = None) -> RechargeOrder:
        return self.recharges.approve_recharge(recharge_id, performed_by, remark)

    def reject_recharge(self, recharge_id: str, performed_by: Optional[str] = None,
                        remark: Optional[str] = None) -> RechargeOrder:
        return self.recharges.reject_recharge(recharge_id, performed_by, remark)

    def cancel_recharge(self, user_id: str, recharge_id: str) -> RechargeOrder:
        return self.recharges.cancel_recharge(recharge_id, user_id)

    # Incentives

    def register_invite(self, invitee_id: str, invite_code: str) -> InviteEdge:
        return self.invites.register_invite(invitee_id, invite_code)

    def validate_invite(self, edge_id: str) -> InviteValidation:
        return self.invites.validate_invite(edge_id)

    def upgrade_vip(self, user_id: str, target_level: int, request_id: Optional[str] = None) -> VipOrder:
        return self.vip.upgrade_vip(user_id, target_level, request_id)

    # Reads

    def get_balance(self, user_id: str) -> UserBalance:
        return self.ledger.get_balance(user_id)

    def get_transaction_history(self, user_id: str, page: int = 1, page_size: int = 20,
                                kind: Optional[EntryKind] = None) -> LedgerHistoryResponse:
        return self.ledger.get_ledger_history(user_id, page, page_size, kind)

    def get_invite_stats(self, user_id: str) -> InviteStats:
        return self.invites.get_invite_stats(user_id)

    def list_invite_rewards(self, user_id: str, page: int = 1, page_size: int = 20) -> Page[LedgerEntry]:
        return self.invites.list_invite_rewards(user_id, page, page_size)

    def get_vip_status(self, user_id: str) -> VipStatus:
        return self.vip.get_vip_status(user_id)

    def refresh_config(self) -> PlatformConfig:
        return self.config.refresh()
