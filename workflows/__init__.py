"""
Money-moving workflows built on the ledger.

- Orders: freeze on create, settle + commission on complete, release on cancel
- Withdrawals: freeze on request, deduct on approve, release on reject/cancel
- Recharges: credit only after external approval, lazy 24h expiry
"""

from .models import (
    Order,
    OrderCompleted,
    OrderStatus,
    RechargeOrder,
    RechargeStatus,
    WithdrawOrder,
    WithdrawStatus,
)
from .orders import OrderWorkflow
from .recharges import RechargeWorkflow
from .withdrawals import WithdrawWorkflow

__all__ = [
    "Order",
    "OrderCompleted",
    "OrderStatus",
    "RechargeOrder",
    "RechargeStatus",
    "WithdrawOrder",
    "WithdrawStatus",
    "OrderWorkflow",
    "RechargeWorkflow",
    "WithdrawWorkflow",
]
