"""
Incentive engines paid out through the ledger.

Provides invite edges and tiers, the commission cascade to a user's
inviter, and priced VIP upgrades.
"""

from .commission import CommissionCascade
from .invites import InviteEngine
from .models import InviteEdge, InviteStats, InviteValidation, VipOrder, VipStatus
from .vip import VipEngine

__all__ = [
    "CommissionCascade",
    "InviteEngine",
    "InviteEdge",
    "InviteStats",
    "InviteValidation",
    "VipOrder",
    "VipStatus",
    "VipEngine",
]
