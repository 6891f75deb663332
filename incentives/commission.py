import logging
from typing import Optional

from ledger.config import quantize_money
from ledger.models import EntryKind, LedgerEntry, Posting
from ledger.service import LedgerService
from workflows.models import OrderCompleted

from .invites import InviteEngine

logger = logging.getLogger(__name__)


class CommissionCascade:
    """Pays a user's direct, valid inviter a share of each order commission.

    The share is the inviter's tier ``commission_percent`` at the time the
    order completes. The payout is keyed by the order id on the inviter's
    account, so a re-published completion never pays twice.
    """

    def __init__(self, ledger: LedgerService, invites: InviteEngine):
        self.ledger = ledger
        self.invites = invites

    def on_order_completed(self, event: OrderCompleted) -> Optional[LedgerEntry]:
        if event.commission <= 0:
            return None
        edge = self.invites.inviter_edge(event.user_id, valid_only=True)
        if edge is None:
            return None

        inviter_id = edge.inviter_id
        with self.ledger.atomic(inviter_id):
            existing = self.ledger.find_entry(inviter_id, event.order_id, EntryKind.COMMISSION)
            if existing is not None:
                return existing
            tier = self.invites.tier_for_user(inviter_id)
            payout = quantize_money(event.commission * tier.commission_percent / 100)
            if payout <= 0:
                return None
            entry = self.ledger.post(inviter_id, Posting(
                kind=EntryKind.COMMISSION,
                related_id=event.order_id,
                available_delta=payout,
                description=f"Commission from {event.user_id}'s order {event.order_id}: {payout}",
                metadata={
                    "source_user_id": event.user_id,
                    "order_commission": str(event.commission),
                    "tier_level": tier.level,
                    "commission_percent": str(tier.commission_percent),
                },
            ))[0]

        logger.info("commission paid inviter=%s order=%s payout=%s tier=%d",
                    inviter_id, event.order_id, payout, tier.level)
        return entry
