import logging
from collections import defaultdict
from datetime import timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from ledger.config import ConfigProvider, InviteTier
from ledger.directory import InviteCodeResolver, UserDirectory
from ledger.errors import (
    AlreadyValidatedError,
    DuplicateInviteError,
    InvalidInviteCodeError,
    InviteCycleError,
    NotFoundError,
    SelfInviteError,
)
from ledger.models import INCENTIVE_KINDS, EntryKind, LedgerEntry, Page, paginate
from ledger.service import LedgerService
from workflows.base import on_day
from workflows.models import OrderCompleted

from .models import (
    InviteEdge,
    InviteStats,
    InviteValidation,
    LeaderboardEntry,
    NextTierProgress,
)

logger = logging.getLogger(__name__)


class InviteEngine:
    """Inviter -> invitee edges and the tier each inviter has reached.

    An edge is created pending at registration, carrying the reward of the
    inviter's tier at that moment, and becomes valid exactly once. Each
    validation pays the edge reward and, when the inviter's valid count
    crosses into a higher tier, the difference between the two tiers'
    flat rewards.
    """

    EDGES = "invite_edges"

    def __init__(
        self,
        ledger: LedgerService,
        config: ConfigProvider,
        resolver: InviteCodeResolver,
        users: Optional[UserDirectory] = None,
        auto_validate: bool = True,
    ):
        self.ledger = ledger
        self.storage = ledger.storage
        self.config = config
        self.resolver = resolver
        self.users = users
        self.auto_validate = auto_validate
        self.storage.register_collection(self.EDGES, InviteEdge)

    def register_invite(self, invitee_id: str, invite_code: str) -> InviteEdge:
        code = (invite_code or "").strip()
        if not code:
            raise InvalidInviteCodeError("Invite code is required")
        inviter = self.resolver.resolve(code)
        if inviter is None or not inviter.is_active:
            logger.warning("invite rejected invitee=%s code=%s unknown or inactive", invitee_id, code)
            raise InvalidInviteCodeError(f"Invite code {code} is not valid")
        if inviter.id == invitee_id:
            raise SelfInviteError("Users cannot invite themselves")
        if self.users is not None and not self.users.exists(invitee_id):
            raise NotFoundError(f"User {invitee_id} not found", user_id=invitee_id)

        with self.ledger.atomic(invitee_id, inviter.id):
            if self.inviter_edge(invitee_id) is not None:
                raise DuplicateInviteError(f"User {invitee_id} already has an inviter")
            self._check_cycle(inviter.id, invitee_id)
            tier = self.tier_for_user(inviter.id)
            edge = InviteEdge(
                id=uuid4().hex,
                inviter_id=inviter.id,
                invitee_id=invitee_id,
                invite_code=code,
                reward=tier.flat_reward,
                created_at=self.ledger.clock(),
            )
            self.storage.put(self.EDGES, edge.id, edge.model_dump())

        logger.info("invite registered edge=%s inviter=%s invitee=%s reward=%s",
                    edge.id, inviter.id, invitee_id, edge.reward)
        return edge

    def validate_invite(self, edge_id: str) -> InviteValidation:
        edge = self.get_edge(edge_id)
        inviter_id = edge.inviter_id
        with self.ledger.atomic(inviter_id):
            edge = self.get_edge(edge_id)
            if not edge.can_validate():
                raise AlreadyValidatedError(f"Invite {edge_id} is already valid", result=edge)

            config = self.config.current
            before = self.valid_invite_count(inviter_id)
            previous_tier = config.invite_tier_for(before)

            edge.is_valid = True
            edge.validated_at = self.ledger.clock()
            self.storage.put(self.EDGES, edge.id, edge.model_dump())

            reward_entry = None
            if edge.reward > 0:
                reward_entry = self.ledger.credit(
                    inviter_id, edge.reward, EntryKind.INVITE_REWARD, edge.id,
                    f"Invite reward for {edge.invitee_id}: {edge.reward}",
                )

            current_tier = config.invite_tier_for(before + 1)
            upgrade_entry = None
            if current_tier.level > previous_tier.level:
                bonus = current_tier.flat_reward - previous_tier.flat_reward
                if bonus > 0:
                    upgrade_entry = self.ledger.credit(
                        inviter_id, bonus, EntryKind.LEVEL_UPGRADE, f"invite-tier-{current_tier.level}",
                        f"Invite tier upgraded to {current_tier.level}: {bonus}",
                    )
                logger.info("invite tier up user=%s %d -> %d bonus=%s",
                            inviter_id, previous_tier.level, current_tier.level, bonus)

        logger.info("invite validated edge=%s inviter=%s valid_invites=%d", edge_id, inviter_id, before + 1)
        return InviteValidation(
            edge=edge,
            reward_entry=reward_entry,
            level_upgrade_entry=upgrade_entry,
            previous_tier=previous_tier,
            current_tier=current_tier,
            valid_invites=before + 1,
        )

    def on_order_completed(self, event: OrderCompleted) -> Optional[InviteValidation]:
        if not self.auto_validate:
            return None
        edge = self.inviter_edge(event.user_id)
        if edge is None or edge.is_valid:
            return None
        try:
            return self.validate_invite(edge.id)
        except AlreadyValidatedError:
            # A concurrent completion validated it first.
            return None

    def get_edge(self, edge_id: str) -> InviteEdge:
        record = self.storage.get(self.EDGES, edge_id)
        if not record:
            raise NotFoundError(f"Invite {edge_id} not found", edge_id=edge_id)
        return InviteEdge(**record)

    def inviter_edge(self, invitee_id: str, valid_only: bool = False) -> Optional[InviteEdge]:
        for record in self.storage.values(self.EDGES):
            if record["invitee_id"] == invitee_id and (record["is_valid"] or not valid_only):
                return InviteEdge(**record)
        return None

    def invitee_edges(self, inviter_id: str) -> list[InviteEdge]:
        edges = [InviteEdge(**r) for r in self.storage.values(self.EDGES) if r["inviter_id"] == inviter_id]
        edges.sort(key=lambda e: e.created_at, reverse=True)
        return edges

    def valid_invite_count(self, inviter_id: str) -> int:
        return sum(1 for r in self.storage.values(self.EDGES) if r["inviter_id"] == inviter_id and r["is_valid"])

    def tier_for_user(self, user_id: str) -> InviteTier:
        return self.config.current.invite_tier_for(self.valid_invite_count(user_id))

    def get_invite_stats(self, user_id: str) -> InviteStats:
        config = self.config.current
        edges = self.invitee_edges(user_id)
        now = self.ledger.clock().astimezone(timezone.utc)
        today = now.date()
        valid = sum(1 for e in edges if e.is_valid)
        rewards = self.reward_entries(user_id)
        tier = config.invite_tier_for(valid)
        next_tier = config.next_invite_tier(tier)
        return InviteStats(
            user_id=user_id,
            total_invites=len(edges),
            today_invites=sum(1 for e in edges if on_day(e.created_at, today)),
            valid_invites=valid,
            total_reward=sum((e.amount for e in rewards), Decimal("0")),
            today_reward=sum((e.amount for e in rewards if on_day(e.created_at, today)), Decimal("0")),
            month_reward=sum(
                (e.amount for e in rewards if _same_month(e.created_at, now)),
                Decimal("0"),
            ),
            current_tier=tier,
            next_tier=NextTierProgress(
                tier=next_tier, progress=valid, target=next_tier.min_valid_invites,
            ) if next_tier else None,
        )

    def reward_entries(self, user_id: str) -> list[LedgerEntry]:
        """Invite rewards, tier bonuses and commission earned from invitees, newest first.

        Commission on the user's own orders shares the ``commission`` kind
        but carries no downstream ``source_user_id``, so it is left out.
        """
        return [e for e in self.ledger.list_entries(user_id, INCENTIVE_KINDS) if _earned_from_invites(e)]

    def list_invite_rewards(self, user_id: str, page: int = 1, page_size: int = 20) -> Page:
        return paginate(self.reward_entries(user_id), page, page_size)

    def list_invite_records(self, user_id: str, page: int = 1, page_size: int = 20) -> Page:
        return paginate(self.invitee_edges(user_id), page, page_size)

    def leaderboard(self, page: int = 1, page_size: int = 50) -> Page:
        counts: dict[str, int] = defaultdict(int)
        rewards: dict[str, Decimal] = defaultdict(Decimal)
        for record in self.storage.values(self.EDGES):
            if record["is_valid"]:
                counts[record["inviter_id"]] += 1
                rewards[record["inviter_id"]] += record["reward"]
        ranked = sorted(counts, key=lambda uid: (-counts[uid], uid))
        entries = [
            LeaderboardEntry(rank=i + 1, user_id=uid, invite_count=counts[uid], total_reward=rewards[uid])
            for i, uid in enumerate(ranked)
        ]
        return paginate(entries, page, page_size)

    def _check_cycle(self, inviter_id: str, invitee_id: str) -> None:
        seen = set()
        current = inviter_id
        while current not in seen:
            seen.add(current)
            edge = self.inviter_edge(current)
            if edge is None:
                return
            if edge.inviter_id == invitee_id:
                raise InviteCycleError(f"Inviting {invitee_id} under {inviter_id} would create a cycle")
            current = edge.inviter_id


def _earned_from_invites(entry: LedgerEntry) -> bool:
    if entry.kind != EntryKind.COMMISSION:
        return True
    source = entry.metadata.get("source_user_id")
    return bool(source) and source != entry.user_id


def _same_month(moment, now) -> bool:
    moment = moment.astimezone(timezone.utc)
    return (moment.year, moment.month) == (now.year, now.month)
