"""
Tests for invite registration, validation and tier upgrades.

Tests cover:
1. Registration guards (codes, self invites, duplicates, cycles)
2. Reward snapshot at registration
3. Validation rewards and the one-time level bonus
4. Tier monotonicity over a custom table
5. Auto-validation on the invitee's first completed order
6. Stats, records and leaderboard
7. Reward history and UTC day boundaries
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger.config import InviteTier, PlatformConfig
from ledger.errors import (
    AlreadyValidatedError,
    DuplicateInviteError,
    InvalidInviteCodeError,
    InviteCycleError,
    NotFoundError,
    SelfInviteError,
)
from ledger.models import EntryKind


INVITER_ID = "agent-alice"
INVITE_CODE = "ALICE01"


def register_many(platform, count, prefix="invitee"):
    return [platform.register_invite(f"{prefix}-{i}", INVITE_CODE) for i in range(count)]


@pytest.fixture
def inviter(task_platform):
    return task_platform.agents.add(INVITER_ID, INVITE_CODE, name="Alice")


class TestRegistration:
    """Tests for creating invite edges."""

    def test_register_creates_pending_edge(self, task_platform, inviter):
        edge = task_platform.register_invite("bob", INVITE_CODE)

        assert edge.inviter_id == INVITER_ID
        assert edge.invitee_id == "bob"
        assert not edge.is_valid
        assert edge.reward == Decimal("10")
        assert task_platform.get_balance(INVITER_ID).available == Decimal("0")

    def test_unknown_or_blank_code(self, task_platform, inviter):
        with pytest.raises(InvalidInviteCodeError):
            task_platform.register_invite("bob", "NOPE")
        with pytest.raises(InvalidInviteCodeError):
            task_platform.register_invite("bob", "   ")

    def test_inactive_inviter(self, task_platform, inviter):
        task_platform.agents.set_active(INVITE_CODE, False)
        with pytest.raises(InvalidInviteCodeError):
            task_platform.register_invite("bob", INVITE_CODE)

    def test_self_invite(self, task_platform, inviter):
        with pytest.raises(SelfInviteError):
            task_platform.register_invite(INVITER_ID, INVITE_CODE)

    def test_one_inviter_per_user(self, task_platform, inviter):
        task_platform.agents.add("agent-carol", "CAROL01")
        task_platform.register_invite("bob", INVITE_CODE)

        with pytest.raises(DuplicateInviteError):
            task_platform.register_invite("bob", "CAROL01")

    def test_cycle_rejected(self, task_platform, inviter):
        """alice -> bob -> carol, so carol cannot invite alice."""
        task_platform.register_invite("bob", INVITE_CODE)
        task_platform.agents.add("bob", "BOB01")
        task_platform.register_invite("carol", "BOB01")
        task_platform.agents.add("carol", "CAROL01")

        with pytest.raises(InviteCycleError):
            task_platform.register_invite(INVITER_ID, "CAROL01")

    def test_reward_snapshot_at_registration(self, task_platform, inviter):
        """Edges keep the reward of the tier the inviter had when they were created."""
        early = register_many(task_platform, 10)
        for edge in early:
            task_platform.validate_invite(edge.id)

        late = task_platform.register_invite("late-joiner", INVITE_CODE)

        assert {e.reward for e in early} == {Decimal("10")}
        assert late.reward == Decimal("20")


class TestValidation:
    """Tests for paying invite rewards."""

    def test_validate_credits_reward(self, task_platform, inviter):
        edge = task_platform.register_invite("bob", INVITE_CODE)

        result = task_platform.validate_invite(edge.id)

        assert result.edge.is_valid
        assert result.edge.validated_at is not None
        assert result.reward_entry.kind == EntryKind.INVITE_REWARD
        assert result.level_upgrade_entry is None
        assert result.valid_invites == 1
        assert task_platform.get_balance(INVITER_ID).available == Decimal("10")

    def test_validate_twice(self, task_platform, inviter):
        edge = task_platform.register_invite("bob", INVITE_CODE)
        task_platform.validate_invite(edge.id)

        with pytest.raises(AlreadyValidatedError) as exc_info:
            task_platform.validate_invite(edge.id)

        assert exc_info.value.result.is_valid
        assert task_platform.get_balance(INVITER_ID).available == Decimal("10")

    def test_unknown_edge(self, task_platform):
        with pytest.raises(NotFoundError):
            task_platform.validate_invite("missing")

    def test_level_bonus_only_at_tenth_validation(self, task_platform, inviter):
        """Nine validations pay 10 each; the tenth adds the 20 - 10 tier bonus."""
        edges = register_many(task_platform, 10)

        for edge in edges[:9]:
            result = task_platform.validate_invite(edge.id)
            assert result.level_upgrade_entry is None
        assert task_platform.get_balance(INVITER_ID).available == Decimal("90")
        assert task_platform.ledger.list_entries(INVITER_ID, [EntryKind.LEVEL_UPGRADE]) == []

        result = task_platform.validate_invite(edges[9].id)

        assert result.previous_tier.level == 1
        assert result.current_tier.level == 2
        assert result.level_upgrade_entry.amount == Decimal("10")
        assert task_platform.get_balance(INVITER_ID).available == Decimal("110")
        assert len(task_platform.ledger.list_entries(INVITER_ID, [EntryKind.LEVEL_UPGRADE])) == 1
        assert task_platform.invites.tier_for_user(INVITER_ID).level == 2


class TestTierMonotonicity:
    """Tests over a compressed tier table."""

    TIERS = [
        InviteTier(level=1, min_valid_invites=0, flat_reward=Decimal("10"), commission_percent=Decimal("5")),
        InviteTier(level=2, min_valid_invites=2, flat_reward=Decimal("20"), commission_percent=Decimal("8")),
        InviteTier(level=3, min_valid_invites=4, flat_reward=Decimal("50"), commission_percent=Decimal("12")),
    ]

    def test_cumulative_bonus_equals_reward_spread(self, make_platform):
        platform = make_platform(config=PlatformConfig(invite_tiers=self.TIERS))
        platform.agents.add(INVITER_ID, INVITE_CODE)
        edges = register_many(platform, 5)

        levels = []
        for edge in edges:
            levels.append(platform.validate_invite(edge.id).current_tier.level)

        assert levels == sorted(levels)
        assert levels == [1, 2, 2, 3, 3]
        bonuses = platform.ledger.list_entries(INVITER_ID, [EntryKind.LEVEL_UPGRADE])
        assert sum(e.amount for e in bonuses) == Decimal("50") - Decimal("10")
        assert {e.related_id for e in bonuses} == {"invite-tier-2", "invite-tier-3"}


class TestAutoValidation:
    """Tests for validation triggered by the invitee's completed order."""

    def test_first_completed_order_validates(self, task_platform, inviter, fund):
        edge = task_platform.register_invite("bob", INVITE_CODE)
        fund("bob", "100")
        task_platform.create_order("bob", Decimal("50"), Decimal("0"), order_id="ord-1")
        task_platform.start_order("bob", "ord-1")

        task_platform.complete_order("bob", "ord-1")

        assert task_platform.invites.get_edge(edge.id).is_valid
        assert task_platform.get_balance(INVITER_ID).available == Decimal("10")

    def test_cancelled_order_does_not_validate(self, task_platform, inviter, fund):
        edge = task_platform.register_invite("bob", INVITE_CODE)
        fund("bob", "100")
        task_platform.create_order("bob", Decimal("50"), order_id="ord-1")
        task_platform.cancel_order("bob", "ord-1")

        assert not task_platform.invites.get_edge(edge.id).is_valid

    def test_disabled_by_settings(self, make_platform, fund):
        platform = make_platform(auto_validate_invites=False)
        platform.agents.add(INVITER_ID, INVITE_CODE)
        edge = platform.register_invite("bob", INVITE_CODE)
        fund("bob", "100", target=platform)
        platform.create_order("bob", Decimal("50"), order_id="ord-1")
        platform.start_order("bob", "ord-1")
        platform.complete_order("bob", "ord-1")

        assert not platform.invites.get_edge(edge.id).is_valid
        assert platform.get_balance(INVITER_ID).available == Decimal("0")


class TestInviteReads:
    """Tests for stats, records and the leaderboard."""

    def test_stats(self, task_platform, inviter, clock):
        edges = register_many(task_platform, 3)
        task_platform.validate_invite(edges[0].id)
        task_platform.validate_invite(edges[1].id)

        stats = task_platform.get_invite_stats(INVITER_ID)

        assert stats.total_invites == 3
        assert stats.today_invites == 3
        assert stats.valid_invites == 2
        assert stats.total_reward == Decimal("20")
        assert stats.today_reward == Decimal("20")
        assert stats.month_reward == Decimal("20")
        assert stats.current_tier.level == 1
        assert stats.next_tier.tier.level == 2
        assert (stats.next_tier.progress, stats.next_tier.target) == (2, 10)

        clock.advance(days=1)
        assert task_platform.get_invite_stats(INVITER_ID).today_reward == Decimal("0")

    def test_records_newest_first(self, task_platform, inviter, clock):
        for name in ("bob", "carol", "dave"):
            task_platform.register_invite(name, INVITE_CODE)
            clock.advance(minutes=1)

        page = task_platform.invites.list_invite_records(INVITER_ID, page=1, page_size=2)

        assert [e.invitee_id for e in page.items] == ["dave", "carol"]
        assert page.total_count == 3
        assert page.total_pages == 2

    def test_leaderboard(self, task_platform, inviter):
        task_platform.agents.add("agent-bob", "BOB01")
        for edge in register_many(task_platform, 3, prefix="a"):
            task_platform.validate_invite(edge.id)
        bob_edge = task_platform.register_invite("b-0", "BOB01")
        task_platform.validate_invite(bob_edge.id)
        task_platform.register_invite("b-1", "BOB01")

        board = task_platform.invites.leaderboard()

        assert [(e.rank, e.user_id, e.invite_count) for e in board.items] == [
            (1, INVITER_ID, 3),
            (2, "agent-bob", 1),
        ]
        assert board.items[0].total_reward == Decimal("30")


class TestInviteRewards:
    """Tests for the incentive income an inviter has earned."""

    def _complete(self, platform, user_id, order_id, commission):
        platform.create_order(user_id, Decimal("50"), Decimal(commission), order_id=order_id)
        platform.start_order(user_id, order_id)
        platform.complete_order(user_id, order_id)

    def test_own_order_commission_is_not_invite_income(self, task_platform, inviter, fund):
        fund(INVITER_ID, "100")
        self._complete(task_platform, INVITER_ID, "own-1", "10")

        stats = task_platform.get_invite_stats(INVITER_ID)

        assert task_platform.get_balance(INVITER_ID).available == Decimal("60")
        assert stats.total_reward == Decimal("0")
        assert stats.today_reward == Decimal("0")
        assert stats.month_reward == Decimal("0")
        assert task_platform.list_invite_rewards(INVITER_ID).total_count == 0

    def test_rewards_listing_newest_first(self, task_platform, inviter, fund):
        """Invite reward and downstream commission are listed; own commission is not."""
        fund(INVITER_ID, "100")
        self._complete(task_platform, INVITER_ID, "own-1", "10")
        task_platform.register_invite("bob", INVITE_CODE)
        fund("bob", "100")
        self._complete(task_platform, "bob", "bob-1", "10")

        page = task_platform.list_invite_rewards(INVITER_ID)

        assert [(e.kind, e.amount) for e in page.items] == [
            (EntryKind.COMMISSION, Decimal("0.50")),
            (EntryKind.INVITE_REWARD, Decimal("10")),
        ]
        assert page.items[0].metadata["source_user_id"] == "bob"
        assert task_platform.get_invite_stats(INVITER_ID).total_reward == Decimal("10.50")

    def test_rewards_listing_is_paged(self, task_platform, inviter):
        for edge in register_many(task_platform, 10):
            task_platform.validate_invite(edge.id)

        page = task_platform.list_invite_rewards(INVITER_ID, page=2, page_size=4)

        # Ten rewards plus the tier-2 bonus.
        assert page.total_count == 11
        assert len(page.items) == 4
        assert page.total_pages == 3

    def test_today_is_the_utc_day(self, task_platform, inviter, clock):
        """A clock reporting local time still counts rewards by the UTC day."""
        clock.now = datetime(2026, 3, 10, 23, 30, tzinfo=timezone.utc)
        edge = task_platform.register_invite("bob", INVITE_CODE)
        task_platform.validate_invite(edge.id)

        clock.now = clock.now.astimezone(timezone(timedelta(hours=8)))
        stats = task_platform.get_invite_stats(INVITER_ID)

        assert clock.now.day == 11
        assert stats.today_invites == 1
        assert stats.today_reward == Decimal("10")
        assert stats.month_reward == Decimal("10")
