"""Tests for manual, challenge and exercise rewards."""

from datetime import datetime

import pytest

from clubledger.constants import ItemType, ReasonType
from clubledger.data_models.ledger import RewardRequest
from clubledger.utils.ledger_exceptions import (
    ChallengeAlreadyCompletedError, EligibilityError, MilestoneAlreadyReachedError,
    NotInSubgroupError, ValidationError
)

LADDER = [
    {"count": 5, "points": 10},
    {"count": 10, "points": 15},
    {"count": 20, "points": 25},
]


@pytest.fixture
async def players(db):
    await db.create_account("p1", "Anna", "Berg", subgroup_ids=["g1"])
    await db.create_account("p2", "Ben", "Cole", subgroup_ids=["g2"])
    await db.create_account("p3", "Cara", "Diaz", subgroup_ids=["g1"])


def item_request(reason_type, item_id, player_id="p1", **kwargs):
    return RewardRequest(player_id=player_id, reason_type=reason_type,
                         awarded_by="Coach Kim", item_id=item_id, **kwargs)


def manual_request(points, reason, player_id="p1", reason_type=ReasonType.MANUAL, **kwargs):
    return RewardRequest(player_id=player_id, reason_type=reason_type, awarded_by="Coach Kim",
                         manual_points=points, manual_reason=reason, **kwargs)


class TestMilestoneRewards:
    @pytest.fixture
    async def exercise(self, db, players):
        await db.create_exercise("ex1", "Serve series", milestones=LADDER)

    async def test_selected_milestone_pays_cumulative_points(self, db, reward_ops, exercise):
        result = await reward_ops.apply_manual_or_item_reward(
            item_request(ReasonType.EXERCISE, "ex1", milestone_index=1)
        )

        assert (result.points_delta, result.xp_delta) == (25, 25)
        entry = (await db.get_ledger_history("p1"))[0]
        assert entry.reason == "Exercise: Serve series (10×)"
        assert entry.reason_type == ReasonType.EXERCISE

        progress = await reward_ops.get_milestone_progress("p1", "ex1")
        assert progress.current_count == 10
        assert progress.item_type == ItemType.EXERCISE

    async def test_achieved_count_selects_highest_reached_milestone(self, db, reward_ops, exercise):
        result = await reward_ops.apply_manual_or_item_reward(
            item_request(ReasonType.EXERCISE, "ex1", achieved_count=12)
        )

        assert result.points_delta == 25
        assert (await db.get_ledger_history("p1"))[0].reason == "Exercise: Serve series (12×)"
        assert (await reward_ops.get_milestone_progress("p1", "ex1")).current_count == 12

    async def test_declared_count_is_the_recorded_progress(self, db, reward_ops, exercise):
        await reward_ops.apply_manual_or_item_reward(
            item_request(ReasonType.EXERCISE, "ex1", achieved_count=12)
        )

        with pytest.raises(MilestoneAlreadyReachedError):
            await reward_ops.apply_manual_or_item_reward(
                item_request(ReasonType.EXERCISE, "ex1", achieved_count=12)
            )

        await reward_ops.apply_manual_or_item_reward(
            item_request(ReasonType.EXERCISE, "ex1", achieved_count=15)
        )
        assert (await reward_ops.get_milestone_progress("p1", "ex1")).current_count == 15
        assert await db.count_ledger_entries("p1") == 2

    async def test_milestone_must_exceed_recorded_progress(self, db, reward_ops, exercise):
        await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.EXERCISE, "ex1", milestone_index=1))

        for index in (0, 1):
            with pytest.raises(MilestoneAlreadyReachedError):
                await reward_ops.apply_manual_or_item_reward(
                    item_request(ReasonType.EXERCISE, "ex1", milestone_index=index)
                )
        assert await db.count_ledger_entries("p1") == 1

        result = await reward_ops.apply_manual_or_item_reward(
            item_request(ReasonType.EXERCISE, "ex1", milestone_index=2)
        )
        assert result.points_delta == 50
        assert (await reward_ops.get_milestone_progress("p1", "ex1")).current_count == 20

    async def test_missing_milestone_selection(self, reward_ops, exercise):
        with pytest.raises(ValidationError):
            await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.EXERCISE, "ex1"))

    async def test_progress_without_record_is_zero(self, reward_ops, exercise):
        progress = await reward_ops.get_milestone_progress("p2", "ex1")

        assert progress.current_count == 0
        assert progress.last_updated is None


class TestChallengeRewards:
    async def test_flat_challenge_reward(self, db, reward_ops, players):
        await db.create_challenge("c1", "Ten serves in a row", points=30)

        result = await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "c1"))

        assert result.points_delta == 30
        assert (await db.get_ledger_history("p1"))[0].reason == "Challenge: Ten serves in a row"
        assert await db.get_completion_marker("p1", ItemType.CHALLENGE, "c1") is not None

    async def test_non_repeatable_challenge_only_once(self, db, reward_ops, players):
        await db.create_challenge("c1", "Ten serves in a row", points=30, is_repeatable=False,
                                  created_at=datetime(2020, 1, 1))

        await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "c1"))
        with pytest.raises(ChallengeAlreadyCompletedError) as exc_info:
            await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "c1"))

        assert isinstance(exc_info.value, EligibilityError)
        assert await db.count_ledger_entries("p1") == 1
        assert (await db.get_account("p1")).points == 30

    async def test_reactivated_challenge_can_be_redeemed_again(self, db, reward_ops, players):
        await db.create_challenge("c1", "Ten serves in a row", points=30, is_repeatable=False,
                                  created_at=datetime(2020, 1, 1))
        await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "c1"))

        await db.reactivate_challenge("c1")
        await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "c1"))

        assert (await db.get_account("p1")).points == 60

    async def test_repeatable_challenge_can_be_redeemed_again(self, db, reward_ops, players):
        await db.create_challenge("c1", "Footwork ladder", points=5)

        for _ in range(3):
            await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "c1"))

        assert (await db.get_account("p1")).points == 15

    async def test_subgroup_challenge_requires_membership(self, db, reward_ops, players):
        await db.create_challenge("c1", "U15 challenge", points=10, subgroup_id="g1")

        with pytest.raises(NotInSubgroupError):
            await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "c1", player_id="p2"))
        assert await db.count_ledger_entries("p2") == 0

        result = await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "c1"))
        assert result.points_delta == 10

    async def test_club_wide_challenge_for_everyone(self, db, reward_ops, players):
        await db.create_challenge("c1", "Club challenge", points=10)

        result = await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "c1", player_id="p2"))

        assert result.points_delta == 10

    async def test_unknown_challenge(self, reward_ops, players):
        with pytest.raises(ValidationError):
            await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.CHALLENGE, "missing"))


class TestPartnerRewards:
    async def test_partner_system_splits_reward(self, db, reward_ops, players):
        await db.create_exercise("ex1", "Doubles drill", points=20, has_partner_system=True)

        result = await reward_ops.apply_manual_or_item_reward(
            item_request(ReasonType.EXERCISE, "ex1", partner_id="p3")
        )

        assert result.points_delta == 20
        assert result.partner_points_delta == 10
        assert (await db.get_account("p3")).points == 10

    async def test_item_partner_percentage_is_default(self, db, reward_ops, players):
        await db.create_exercise("ex1", "Doubles drill", points=20, has_partner_system=True,
                                 partner_percentage=25)

        result = await reward_ops.apply_manual_or_item_reward(
            item_request(ReasonType.EXERCISE, "ex1", partner_id="p3")
        )

        assert result.partner_points_delta == 5

    async def test_partner_ignored_without_partner_system(self, db, reward_ops, players):
        await db.create_exercise("ex1", "Solo drill", points=20)

        result = await reward_ops.apply_manual_or_item_reward(
            item_request(ReasonType.EXERCISE, "ex1", partner_id="p3")
        )

        assert not result.partner_applied
        assert (await db.get_account("p3")).points == 0

    async def test_partner_equal_to_player(self, db, reward_ops, players):
        await db.create_exercise("ex1", "Doubles drill", points=20, has_partner_system=True)

        with pytest.raises(ValidationError):
            await reward_ops.apply_manual_or_item_reward(
                item_request(ReasonType.EXERCISE, "ex1", partner_id="p1")
            )
        assert await db.count_ledger_entries() == 0


class TestManualRewards:
    async def test_manual_award_with_string_input(self, db, reward_ops, players):
        result = await reward_ops.apply_manual_or_item_reward(manual_request(" 15 ", "Helped set up nets"))

        assert (result.points_delta, result.xp_delta) == (15, 15)
        assert (await db.get_ledger_history("p1"))[0].reason == "Helped set up nets"

    async def test_manual_xp_can_differ(self, reward_ops, players):
        result = await reward_ops.apply_manual_or_item_reward(
            manual_request(10, "Tournament help", manual_xp="4")
        )

        assert (result.points_delta, result.xp_delta) == (10, 4)

    @pytest.mark.parametrize("points", ["abc", "", None, "1.5"])
    async def test_non_numeric_points_rejected(self, db, reward_ops, players, points):
        with pytest.raises(ValidationError):
            await reward_ops.apply_manual_or_item_reward(manual_request(points, "Bonus"))

        assert await db.count_ledger_entries() == 0

    async def test_missing_reason_rejected(self, reward_ops, players):
        with pytest.raises(ValidationError):
            await reward_ops.apply_manual_or_item_reward(manual_request(10, "  "))

    async def test_penalty_is_negative_and_clamped(self, db, reward_ops, players):
        await reward_ops.apply_manual_or_item_reward(manual_request(20, "Tournament win"))

        result = await reward_ops.apply_manual_or_item_reward(
            manual_request("30", "Late for training", reason_type=ReasonType.PENALTY)
        )

        assert result.requested_points_delta == -30
        assert result.points_delta == -20
        account = await db.get_account("p1")
        assert (account.points, account.xp) == (0, 0)

        entry = (await db.get_ledger_history("p1"))[0]
        assert entry.reason == "Penalty: Late for training"
        assert entry.reason_type == ReasonType.PENALTY

    async def test_unknown_reason_type(self, reward_ops, players):
        with pytest.raises(ValidationError):
            await reward_ops.apply_manual_or_item_reward(manual_request(10, "Bonus", reason_type="bonus"))

    async def test_missing_player(self, reward_ops):
        with pytest.raises(ValidationError):
            await reward_ops.apply_manual_or_item_reward(manual_request(10, "Bonus", player_id=None))


class TestGrundlagen:
    async def test_foundational_exercise_counts(self, db, reward_ops, players):
        await db.create_exercise("ex1", "Forehand basics", points=5, category="Grundlagen")

        result = await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.EXERCISE, "ex1"))

        assert result.grundlagen_completed == 1
        assert (await db.get_account("p1")).grundlagen_completed == 1

    async def test_foundational_tag_counts(self, db, reward_ops, players):
        await db.create_exercise("ex1", "Footwork", points=5, tags=["Technik", "Grundlage"])

        result = await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.EXERCISE, "ex1"))

        assert result.grundlagen_completed == 1

    async def test_manual_foundational_reason_counts(self, db, reward_ops, players):
        result = await reward_ops.apply_manual_or_item_reward(manual_request(5, "Grundlagen: Aufschlag"))

        assert result.grundlagen_completed == 1

    async def test_other_exercise_does_not_count(self, db, reward_ops, players):
        await db.create_exercise("ex1", "Match play", points=5, category="Spiel")

        await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.EXERCISE, "ex1"))

        assert (await db.get_account("p1")).grundlagen_completed == 0

    async def test_fifth_foundational_exercise_makes_match_ready(self, db, reward_ops, players):
        await db.create_exercise("ex1", "Forehand basics", points=5, category="Grundlagen")

        results = [
            await reward_ops.apply_manual_or_item_reward(item_request(ReasonType.EXERCISE, "ex1"))
            for _ in range(6)
        ]

        assert [r.became_match_ready for r in results] == [False, False, False, False, True, False]
        account = await db.get_account("p1")
        assert account.grundlagen_completed == 5
        assert account.is_match_ready


class TestBatchRewards:
    async def test_batch_collects_failures(self, db, reward_ops, players):
        await db.create_challenge("c1", "U15 challenge", points=10, subgroup_id="g1")

        result = await reward_ops.apply_batch_reward(
            ["p1", "p2", "p3"], RewardRequest(player_id=None, reason_type=ReasonType.CHALLENGE,
                                              awarded_by="Coach Kim", item_id="c1")
        )

        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.failures[0][0] == "p2"
        assert (await db.get_account("p3")).points == 10

    async def test_batch_rejects_partner(self, db, reward_ops, players):
        with pytest.raises(ValidationError):
            await reward_ops.apply_batch_reward(
                ["p1", "p2"], manual_request(10, "Bonus", partner_id="p3")
            )
        assert await db.count_ledger_entries() == 0

    async def test_batch_requires_players(self, reward_ops, players):
        with pytest.raises(ValidationError):
            await reward_ops.apply_batch_reward([], manual_request(10, "Bonus"))
