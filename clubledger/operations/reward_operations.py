"""
Reward Operations Module

This module turns a coach's reward form selection into a ledger apply:
- Challenge and exercise rewards, flat or through a cumulative milestone ladder
- Manual awards and penalties
- Optional partner split
- Eligibility checks (target subgroup, one-time challenges, milestone progress)
"""

from typing import Iterable, List, Optional, Tuple

from clubledger.config import Config
from clubledger.constants import ChallengeConstants, GrundlagenConstants, ItemType, ReasonType
from clubledger.data_models.ledger import (
    ApplyOptions, BatchRewardResult, CompletionRequest, FreshCompletionCheck,
    MilestoneProgressSnapshot, MilestoneUpdate, PartnerSplit, RewardRequest, ApplyResult
)
from clubledger.utils.ledger_exceptions import (
    ChallengeAlreadyCompletedError, LedgerException, MilestoneAlreadyReachedError,
    NotInSubgroupError, PlayerNotFoundError, ValidationError
)
from clubledger.utils.milestones import MilestoneCalculator
from clubledger.utils.validation import ensure_distinct_partner, parse_int, parse_percentage, require
from clubledger.utils.logger import setup_logger

logger = setup_logger(__name__)


class RewardOperations:
    """Manual, challenge and exercise rewards on top of the ledger apply engine"""

    def __init__(self, database, ledger_ops):
        """Initialize with database instance and the ledger apply engine"""
        self.db = database
        self.ledger_ops = ledger_ops
        self.logger = logger

    async def apply_manual_or_item_reward(self, request: RewardRequest) -> ApplyResult:
        """
        Validate, check eligibility and apply a single reward.

        Validation runs before any store access. Eligibility is checked on a
        fresh read and the one-time checks are repeated inside the atomic apply.

        Raises:
            ValidationError: Incomplete or malformed selection
            EligibilityError: The player may not receive this reward
            LedgerCommitError: The apply could not be committed
        """
        self._validate_request(request)

        if request.reason_type in (ReasonType.CHALLENGE, ReasonType.EXERCISE):
            points, reason, options = await self._prepare_item_reward(request)
            xp = points
        else:
            points, xp, reason, options = self._prepare_manual_reward(request)

        return await self.ledger_ops.apply(
            request.player_id, points, xp, reason, request.awarded_by, options
        )

    async def apply_batch_reward(self, player_ids: Iterable[str], request: RewardRequest) -> BatchRewardResult:
        """
        Award the same reward to several players.

        Every player is applied atomically and independently; a failure for
        one player is collected and does not affect the others.
        """
        if request.partner_id is not None:
            raise ValidationError("Partner split is not supported for batch rewards",
                                  "❌ Partners cannot be used when rewarding several players.")

        player_ids = list(dict.fromkeys(player_ids))
        if not player_ids:
            raise ValidationError("Batch reward without players", "❌ Please select at least one player.")

        results: List[ApplyResult] = []
        failures: List[Tuple[str, str]] = []
        for player_id in player_ids:
            single = RewardRequest(
                player_id=player_id,
                reason_type=request.reason_type,
                awarded_by=request.awarded_by,
                item_id=request.item_id,
                milestone_index=request.milestone_index,
                achieved_count=request.achieved_count,
                manual_points=request.manual_points,
                manual_xp=request.manual_xp,
                manual_reason=request.manual_reason
            )
            try:
                results.append(await self.apply_manual_or_item_reward(single))
            except LedgerException as e:
                self.logger.warning(f"Batch reward skipped {player_id}: {e}")
                failures.append((player_id, e.user_message))

        self.logger.info(
            f"Batch reward ({request.reason_type}) by {request.awarded_by}: "
            f"{len(results)} succeeded, {len(failures)} failed"
        )
        return BatchRewardResult(results=tuple(results), failures=tuple(failures))

    async def get_milestone_progress(self, player_id: str, item_id: str) -> MilestoneProgressSnapshot:
        """Recorded progress of a player on an item (count 0 when never rewarded)"""
        require(player_id, 'player', "❌ Please select a player.")
        require(item_id, 'item', "❌ Please select an item.")
        progress = await self.db.get_milestone_progress(player_id, item_id)
        if progress is None:
            return MilestoneProgressSnapshot(player_id=player_id, item_id=item_id, current_count=0)
        return MilestoneProgressSnapshot(
            player_id=player_id,
            item_id=item_id,
            current_count=progress.current_count,
            item_type=progress.item_type,
            last_updated=progress.last_updated
        )

    # ============================================================================
    # Validation
    # ============================================================================

    @staticmethod
    def _validate_request(request: RewardRequest):
        require(request.player_id, 'player', "❌ Please select a player.")
        require(request.awarded_by, 'awarded_by')
        if request.reason_type not in ReasonType.REWARD_TYPES:
            raise ValidationError(f"Unknown reason type {request.reason_type!r}",
                                  "❌ Please select a reason.")

        if request.reason_type == ReasonType.CHALLENGE:
            require(request.item_id, 'item', "❌ Please select a challenge.")
        elif request.reason_type == ReasonType.EXERCISE:
            require(request.item_id, 'item', "❌ Please select an exercise.")
        else:
            parse_int(request.manual_points, 'points')
            if not RewardOperations._is_blank(request.manual_xp):
                parse_int(request.manual_xp, 'xp')
            require(request.manual_reason, 'reason', "❌ Please provide a reason.")

        ensure_distinct_partner(request.player_id, request.partner_id)
        if request.partner_id is not None and request.partner_percentage is not None:
            parse_percentage(request.partner_percentage)

    @staticmethod
    def _is_blank(value) -> bool:
        return value is None or (isinstance(value, str) and not value.strip())

    # ============================================================================
    # Manual rewards
    # ============================================================================

    def _prepare_manual_reward(self, request: RewardRequest) -> Tuple[int, int, str, ApplyOptions]:
        points = parse_int(request.manual_points, 'points')
        xp = points if self._is_blank(request.manual_xp) else parse_int(request.manual_xp, 'xp')
        reason = request.manual_reason.strip()

        if request.reason_type == ReasonType.PENALTY:
            points, xp = -abs(points), -abs(xp)
            reason = f"Penalty: {reason}"

        foundational = (request.reason_type == ReasonType.MANUAL
                        and GrundlagenConstants.KEYWORD in reason.lower())

        options = ApplyOptions(
            partner=self._partner_split(request, None),
            foundational=foundational,
            reason_type=request.reason_type
        )
        return points, xp, reason, options

    # ============================================================================
    # Item rewards
    # ============================================================================

    async def _prepare_item_reward(self, request: RewardRequest) -> Tuple[int, str, ApplyOptions]:
        is_challenge = request.reason_type == ReasonType.CHALLENGE
        item_type = ItemType.CHALLENGE if is_challenge else ItemType.EXERCISE

        if is_challenge:
            item = await self.db.get_challenge(request.item_id)
        else:
            item = await self.db.get_exercise(request.item_id)
        if item is None:
            raise ValidationError(f"{item_type.capitalize()} '{request.item_id}' not found",
                                  f"❌ Please select a valid {item_type}.")

        prefix = "Challenge" if is_challenge else "Exercise"
        milestone_updates = ()
        selected_count = None
        if item.has_milestones:
            ladder = MilestoneCalculator.parse_ladder(item.milestones)
            # The declared count is what gets recorded; a bare tier selection records the tier's count
            if request.achieved_count is not None:
                selected_count = parse_int(request.achieved_count, 'achieved_count')
                index = MilestoneCalculator.index_for_count(ladder, selected_count)
                points = MilestoneCalculator.cumulative_points(ladder, index)
            elif request.milestone_index is not None:
                index = parse_int(request.milestone_index, 'milestone')
                points = MilestoneCalculator.cumulative_points(ladder, index)
                selected_count = ladder[index].count
            else:
                raise ValidationError(f"No milestone selected for {item_type} '{item.id}'",
                                      "❌ Please select a milestone.")
            reason = f"{prefix}: {item.title} ({selected_count}×)"
            milestone_updates = (MilestoneUpdate(item_type, item.id, selected_count),)
        else:
            points = item.points
            reason = f"{prefix}: {item.title}"

        await self._check_eligibility(request.player_id, item, is_challenge, selected_count)

        fresh_check = None
        if is_challenge and not item.is_repeatable:
            fresh_check = FreshCompletionCheck(item.id, item.redeemable_since)

        foundational = not is_challenge and self._is_foundational_exercise(item)

        options = ApplyOptions(
            partner=self._partner_split(request, item),
            foundational=foundational,
            reason_type=request.reason_type,
            completion_markers=(CompletionRequest(item_type, item.id),),
            milestone_updates=milestone_updates,
            require_fresh_completion=fresh_check
        )
        return points, reason, options

    async def _check_eligibility(self, player_id: str, item, is_challenge: bool,
                                 selected_count: Optional[int]):
        """Read-only eligibility checks; nothing is written when one fails"""
        account = await self.db.get_account(player_id)
        if account is None:
            raise PlayerNotFoundError(player_id)

        if is_challenge:
            target = item.subgroup_id or ChallengeConstants.ALL_SUBGROUPS
            if target != ChallengeConstants.ALL_SUBGROUPS and not account.is_in_subgroup(target):
                raise NotInSubgroupError(player_id, target)

            if not item.is_repeatable:
                marker = await self.db.get_completion_marker(player_id, ItemType.CHALLENGE, item.id)
                if marker is not None and marker.completed_at > item.redeemable_since:
                    raise ChallengeAlreadyCompletedError(player_id, item.id)

        if selected_count is not None:
            progress = await self.db.get_milestone_progress(player_id, item.id)
            if progress is not None and progress.current_count >= selected_count:
                raise MilestoneAlreadyReachedError(player_id, item.id, progress.current_count, selected_count)

    @staticmethod
    def _is_foundational_exercise(exercise) -> bool:
        keyword = GrundlagenConstants.KEYWORD
        if exercise.category and keyword in exercise.category.lower():
            return True
        return any(keyword in str(tag).lower() for tag in (exercise.tags or ()))

    def _partner_split(self, request: RewardRequest, item) -> Optional[PartnerSplit]:
        """Partner split for the request, or None when it does not apply"""
        if request.partner_id is None:
            return None

        if item is not None and not item.has_partner_system:
            self.logger.info(f"Ignoring partner {request.partner_id}: '{item.id}' has no partner system")
            return None

        if request.partner_percentage is not None:
            percentage = parse_percentage(request.partner_percentage)
        elif item is not None and item.partner_percentage:
            percentage = item.partner_percentage
        else:
            percentage = Config.DEFAULT_PARTNER_PERCENTAGE
        return PartnerSplit(request.partner_id, percentage)
