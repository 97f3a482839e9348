"""
Ledger Operations Module

This module provides the Ledger Apply Engine: the single atomic primitive through
which every points/XP change of the club progression system is committed.

Guarantees:
- Floor-at-zero: decreases are clamped at the balance read inside the transaction
- Every balance change writes a LedgerEntry in the same transaction
- Partner splits are computed from the primary's applied delta and clamped
  independently against the partner's own balance
- Foundational exercise count is capped; the match-ready flag flips exactly once
- Each attempt is a pure function of freshly read state, so a conflicting
  commit is re-executed from scratch
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubledger.database.models import Account, LedgerEntry, CompletionMarker, MilestoneProgress
from clubledger.data_models.ledger import ApplyOptions, ApplyResult, FreshCompletionCheck
from clubledger.constants import ItemType
from clubledger.services.base import execute_with_retry
from clubledger.utils.ledger_exceptions import (
    ValidationError, PlayerNotFoundError, ChallengeAlreadyCompletedError, MilestoneAlreadyReachedError
)
from clubledger.utils.points import PointsCalculator
from clubledger.utils.validation import require, ensure_distinct_partner
from clubledger.utils.logger import setup_logger

logger = setup_logger(__name__)


class LedgerOperations:
    """
    Atomic balance mutation shared by all reward paths.

    ``apply`` owns its transaction and retries on conflict. ``apply_in_session``
    composes into a caller's transaction (the attendance engine uses it to commit
    a whole roster chunk at once) and leaves commit and retry to the caller.
    """

    def __init__(self, database):
        """Initialize with database instance"""
        self.db = database
        self.logger = logger

    async def apply(
        self,
        player_id: str,
        points_delta: int,
        xp_delta: int,
        reason: str,
        awarded_by: str,
        options: Optional[ApplyOptions] = None
    ) -> ApplyResult:
        """
        Apply a points/XP change to a player in its own atomic transaction.

        Args:
            player_id: Player to credit or debit
            points_delta: Requested points change (negative values are clamped)
            xp_delta: Requested XP change (negative values are clamped)
            reason: Free-text history reason
            awarded_by: Display identity of the acting coach
            options: Partner split, foundational flag and markers to write

        Returns:
            ApplyResult with the actually applied deltas and ledger entry ids

        Raises:
            ValidationError: Malformed request (nothing read or written)
            PlayerNotFoundError: The player account does not exist (nothing written)
            EligibilityError: A one-time check failed inside the transaction
            LedgerCommitError: Commit failed or conflict retries were exhausted
        """
        options = options or ApplyOptions()
        self._validate_request(player_id, points_delta, xp_delta, reason, awarded_by, options)

        async def attempt() -> ApplyResult:
            async with self.db.transaction() as session:
                return await self._apply_validated(
                    session, player_id, points_delta, xp_delta, reason, awarded_by, options
                )

        result = await execute_with_retry(attempt, f"ledger apply for player {player_id}")

        self.logger.info(
            f"Applied {PointsCalculator.format_delta(result.points_delta)} points / "
            f"{PointsCalculator.format_delta(result.xp_delta)} XP to {player_id} "
            f"({options.reason_type}: {reason}) by {awarded_by}"
        )
        if result.was_clamped:
            self.logger.warning(
                f"Clamped request for {player_id}: requested {result.requested_points_delta}/"
                f"{result.requested_xp_delta}, applied {result.points_delta}/{result.xp_delta}"
            )
        if result.partner_applied:
            self.logger.info(
                f"Partner {result.partner_id} received {result.partner_points_delta} points / "
                f"{result.partner_xp_delta} XP"
            )
        return result

    async def apply_in_session(
        self,
        session: AsyncSession,
        player_id: str,
        points_delta: int,
        xp_delta: int,
        reason: str,
        awarded_by: str,
        options: Optional[ApplyOptions] = None
    ) -> ApplyResult:
        """Apply a change inside the caller's transaction (session-aware, no commit, no retry)."""
        options = options or ApplyOptions()
        self._validate_request(player_id, points_delta, xp_delta, reason, awarded_by, options)
        return await self._apply_validated(
            session, player_id, points_delta, xp_delta, reason, awarded_by, options
        )

    # ============================================================================
    # Validation
    # ============================================================================

    @staticmethod
    def _validate_request(player_id, points_delta, xp_delta, reason, awarded_by, options: ApplyOptions):
        """Fail fast before any store access"""
        require(player_id, 'player', "❌ Please select a player.")
        require(reason, 'reason', "❌ Please provide a reason.")
        require(awarded_by, 'awarded_by')

        for field_name, value in (('points_delta', points_delta), ('xp_delta', xp_delta)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"'{field_name}' must be an int, got {value!r}",
                                      "❌ Points and XP must be whole numbers.")

        if options.partner is not None:
            require(options.partner.partner_id, 'partner', "❌ Please select a partner.")
            ensure_distinct_partner(player_id, options.partner.partner_id)
            percentage = options.partner.percentage
            if isinstance(percentage, bool) or not isinstance(percentage, int) or not 0 < percentage <= 100:
                raise ValidationError(f"Partner percentage must be in (0, 100], got {percentage!r}",
                                      "❌ The partner percentage must be between 1 and 100.")

        for update in options.milestone_updates:
            if update.current_count < 0:
                raise ValidationError(f"Milestone count must not be negative, got {update.current_count}",
                                      "❌ The achieved count must not be negative.")

    # ============================================================================
    # Atomic apply
    # ============================================================================

    async def _apply_validated(
        self,
        session: AsyncSession,
        player_id: str,
        points_delta: int,
        xp_delta: int,
        reason: str,
        awarded_by: str,
        options: ApplyOptions
    ) -> ApplyResult:
        # --- Read phase: everything inside the caller's atomic scope ---
        player = await self._lock_account(session, player_id)
        if player is None:
            raise PlayerNotFoundError(player_id)

        if options.require_fresh_completion is not None:
            await self._check_fresh_completion(session, player_id, options.require_fresh_completion)

        existing_progress = {}
        for update in options.milestone_updates:
            progress = await self._lock_milestone_progress(session, player_id, update.item_id)
            if progress is not None and progress.current_count >= update.current_count:
                raise MilestoneAlreadyReachedError(player_id, update.item_id,
                                                   progress.current_count, update.current_count)
            existing_progress[update.item_id] = progress

        partner = None
        if options.partner is not None:
            partner = await self._lock_account(session, options.partner.partner_id)
            if partner is None:
                self.logger.warning(
                    f"Partner {options.partner.partner_id} not found, awarding {player_id} without partner split"
                )

        # --- Compute phase: pure over the freshly read state ---
        actual_points = PointsCalculator.clamp_delta(player.points, points_delta)
        actual_xp = PointsCalculator.clamp_delta(player.xp, xp_delta)

        partner_points = partner_xp = 0
        if partner is not None:
            percentage = options.partner.percentage
            partner_points = PointsCalculator.clamp_delta(
                partner.points, PointsCalculator.partner_share(actual_points, percentage)
            )
            partner_xp = PointsCalculator.clamp_delta(
                partner.xp, PointsCalculator.partner_share(actual_xp, percentage)
            )

        grundlagen = player.grundlagen_completed or 0
        became_match_ready = False
        if options.foundational:
            grundlagen, became_match_ready = PointsCalculator.advance_grundlagen(grundlagen)

        # --- Write phase ---
        now = datetime.utcnow()

        player.points += actual_points
        player.xp += actual_xp
        player.last_xp_update = now
        if options.foundational:
            player.grundlagen_completed = grundlagen
            if became_match_ready:
                player.is_match_ready = True

        primary_reason = reason
        if partner is not None:
            primary_reason = f"💪 {reason} (Partner: {partner.display_name})"

        entry = LedgerEntry(
            player_id=player_id,
            points_delta=actual_points,
            xp_delta=actual_xp,
            elo_delta=0,
            reason=primary_reason,
            reason_type=options.reason_type,
            awarded_by=awarded_by,
            is_active_player=partner is not None,
            partner_id=partner.id if partner is not None else None,
            attendance_date=options.attendance_date,
            subgroup_id=options.subgroup_id,
            timestamp=now
        )
        session.add(entry)

        partner_entry = None
        if partner is not None:
            partner.points += partner_points
            partner.xp += partner_xp
            partner.last_xp_update = now
            partner_entry = LedgerEntry(
                player_id=partner.id,
                points_delta=partner_points,
                xp_delta=partner_xp,
                elo_delta=0,
                reason=options.partner_reason or f"🤝 Partner: {reason} (with {player.display_name})",
                reason_type=options.reason_type,
                awarded_by=awarded_by,
                is_partner=True,
                partner_id=player_id,
                timestamp=now
            )
            session.add(partner_entry)

        for completion in options.completion_markers:
            await self._upsert_completion(session, player_id, completion.item_type, completion.item_id, now)

        for update in options.milestone_updates:
            progress = existing_progress.get(update.item_id)
            if progress is None:
                session.add(MilestoneProgress(
                    player_id=player_id,
                    item_id=update.item_id,
                    item_type=update.item_type,
                    current_count=update.current_count,
                    last_updated=now
                ))
            else:
                progress.current_count = update.current_count
                progress.last_updated = now

        await session.flush()  # Use flush to get IDs, let caller handle commit

        return ApplyResult(
            player_id=player_id,
            points_delta=actual_points,
            xp_delta=actual_xp,
            requested_points_delta=points_delta,
            requested_xp_delta=xp_delta,
            entry_id=entry.id,
            partner_id=partner.id if partner is not None else None,
            partner_points_delta=partner_points,
            partner_xp_delta=partner_xp,
            partner_entry_id=partner_entry.id if partner_entry is not None else None,
            grundlagen_completed=grundlagen,
            became_match_ready=became_match_ready
        )

    # ============================================================================
    # Row access helpers
    # ============================================================================

    @staticmethod
    async def _lock_account(session: AsyncSession, player_id: str) -> Optional[Account]:
        # NOTE: On SQLite, with_for_update() is not rendered; the version column
        # detects the concurrent writer instead.
        result = await session.execute(
            select(Account).where(Account.id == player_id).with_for_update()
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _lock_milestone_progress(session: AsyncSession, player_id: str,
                                       item_id: str) -> Optional[MilestoneProgress]:
        result = await session.execute(
            select(MilestoneProgress).where(
                (MilestoneProgress.player_id == player_id) &
                (MilestoneProgress.item_id == item_id)
            ).with_for_update()
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _check_fresh_completion(session: AsyncSession, player_id: str, check: FreshCompletionCheck):
        """Reject a non-repeatable challenge already completed since its last reactivation"""
        result = await session.execute(
            select(CompletionMarker).where(
                (CompletionMarker.player_id == player_id) &
                (CompletionMarker.item_type == ItemType.CHALLENGE) &
                (CompletionMarker.item_id == check.challenge_id)
            ).with_for_update()
        )
        marker = result.scalar_one_or_none()
        if marker is not None and marker.completed_at > check.redeemable_since:
            raise ChallengeAlreadyCompletedError(player_id, check.challenge_id)

    @staticmethod
    async def _upsert_completion(session: AsyncSession, player_id: str, item_type: str,
                                 item_id: str, completed_at: datetime):
        result = await session.execute(
            select(CompletionMarker).where(
                (CompletionMarker.player_id == player_id) &
                (CompletionMarker.item_type == item_type) &
                (CompletionMarker.item_id == item_id)
            ).with_for_update()
        )
        marker = result.scalar_one_or_none()
        if marker is None:
            session.add(CompletionMarker(
                player_id=player_id,
                item_type=item_type,
                item_id=item_id,
                completed_at=completed_at
            ))
        else:
            marker.completed_at = completed_at
