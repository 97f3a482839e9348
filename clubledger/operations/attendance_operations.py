"""
Attendance Operations Module

This module rewards training attendance for one subgroup and date:
- Streak tracking per player and subgroup
- Tiered points/XP for consecutive presences
- Base-point deduction when a presence is corrected to absent
- Chunked commits so a large roster stays inside the per-transaction write bound

Who was present before this save, and who was present at the previous
training, are read inside each chunk's transaction. A retried chunk therefore
re-derives every transition from the state committed by concurrent saves.
"""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clubledger.config import Config
from clubledger.constants import AttendanceConstants, AttendanceState, ReasonType
from clubledger.database.models import Account, AttendanceRecord, StreakRecord
from clubledger.data_models.ledger import (
    ApplyOptions, AttendanceResult, PlayerAttendanceOutcome, RosterEntry
)
from clubledger.services.base import execute_with_retry
from clubledger.utils.ledger_exceptions import LedgerCommitError, LedgerException, PartialBatchFailure
from clubledger.utils.points import PointsCalculator
from clubledger.utils.validation import coerce_date, require
from clubledger.utils.logger import setup_logger

logger = setup_logger(__name__)


class ChunkOverflow(Exception):
    """A chunk exceeds the write bound once re-estimated on committed state. Nothing was written."""
    def __init__(self, previously_present: Set[str], operations: int):
        super().__init__(f"Chunk needs {operations} writes on committed state")
        self.previously_present = previously_present
        self.operations = operations


class AttendanceOperations:
    """Applies one attendance save (subgroup + date) to every roster member"""

    def __init__(self, database, ledger_ops, max_batch_operations: Optional[int] = None):
        """Initialize with database instance and the ledger apply engine"""
        self.db = database
        self.ledger_ops = ledger_ops
        self.max_batch_operations = max_batch_operations or Config.ATTENDANCE_MAX_BATCH_OPERATIONS
        if self.max_batch_operations < AttendanceConstants.OPS_ATTENDANCE_RECORD + AttendanceConstants.OPS_NEW_PRESENCE:
            raise ValueError(f"max_batch_operations too small: {self.max_batch_operations}")
        self.logger = logger

    async def apply_attendance(
        self,
        subgroup_id: str,
        date,
        present_player_ids: Iterable[str],
        roster: Iterable[RosterEntry],
        previous_present_ids: Optional[Iterable[str]] = None,
        previous_training_present_ids: Optional[Iterable[str]] = None,
        awarded_by: Optional[str] = None,
        subgroup_name: Optional[str] = None
    ) -> AttendanceResult:
        """
        Save attendance for a subgroup on a date and reward every member.

        Args:
            subgroup_id: Subgroup the training belongs to
            date: Training date (date, datetime or ISO string)
            present_player_ids: Players marked present in this save
            roster: Roster snapshot; only members of ``subgroup_id`` are processed
            previous_present_ids: Players present on this date before this save.
                Read from the stored attendance record inside each chunk's
                transaction when omitted. A supplied set is used as given.
            previous_training_present_ids: Players present at the subgroup's
                previous tracked date. Read inside each chunk's transaction when omitted.
            awarded_by: Actor written to the ledger entries
            subgroup_name: Display label for the history reasons

        Returns:
            AttendanceResult with one outcome per processed member

        Raises:
            ValidationError: Missing subgroup or invalid date
            LedgerCommitError: The first chunk failed, nothing was written
            PartialBatchFailure: A later chunk failed after earlier chunks committed
        """
        require(subgroup_id, 'subgroup', "❌ Please select a subgroup.")
        training_date = coerce_date(date)
        awarded_by = awarded_by or Config.ATTENDANCE_ACTOR
        label = subgroup_name or subgroup_id

        present = set(present_player_ids)
        members = self._members_of(roster, subgroup_id)
        explicit_previous = set(previous_present_ids) if previous_present_ids is not None else None
        explicit_training = (set(previous_training_present_ids)
                             if previous_training_present_ids is not None else None)

        # Planning estimate only; each chunk re-checks its bound on committed state
        if explicit_previous is not None:
            estimated_previous = explicit_previous
        else:
            record = await self.db.get_attendance_record(subgroup_id, training_date)
            estimated_previous = set(record.present_player_ids or ()) if record else set()

        chunks = self.plan_chunks(members, present, estimated_previous, self.max_batch_operations)

        outcomes: List[PlayerAttendanceOutcome] = []
        skipped: Set[str] = set()
        committed: List[str] = []

        index = 0
        while index < len(chunks):
            chunk = chunks[index]

            async def attempt(chunk=chunk) -> Tuple[List[PlayerAttendanceOutcome], Set[str]]:
                async with self.db.transaction() as session:
                    return await self._commit_chunk(
                        session, subgroup_id, training_date, chunk, present,
                        explicit_previous, explicit_training, awarded_by, label
                    )

            operation = f"attendance {subgroup_id} {training_date.isoformat()} chunk {index + 1}/{len(chunks)}"
            try:
                chunk_outcomes, chunk_skipped = await execute_with_retry(attempt, operation)
            except ChunkOverflow as overflow:
                remaining = [player_id for later in chunks[index:] for player_id in later]
                chunks = chunks[:index] + self.plan_chunks(
                    remaining, present, overflow.previously_present, self.max_batch_operations
                )
                self.logger.warning(
                    f"Re-planned {operation}: {overflow.operations} writes on committed state, "
                    f"{len(chunks)} chunk(s) now"
                )
                continue
            except (LedgerException, SQLAlchemyError) as e:
                if index == 0:
                    self.logger.error(f"Attendance save failed for {operation}: {e}")
                    if isinstance(e, LedgerCommitError):
                        raise
                    raise LedgerCommitError(operation, 1, str(e)) from e

                failed = [player_id for later in chunks[index:] for player_id in later]
                self.logger.error(
                    f"Attendance partially saved for {subgroup_id} on {training_date}: "
                    f"chunk {index + 1}/{len(chunks)} failed, {len(committed)} players committed: {e}"
                )
                raise PartialBatchFailure(index, len(chunks), list(committed), failed, str(e)) from e

            outcomes.extend(chunk_outcomes)
            skipped.update(chunk_skipped)
            committed.extend(player_id for player_id in chunk if player_id not in chunk_skipped)
            index += 1

        result = AttendanceResult(
            subgroup_id=subgroup_id,
            date=training_date,
            outcomes=tuple(outcomes),
            chunks_committed=len(chunks),
            skipped_player_ids=frozenset(skipped)
        )

        self.logger.info(
            f"Attendance saved for {label} on {training_date.isoformat()}: "
            f"{len(present & set(members))}/{len(members)} present, "
            f"{result.total_points_awarded} points net in {len(chunks)} chunk(s)"
        )
        return result

    @staticmethod
    def _members_of(roster: Iterable[RosterEntry], subgroup_id: str) -> List[str]:
        members = []
        seen = set()
        for entry in roster:
            if entry.is_member_of(subgroup_id) and entry.player_id not in seen:
                seen.add(entry.player_id)
                members.append(entry.player_id)
        return members

    # ============================================================================
    # Chunk planning
    # ============================================================================

    @staticmethod
    def estimate_operations(player_id: str, present: Set[str], previously_present: Set[str]) -> int:
        """Estimated store writes for one member"""
        if player_id in present:
            if player_id in previously_present:
                return 0
            return AttendanceConstants.OPS_NEW_PRESENCE
        if player_id in previously_present:
            return AttendanceConstants.OPS_CORRECTION
        return AttendanceConstants.OPS_ABSENCE

    @classmethod
    def chunk_operations(cls, chunk: List[str], present: Set[str], previously_present: Set[str]) -> int:
        """Estimated store writes for a chunk, including its attendance record"""
        return AttendanceConstants.OPS_ATTENDANCE_RECORD + sum(
            cls.estimate_operations(player_id, present, previously_present) for player_id in chunk
        )

    @classmethod
    def plan_chunks(cls, member_ids: List[str], present: Set[str], previously_present: Set[str],
                    max_operations: int) -> List[List[str]]:
        """
        Split members into chunks whose estimated writes stay within ``max_operations``.

        Each chunk also counts the attendance record write. Members keep their
        roster order. An empty roster yields a single empty chunk so the
        attendance record is still saved.
        """
        chunks: List[List[str]] = []
        current: List[str] = []
        current_ops = AttendanceConstants.OPS_ATTENDANCE_RECORD

        for player_id in member_ids:
            ops = cls.estimate_operations(player_id, present, previously_present)
            if current and current_ops + ops > max_operations:
                chunks.append(current)
                current = []
                current_ops = AttendanceConstants.OPS_ATTENDANCE_RECORD
            current.append(player_id)
            current_ops += ops

        if current or not chunks:
            chunks.append(current)
        return chunks

    # ============================================================================
    # Chunk commit
    # ============================================================================

    async def _commit_chunk(
        self,
        session: AsyncSession,
        subgroup_id: str,
        training_date: date,
        chunk: List[str],
        present: Set[str],
        explicit_previous: Optional[Set[str]],
        explicit_training: Optional[Set[str]],
        awarded_by: str,
        label: str
    ) -> Tuple[List[PlayerAttendanceOutcome], Set[str]]:
        """Apply the state machine to one chunk and merge its presence into the record"""
        # --- Read phase: presence state as committed when this attempt starts ---
        record = await self._lock_attendance_record(session, subgroup_id, training_date)
        if explicit_previous is not None:
            previously_present = explicit_previous
        else:
            previously_present = set(record.present_player_ids or ()) if record is not None else set()

        if explicit_training is not None:
            present_last_training = explicit_training
        else:
            present_last_training = await self._previous_training_presence(session, subgroup_id, training_date)

        operations = self.chunk_operations(chunk, present, previously_present)
        if len(chunk) > 1 and operations > self.max_batch_operations:
            raise ChunkOverflow(previously_present, operations)

        outcomes = []
        skipped = set()

        existing = set()
        streaks: Dict[str, StreakRecord] = {}
        if chunk:
            result = await session.execute(select(Account.id).where(Account.id.in_(chunk)))
            existing = set(result.scalars().all())

            result = await session.execute(
                select(StreakRecord).where(
                    (StreakRecord.player_id.in_(chunk)) &
                    (StreakRecord.subgroup_id == subgroup_id)
                ).with_for_update()
            )
            streaks = {streak.player_id: streak for streak in result.scalars().all()}

        date_label = training_date.strftime('%d.%m.%Y')

        # --- Write phase ---
        for player_id in chunk:
            if player_id not in existing:
                self.logger.warning(f"Skipping attendance for unknown player {player_id} in {subgroup_id}")
                skipped.add(player_id)
                continue

            streak = streaks.get(player_id)
            if streak is None:
                streak = StreakRecord(player_id=player_id, subgroup_id=subgroup_id, count=0)
                session.add(streak)
            prior_streak = streak.count or 0

            if player_id in present:
                if player_id in previously_present:
                    outcomes.append(PlayerAttendanceOutcome(
                        player_id=player_id, state=AttendanceState.UNCHANGED, streak=prior_streak
                    ))
                    continue

                continued = player_id in present_last_training
                new_streak = PointsCalculator.next_streak(prior_streak, continued)
                points = PointsCalculator.attendance_points(new_streak)
                streak.count = new_streak
                streak.last_updated = datetime.utcnow()

                applied = await self.ledger_ops.apply_in_session(
                    session, player_id, points, points,
                    self._attendance_reason(date_label, label, new_streak),
                    awarded_by,
                    ApplyOptions(reason_type=ReasonType.ATTENDANCE,
                                 attendance_date=training_date, subgroup_id=subgroup_id)
                )
                outcomes.append(PlayerAttendanceOutcome(
                    player_id=player_id,
                    state=(AttendanceState.PRESENT_CONTINUED_STREAK if continued
                           else AttendanceState.PRESENT_NEW_STREAK),
                    streak=new_streak,
                    points_delta=applied.points_delta,
                    xp_delta=applied.xp_delta
                ))
                continue

            # Absent: streak resets unconditionally
            streak.count = 0
            streak.last_updated = datetime.utcnow()

            points_delta = xp_delta = 0
            if player_id in previously_present:
                deduction = AttendanceConstants.BASE_POINTS
                applied = await self.ledger_ops.apply_in_session(
                    session, player_id, -deduction, -deduction,
                    f"Attendance corrected on {date_label} ({deduction} points deducted) - {label}",
                    awarded_by,
                    ApplyOptions(reason_type=ReasonType.ATTENDANCE_CORRECTION,
                                 attendance_date=training_date, subgroup_id=subgroup_id)
                )
                points_delta, xp_delta = applied.points_delta, applied.xp_delta

            outcomes.append(PlayerAttendanceOutcome(
                player_id=player_id,
                state=AttendanceState.ABSENT,
                streak=0,
                points_delta=points_delta,
                xp_delta=xp_delta
            ))

        self._merge_attendance_record(session, record, subgroup_id, training_date, chunk, present)
        await session.flush()
        return outcomes, skipped

    @staticmethod
    def _attendance_reason(date_label: str, label: str, streak: int) -> str:
        reason = f"Training on {date_label} - {label}"
        if streak >= AttendanceConstants.SUPER_STREAK_THRESHOLD:
            reason += f" (🔥 {streak}x streak!)"
        elif streak >= AttendanceConstants.STREAK_BONUS_THRESHOLD:
            reason += f" (⚡ {streak}x streak)"
        return reason

    @staticmethod
    async def _lock_attendance_record(session: AsyncSession, subgroup_id: str,
                                      training_date: date) -> Optional[AttendanceRecord]:
        # NOTE: On SQLite, with_for_update() is not rendered; the record's version
        # column detects a concurrent save of the same date at flush.
        result = await session.execute(
            select(AttendanceRecord).where(
                (AttendanceRecord.subgroup_id == subgroup_id) &
                (AttendanceRecord.date == training_date)
            ).with_for_update()
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _previous_training_presence(session: AsyncSession, subgroup_id: str,
                                          training_date: date) -> Set[str]:
        result = await session.execute(
            select(AttendanceRecord).where(
                (AttendanceRecord.subgroup_id == subgroup_id) &
                (AttendanceRecord.date < training_date)
            ).order_by(AttendanceRecord.date.desc()).limit(1)
        )
        previous = result.scalar_one_or_none()
        return set(previous.present_player_ids or ()) if previous is not None else set()

    @staticmethod
    def _merge_attendance_record(session: AsyncSession, record: Optional[AttendanceRecord],
                                 subgroup_id: str, training_date: date, chunk: List[str], present: Set[str]):
        """Replace the chunk's players in the record read by this attempt, keeping everyone else"""
        chunk_ids = set(chunk)
        stored = set(record.present_player_ids or ()) if record is not None else set()
        merged = (stored - chunk_ids) | (present & chunk_ids)

        if record is None:
            session.add(AttendanceRecord(
                subgroup_id=subgroup_id,
                date=training_date,
                present_player_ids=sorted(merged),
                updated_at=datetime.utcnow()
            ))
        else:
            # Always rewritten, so a concurrent save of this date fails the version check
            record.present_player_ids = sorted(merged)
            record.updated_at = datetime.utcnow()

    # ============================================================================
    # Read helpers
    # ============================================================================

    async def get_streak(self, player_id: str, subgroup_id: str) -> int:
        """Current streak of a player in a subgroup"""
        return await self.db.get_streak(player_id, subgroup_id)

    async def get_previous_training_date(self, subgroup_id: str, before) -> Optional[date]:
        """Most recent tracked training date of the subgroup strictly before ``before``"""
        record = await self.db.get_previous_attendance_record(subgroup_id, coerce_date(before, 'before'))
        return record.date if record else None
