from datetime import date, datetime
from typing import Iterable, List, Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, func
from contextlib import asynccontextmanager

from clubledger.config import Config
from clubledger.constants import GrundlagenConstants
from clubledger.database.models import (
    Base, Account, LedgerEntry, StreakRecord, MilestoneProgress,
    CompletionMarker, AttendanceRecord, Challenge, Exercise
)
from clubledger.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")
        Config.validate()

        database_url = self.database_url or Config.get_async_database_url()
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @property
    def session_factory(self):
        return self.async_session

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context will be committed together on success,
        or rolled back together on failure.

        Usage:
            async with db.transaction() as session:
                await ledger_ops.apply_in_session(session, ...)
                # All writes commit together here

        Important: The caller is responsible for passing the yielded session to
        all participating operations. Exceptions must be allowed to propagate
        out of the context for rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Account operations
    async def create_account(self, player_id: str, first_name: str = '', last_name: str = '',
                             subgroup_ids: Iterable[str] = (), points: int = 0, xp: int = 0,
                             elo_rating: int = 0, grundlagen_completed: int = 0) -> Account:
        """
        Create a player account.

        Non-zero starting balances are recorded as an opening ledger entry so the
        balance always equals the sum of the player's ledger.
        """
        async with self.transaction() as session:
            account = Account(
                id=player_id,
                first_name=first_name,
                last_name=last_name,
                subgroup_ids=list(subgroup_ids),
                points=points,
                xp=xp,
                elo_rating=elo_rating,
                grundlagen_completed=grundlagen_completed,
                is_match_ready=grundlagen_completed >= GrundlagenConstants.REQUIRED_COMPLETIONS
            )
            session.add(account)
            if points or xp:
                session.add(LedgerEntry(
                    player_id=player_id,
                    points_delta=points,
                    xp_delta=xp,
                    reason="Opening balance",
                    reason_type="manual",
                    awarded_by="System"
                ))
            await session.flush()
            await session.refresh(account)
            return account

    async def get_account(self, player_id: str) -> Optional[Account]:
        """Get a player account by id"""
        async with self.get_session() as session:
            return await session.get(Account, player_id)

    # Catalogue operations
    async def create_challenge(self, challenge_id: str, title: str, points: int = 0,
                               milestones: Optional[list] = None, subgroup_id: str = 'all',
                               is_repeatable: bool = True, has_partner_system: bool = False,
                               partner_percentage: Optional[int] = None,
                               created_at: Optional[datetime] = None,
                               last_reactivated_at: Optional[datetime] = None) -> Challenge:
        """Create a challenge definition"""
        async with self.transaction() as session:
            challenge = Challenge(
                id=challenge_id,
                title=title,
                points=points,
                milestones=milestones,
                subgroup_id=subgroup_id,
                is_repeatable=is_repeatable,
                has_partner_system=has_partner_system,
                partner_percentage=partner_percentage,
                created_at=created_at or datetime.utcnow(),
                last_reactivated_at=last_reactivated_at
            )
            session.add(challenge)
            return challenge

    async def reactivate_challenge(self, challenge_id: str, reactivated_at: Optional[datetime] = None):
        """Reopen a non-repeatable challenge for players who already completed it"""
        async with self.transaction() as session:
            challenge = await session.get(Challenge, challenge_id)
            if challenge is None:
                raise ValueError(f"Challenge {challenge_id} not found")
            challenge.last_reactivated_at = reactivated_at or datetime.utcnow()

    async def create_exercise(self, exercise_id: str, title: str, points: int = 0,
                              milestones: Optional[list] = None, category: Optional[str] = None,
                              tags: Iterable[str] = (), has_partner_system: bool = False,
                              partner_percentage: Optional[int] = None) -> Exercise:
        """Create an exercise definition"""
        async with self.transaction() as session:
            exercise = Exercise(
                id=exercise_id,
                title=title,
                points=points,
                milestones=milestones,
                category=category,
                tags=list(tags),
                has_partner_system=has_partner_system,
                partner_percentage=partner_percentage
            )
            session.add(exercise)
            return exercise

    async def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        async with self.get_session() as session:
            return await session.get(Challenge, challenge_id)

    async def get_exercise(self, exercise_id: str) -> Optional[Exercise]:
        async with self.get_session() as session:
            return await session.get(Exercise, exercise_id)

    # Ledger history operations
    async def get_ledger_history(self, player_id: str, limit: int = 20) -> List[LedgerEntry]:
        """Get ledger history for a player, newest first"""
        async with self.get_session() as session:
            result = await session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.player_id == player_id)
                .order_by(LedgerEntry.timestamp.desc(), LedgerEntry.id.desc())
                .limit(limit)
            )
            return result.scalars().all()

    async def count_ledger_entries(self, player_id: Optional[str] = None) -> int:
        """Count ledger entries, optionally for one player"""
        async with self.get_session() as session:
            query = select(func.count(LedgerEntry.id))
            if player_id is not None:
                query = query.where(LedgerEntry.player_id == player_id)
            result = await session.execute(query)
            return result.scalar_one()

    async def verify_balance_integrity(self, player_id: str) -> dict:
        """Verify balance integrity by comparing the account with its ledger"""
        async with self.get_session() as session:
            account = await session.get(Account, player_id)
            cached_points = account.points if account else 0
            cached_xp = account.xp if account else 0

            ledger_result = await session.execute(
                select(
                    func.coalesce(func.sum(LedgerEntry.points_delta), 0),
                    func.coalesce(func.sum(LedgerEntry.xp_delta), 0)
                ).where(LedgerEntry.player_id == player_id)
            )
            calculated_points, calculated_xp = ledger_result.one()

            return {
                'player_id': player_id,
                'cached_points': cached_points,
                'calculated_points': calculated_points,
                'cached_xp': cached_xp,
                'calculated_xp': calculated_xp,
                'integrity_check': cached_points == calculated_points and cached_xp == calculated_xp
            }

    # Streak operations
    async def get_streak(self, player_id: str, subgroup_id: str) -> int:
        """Get the current streak of a player in a subgroup (0 when untracked)"""
        async with self.get_session() as session:
            result = await session.execute(
                select(StreakRecord.count).where(
                    (StreakRecord.player_id == player_id) &
                    (StreakRecord.subgroup_id == subgroup_id)
                )
            )
            count = result.scalar_one_or_none()
            return count if count is not None else 0

    # Attendance record operations
    async def get_attendance_record(self, subgroup_id: str, on_date: date) -> Optional[AttendanceRecord]:
        """Get the attendance record of a subgroup for one date"""
        async with self.get_session() as session:
            result = await session.execute(
                select(AttendanceRecord).where(
                    (AttendanceRecord.subgroup_id == subgroup_id) &
                    (AttendanceRecord.date == on_date)
                )
            )
            return result.scalar_one_or_none()

    async def get_previous_attendance_record(self, subgroup_id: str, before: date) -> Optional[AttendanceRecord]:
        """Get the subgroup's most recent tracked date strictly before ``before``"""
        async with self.get_session() as session:
            result = await session.execute(
                select(AttendanceRecord).where(
                    (AttendanceRecord.subgroup_id == subgroup_id) &
                    (AttendanceRecord.date < before)
                ).order_by(AttendanceRecord.date.desc()).limit(1)
            )
            return result.scalar_one_or_none()

    # Milestone and completion operations
    async def get_milestone_progress(self, player_id: str, item_id: str) -> Optional[MilestoneProgress]:
        async with self.get_session() as session:
            result = await session.execute(
                select(MilestoneProgress).where(
                    (MilestoneProgress.player_id == player_id) &
                    (MilestoneProgress.item_id == item_id)
                )
            )
            return result.scalar_one_or_none()

    async def get_completion_marker(self, player_id: str, item_type: str, item_id: str) -> Optional[CompletionMarker]:
        async with self.get_session() as session:
            result = await session.execute(
                select(CompletionMarker).where(
                    (CompletionMarker.player_id == player_id) &
                    (CompletionMarker.item_type == item_type) &
                    (CompletionMarker.item_id == item_id)
                )
            )
            return result.scalar_one_or_none()
