"""
Progression service

Entry point for the club app: wires the ledger, attendance and reward
operations together and aggregates a player's progression snapshot.
"""

from typing import Iterable, List, Optional
from sqlalchemy import select

from clubledger.services.base import BaseService
from clubledger.database.models import Account, StreakRecord
from clubledger.data_models.ledger import (
    ApplyResult, AttendanceResult, BatchRewardResult, MilestoneProgressSnapshot, RewardRequest, RosterEntry
)
from clubledger.data_models.progress import PlayerProgress
from clubledger.operations.ledger_operations import LedgerOperations
from clubledger.operations.attendance_operations import AttendanceOperations
from clubledger.operations.reward_operations import RewardOperations
from clubledger.utils.ledger_exceptions import PlayerNotFoundError
from clubledger.utils.ranks import RankCalculator
import logging

logger = logging.getLogger(__name__)


class ProgressionService(BaseService):
    """Facade over the progression ledger operations."""

    def __init__(self, database, max_batch_operations: Optional[int] = None):
        """
        Args:
            database: Initialized Database instance
            max_batch_operations: Override of the attendance chunk write bound
        """
        super().__init__(database.session_factory)
        self.db = database
        self.ledger_ops = LedgerOperations(database)
        self.attendance_ops = AttendanceOperations(database, self.ledger_ops, max_batch_operations)
        self.reward_ops = RewardOperations(database, self.ledger_ops)

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
        return await self.attendance_ops.apply_attendance(
            subgroup_id, date, present_player_ids, roster,
            previous_present_ids=previous_present_ids,
            previous_training_present_ids=previous_training_present_ids,
            awarded_by=awarded_by,
            subgroup_name=subgroup_name
        )

    async def apply_manual_or_item_reward(self, request: RewardRequest) -> ApplyResult:
        return await self.reward_ops.apply_manual_or_item_reward(request)

    async def apply_batch_reward(self, player_ids: Iterable[str], request: RewardRequest) -> BatchRewardResult:
        return await self.reward_ops.apply_batch_reward(player_ids, request)

    async def get_milestone_progress(self, player_id: str, item_id: str) -> MilestoneProgressSnapshot:
        return await self.reward_ops.get_milestone_progress(player_id, item_id)

    async def get_player_progress(self, player_id: str) -> PlayerProgress:
        """Balances, rank progress and streaks of a player"""
        async with self.get_session() as session:
            account = await session.get(Account, player_id)
            if account is None:
                raise PlayerNotFoundError(player_id)

            result = await session.execute(
                select(StreakRecord).where(StreakRecord.player_id == player_id)
            )
            streaks = {record.subgroup_id: record.count for record in result.scalars().all()}

        rank = RankCalculator.calculate_progress(account.elo_rating, account.xp, account.grundlagen_completed)
        logger.debug(f"Progress for {player_id}: rank {rank.current_rank.name}, {account.xp} XP")

        return PlayerProgress(
            player_id=account.id,
            display_name=account.display_name,
            points=account.points,
            xp=account.xp,
            elo_rating=account.elo_rating,
            grundlagen_completed=account.grundlagen_completed,
            is_match_ready=account.is_match_ready,
            rank=rank,
            streaks=streaks
        )

    async def get_ledger_history(self, player_id: str, limit: int = 20) -> List:
        """Newest-first ledger entries of a player"""
        return await self.db.get_ledger_history(player_id, limit)

    async def verify_balance_integrity(self, player_id: str) -> dict:
        """Compare cached balances with the sum of the player's ledger"""
        report = await self.db.verify_balance_integrity(player_id)
        if not report['integrity_check']:
            logger.error(f"Balance integrity mismatch for {player_id}: {report}")
        return report
