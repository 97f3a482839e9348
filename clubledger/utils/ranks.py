from typing import List

from clubledger.constants import GrundlagenConstants, RankConstants
from clubledger.data_models.progress import Rank, RankProgress

class RankCalculator:
    """Derives a player's rank from Elo, XP and foundational exercises"""

    RANK_ORDER: List[Rank] = [
        Rank(id=rank_id, name=name, min_elo=min_elo, min_xp=min_xp, requires_grundlagen=requires)
        for rank_id, name, min_elo, min_xp, requires in RankConstants.RANKS
    ]

    @staticmethod
    def meets_requirements(rank: Rank, elo_rating: int, xp: int, grundlagen_completed: int) -> bool:
        """Check whether both the Elo and XP thresholds (and grundlagen, if required) are met"""
        if elo_rating < rank.min_elo or xp < rank.min_xp:
            return False
        if rank.requires_grundlagen:
            return grundlagen_completed >= GrundlagenConstants.REQUIRED_COMPLETIONS
        return True

    @classmethod
    def calculate_rank(cls, elo_rating: int, xp: int, grundlagen_completed: int = 0) -> Rank:
        """
        Get the highest rank whose requirements are all met

        Args:
            elo_rating: Player's current Elo rating
            xp: Player's total XP
            grundlagen_completed: Number of completed foundational exercises

        Returns:
            Rank reached; the lowest rank when nothing else matches
        """
        for rank in reversed(cls.RANK_ORDER):
            if cls.meets_requirements(rank, elo_rating or 0, xp or 0, grundlagen_completed or 0):
                return rank
        return cls.RANK_ORDER[0]

    @classmethod
    def calculate_progress(cls, elo_rating: int, xp: int, grundlagen_completed: int = 0) -> RankProgress:
        """Current rank plus the remaining Elo/XP/grundlagen for the next rank"""
        current = cls.calculate_rank(elo_rating, xp, grundlagen_completed)
        if current.id + 1 >= len(cls.RANK_ORDER):
            return RankProgress(current_rank=current, next_rank=None,
                                elo_needed=0, xp_needed=0, grundlagen_needed=0)

        next_rank = cls.RANK_ORDER[current.id + 1]
        grundlagen_needed = 0
        if next_rank.requires_grundlagen:
            grundlagen_needed = max(0, GrundlagenConstants.REQUIRED_COMPLETIONS - (grundlagen_completed or 0))

        return RankProgress(
            current_rank=current,
            next_rank=next_rank,
            elo_needed=max(0, next_rank.min_elo - (elo_rating or 0)),
            xp_needed=max(0, next_rank.min_xp - (xp or 0)),
            grundlagen_needed=grundlagen_needed,
        )
