"""
Progress data models

Read-side views of a player's balances, rank and streaks.
"""

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class Rank:
    """One tier of the rank ladder."""
    id: int
    name: str
    min_elo: int
    min_xp: int
    requires_grundlagen: bool = False


@dataclass(frozen=True)
class RankProgress:
    """Current rank and what is still missing for the next one."""
    current_rank: Rank
    next_rank: Optional[Rank]
    elo_needed: int
    xp_needed: int
    grundlagen_needed: int

    @property
    def is_max_rank(self) -> bool:
        return self.next_rank is None


@dataclass(frozen=True)
class PlayerProgress:
    """Complete progression snapshot for a player."""
    player_id: str
    display_name: str
    points: int
    xp: int
    elo_rating: int
    grundlagen_completed: int
    is_match_ready: bool
    rank: RankProgress
    streaks: Dict[str, int]     # subgroup_id -> streak count
