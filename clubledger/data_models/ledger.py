"""
Ledger data models

Provides immutable data transfer objects passed into and returned from the
progression ledger operations.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class RosterEntry:
    """One player of the roster snapshot supplied by the caller."""
    player_id: str
    subgroup_ids: Tuple[str, ...] = ()

    def is_member_of(self, subgroup_id: str) -> bool:
        return subgroup_id in self.subgroup_ids


@dataclass(frozen=True)
class PartnerSplit:
    """Share of an award credited to a training partner."""
    partner_id: str
    percentage: int


@dataclass(frozen=True)
class CompletionRequest:
    """Completion marker to write together with an award."""
    item_type: str
    item_id: str


@dataclass(frozen=True)
class MilestoneUpdate:
    """Milestone progress to write together with an award."""
    item_type: str
    item_id: str
    current_count: int


@dataclass(frozen=True)
class FreshCompletionCheck:
    """Non-repeatable challenge check re-run inside the atomic scope."""
    challenge_id: str
    redeemable_since: datetime


@dataclass(frozen=True)
class ApplyOptions:
    """Optional behaviour of a single ledger apply."""
    partner: Optional[PartnerSplit] = None
    foundational: bool = False
    reason_type: str = "manual"
    partner_reason: Optional[str] = None
    completion_markers: Tuple[CompletionRequest, ...] = ()
    milestone_updates: Tuple[MilestoneUpdate, ...] = ()
    require_fresh_completion: Optional[FreshCompletionCheck] = None
    attendance_date: Optional[date] = None
    subgroup_id: Optional[str] = None


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of a committed ledger apply."""
    player_id: str
    points_delta: int           # actually applied, possibly clamped
    xp_delta: int
    requested_points_delta: int
    requested_xp_delta: int
    entry_id: Optional[int]
    partner_id: Optional[str] = None
    partner_points_delta: int = 0
    partner_xp_delta: int = 0
    partner_entry_id: Optional[int] = None
    grundlagen_completed: int = 0
    became_match_ready: bool = False

    @property
    def was_clamped(self) -> bool:
        return (self.points_delta != self.requested_points_delta
                or self.xp_delta != self.requested_xp_delta)

    @property
    def partner_applied(self) -> bool:
        return self.partner_id is not None

    @property
    def entry_ids(self) -> List[int]:
        return [i for i in (self.entry_id, self.partner_entry_id) if i is not None]


@dataclass(frozen=True)
class PlayerAttendanceOutcome:
    """State transition of one roster member for one attendance date."""
    player_id: str
    state: str                  # see AttendanceState
    streak: int
    points_delta: int = 0
    xp_delta: int = 0


@dataclass(frozen=True)
class AttendanceResult:
    """Outcome of a committed attendance day."""
    subgroup_id: str
    date: date
    outcomes: Tuple[PlayerAttendanceOutcome, ...]
    chunks_committed: int
    skipped_player_ids: FrozenSet[str] = frozenset()

    def outcome_for(self, player_id: str) -> Optional[PlayerAttendanceOutcome]:
        for outcome in self.outcomes:
            if outcome.player_id == player_id:
                return outcome
        return None

    @property
    def total_points_awarded(self) -> int:
        return sum(o.points_delta for o in self.outcomes)


@dataclass(frozen=True)
class RewardRequest:
    """Pre-validated coach form selection for a manual or item reward."""
    player_id: Optional[str]
    reason_type: Optional[str]
    awarded_by: str
    item_id: Optional[str] = None
    milestone_index: Optional[int] = None
    achieved_count: Optional[int] = None
    manual_points: Optional[object] = None      # raw form input, parsed by the ledger
    manual_xp: Optional[object] = None
    manual_reason: Optional[str] = None
    partner_id: Optional[str] = None
    partner_percentage: Optional[object] = None


@dataclass(frozen=True)
class MilestoneProgressSnapshot:
    """Read view of a player's progress on one item."""
    player_id: str
    item_id: str
    current_count: int
    item_type: Optional[str] = None
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class BatchRewardResult:
    """Outcome of awarding the same reward to several players."""
    results: Tuple[ApplyResult, ...]
    failures: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)  # (player_id, user_message)

    @property
    def success_count(self) -> int:
        return len(self.results)

    @property
    def failure_count(self) -> int:
        return len(self.failures)
