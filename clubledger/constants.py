"""
Ledger-wide constants for the club progression ledger.

This module contains the point values, streak tiers and rank thresholds used
throughout the codebase so the reward rules live in one place.
"""

class AttendanceConstants:
    """Constants related to attendance rewards and streaks."""

    # Points (and XP) for a present player
    BASE_POINTS = 10
    STREAK_BONUS_POINTS = 15        # streak of 3 or 4
    SUPER_STREAK_POINTS = 20        # streak of 5 and above

    # Streak thresholds for the bonus tiers
    STREAK_BONUS_THRESHOLD = 3
    SUPER_STREAK_THRESHOLD = 5

    # Estimated write operations per player, used for chunk planning
    OPS_NEW_PRESENCE = 3            # streak + account + ledger entry
    OPS_ABSENCE = 1                 # streak reset
    OPS_CORRECTION = 3              # streak reset + account + ledger entry
    OPS_ATTENDANCE_RECORD = 1       # per chunk

class GrundlagenConstants:
    """Constants for foundational exercise tracking."""

    # Completions needed before a player may play competitive matches
    REQUIRED_COMPLETIONS = 5

    # Keyword marking an exercise or manual reason as foundational
    KEYWORD = "grundlage"

class ReasonType:
    """Reason classification stored on every ledger entry."""

    ATTENDANCE = "attendance"
    ATTENDANCE_CORRECTION = "attendance_correction"
    CHALLENGE = "challenge"
    EXERCISE = "exercise"
    MANUAL = "manual"
    PENALTY = "penalty"

    # Reason types a coach may choose in the reward form
    REWARD_TYPES = (CHALLENGE, EXERCISE, MANUAL, PENALTY)

class ItemType:
    """Types of rewardable items."""

    CHALLENGE = "challenge"
    EXERCISE = "exercise"

class ChallengeConstants:
    """Constants for challenge targeting."""

    # Subgroup id meaning "every player of the club"
    ALL_SUBGROUPS = "all"

class RankConstants:
    """Rank ladder, lowest to highest. Both Elo and XP must be met."""

    RANKS = (
        # (id, name, min_elo, min_xp, requires_grundlagen)
        (0, "Rekrut", 0, 0, False),
        (1, "Bronze", 0, 100, True),
        (2, "Silber", 50, 250, False),
        (3, "Gold", 100, 500, False),
        (4, "Platin", 250, 700, False),
        (5, "Meister", 500, 1000, False),
        (6, "Grossmeister", 1000, 1500, False),
    )

class AttendanceState:
    """Per-player transition for one attendance date."""

    ABSENT = "absent"
    PRESENT_NEW_STREAK = "present_new_streak"
    PRESENT_CONTINUED_STREAK = "present_continued_streak"
    UNCHANGED = "unchanged"             # re-save of an unchanged presence
