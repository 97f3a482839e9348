from typing import Tuple

from clubledger.constants import AttendanceConstants, GrundlagenConstants

class PointsCalculator:
    """Handles the pure balance math of the progression ledger"""

    @staticmethod
    def clamp_delta(current_balance: int, requested_delta: int) -> int:
        """
        Clamp a requested delta so the balance cannot drop below zero

        Args:
            current_balance: Balance read inside the atomic scope
            requested_delta: Delta the caller asked for (may be negative)

        Returns:
            The delta that can actually be applied
        """
        return max(-current_balance, requested_delta)

    @staticmethod
    def round_half_up(numerator: int, denominator: int) -> int:
        """
        Integer-exact rounding of numerator/denominator, halves toward +infinity

        Matches the rounding that produced the existing partner history records,
        including for negative values (-2.5 rounds to -2).
        """
        return (2 * numerator + denominator) // (2 * denominator)

    @staticmethod
    def partner_share(applied_delta: int, percentage: int) -> int:
        """
        Calculate the partner's share of an applied delta

        Args:
            applied_delta: The primary player's actually applied delta
            percentage: Partner percentage in (0, 100]

        Returns:
            Partner delta before clamping against the partner's balance
        """
        return PointsCalculator.round_half_up(applied_delta * percentage, 100)

    @staticmethod
    def next_streak(prior_streak: int, was_present_last_training: bool) -> int:
        """Streak after a new presence"""
        return prior_streak + 1 if was_present_last_training else 1

    @staticmethod
    def attendance_points(streak: int) -> int:
        """
        Points (and XP) awarded for a presence at the given streak

        streak 1-2 -> base, 3-4 -> streak bonus, 5+ -> super streak
        """
        if streak >= AttendanceConstants.SUPER_STREAK_THRESHOLD:
            return AttendanceConstants.SUPER_STREAK_POINTS
        if streak >= AttendanceConstants.STREAK_BONUS_THRESHOLD:
            return AttendanceConstants.STREAK_BONUS_POINTS
        return AttendanceConstants.BASE_POINTS

    @staticmethod
    def advance_grundlagen(completed: int) -> Tuple[int, bool]:
        """
        Count one more foundational exercise

        Returns:
            Tuple of (new_count, became_match_ready). At the cap the count is
            returned unchanged and no transition is reported.
        """
        required = GrundlagenConstants.REQUIRED_COMPLETIONS
        if completed >= required:
            return completed, False
        new_count = completed + 1
        return new_count, new_count == required

    @staticmethod
    def format_delta(delta: int) -> str:
        """Format a delta for display with its sign"""
        if delta > 0:
            return f"+{delta}"
        return str(delta)
