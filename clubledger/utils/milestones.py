"""
Milestone ladder calculations for tiered exercise and challenge rewards.

A ladder is an ascending list of (achieved-count, point-value) tiers. Reaching
tier N pays the sum of all tiers up to and including N.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from clubledger.utils.ledger_exceptions import ValidationError


@dataclass(frozen=True)
class Milestone:
    """One tier of a milestone ladder"""
    count: int
    points: int


class MilestoneCalculator:
    """Pure cumulative-reward math over milestone ladders."""

    @staticmethod
    def parse_ladder(raw_ladder: Optional[Iterable[Any]]) -> List[Milestone]:
        """
        Parse and validate a stored ladder.

        Accepts Milestone instances or mappings with ``count`` and ``points``.
        Counts must be positive and strictly ascending, points non-negative.

        Raises:
            ValidationError: If the ladder is empty or malformed
        """
        if not raw_ladder:
            raise ValidationError("Milestone ladder is empty", "❌ This item has no milestones.")

        ladder = []
        for raw in raw_ladder:
            if isinstance(raw, Milestone):
                milestone = raw
            elif isinstance(raw, Mapping):
                try:
                    milestone = Milestone(count=int(raw['count']), points=int(raw['points']))
                except (KeyError, TypeError, ValueError) as e:
                    raise ValidationError(f"Malformed milestone {raw!r}: {e}",
                                          "❌ This item has an invalid milestone.")
            else:
                raise ValidationError(f"Malformed milestone {raw!r}", "❌ This item has an invalid milestone.")

            if milestone.count <= 0 or milestone.points < 0:
                raise ValidationError(f"Milestone out of range: {milestone}",
                                      "❌ This item has an invalid milestone.")
            if ladder and milestone.count <= ladder[-1].count:
                raise ValidationError(
                    f"Milestone counts must be strictly ascending ({ladder[-1].count} -> {milestone.count})",
                    "❌ This item has milestones in the wrong order."
                )
            ladder.append(milestone)

        return ladder

    @staticmethod
    def cumulative_points(ladder: List[Milestone], index: int) -> int:
        """
        Sum of the points of every milestone up to and including ``index``.

        Raises:
            ValidationError: If the index is outside the ladder
        """
        if index is None or not 0 <= index < len(ladder):
            raise ValidationError(f"Milestone index {index} outside ladder of {len(ladder)}",
                                  "❌ Please select a milestone.")
        return sum(m.points for m in ladder[:index + 1])

    @staticmethod
    def index_for_count(ladder: List[Milestone], achieved_count: int) -> int:
        """
        Index of the highest milestone reached by ``achieved_count``.

        Raises:
            ValidationError: If the count is not positive or reaches no milestone
        """
        if achieved_count is None or achieved_count <= 0:
            raise ValidationError(f"Achieved count {achieved_count} is not positive",
                                  "❌ Please enter the achieved count.")
        reached = [i for i, m in enumerate(ladder) if achieved_count >= m.count]
        if not reached:
            raise ValidationError(f"Count {achieved_count} reaches no milestone",
                                  "❌ The entered count does not reach any milestone.")
        return reached[-1]
