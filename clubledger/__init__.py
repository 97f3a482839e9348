"""Club progression ledger: points, XP, streaks and milestone rewards for club players."""

__version__ = "0.1.0"
