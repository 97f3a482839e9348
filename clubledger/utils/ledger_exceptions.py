"""
Custom exceptions for the progression ledger with user-friendly error messages.
"""

from typing import List, Optional

class LedgerException(Exception):
    """Base exception for ledger-related errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class ValidationError(LedgerException):
    """Raised when a request is incomplete or malformed. Nothing was written."""
    pass

class PlayerNotFoundError(LedgerException):
    """Raised when the player account does not exist. Nothing was written."""
    def __init__(self, player_id: str):
        super().__init__(
            f"Player '{player_id}' not found",
            "❌ Player not found."
        )
        self.player_id = player_id

class EligibilityError(LedgerException):
    """Raised when a player may not receive a reward. Nothing was written."""
    pass

class NotInSubgroupError(EligibilityError):
    """Raised when a player is not a member of the challenge's target subgroup."""
    def __init__(self, player_id: str, subgroup_id: str):
        super().__init__(
            f"Player '{player_id}' is not a member of subgroup '{subgroup_id}'",
            "❌ This player does not belong to the subgroup this challenge was created for."
        )
        self.player_id = player_id
        self.subgroup_id = subgroup_id

class ChallengeAlreadyCompletedError(EligibilityError):
    """Raised when a non-repeatable challenge was already redeemed since its last reactivation."""
    def __init__(self, player_id: str, challenge_id: str):
        super().__init__(
            f"Player '{player_id}' already completed non-repeatable challenge '{challenge_id}'",
            "❌ This player already completed this challenge. It can only be redeemed once."
        )
        self.player_id = player_id
        self.challenge_id = challenge_id

class MilestoneAlreadyReachedError(EligibilityError):
    """Raised when the selected milestone does not exceed the player's recorded progress."""
    def __init__(self, player_id: str, item_id: str, current_count: int, selected_count: int):
        super().__init__(
            f"Player '{player_id}' already reached {current_count} on item '{item_id}' "
            f"(selected {selected_count})",
            f"❌ This player already reached {current_count} on this item."
        )
        self.current_count = current_count
        self.selected_count = selected_count

class ConflictError(LedgerException):
    """Raised when a concurrent mutation of the same record is detected during commit."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Conflict during {operation}: {details}",
            "❌ Someone else changed this player at the same time. Please try again."
        )
        self.operation = operation

class LedgerCommitError(LedgerException):
    """Raised when a commit fails, including after conflict retries are exhausted."""
    def __init__(self, operation: str, attempts: int = 1, details: str = None):
        super().__init__(
            f"Commit failed for {operation} after {attempts} attempt(s): {details}",
            "❌ Failed to save. Please try again."
        )
        self.operation = operation
        self.attempts = attempts

class PartialBatchFailure(LedgerCommitError):
    """Raised when an attendance chunk fails after earlier chunks were committed."""
    def __init__(self, chunk_index: int, total_chunks: int,
                 committed_player_ids: List[str], failed_player_ids: List[str],
                 details: Optional[str] = None):
        LedgerException.__init__(
            self,
            f"Attendance chunk {chunk_index + 1}/{total_chunks} failed after "
            f"{len(committed_player_ids)} players were committed: {details}",
            f"❌ Attendance was only partially saved (part {chunk_index + 1} of {total_chunks} failed). "
            f"Please save again."
        )
        self.operation = "attendance"
        self.attempts = 0
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks
        self.committed_player_ids = committed_player_ids
        self.failed_player_ids = failed_player_ids
