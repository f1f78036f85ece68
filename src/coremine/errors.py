"""Domain error taxonomy.

Every error carries a ``retryable`` flag so callers (HTTP layer, workers,
the client-side accumulator) can tell a transient failure apart from an
idempotency violation or a state that needs manual intervention.
"""

from __future__ import annotations


class CoreMineError(Exception):
    """Base class for all domain errors."""

    retryable: bool = False
    default_message: str = "Something went wrong"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


# --- Mining ---


class AlreadyMiningError(CoreMineError):
    default_message = "A mining session is already active"


class SessionInactiveError(CoreMineError):
    default_message = "Mining session is not active"


class SessionNotFoundError(CoreMineError):
    default_message = "Mining session not found"


# --- Balances / NFTs ---


class InsufficientBalanceError(CoreMineError):
    default_message = "Insufficient balance"


class NftNotFoundError(CoreMineError):
    default_message = "NFT not found"


class NftAlreadyOwnedError(CoreMineError):
    default_message = "You already own this NFT"


# --- Streaks ---


class AlreadyClaimedError(CoreMineError):
    default_message = "Daily bonus already claimed today"


class StreakClaimError(CoreMineError):
    retryable = True
    default_message = "Could not claim daily bonus, please try again"


# --- Epochs ---


class EpochTransitionError(CoreMineError):
    retryable = True
    default_message = "Epoch transition failed, please try again"


class MultipleActiveEpochsError(CoreMineError):
    default_message = "Multiple active epochs detected"


class RewardMismatchError(CoreMineError):
    default_message = "Reward distribution mismatch detected"


# --- Infrastructure ---


class StorageError(CoreMineError):
    retryable = True
    default_message = "Storage backend unavailable, please try again"
