"""
Failure taxonomy for the Lockstake ledger.

Every public operation either completes or raises one of these.  The
ledger rolls back all staged state before the exception leaves the
operation, so callers can retry with no cleanup.

    StakingError
    ├── InputError          caller-correctable argument problems
    ├── StateError          precondition not met by current ledger state
    ├── AuthError           capability check denied
    ├── TransferError       outbound asset movement failed
    └── InvariantViolation  ledger bookkeeping is inconsistent
"""

from __future__ import annotations


class StakingError(Exception):
    """Base class.  ``kind`` is the stable name reported over the API."""

    kind: str = "StakingError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": str(self)}


# ── input ───────────────────────────────────────────────────────────────

class InputError(StakingError, ValueError):
    kind = "InputError"


class ZeroAmount(InputError):
    kind = "ZeroAmount"


class ZeroClaim(InputError):
    kind = "ZeroClaim"


class AmountOutOfRange(InputError):
    kind = "AmountOutOfRange"


class UnknownTier(InputError):
    kind = "UnknownTier"


class MismatchedLengths(InputError):
    kind = "MismatchedLengths"


class InvalidMultiplier(InputError):
    kind = "InvalidMultiplier"


# ── state ───────────────────────────────────────────────────────────────

class StateError(StakingError):
    kind = "StateError"


class InvalidStakeId(StateError):
    kind = "InvalidStakeId"


class AlreadyWithdrawn(StateError):
    kind = "AlreadyWithdrawn"


class LockupNotElapsed(StateError):
    kind = "LockupNotElapsed"


class StakingDisabled(StateError):
    kind = "StakingDisabled"


class InsufficientClaimable(StateError):
    kind = "InsufficientClaimable"


class TimestampOutOfRange(StateError):
    kind = "TimestampOutOfRange"


# ── auth ────────────────────────────────────────────────────────────────

class AuthError(StakingError):
    kind = "AuthError"


class Unauthorized(AuthError):
    kind = "Unauthorized"


# ── transfer ────────────────────────────────────────────────────────────

class TransferError(StakingError):
    kind = "TransferError"


class TransferFailed(TransferError):
    kind = "TransferFailed"


class RewardAssetUnset(TransferFailed):
    kind = "RewardAssetUnset"


# ── bookkeeping ─────────────────────────────────────────────────────────

class InvariantViolation(StakingError):
    kind = "InvariantViolation"
