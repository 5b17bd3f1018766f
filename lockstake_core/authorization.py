"""
Capability checks for administrative operations.

The registry that stores roles and permissions lives outside the
ledger.  The ledger only asks it one question: may ``caller`` invoke
operation ``op_id`` on contract ``target``?  ``AuthorizationGate``
turns a "no" into ``Unauthorized``.

Operation ids are derived from the operation's canonical signature,
like a function selector:

    operation_id("sweep(uint256)")   # 8 hex chars of SHA-256
"""

from __future__ import annotations

import hashlib
import logging
from typing import Protocol, runtime_checkable

from lockstake_core.errors import Unauthorized

logger = logging.getLogger("lockstake_auth")

WILDCARD = "*"

# Canonical signatures of every gated operation
OP_SET_MULTIPLIERS = "setMultipliers(uint8[],uint256[])"
OP_SET_STAKING_PERMITTED = "setStakingPermitted(bool)"
OP_SET_REWARD_ASSET = "setRewardAsset(address)"
OP_SWEEP = "sweep(uint256)"

ADMIN_OPERATIONS: tuple[str, ...] = (
    OP_SET_MULTIPLIERS,
    OP_SET_STAKING_PERMITTED,
    OP_SET_REWARD_ASSET,
    OP_SWEEP,
)


def operation_id(signature: str) -> str:
    """First 4 bytes of SHA-256 of *signature*, hex-encoded."""
    return hashlib.sha256(signature.encode("utf-8")).hexdigest()[:8]


@runtime_checkable
class AccessRegistry(Protocol):
    def can_call(self, caller: str, target: str, op_id: str) -> bool:
        ...


class StaticAccessRegistry:
    """
    In-memory registry: ``(target, op_id) -> {callers}``.

    Stands in for the external registry on local nodes and in tests.
    An entry under ``op_id == "*"`` grants every operation on that
    target.
    """

    def __init__(self) -> None:
        self._grants: dict[tuple[str, str], set[str]] = {}

    def grant(self, caller: str, target: str, signature: str) -> None:
        self._grants.setdefault((target, operation_id(signature)), set()).add(caller)

    def revoke(self, caller: str, target: str, signature: str) -> None:
        self._grants.get((target, operation_id(signature)), set()).discard(caller)

    def grant_all(self, caller: str, target: str) -> None:
        self._grants.setdefault((target, WILDCARD), set()).add(caller)

    def revoke_all(self, caller: str, target: str) -> None:
        self._grants.get((target, WILDCARD), set()).discard(caller)

    def can_call(self, caller: str, target: str, op_id: str) -> bool:
        if caller in self._grants.get((target, WILDCARD), ()):
            return True
        return caller in self._grants.get((target, op_id), ())


class AuthorizationGate:
    """Wraps an ``AccessRegistry`` for one target contract."""

    def __init__(self, registry: AccessRegistry, target: str):
        self._registry = registry
        self._target = target

    @property
    def target(self) -> str:
        return self._target

    def is_authorized(self, caller: str, signature: str) -> bool:
        return bool(self._registry.can_call(caller, self._target, operation_id(signature)))

    def authorize(self, caller: str, signature: str) -> None:
        """Raise ``Unauthorized`` unless the registry permits the call."""
        if not self.is_authorized(caller, signature):
            logger.warning(
                f"Denied {signature} on {self._target} for {caller}",
                extra={"operation": signature, "owner": caller},
            )
            raise Unauthorized(f"{caller} may not call {signature}")
