"""
Lockstake - a time-locked staking ledger with linearly vesting rewards.

Key features:
- Three fixed lockup tiers with governable reward multipliers
- Rewards accrue linearly over the lockup and are claimed incrementally
- Admin operations gated by a pluggable access registry
- All-or-nothing operations with post-operation invariant checks
- SQLite persistence and a signed-request REST API
"""

__version__ = "1.0.0"
__all__ = [
    "errors",
    "staking",
    "accrual",
    "authorization",
    "assets",
    "events",
    "admin",
    "invariants",
    "ledger",
    "config",
    "logging_config",
    "wallet",
    "storage",
    "api",
]
