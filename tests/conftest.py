"""
Shared pytest fixtures for the Lockstake test suite.
"""

import pytest

from lockstake_core.admin import AdminConfig
from lockstake_core.assets import FungibleAsset
from lockstake_core.authorization import AuthorizationGate, StaticAccessRegistry
from lockstake_core.ledger import StakeLedger
from lockstake_core.staking import UNITS_PER_TOKEN

LEDGER = "lockstake"
ADMIN = "lsAdmin"
ALICE = "lsAlice"
BOB = "lsBob"
START = 1_700_000_000
ONE = UNITS_PER_TOKEN


class FakeClock:
    """Settable clock; call it to read, ``advance`` to move forward."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    """Registry where ADMIN may call every gated operation on the ledger."""
    reg = StaticAccessRegistry()
    reg.grant_all(ADMIN, LEDGER)
    return reg


@pytest.fixture
def base_asset():
    asset = FungibleAsset("ETH")
    asset.credit(ALICE, 100 * ONE)
    asset.credit(BOB, 100 * ONE)
    return asset


@pytest.fixture
def reward_asset():
    """Reward token with a large treasury held by the ledger account."""
    asset = FungibleAsset("RWD")
    asset.credit(LEDGER, 1_000_000 * ONE)
    return asset


@pytest.fixture
def config(registry, base_asset, reward_asset):
    return AdminConfig(
        AuthorizationGate(registry, LEDGER),
        base_asset,
        LEDGER,
        reward_asset=reward_asset,
    )


@pytest.fixture
def ledger(config, clock):
    """Fresh ledger with funded ALICE / BOB and a reward treasury."""
    return StakeLedger(config, clock=clock)
