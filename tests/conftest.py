"""
tests/conftest.py

Shared fixtures: a complete in-memory environment (coprocessor, oracle,
venue, market data, factory and one fund) built from a scenario dict.

Index tokens use 0 decimals and a price of 1 stablecoin unit per token so
expected amounts can be worked out by hand. Share prices are fixed point
with 1000 units per stablecoin unit, starting at 1000.
"""

import copy

import pytest

from veilfund.config import ScenarioConfig
from veilfund.simulation import build_environment


START_BALANCE = 1_000_000

BASE_SCENARIO = {
    "factory": {
        "fee_divisor":         1000,
        "default_share_price": 1000,
        "protocol_owner":      "owner",
    },
    "fund": {
        "batch_size":              1,
        "max_swap_amount":         10 ** 9,
        "max_mint_or_burn_amount": 10 ** 9,
        "stablecoin_scale":        1000,
    },
    "stablecoin": {"symbol": "USDC", "decimals": 6},
    "tokens": [
        {"symbol": "AAA", "decimals": 0, "market_cap": 500, "price": 1,
         "rate": {"tokens": 1, "stablecoins": 1}, "liquidity": 10 ** 9},
        {"symbol": "BBB", "decimals": 0, "market_cap": 500, "price": 1,
         "rate": {"tokens": 1, "stablecoins": 1}, "liquidity": 10 ** 9},
    ],
    "users": {
        "alice": START_BALANCE,
        "bob":   START_BALANCE,
        "carol": START_BALANCE,
    },
}


def scenario(factory=None, **fund_overrides) -> ScenarioConfig:
    data = copy.deepcopy(BASE_SCENARIO)
    data["factory"].update(factory or {})
    data["fund"].update(fund_overrides)
    return ScenarioConfig.from_dict(data)


@pytest.fixture
def make_env():
    """
    Factory fixture: make_env(batch_size=2, ...) builds a fresh environment.
    factory={...} overrides the factory terms.
    """
    def _make(ledger_root=None, factory=None, **fund_overrides):
        return build_environment(scenario(factory, **fund_overrides), ledger_root=ledger_root)
    return _make


@pytest.fixture
def env(make_env):
    """Batch size 1: every settled deposit or redemption flushes at once."""
    return make_env()


@pytest.fixture
def base_scenario():
    """A fresh copy of the scenario dict the environments are built from."""
    return copy.deepcopy(BASE_SCENARIO)
