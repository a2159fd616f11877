"""
veilfund/config.py

YAML configuration for a factory, one fund and its in-memory environment.

    factory:     fee_divisor, default_share_price, protocol_owner
    fund:        batch_size, max_swap_amount, max_mint_or_burn_amount,
                 stablecoin_scale, swap_deadline_seconds,
                 decryption_deadline_seconds, two_step_mint
    stablecoin:  symbol, decimals
    tokens:      list of {symbol, decimals, market_cap, price, rate, liquidity}
    users:       {name: plain stablecoin balance}
    steps:       scripted actions, see veilfund.simulation
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List

import yaml

from veilfund.core.exceptions import ConfigurationError


STEP_ACTIONS = {
    "deposit",
    "burn",
    "fulfill",
    "finish_mint",
    "claim_underlying",
    "claim_stablecoin",
    "sweep_fees",
    "advance",
    "cancel",
    "set_price",
}

_TOP_LEVEL_KEYS = {"factory", "fund", "stablecoin", "tokens", "users", "steps"}


@dataclass
class FactoryConfig:
    fee_divisor:         int = 1000
    default_share_price: int = 1
    protocol_owner:      str = "protocol-owner"


@dataclass
class FundConfig:
    batch_size:                  int  = 1
    max_swap_amount:             int  = 10 ** 18
    max_mint_or_burn_amount:     int  = 10 ** 18
    stablecoin_scale:            int  = 1
    swap_deadline_seconds:       int  = 300
    decryption_deadline_seconds: int  = 3600
    two_step_mint:               bool = False


@dataclass
class StablecoinConfig:
    symbol:   str = "USDC"
    decimals: int = 6


@dataclass
class TokenConfig:
    symbol:     str
    decimals:   int = 18
    market_cap: int = 1
    # stablecoin units per whole token
    price:      int = 1
    # venue rate: rate_tokens smallest token units per rate_stablecoins stablecoin units
    rate_tokens:      int = 1
    rate_stablecoins: int = 1
    # reserves the venue starts with, in each asset
    liquidity:  int = 10 ** 24


@dataclass
class ScenarioConfig:
    factory:    FactoryConfig        = field(default_factory=FactoryConfig)
    fund:       FundConfig           = field(default_factory=FundConfig)
    stablecoin: StablecoinConfig     = field(default_factory=StablecoinConfig)
    tokens:     List[TokenConfig]    = field(default_factory=list)
    users:      Dict[str, int]       = field(default_factory=dict)
    steps:      List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioConfig":
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping")
        unknown = set(data) - _TOP_LEVEL_KEYS
        if unknown:
            raise ConfigurationError("Unknown configuration sections", {"sections": sorted(unknown)})

        tokens = [_build(TokenConfig, entry, "tokens") for entry in data.get("tokens") or []]
        if not tokens:
            raise ConfigurationError("At least one index token is required")
        symbols = [t.symbol for t in tokens]
        if len(set(symbols)) != len(symbols):
            raise ConfigurationError("Token symbols must be unique", {"symbols": symbols})

        config = cls(
            factory=    _build(FactoryConfig, data.get("factory") or {}, "factory"),
            fund=       _build(FundConfig, data.get("fund") or {}, "fund"),
            stablecoin= _build(StablecoinConfig, data.get("stablecoin") or {}, "stablecoin"),
            tokens=     tokens,
            users=      dict(data.get("users") or {}),
            steps=      list(data.get("steps") or []),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.fund.batch_size < 1:
            raise ConfigurationError("fund.batch_size must be >= 1", {"batch_size": self.fund.batch_size})
        if self.factory.fee_divisor < 1:
            raise ConfigurationError("factory.fee_divisor must be >= 1")
        for name, balance in self.users.items():
            if not isinstance(balance, int) or balance < 0:
                raise ConfigurationError("User balance must be a non-negative int", {"user": name})
        for index, step in enumerate(self.steps):
            if not isinstance(step, dict) or step.get("action") not in STEP_ACTIONS:
                raise ConfigurationError(
                    "Unknown step action",
                    {"step": index, "action": step.get("action") if isinstance(step, dict) else step},
                )


def _build(cls, data: Dict[str, Any], section: str):
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section {section} must be a mapping")
    known = {f.name for f in fields(cls)}
    data = dict(data)
    # tokens accept `rate: {tokens: N, stablecoins: M}` as shorthand
    rate = data.pop("rate", None) if cls is TokenConfig else None
    if rate is not None:
        data.setdefault("rate_tokens", rate.get("tokens", 1))
        data.setdefault("rate_stablecoins", rate.get("stablecoins", 1))
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"Unknown keys in {section}", {"keys": sorted(unknown)})
    try:
        return cls(**data)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid {section} section", {"error": str(exc)})


def load_config(path) -> ScenarioConfig:
    """Load and validate a scenario file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError("Configuration file not found", {"path": str(path)})
    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError("Configuration is not valid YAML", {"error": str(exc)})
    return ScenarioConfig.from_dict(data or {})
