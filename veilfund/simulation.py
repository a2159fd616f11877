"""
veilfund/simulation.py

Builds a complete in-memory environment (coprocessor, oracle, venue,
market data, factory, one fund) from a ScenarioConfig and runs scripted
steps against it.

Step actions:
    deposit           user, amount
    burn              user, amount, redeem: underlying | stablecoin
    fulfill           [request]        deliver one or all oracle requests
    finish_mint       user
    claim_underlying  user
    claim_stablecoin  user
    sweep_fees
    advance           seconds
    cancel            user, [request]  default: the user's last request
    set_price         token, price
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from veilfund.adapters.market_data import StaticMarketData
from veilfund.adapters.swaps import InMemorySwapVenue, PoolKey
from veilfund.config import ScenarioConfig
from veilfund.confidential.ciphertext import FheContext
from veilfund.confidential.oracle import DecryptionOracle
from veilfund.confidential.token import ConfidentialToken, PlainToken
from veilfund.core.crypto import SigningKey
from veilfund.core.exceptions import ConfigurationError, VeilFundError
from veilfund.core.time import Clock
from veilfund.factory import IndexFundFactory
from veilfund.settlement.engine import ConfidentialIndexFund


log = logging.getLogger(__name__)

DEFAULT_START_TIME = 1_700_000_000


@dataclass
class Environment:
    clock:            Clock
    fhe:              FheContext
    oracle:           DecryptionOracle
    venue:            InMemorySwapVenue
    market_data:      StaticMarketData
    plain_stablecoin: PlainToken
    stablecoin:       ConfidentialToken
    tokens:           List[PlainToken]
    factory:          IndexFundFactory
    fund:             ConfidentialIndexFund
    requests_by_user: Dict[str, List[int]] = field(default_factory=dict)
    users:            List[str]            = field(default_factory=list)

    # ── User actions ──────────────────────────────────────────

    def fund_user(self, user: str, amount: int) -> None:
        """Give `user` `amount` of confidential stablecoin."""
        self.plain_stablecoin.mint(user, amount)
        self.plain_stablecoin.approve(user, self.stablecoin.address, amount)
        self.stablecoin.wrap(user, amount)
        if user not in self.users:
            self.users.append(user)

    def deposit(self, user: str, amount: int, approve: Optional[int] = None) -> int:
        """Approve the fund and submit an encrypted deposit. Returns the request id."""
        fund = self.fund
        self.stablecoin.approve(user, fund.address, self.fhe.encrypt(amount if approve is None else approve))
        encrypted = self.fhe.encrypt_input(user, fund.address, amount)
        request_id = fund.mint_shares(user, encrypted.handles[0], encrypted.proof)
        self.requests_by_user.setdefault(user, []).append(request_id)
        return request_id

    def burn(self, user: str, amount: int, redeem_underlying: bool = True) -> int:
        fund = self.fund
        fund.share_token.approve(user, fund.address, self.fhe.encrypt(amount))
        encrypted = self.fhe.encrypt_input(user, fund.address, amount, bool(redeem_underlying))
        request_id = fund.burn_shares(user, encrypted.handles[0], encrypted.handles[1], encrypted.proof)
        self.requests_by_user.setdefault(user, []).append(request_id)
        return request_id

    # ── Inspection ────────────────────────────────────────────

    def reveal(self, token: ConfidentialToken, owner: str) -> int:
        """Plaintext confidential balance, for reporting only."""
        return self.fhe.decrypt(token.balance_of(owner))

    def balances(self, user: str) -> Dict[str, int]:
        report = {
            "stablecoin": self.reveal(self.stablecoin, user),
            "shares":     self.reveal(self.fund.share_token, user),
        }
        for token in self.tokens:
            report[token.symbol] = token.balance_of(user)
        return report


def build_environment(
    config:      ScenarioConfig,
    ledger_root: Optional[str] = None,
    signing_key: Optional[SigningKey] = None,
    start_time:  int = DEFAULT_START_TIME,
) -> Environment:
    clock  = Clock(start=start_time)
    fhe    = FheContext()
    oracle = DecryptionOracle(fhe, clock)

    plain_stablecoin = PlainToken(config.stablecoin.symbol, config.stablecoin.decimals)
    stablecoin = ConfidentialToken(
        fhe,
        symbol=     f"c{config.stablecoin.symbol}",
        decimals=   config.stablecoin.decimals,
        underlying= plain_stablecoin,
    )

    market_data = StaticMarketData()
    venue = InMemorySwapVenue({plain_stablecoin.address: plain_stablecoin}, clock)
    owner = config.factory.protocol_owner
    factory = IndexFundFactory(
        owner=               owner,
        fhe=                 fhe,
        oracle=              oracle,
        swap_venue=          venue,
        market_data=         market_data,
        clock=               clock,
        fee_divisor=         config.factory.fee_divisor,
        default_share_price= config.factory.default_share_price,
        signing_key=         signing_key,
        ledger_root=         ledger_root,
    )

    tokens, pools = [], []
    for token_config in config.tokens:
        token = PlainToken(token_config.symbol, token_config.decimals)
        pool = PoolKey(plain_stablecoin.address, token.address, fee=3000, tick_spacing=60)
        venue.register_token(token)
        venue.set_rate(pool, token_config.rate_tokens, token_config.rate_stablecoins)
        token.mint(venue.address, token_config.liquidity)
        plain_stablecoin.mint(venue.address, token_config.liquidity)
        market_data.set_market_cap(token.address, token_config.market_cap)
        market_data.set_price(token.address, token_config.price)
        factory.whitelist_pool(owner, token.address, pool)
        tokens.append(token)
        pools.append(pool)

    fund = factory.create_fund(
        tokens,
        pools,
        stablecoin,
        batch_size=                  config.fund.batch_size,
        max_swap_amount=             config.fund.max_swap_amount,
        max_mint_or_burn_amount=     config.fund.max_mint_or_burn_amount,
        stablecoin_scale=            config.fund.stablecoin_scale,
        swap_deadline_seconds=       config.fund.swap_deadline_seconds,
        decryption_deadline_seconds= config.fund.decryption_deadline_seconds,
        two_step_mint=               config.fund.two_step_mint,
    )
    env = Environment(
        clock=            clock,
        fhe=              fhe,
        oracle=           oracle,
        venue=            venue,
        market_data=      market_data,
        plain_stablecoin= plain_stablecoin,
        stablecoin=       stablecoin,
        tokens=           tokens,
        factory=          factory,
        fund=             fund,
    )
    for user, balance in config.users.items():
        env.fund_user(user, balance)
    return env


@dataclass
class StepResult:
    index:  int
    action: str
    result: Any = None
    error:  Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {"index": self.index, "action": self.action, "result": self.result, "error": self.error}


class Simulation:
    """Runs scenario steps; a step that raises VeilFundError is recorded, not fatal."""

    def __init__(self, env: Environment) -> None:
        self.env = env
        self.results: List[StepResult] = []

    def run(self, steps: List[Dict[str, Any]]) -> List[StepResult]:
        for index, step in enumerate(steps):
            action = step["action"]
            try:
                result = self._dispatch(action, step)
            except VeilFundError as exc:
                log.warning("step %d (%s) failed: %s", index, action, exc)
                self.results.append(StepResult(index, action, error=f"{type(exc).__name__}: {exc.message}"))
            else:
                self.results.append(StepResult(index, action, result=result))
        return self.results

    def _dispatch(self, action: str, step: Dict[str, Any]) -> Any:
        env  = self.env
        fund = env.fund
        if action == "deposit":
            return env.deposit(step["user"], int(step["amount"]))
        if action == "burn":
            redeem = step.get("redeem", "underlying")
            if redeem not in ("underlying", "stablecoin"):
                raise ConfigurationError("burn.redeem must be underlying or stablecoin", {"redeem": redeem})
            return env.burn(step["user"], int(step["amount"]), redeem == "underlying")
        if action == "fulfill":
            if "request" in step:
                return env.oracle.fulfill(int(step["request"]))
            return env.oracle.fulfill_all()
        if action == "finish_mint":
            return fund.finish_mint_shares(step["user"])
        if action == "claim_underlying":
            return fund.init_redeem_after_burn(step["user"])
        if action == "claim_stablecoin":
            return fund.finish_redeem_in_stablecoin_case(step["user"])
        if action == "sweep_fees":
            return fund.send_fees_to_protocol_owner(fund.state.protocol_owner)
        if action == "advance":
            return env.clock.advance(int(step["seconds"]))
        if action == "cancel":
            user = step["user"]
            request_id = step.get("request")
            if request_id is None:
                submitted = env.requests_by_user.get(user)
                if not submitted:
                    raise ConfigurationError("No request to cancel", {"user": user})
                request_id = submitted[-1]
            fund.cancel_expired_request(int(request_id), user)
            return int(request_id)
        if action == "set_price":
            token = next((t for t in env.tokens if t.symbol == step["token"]), None)
            if token is None:
                raise ConfigurationError("Unknown token", {"token": step["token"]})
            env.market_data.set_price(token.address, int(step["price"]))
            return int(step["price"])
        raise ConfigurationError("Unknown step action", {"action": action})

    def report(self) -> dict:
        env = self.env
        return {
            "fund":   env.fund.state.summary(),
            "events": env.fund.events.get_stats(),
            "users":  {user: env.balances(user) for user in env.users},
            "steps":  [r.to_dict() for r in self.results],
        }
