"""
tests/test_mint_pipeline.py

Deposit -> decryption -> callback -> allocation -> batched swap -> shares.
"""

import threading

import pytest

from veilfund.core.exceptions import (
    NoPendingAction,
    ReentrancyError,
    RequestNotFound,
    UnauthorizedCaller,
    ValidationError,
)
from veilfund.events.models import EventType


START = 1_000_000


def shares_of(env, user):
    return env.reveal(env.fund.share_token, user)


def rejection_reasons(env, event_type=EventType.DEPOSIT_REJECTED):
    return [e.payload["reason"] for e in env.fund.events.events_of_type(event_type)]


# ─────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────

class TestSingleDeposit:

    def test_fee_allocation_and_shares(self, env):
        """1000 in, fee 1, 999 deployed as [499, 499], 999 shares at the default price."""
        aaa, bbb = env.tokens
        fund = env.fund

        request_id = env.deposit("alice", 1000)
        assert shares_of(env, "alice") == 0
        assert env.oracle.fulfill(request_id) is True

        assert shares_of(env, "alice") == 999
        assert fund.share_token.total_supply == 999
        assert fund.state.collected_fees == 1
        assert aaa.balance_of(fund.address) == 499
        assert bbb.balance_of(fund.address) == 499
        # fee plus the floor-rounding residue stays as plain stablecoin
        assert env.plain_stablecoin.balance_of(fund.address) == 2
        assert env.reveal(env.stablecoin, "alice") == START - 1000

        minted = fund.events.last(EventType.SHARES_MINTED).payload
        assert minted == {
            "user":        "alice",
            "request_id":  request_id,
            "shares":      999,
            "share_price": 1000,
            "fee":         1,
        }

    def test_fee_and_deployed_amount_add_up(self, env):
        env.oracle.fulfill(env.deposit("alice", 123_457))
        fee = env.fund.events.last(EventType.SHARES_MINTED).payload["fee"]
        batch = env.fund.events.last(EventType.MINT_SWAP_BATCH_EXECUTED).payload

        assert fee == 123_457 // 1000
        assert sum(batch["amounts_in"].values()) <= 123_457 - fee

    def test_buckets_clear_after_flush(self, env):
        env.oracle.fulfill(env.deposit("alice", 1000))
        state = env.fund.state

        assert state.pending_mint_count == 0
        assert set(state.pending_mint_amount_by_token.values()) == {0}
        assert state.mint_batch_id == 1

    def test_share_price_follows_post_settlement_nav(self, env):
        fund = env.fund
        env.oracle.fulfill(env.deposit("alice", 1000))
        env.market_data.set_price(env.tokens[0].address, 3)

        env.oracle.fulfill(env.deposit("bob", 1000))

        # NAV = 499 * 3 + 499 = 1996 over 999 shares before bob's deposit
        price = 1996 * 1000 // 999
        assert fund.events.last(EventType.SHARES_MINTED).payload["share_price"] == price
        assert shares_of(env, "bob") == 999 * 1000 // price
        supply = fund.share_token.total_supply
        assert fund.state.share_price == fund.accountant.nav(fund.state) * 1000 // supply


# ─────────────────────────────────────────────────────────────
# Rejections: refund + event, never a lost deposit
# ─────────────────────────────────────────────────────────────

class TestDepositRejections:

    def test_missing_approval_refunds_nothing_moved(self, env):
        request_id = env.deposit("alice", 1000, approve=10)
        env.oracle.fulfill(request_id)

        assert shares_of(env, "alice") == 0
        assert env.reveal(env.stablecoin, "alice") == START
        assert env.reveal(env.stablecoin, env.fund.address) == 0
        assert rejection_reasons(env) == ["TransferValidationFailed"]
        assert request_id not in env.fund.state.requests

    def test_insufficient_balance_is_reported_through_error_code(self, env):
        env.fund_user("dave", 100)
        env.oracle.fulfill(env.deposit("dave", 1000))

        assert env.reveal(env.stablecoin, "dave") == 100
        assert shares_of(env, "dave") == 0
        assert rejection_reasons(env) == ["TransferValidationFailed"]

    def test_deposit_over_bound_is_refunded(self, make_env):
        env = make_env(max_mint_or_burn_amount=5000)
        env.oracle.fulfill(env.deposit("alice", 6000))

        assert env.reveal(env.stablecoin, "alice") == START
        assert env.reveal(env.stablecoin, env.fund.address) == 0
        assert env.fund.share_token.total_supply == 0
        assert rejection_reasons(env) == ["AmountExceedsBound"]

    def test_swap_over_bound_aborts_flush_and_refunds(self, make_env):
        env = make_env(max_swap_amount=400)
        env.oracle.fulfill(env.deposit("alice", 1000))

        assert env.reveal(env.stablecoin, "alice") == START
        assert env.venue.swaps_executed == 0
        assert env.fund.state.collected_fees == 0
        assert rejection_reasons(env) == ["AmountExceedsBound"]

    def test_missing_price_refunds(self, env):
        env.market_data.set_price(env.tokens[0].address, 0)
        env.oracle.fulfill(env.deposit("alice", 1000))

        assert env.reveal(env.stablecoin, "alice") == START
        assert rejection_reasons(env) == ["PriceFeedUnavailable"]

    def test_quote_below_slippage_floor_refunds(self, env):
        env.venue.set_next_amount_out(10)
        env.oracle.fulfill(env.deposit("alice", 1000))

        assert env.reveal(env.stablecoin, "alice") == START
        assert env.venue.swaps_executed == 0
        assert rejection_reasons(env) == ["SlippageExceeded"]

    def test_proof_for_another_user_is_rejected(self, env):
        forged = env.fhe.encrypt_input("mallory", env.fund.address, 1000)
        with pytest.raises(ValidationError):
            env.fund.mint_shares("alice", forged.handles[0], forged.proof)
        assert env.oracle.pending_ids == []
        assert len(env.fund.state.requests) == 0


# ─────────────────────────────────────────────────────────────
# Oracle boundary
# ─────────────────────────────────────────────────────────────

class TestCallbackBoundary:

    def test_request_drives_exactly_one_callback(self, env):
        request_id = env.deposit("alice", 1000)
        env.oracle.fulfill(request_id)

        with pytest.raises(RequestNotFound):
            env.fund.mint_callback(request_id, 0, 1000, caller=env.oracle.address)
        with pytest.raises(RequestNotFound):
            env.oracle.fulfill(request_id)
        assert shares_of(env, "alice") == 999

    def test_non_oracle_caller_is_rejected(self, env):
        request_id = env.deposit("alice", 1000)

        with pytest.raises(UnauthorizedCaller):
            env.fund.mint_callback(request_id, 0, 1000, caller="mallory")

        assert request_id in env.fund.state.requests
        assert env.oracle.fulfill(request_id) is True
        assert shares_of(env, "alice") == 999

    def test_burn_request_id_cannot_drive_mint_callback(self, env):
        env.oracle.fulfill(env.deposit("alice", 1000))
        burn_id = env.burn("alice", 100)

        with pytest.raises(RequestNotFound):
            env.fund.mint_callback(burn_id, 0, 100, caller=env.oracle.address)
        assert burn_id in env.fund.state.requests

    def test_reentrant_call_is_refused_and_rolled_back(self, env, monkeypatch):
        fund = env.fund
        request_id = env.deposit("alice", 1000)
        real_caps = env.market_data.index_market_caps

        def reenter(tokens):
            fund.finish_mint_shares("alice")
            return real_caps(tokens)

        monkeypatch.setattr(env.market_data, "index_market_caps", reenter)
        with pytest.raises(ReentrancyError):
            env.oracle.fulfill(request_id)

        assert request_id in fund.state.requests
        assert request_id in env.oracle.pending_ids
        assert fund.share_token.total_supply == 0

        monkeypatch.undo()
        assert env.oracle.fulfill(request_id) is True
        assert shares_of(env, "alice") == 999


# ─────────────────────────────────────────────────────────────
# Batching across users
# ─────────────────────────────────────────────────────────────

class TestBatching:

    def test_second_callback_flushes_combined_bucket(self, make_env):
        env = make_env(batch_size=2)
        aaa, bbb = env.tokens
        state = env.fund.state
        first = env.deposit("alice", 1000)
        second = env.deposit("bob", 1000)

        env.oracle.fulfill(first)
        assert env.venue.swaps_executed == 0
        assert state.pending_mint_count == 1
        assert state.pending_mint_amount_by_token == {aaa.address: 499, bbb.address: 499}
        assert shares_of(env, "alice") == 999

        env.oracle.fulfill(second)
        assert env.venue.swaps_executed == 2
        assert state.pending_mint_count == 0
        assert set(state.pending_mint_amount_by_token.values()) == {0}

        batches = env.fund.events.events_of_type(EventType.MINT_SWAP_BATCH_EXECUTED)
        assert len(batches) == 1
        assert batches[0].payload["amounts_in"] == {aaa.address: 998, bbb.address: 998}
        assert aaa.balance_of(env.fund.address) == 998

    def test_callbacks_may_arrive_out_of_order(self, make_env):
        env = make_env(batch_size=2)
        first = env.deposit("alice", 1000)
        second = env.deposit("bob", 1000)

        assert env.oracle.fulfill_all(order=[second, first]) == 2

        assert shares_of(env, "alice") > 0
        assert shares_of(env, "bob") > 0
        assert env.fund.state.pending_mint_count == 0

    def test_unswapped_bucket_counts_toward_price(self, make_env):
        env = make_env(batch_size=3)
        env.oracle.fulfill(env.deposit("alice", 1000))
        env.oracle.fulfill(env.deposit("bob", 1000))

        # alice's 998 in the bucket back her 999 shares
        assert env.venue.swaps_executed == 0
        assert env.fund.events.last(EventType.SHARES_MINTED).payload["share_price"] == 998
        assert shares_of(env, "bob") == 999 * 1000 // 998
        assert env.fund.events.events_of_type(EventType.DEPOSIT_REJECTED) == []

    def test_concurrent_submissions_get_distinct_error_entries(self, env):
        users = [f"user-{i}" for i in range(8)]
        for user in users:
            env.fund_user(user, 10_000)
        errors = []

        def submit(user):
            try:
                env.deposit(user, 1000)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=submit, args=(u,)) for u in users]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        pending = list(env.fund.state.requests)
        assert len({r.error_id for r in pending}) == len(users)

        assert env.oracle.fulfill_all() == len(users)
        assert all(shares_of(env, u) > 0 for u in users)


# ─────────────────────────────────────────────────────────────
# Two-step mint
# ─────────────────────────────────────────────────────────────

class TestTwoStepMint:

    def test_callback_parks_and_finish_settles(self, make_env):
        env = make_env(two_step_mint=True)
        request_id = env.deposit("alice", 1000)
        env.oracle.fulfill(request_id)

        assert shares_of(env, "alice") == 0
        assert env.fund.events.last(EventType.MINT_PENDING).payload == {
            "user": "alice", "request_id": request_id,
        }

        assert env.fund.finish_mint_shares("alice") == 999
        assert shares_of(env, "alice") == 999
        assert "alice" not in env.fund.state.pending_mints

    def test_finish_without_pending_mint(self, make_env):
        env = make_env(two_step_mint=True)
        with pytest.raises(NoPendingAction):
            env.fund.finish_mint_shares("bob")

    def test_finish_refunds_deposit_that_no_longer_prices(self, make_env):
        env = make_env(two_step_mint=True)
        env.oracle.fulfill(env.deposit("alice", 1000))
        env.market_data.set_price(env.tokens[1].address, 0)

        assert env.fund.finish_mint_shares("alice") == 0
        assert env.reveal(env.stablecoin, "alice") == START
        assert rejection_reasons(env) == ["PriceFeedUnavailable"]
