"""
tests/test_burn_pipeline.py

Shares + redeem flag -> decryption -> callback -> burn -> pro-rata amounts,
then either direct token redemption or a token -> stablecoin flush, and the
claim calls that pay both out.
"""

import pytest

from veilfund.core.exceptions import BatchNotReady, NoPendingAction, UnauthorizedCaller
from veilfund.events.models import EventType


START = 1_000_000


def shares_of(env, user):
    return env.reveal(env.fund.share_token, user)


def settle_deposits(env, *users, amount=1000):
    ids = [env.deposit(user, amount) for user in users]
    for request_id in ids:
        env.oracle.fulfill(request_id)


def burn_rejections(env):
    return [e.payload["reason"] for e in env.fund.events.events_of_type(EventType.BURN_REJECTED)]


# ─────────────────────────────────────────────────────────────
# Pro-rata redemption in underlying tokens
# ─────────────────────────────────────────────────────────────

class TestRedeemUnderlying:

    def test_pro_rata_amount_and_claim(self, env):
        """500 of 999 shares against 1,000,000 of each token -> 500500 each."""
        fund = env.fund
        aaa, bbb = env.tokens
        settle_deposits(env, "alice")
        for token in env.tokens:
            token.mint(fund.address, 1_000_000 - token.balance_of(fund.address))

        env.oracle.fulfill(env.burn("alice", 500, redeem_underlying=True))

        burned = fund.events.last(EventType.SHARES_BURNED).payload
        assert burned["shares"] == 500
        assert burned["redeem"] == "underlying"
        assert burned["amounts_by_token"] == {aaa.address: 500500, bbb.address: 500500}
        assert fund.share_token.total_supply == 499
        assert shares_of(env, "alice") == 499
        assert fund.state.reserved_by_token == {aaa.address: 500500, bbb.address: 500500}

        paid = fund.init_redeem_after_burn("alice")

        assert paid == {aaa.address: 500500, bbb.address: 500500}
        assert aaa.balance_of("alice") == 500500
        assert aaa.balance_of(fund.address) == 499500
        assert set(fund.state.reserved_by_token.values()) == {0}
        assert "alice" not in fund.state.pending_withdrawals
        assert fund.events.last(EventType.TOKENS_REDEEMED).payload["amounts_by_token"] == paid

    def test_share_price_excludes_reserved_tokens(self, env):
        fund = env.fund
        settle_deposits(env, "alice")
        for token in env.tokens:
            token.mint(fund.address, 1_000_000 - token.balance_of(fund.address))

        env.oracle.fulfill(env.burn("alice", 500))

        # 499500 of each token left for 499 shares
        assert fund.state.share_price == 2 * 499500 * 1000 // 499

    def test_claim_waits_for_redemption_batch(self, make_env):
        env = make_env(batch_size=2)
        fund = env.fund
        aaa, _ = env.tokens
        settle_deposits(env, "alice", "bob")

        env.oracle.fulfill(env.burn("alice", 500))
        with pytest.raises(BatchNotReady):
            fund.init_redeem_after_burn("alice")

        env.oracle.fulfill(env.burn("bob", 500))
        alice_paid = fund.init_redeem_after_burn("alice")
        bob_paid = fund.init_redeem_after_burn("bob")

        # bob holds 1001 shares: 998 * 500 // 2000, then 749 * 500 // 1500
        assert alice_paid[aaa.address] == 249
        assert bob_paid[aaa.address] == 249
        assert aaa.balance_of(fund.address) == 998 - 249 - 249

    def test_nothing_to_claim(self, env):
        with pytest.raises(NoPendingAction):
            env.fund.init_redeem_after_burn("carol")
        with pytest.raises(NoPendingAction):
            env.fund.finish_redeem_in_stablecoin_case("carol")


# ─────────────────────────────────────────────────────────────
# Redemption in stablecoin through the burn bucket
# ─────────────────────────────────────────────────────────────

class TestRedeemStablecoin:

    def test_single_burn_flushes_and_pays_out(self, env):
        fund = env.fund
        aaa, bbb = env.tokens
        settle_deposits(env, "alice")

        env.oracle.fulfill(env.burn("alice", 999, redeem_underlying=False))

        batch = fund.events.last(EventType.BURN_SWAP_BATCH_EXECUTED).payload
        assert batch["amounts_in"] == {aaa.address: 499, bbb.address: 499}
        assert batch["total_proceeds"] == 998
        assert fund.state.stablecoin_owed == 998
        assert fund.share_token.total_supply == 0
        assert aaa.balance_of(fund.address) == 0

        assert fund.finish_redeem_in_stablecoin_case("alice") == 998
        assert env.reveal(env.stablecoin, "alice") == START - 1000 + 998
        assert fund.state.stablecoin_owed == 0
        assert fund.events.last(EventType.STABLECOIN_REDEEMED).payload["user"] == "alice"

    def test_proceeds_split_by_contribution(self, make_env):
        env = make_env(batch_size=2)
        fund = env.fund
        state = fund.state
        settle_deposits(env, "alice", "bob")

        env.oracle.fulfill(env.burn("alice", 999, redeem_underlying=False))
        assert state.pending_burn_count == 1
        with pytest.raises(BatchNotReady):
            fund.finish_redeem_in_stablecoin_case("alice")

        env.oracle.fulfill(env.burn("bob", 1001, redeem_underlying=False))
        assert state.pending_burn_count == 0
        assert set(state.pending_burn_amount_by_token.values()) == {0}
        assert set(state.reserved_by_token.values()) == {0}

        # 999 and 1001 of 2000 shares against 998 of each token
        assert fund.finish_redeem_in_stablecoin_case("alice") == 2 * 498
        assert fund.finish_redeem_in_stablecoin_case("bob") == 2 * 500
        assert env.reveal(env.stablecoin, fund.address) == 0

    def test_deposits_work_again_after_full_redemption(self, env):
        settle_deposits(env, "alice")
        env.oracle.fulfill(env.burn("alice", 999, redeem_underlying=False))
        assert env.fund.share_token.total_supply == 0

        env.oracle.fulfill(env.deposit("bob", 1000))
        assert shares_of(env, "bob") > 0
        assert env.fund.events.events_of_type(EventType.DEPOSIT_REJECTED) == []


# ─────────────────────────────────────────────────────────────
# Rejections: shares come back
# ─────────────────────────────────────────────────────────────

class TestBurnRejections:

    def test_insufficient_balance_is_rejected(self, env):
        settle_deposits(env, "alice")
        env.oracle.fulfill(env.burn("bob", 500))

        assert burn_rejections(env) == ["InsufficientBalance"]
        assert env.fund.share_token.total_supply == 999
        assert shares_of(env, "bob") == 0

    def test_burning_more_than_held_keeps_shares(self, env):
        settle_deposits(env, "alice")
        env.oracle.fulfill(env.burn("alice", 2000))

        assert burn_rejections(env) == ["InsufficientBalance"]
        assert shares_of(env, "alice") == 999

    def test_failed_share_transfer_is_rejected(self, env):
        fund = env.fund
        settle_deposits(env, "alice")
        fund.share_token.approve("alice", fund.address, env.fhe.encrypt(10))
        encrypted = env.fhe.encrypt_input("alice", fund.address, 500, True)
        request_id = fund.burn_shares("alice", encrypted.handles[0], encrypted.handles[1], encrypted.proof)

        env.oracle.fulfill(request_id)

        assert burn_rejections(env) == ["TransferValidationFailed"]
        assert shares_of(env, "alice") == 999
        assert env.reveal(fund.share_token, fund.address) == 0

    def test_burn_over_bound_refunds_shares(self, make_env):
        env = make_env(max_mint_or_burn_amount=600)
        settle_deposits(env, "alice", "alice", amount=500)
        held = shares_of(env, "alice")
        assert held > 600

        env.oracle.fulfill(env.burn("alice", 700))

        assert burn_rejections(env) == ["AmountExceedsBound"]
        assert shares_of(env, "alice") == held
        assert env.fund.share_token.total_supply == held

    def test_non_oracle_burn_callback_is_rejected(self, env):
        settle_deposits(env, "alice")
        request_id = env.burn("alice", 500)

        with pytest.raises(UnauthorizedCaller):
            env.fund.burn_callback(request_id, 0, 500, True, True, caller="alice")
        assert request_id in env.fund.state.requests
