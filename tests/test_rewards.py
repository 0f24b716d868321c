"""Tests for bakerpay.services.rewards."""

from decimal import Decimal

import pytest

from bakerpay.services.errors import DivisionByZero, InvariantViolation, LookupFailure
from bakerpay.services.rewards import RewardCalculator, compute_earning
from bakerpay.services.schemas import DelegationEarning
from conftest import BRANCH, FakeChain, make_address


class TestComputeEarning:
    def test_tenth_of_staking_balance(self) -> None:
        e: DelegationEarning = compute_earning(
            "tz1a", 10_000_000_000, 800_000_000, 100_000_000_000, 0.05
        )
        assert e.gross_rewards == 80_000_000
        assert e.fee == 4_000_000
        assert e.net_rewards == 76_000_000
        assert e.share == 0.1

    def test_whole_staking_balance(self) -> None:
        e: DelegationEarning = compute_earning(
            "tz1a", 10_000_000_000, 70_000_000, 10_000_000_000, 0.05
        )
        assert (e.gross_rewards, e.fee, e.net_rewards, e.share) == (
            70_000_000,
            3_500_000,
            66_500_000,
            1.0,
        )

    def test_fee_truncates(self) -> None:
        e: DelegationEarning = compute_earning("tz1a", 99, 100, 100, 0.05)
        assert e.gross_rewards == 99
        assert e.fee == 4  # 4.95 rounds down
        assert e.net_rewards == 95

    def test_net_plus_fee_equals_gross(self) -> None:
        for rate in ("0", "0.013", "0.1", "0.333", "1"):
            e: DelegationEarning = compute_earning("tz1a", 123_456, 987_654_321, 7_000_001, rate)
            assert e.fee + e.net_rewards == e.gross_rewards
            assert 0 <= e.fee <= e.gross_rewards

    def test_full_fee_leaves_nothing(self) -> None:
        e: DelegationEarning = compute_earning("tz1a", 50, 1_000, 100, 1)
        assert e.fee == e.gross_rewards == 500
        assert e.net_rewards == 0

    def test_accepts_decimal_rate(self) -> None:
        e: DelegationEarning = compute_earning("tz1a", 1, 1_000, 1, Decimal("0.25"))
        assert e.fee == 250

    def test_gross_sum_never_exceeds_rewards(self) -> None:
        stakes: list[int] = [1, 1, 1]
        earnings: list[DelegationEarning] = [
            compute_earning(f"tz1{i}", s, 100, sum(stakes), 0) for i, s in enumerate(stakes)
        ]
        total: int = sum(e.gross_rewards for e in earnings)
        assert total <= 100
        assert 100 - total <= len(stakes) - 1

    def test_zero_staking_balance(self) -> None:
        with pytest.raises(DivisionByZero):
            compute_earning("tz1a", 10, 100, 0, 0.05)

    def test_division_by_zero_is_an_invariant_violation(self) -> None:
        assert issubclass(DivisionByZero, InvariantViolation)

    @pytest.mark.parametrize(
        ("stake", "rewards", "balance"),
        [(-1, 100, 100), (1, -100, 100), (1, 100, -100)],
    )
    def test_negative_inputs(self, stake: int, rewards: int, balance: int) -> None:
        with pytest.raises(InvariantViolation):
            compute_earning("tz1a", stake, rewards, balance, 0.05)

    @pytest.mark.parametrize("rate", [-0.01, 1.01, "2"])
    def test_fee_rate_out_of_range(self, rate: float | str) -> None:
        with pytest.raises(InvariantViolation):
            compute_earning("tz1a", 1, 100, 100, rate)


class TestRewardCalculator:
    def test_looks_up_balance(self) -> None:
        delegator: str = make_address(7)
        chain = FakeChain(balances={delegator: 10_000_000_000})
        calc = RewardCalculator(chain, 0.05)

        e: DelegationEarning = calc.compute_for(delegator, BRANCH, 800_000_000, 100_000_000_000)

        assert e.delegator == delegator
        assert e.net_rewards == 76_000_000

    def test_balance_failure_names_delegator(self) -> None:
        delegator: str = make_address(7)
        chain = FakeChain(failing_delegators=[delegator])
        calc = RewardCalculator(chain, 0.05)

        with pytest.raises(LookupFailure, match="failed to get balance") as info:
            calc.compute_for(delegator, BRANCH, 800_000_000, 100_000_000_000)

        assert info.value.entity == delegator
        assert delegator in str(info.value)

    def test_rejects_bad_fee_rate_up_front(self) -> None:
        with pytest.raises(InvariantViolation):
            RewardCalculator(FakeChain(), 1.5)
