"""Tests for bakerpay.tezos.forge."""

import pytest

from bakerpay.services.errors import EncodingError, InvariantViolation
from bakerpay.services.schemas import DelegationEarning, FrozenBalance, Payout
from bakerpay.tezos.forge import MAX_COUNTER, ForgedOperation, OperationForger
from conftest import BRANCH, make_address

GOLDEN_ADDRESS: str = "tz1SUgyRB8T5jXgXAwS33pgRHAKrafyg87Yc"
GOLDEN_HEX: str = (
    "7cc601d2729c90b267e6a79d902f8b048d37fd990f2f7447efefb0cfb2f8e8a4"
    "6c004b04ad1e57c2f13b61b3d2c95b3073d961a4132ba08d0665a08d0600a0f736"
    "00004b04ad1e57c2f13b61b3d2c95b3073d961a4132b00"
    "6c004b04ad1e57c2f13b61b3d2c95b3073d961a4132ba08d0666a08d0600f0fd39"
    "00004b04ad1e57c2f13b61b3d2c95b3073d961a4132b00"
)


def _payout(*nets: tuple[str, int]) -> Payout:
    return Payout(
        delegate=GOLDEN_ADDRESS,
        cycle=100,
        frozen_balance=FrozenBalance(deposits=0, fees=0, rewards=0),
        staking_balance=1,
        earnings=tuple(
            DelegationEarning(delegator=d, fee=0, gross_rewards=n, net_rewards=n, share=0.0)
            for d, n in nets
        ),
    )


def _forge(payout: Payout, counter: int = 100, source: str = GOLDEN_ADDRESS) -> ForgedOperation:
    return OperationForger().forge(
        payout,
        source=source,
        branch=BRANCH,
        starting_counter=counter,
        network_fee=100_000,
        gas_limit=100_000,
        storage_limit=0,
    )


class TestForge:
    def test_golden_bytes(self) -> None:
        forged: ForgedOperation = _forge(
            _payout((GOLDEN_ADDRESS, 900_000), (GOLDEN_ADDRESS, 950_000))
        )
        assert forged.hex == GOLDEN_HEX

    def test_counters_are_consecutive(self) -> None:
        payout: Payout = _payout(*((make_address(i), 1_000 * i) for i in range(1, 6)))
        forged: ForgedOperation = _forge(payout, counter=41)
        assert [i.counter for i in forged.instructions] == [42, 43, 44, 45, 46]
        assert [i.amount for i in forged.instructions] == [1_000, 2_000, 3_000, 4_000, 5_000]

    def test_instruction_order_follows_payout(self) -> None:
        order: list[str] = [make_address(3), make_address(1), make_address(2)]
        forged: ForgedOperation = _forge(_payout(*((d, 10) for d in order)))
        assert [i.destination for i in forged.instructions] == order

    def test_empty_payout_is_branch_only(self) -> None:
        forged: ForgedOperation = _forge(_payout())
        assert forged.instructions == ()
        assert len(forged.raw) == 32

    def test_originated_destination(self) -> None:
        kt1: str = make_address(4, "KT1")
        forged: ForgedOperation = _forge(_payout((kt1, 10)))
        assert forged.raw.hex().endswith("01" + "04" * 20 + "00" + "00")

    def test_negative_counter(self) -> None:
        with pytest.raises(InvariantViolation):
            _forge(_payout((GOLDEN_ADDRESS, 1)), counter=-1)

    def test_counter_overflow(self) -> None:
        with pytest.raises(InvariantViolation, match="overflow"):
            _forge(_payout((GOLDEN_ADDRESS, 1), (GOLDEN_ADDRESS, 1)), counter=MAX_COUNTER - 1)

    def test_counter_at_limit(self) -> None:
        forged: ForgedOperation = _forge(_payout((GOLDEN_ADDRESS, 1)), counter=MAX_COUNTER - 1)
        assert forged.instructions[0].counter == MAX_COUNTER

    def test_negative_amount(self) -> None:
        with pytest.raises(InvariantViolation):
            _forge(_payout((GOLDEN_ADDRESS, -5)))

    def test_malformed_destination(self) -> None:
        with pytest.raises(EncodingError):
            _forge(_payout(("tz1notanaddress", 10)))

    def test_originated_source_rejected(self) -> None:
        with pytest.raises(EncodingError):
            _forge(_payout((GOLDEN_ADDRESS, 10)), source=make_address(4, "KT1"))
