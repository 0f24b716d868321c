"""Per-delegator share of a delegate's frozen rewards."""

from decimal import ROUND_DOWN, Decimal, localcontext

import structlog

from bakerpay.services.chain_client import ChainReader
from bakerpay.services.errors import (
    ChainClientError,
    DivisionByZero,
    InvariantViolation,
    LookupFailure,
)
from bakerpay.services.schemas import DelegationEarning

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

WHOLE_MUTEZ: Decimal = Decimal(1)


def _fee_rate(fee_rate: float | Decimal | str) -> Decimal:
    # str() keeps 0.05 as 0.05 instead of its binary expansion.
    rate: Decimal = fee_rate if isinstance(fee_rate, Decimal) else Decimal(str(fee_rate))
    if not Decimal(0) <= rate <= Decimal(1):
        raise InvariantViolation(f"fee rate {rate} is outside [0, 1]")
    return rate


def compute_earning(
    delegator: str,
    delegator_stake: int,
    delegate_frozen_rewards: int,
    delegate_staking_balance: int,
    fee_rate: float | Decimal | str,
) -> DelegationEarning:
    """Split a delegate's rewards for one delegator.

    gross = rewards * stake // staking_balance; fee = floor(gross * fee_rate);
    net = gross - fee. All amounts are mutez and truncate toward zero.
    """
    if delegate_staking_balance == 0:
        raise DivisionByZero(f"staking balance is zero; cannot compute share for {delegator}")
    if delegate_staking_balance < 0 or delegator_stake < 0 or delegate_frozen_rewards < 0:
        raise InvariantViolation(
            f"negative input for {delegator}: stake={delegator_stake} "
            f"rewards={delegate_frozen_rewards} staking_balance={delegate_staking_balance}"
        )
    rate: Decimal = _fee_rate(fee_rate)

    gross: int = delegate_frozen_rewards * delegator_stake // delegate_staking_balance
    with localcontext() as ctx:
        ctx.prec = 60
        fee: int = int((Decimal(gross) * rate).quantize(WHOLE_MUTEZ, rounding=ROUND_DOWN))

    return DelegationEarning(
        delegator=delegator,
        fee=fee,
        gross_rewards=gross,
        net_rewards=gross - fee,
        share=delegator_stake / delegate_staking_balance,
    )


class RewardCalculator:
    """Looks up a delegator's stake and computes its earning."""

    def __init__(self, chain: ChainReader, fee_rate: float | Decimal | str) -> None:
        self.chain: ChainReader = chain
        self.fee_rate: Decimal = _fee_rate(fee_rate)

    def compute_for(
        self,
        delegator: str,
        cycle_block_hash: str,
        delegate_frozen_rewards: int,
        delegate_staking_balance: int,
    ) -> DelegationEarning:
        try:
            stake: int = self.chain.get_balance(delegator, cycle_block_hash)
        except ChainClientError as e:
            raise LookupFailure(
                f"failed to get balance for delegator {delegator}: {e}", entity=delegator
            ) from e

        earning: DelegationEarning = compute_earning(
            delegator,
            stake,
            delegate_frozen_rewards,
            delegate_staking_balance,
            self.fee_rate,
        )
        logger.debug(
            "Computed earning",
            delegator=delegator,
            stake=stake,
            gross=earning.gross_rewards,
            net=earning.net_rewards,
        )
        return earning
