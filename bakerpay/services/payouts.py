"""Payout assembly: cycle-level lookups, per-delegator fan-out and filtering."""

from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from decimal import Decimal
from typing import TypeVar

import structlog

from bakerpay.services._helpers import short
from bakerpay.services.chain_client import ChainReader
from bakerpay.services.errors import (
    ChainClientError,
    DivisionByZero,
    LookupFailure,
    PayoutError,
)
from bakerpay.services.rewards import RewardCalculator
from bakerpay.services.schemas import (
    CycleMetadata,
    DelegationEarning,
    DelegatorFailure,
    ExcludedEarning,
    FrozenBalance,
    Payout,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")

EXCLUDED_BLACKLISTED: str = "blacklisted"
EXCLUDED_BELOW_MINIMUM: str = "below_minimum"
EXCLUDED_NOTHING_TO_PAY: str = "nothing_to_pay"


@dataclass(frozen=True)
class _CycleInputs:
    frozen_balance: FrozenBalance
    delegators: list[str]
    metadata: CycleMetadata
    staking_balance: int


class PayoutAssembler:
    """Builds the Payout for one delegate and cycle."""

    def __init__(
        self,
        chain: ChainReader,
        fee_rate: float | Decimal | str,
        max_workers: int = 8,
        fail_fast: bool = True,
        sort_by_address: bool = True,
    ) -> None:
        self.chain: ChainReader = chain
        self.calculator: RewardCalculator = RewardCalculator(chain, fee_rate)
        self.max_workers: int = max(1, max_workers)
        self.fail_fast: bool = fail_fast
        self.sort_by_address: bool = sort_by_address

    def _lookup(self, cycle: int, what: str, func: Callable[[], T]) -> T:
        try:
            return func()
        except (ChainClientError, PayoutError) as e:
            raise LookupFailure(
                f"failed to get delegation earnings for cycle {cycle}: failed to get {what}: {e}"
            ) from e

    def _cycle_inputs(self, delegate: str, cycle: int) -> _CycleInputs:
        # Every one of these is needed before any delegator can be computed.
        frozen = self._lookup(
            cycle, "frozen balance", lambda: self.chain.get_frozen_rewards(delegate, cycle)
        )
        delegators = self._lookup(
            cycle,
            "delegated contracts at cycle",
            lambda: self.chain.get_delegators(delegate, cycle),
        )
        metadata = self._lookup(cycle, "cycle", lambda: self.chain.get_cycle_metadata(cycle))
        staking_balance = self._lookup(
            cycle, "staking balance", lambda: self.chain.get_staking_balance(delegate, cycle)
        )
        return _CycleInputs(
            frozen_balance=frozen,
            delegators=list(delegators),
            metadata=metadata,
            staking_balance=staking_balance,
        )

    def assemble(self, delegate: str, cycle: int) -> Payout:
        inputs: _CycleInputs = self._cycle_inputs(delegate, cycle)
        rewards: int = inputs.frozen_balance.rewards
        if inputs.delegators and inputs.staking_balance == 0:
            raise DivisionByZero(
                f"staking balance of {delegate} is zero at cycle {cycle} "
                f"but it has {len(inputs.delegators)} delegators"
            )

        logger.info(
            "Assembling payout",
            delegate=short(delegate),
            cycle=cycle,
            delegators=len(inputs.delegators),
            frozen_rewards=rewards,
            staking_balance=inputs.staking_balance,
        )

        earnings: list[DelegationEarning] = []
        failures: list[DelegatorFailure] = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures: dict[Future[DelegationEarning], str] = {
                pool.submit(
                    self.calculator.compute_for,
                    delegator,
                    inputs.metadata.block_hash,
                    rewards,
                    inputs.staking_balance,
                ): delegator
                for delegator in inputs.delegators
            }
            for future in as_completed(futures):
                delegator: str = futures[future]
                try:
                    earnings.append(future.result())
                except (ChainClientError, PayoutError) as e:
                    if self.fail_fast:
                        for pending in futures:
                            pending.cancel()
                        logger.error(
                            "Delegator lookup failed, aborting cycle",
                            cycle=cycle,
                            delegator=delegator,
                            error=str(e),
                        )
                        if isinstance(e, PayoutError):
                            raise
                        raise LookupFailure(str(e), entity=delegator) from e
                    logger.warning(
                        "Delegator lookup failed, skipping",
                        cycle=cycle,
                        delegator=delegator,
                        error=str(e),
                    )
                    failures.append(DelegatorFailure(delegator=delegator, error=str(e)))

        payout = Payout(
            delegate=delegate,
            cycle=cycle,
            frozen_balance=inputs.frozen_balance,
            staking_balance=inputs.staking_balance,
            earnings=tuple(earnings),
            failures=tuple(sorted(failures, key=lambda f: f.delegator)),
        )
        if self.sort_by_address:
            payout = payout.sorted()

        logger.info(
            "Payout assembled",
            cycle=cycle,
            earnings=len(payout.earnings),
            failures=len(payout.failures),
            total_net=payout.total_net,
        )
        return payout


def apply_filters(
    payout: Payout,
    minimum_payment: int = 0,
    blacklist: Iterable[str] = (),
) -> Payout:
    """Drop blacklisted, below-minimum and non-positive entries.

    Removed entries are kept on ``Payout.excluded`` with the reason.
    """
    blocked: frozenset[str] = frozenset(blacklist)
    kept: list[DelegationEarning] = []
    excluded: list[ExcludedEarning] = []

    for earning in payout.earnings:
        if earning.delegator in blocked:
            excluded.append(ExcludedEarning(earning, EXCLUDED_BLACKLISTED))
        elif earning.net_rewards <= 0:
            excluded.append(ExcludedEarning(earning, EXCLUDED_NOTHING_TO_PAY))
        elif earning.net_rewards < minimum_payment:
            excluded.append(ExcludedEarning(earning, EXCLUDED_BELOW_MINIMUM))
        else:
            kept.append(earning)

    if excluded:
        logger.info(
            "Filtered payout",
            cycle=payout.cycle,
            kept=len(kept),
            excluded=len(excluded),
        )
    return payout.with_earnings(tuple(kept), tuple(excluded))
