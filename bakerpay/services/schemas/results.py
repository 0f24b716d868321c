"""Result dataclasses produced by the payout pipeline."""

from dataclasses import dataclass, field, replace

from bakerpay.services.schemas.chain import FrozenBalance


@dataclass(frozen=True)
class DelegationEarning:
    delegator: str
    fee: int
    gross_rewards: int
    net_rewards: int
    # Informational only; never used for money.
    share: float


@dataclass(frozen=True)
class ExcludedEarning:
    earning: DelegationEarning
    reason: str


@dataclass(frozen=True)
class DelegatorFailure:
    delegator: str
    error: str


@dataclass(frozen=True)
class Payout:
    """Per-delegator earnings for one delegate and one cycle."""

    delegate: str
    cycle: int
    frozen_balance: FrozenBalance
    staking_balance: int
    earnings: tuple[DelegationEarning, ...] = ()
    excluded: tuple[ExcludedEarning, ...] = ()
    failures: tuple[DelegatorFailure, ...] = ()

    def __len__(self) -> int:
        return len(self.earnings)

    @property
    def is_empty(self) -> bool:
        return not self.earnings

    @property
    def total_gross(self) -> int:
        return sum(e.gross_rewards for e in self.earnings)

    @property
    def total_fee(self) -> int:
        return sum(e.fee for e in self.earnings)

    @property
    def total_net(self) -> int:
        return sum(e.net_rewards for e in self.earnings)

    def sorted(self) -> "Payout":
        return replace(
            self, earnings=tuple(sorted(self.earnings, key=lambda e: e.delegator))
        )

    def with_earnings(
        self,
        earnings: tuple[DelegationEarning, ...],
        excluded: tuple[ExcludedEarning, ...] = (),
    ) -> "Payout":
        return replace(self, earnings=earnings, excluded=self.excluded + excluded)


@dataclass
class PayoutResult:
    cycle: int
    delegate: str
    success: bool
    payout: Payout | None
    operation_hash: str | None = None
    error: str | None = None
    starting_counter: int | None = None
    dry_run: bool = False
    counters: dict[str, int] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return self.payout is not None and self.payout.is_empty
