"""Node-side data transfer objects."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Head:
    hash: str
    level: int
    cycle: int


@dataclass(frozen=True)
class NetworkConstants:
    preserved_cycles: int
    blocks_per_cycle: int
    blocks_per_roll_snapshot: int


@dataclass(frozen=True)
class CycleMetadata:
    cycle: int
    random_seed: str
    roll_snapshot: int
    # Hash of the block the cycle's stake snapshot was taken at.
    block_hash: str


@dataclass(frozen=True)
class FrozenBalance:
    deposits: int
    fees: int
    rewards: int
