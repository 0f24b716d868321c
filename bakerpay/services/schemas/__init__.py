"""Shared dataclasses for bakerpay services."""

from bakerpay.services.schemas.chain import (
    CycleMetadata,
    FrozenBalance,
    Head,
    NetworkConstants,
)
from bakerpay.services.schemas.results import (
    DelegationEarning,
    DelegatorFailure,
    ExcludedEarning,
    Payout,
    PayoutResult,
)

__all__ = [
    # Chain schemas
    "CycleMetadata",
    "FrozenBalance",
    "Head",
    "NetworkConstants",
    # Result schemas
    "DelegationEarning",
    "DelegatorFailure",
    "ExcludedEarning",
    "Payout",
    "PayoutResult",
]
