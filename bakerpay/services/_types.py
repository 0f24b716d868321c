"""Typed dicts for service-layer return values.

Keeps CLI-facing methods explicit about their shape instead of returning bare dicts.
"""

from typing import TypedDict

from bakerpay.services._helpers import JsonDict

# -- Ledger ----------------------------------------------------------------


class PayoutEntryDict(TypedDict):
    delegator: str
    gross_rewards: int
    fee: int
    net_rewards: int
    share: float
    counter: int | None
    payment_status: str
    excluded_reason: str | None


class PayoutRunDict(TypedDict):
    run_id: str
    delegate: str
    cycle: int
    status: str
    operation_hash: str | None
    error_details: str | None
    starting_counter: int | None
    frozen_rewards: int
    staking_balance: int
    total_gross: int
    total_fee: int
    total_net: int
    delegator_count: int
    config_snapshot: JsonDict | None
    created_at: str


class PayoutRunDetailDict(PayoutRunDict):
    entries: list[PayoutEntryDict]
