"""Enumeration types for the payout ledger."""

from enum import Enum


class RunStatus(str, Enum):
    """Outcome of one processed payout."""

    SUCCESS = "success"
    FAILED = "failed"
    DRY_RUN = "dry_run"
    EMPTY = "empty"  # Nothing left to pay after filtering


class PaymentStatus(str, Enum):
    """Per-delegator status inside a run."""

    SENT = "sent"
    PLANNED = "planned"  # Forged and signed in a dry run, never submitted
    NOT_SENT = "not_sent"
    EXCLUDED = "excluded"
