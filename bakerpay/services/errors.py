"""Shared exception hierarchy for bakerpay services."""

# ── Chain ─────────────────────────────────────────────────────────────────────


class ChainClientError(Exception):
    """Base exception for chain client errors."""


class RPCError(ChainClientError):
    """RPC call failed."""


class RPCTimeoutError(RPCError):
    """RPC call exceeded its time bound."""


class ChainConnectionError(ChainClientError):
    """Cannot connect to RPC endpoint."""


# ── Payout pipeline ───────────────────────────────────────────────────────────


class PayoutError(Exception):
    """Base exception for the payout pipeline."""


class LookupFailure(PayoutError):
    """A node lookup failed; the message names the delegator, cycle or delegate."""

    def __init__(self, message: str, *, entity: str | None = None) -> None:
        super().__init__(message)
        self.entity: str | None = entity


class InvariantViolation(PayoutError):
    """Arithmetic or sequencing invariant broken."""


class DivisionByZero(InvariantViolation):
    """Delegate staking balance is zero."""


class EncodingError(PayoutError):
    """Malformed address, key or hash."""


class UnknownCurve(EncodingError):
    """Textual prefix does not belong to any supported curve."""


class SignatureSelfCheckFailed(PayoutError):
    """A freshly produced signature did not verify against its own public key."""


class SubmissionFailure(PayoutError):
    """The node rejected or did not accept the signed operation."""
