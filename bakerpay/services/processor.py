"""Forge, sign and submit one payout."""

from dataclasses import dataclass

import structlog

from bakerpay.services._helpers import short
from bakerpay.services.chain_client import ChainReader
from bakerpay.services.errors import ChainClientError, LookupFailure, SubmissionFailure
from bakerpay.services.schemas import Head, Payout, PayoutResult
from bakerpay.tezos.forge import ForgedOperation, OperationForger
from bakerpay.tezos.keys import Key, SignedOperation

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OperationLimits:
    network_fee: int
    gas_limit: int
    storage_limit: int


class PayoutProcessor:
    """Turns a Payout into a signed, injected batch transfer.

    The source account's counter is read fresh from the current head on every
    call; nothing is cached between payouts.
    """

    def __init__(
        self,
        chain: ChainReader,
        key: Key,
        limits: OperationLimits,
        forger: OperationForger | None = None,
    ) -> None:
        self.chain: ChainReader = chain
        self.key: Key = key
        self.limits: OperationLimits = limits
        self.forger: OperationForger = forger or OperationForger()

    @property
    def source(self) -> str:
        return self.key.public_key_hash

    def _prepare(self, payout: Payout) -> tuple[int, ForgedOperation, SignedOperation]:
        try:
            head: Head = self.chain.get_head()
            counter: int = self.chain.get_counter(self.source, head.hash)
        except ChainClientError as e:
            raise LookupFailure(
                f"failed to get counter for {self.source}: {e}", entity=self.source
            ) from e

        forged: ForgedOperation = self.forger.forge(
            payout,
            source=self.source,
            branch=head.hash,
            starting_counter=counter,
            network_fee=self.limits.network_fee,
            gas_limit=self.limits.gas_limit,
            storage_limit=self.limits.storage_limit,
        )
        return counter, forged, self.key.sign_operation(forged.raw)

    def dry_run(self, payout: Payout) -> PayoutResult:
        """Forge and sign without submitting; the hash is computed locally."""
        if payout.is_empty:
            return PayoutResult(
                cycle=payout.cycle,
                delegate=payout.delegate,
                success=True,
                payout=payout,
                dry_run=True,
            )
        counter, forged, signed = self._prepare(payout)
        return PayoutResult(
            cycle=payout.cycle,
            delegate=payout.delegate,
            success=True,
            payout=payout,
            operation_hash=signed.operation_hash,
            starting_counter=counter,
            dry_run=True,
            counters=forged.counters,
        )

    def process(self, payout: Payout) -> PayoutResult:
        if payout.is_empty:
            logger.info("Nothing to pay", cycle=payout.cycle, delegate=short(payout.delegate))
            return PayoutResult(
                cycle=payout.cycle, delegate=payout.delegate, success=True, payout=payout
            )

        counter, forged, signed = self._prepare(payout)
        try:
            op_hash: str = self.chain.submit_signed_operation(signed.signed_bytes)
        except ChainClientError as e:
            raise SubmissionFailure(f"failed to submit payout for cycle {payout.cycle}: {e}") from e

        if op_hash != signed.operation_hash:
            logger.warning(
                "Node reported a different operation hash",
                local=signed.operation_hash,
                node=op_hash,
            )

        logger.info(
            "Payout submitted",
            cycle=payout.cycle,
            operation_hash=op_hash,
            transfers=len(forged.instructions),
            total_net=payout.total_net,
            first_counter=counter + 1,
        )
        return PayoutResult(
            cycle=payout.cycle,
            delegate=payout.delegate,
            success=True,
            payout=payout,
            operation_hash=op_hash,
            starting_counter=counter,
            counters=forged.counters,
        )
