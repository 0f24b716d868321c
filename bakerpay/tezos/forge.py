"""Binary encoding of a payout as one batched transfer operation.

Layout of the forged bytes::

    branch (32) || content_1 || ... || content_n

Each content is a transaction::

    0x6c || source (21) || fee || counter || gas_limit || storage_limit
         || amount || destination (22) || 0x00

where the numeric fields are Zarith naturals.
"""

from dataclasses import dataclass

import structlog

from bakerpay.services.errors import InvariantViolation
from bakerpay.services.schemas import Payout
from bakerpay.tezos.encoding import (
    forge_branch,
    forge_contract_id,
    forge_nat,
    forge_public_key_hash,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

TRANSACTION_TAG: bytes = b"\x6c"
NO_PARAMETERS: bytes = b"\x00"
MAX_COUNTER: int = 2**63 - 1


@dataclass(frozen=True)
class TransferInstruction:
    source: str
    destination: str
    amount: int
    counter: int
    fee: int
    gas_limit: int
    storage_limit: int

    def forge(self) -> bytes:
        return b"".join(
            (
                TRANSACTION_TAG,
                forge_public_key_hash(self.source),
                forge_nat(self.fee),
                forge_nat(self.counter),
                forge_nat(self.gas_limit),
                forge_nat(self.storage_limit),
                forge_nat(self.amount),
                forge_contract_id(self.destination),
                NO_PARAMETERS,
            )
        )


@dataclass(frozen=True)
class ForgedOperation:
    branch: str
    source: str
    instructions: tuple[TransferInstruction, ...]
    raw: bytes

    @property
    def hex(self) -> str:
        return self.raw.hex()

    @property
    def counters(self) -> dict[str, int]:
        return {i.destination: i.counter for i in self.instructions}


class OperationForger:
    """Turns a payout into one transfer per delegator with consecutive counters."""

    def forge(
        self,
        payout: Payout,
        source: str,
        branch: str,
        starting_counter: int,
        network_fee: int,
        gas_limit: int,
        storage_limit: int,
    ) -> ForgedOperation:
        if starting_counter < 0:
            raise InvariantViolation(f"starting counter {starting_counter} is negative")
        if starting_counter + len(payout.earnings) > MAX_COUNTER:
            raise InvariantViolation(
                f"counter overflow: {starting_counter} + {len(payout.earnings)} "
                f"exceeds {MAX_COUNTER}"
            )

        instructions: tuple[TransferInstruction, ...] = tuple(
            TransferInstruction(
                source=source,
                destination=earning.delegator,
                amount=earning.net_rewards,
                counter=starting_counter + i + 1,
                fee=network_fee,
                gas_limit=gas_limit,
                storage_limit=storage_limit,
            )
            for i, earning in enumerate(payout.earnings)
        )

        raw: bytes = forge_branch(branch) + b"".join(i.forge() for i in instructions)

        logger.debug(
            "Forged payout operation",
            cycle=payout.cycle,
            transfers=len(instructions),
            first_counter=starting_counter + 1,
            size=len(raw),
        )
        return ForgedOperation(
            branch=branch, source=source, instructions=instructions, raw=raw
        )
