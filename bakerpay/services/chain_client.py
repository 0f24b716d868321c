"""Tezos node RPC client for fetching cycle data and injecting operations."""

import json
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import httpx
import structlog

from bakerpay.services.errors import (
    ChainConnectionError,
    RPCError,
    RPCTimeoutError,
    SubmissionFailure,
)
from bakerpay.services.schemas import CycleMetadata, FrozenBalance, Head, NetworkConstants

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")


class ChainReader(Protocol):
    """Everything the payout pipeline needs from a node."""

    def get_head(self) -> Head: ...

    def get_network_constants(self, block_hash: str = "head") -> NetworkConstants: ...

    def get_cycle_metadata(self, cycle: int) -> CycleMetadata: ...

    def get_frozen_rewards(self, delegate: str, cycle: int) -> FrozenBalance: ...

    def get_staking_balance(self, delegate: str, cycle: int) -> int: ...

    def get_delegators(self, delegate: str, cycle: int) -> list[str]: ...

    def get_balance(self, address: str, block_hash: str) -> int: ...

    def get_counter(self, address: str, block_hash: str) -> int: ...

    def submit_signed_operation(self, signed_bytes: bytes) -> str: ...


def _field(raw: object, key: str, what: str) -> Any:
    if not isinstance(raw, dict) or key not in raw:
        raise RPCError(f"{what} carries no {key!r}: {str(raw)[:200]}")
    return raw[key]


def _object(raw: object, what: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise RPCError(f"{what} is not a JSON object: {str(raw)[:200]}")
    return raw


def _as_int(value: object, what: str) -> int:
    try:
        return int(str(value))
    except (TypeError, ValueError) as exc:
        raise RPCError(f"could not parse {what} from {value!r}") from exc


class TezosClient:
    """Client for a Tezos node's JSON RPC.

    Reads are retried with linear back-off on transport errors; a timeout is
    raised at once as RPCTimeoutError so the caller's next tick is the retry.
    Injections are never retried.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.rpc_url: str = rpc_url.rstrip("/")
        self.timeout: float = timeout
        self.retry_attempts: int = max(1, retry_attempts)
        self.retry_delay: float = retry_delay
        self._http: httpx.Client = httpx.Client(
            base_url=self.rpc_url, timeout=timeout, transport=transport
        )
        self._constants: NetworkConstants | None = None
        self._cycle_cache: dict[int, CycleMetadata] = {}

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "TezosClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Transport ───────────────────────────────────────────────────────────

    def _retry_call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        last_error: Exception | None = None
        for attempt in range(self.retry_attempts):
            try:
                return func(*args, **kwargs)
            except httpx.TimeoutException as e:
                raise RPCTimeoutError(f"RPC call timed out after {self.timeout}s: {e}") from e
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "RPC call failed, retrying",
                    attempt=attempt + 1,
                    error=str(e)[:100],
                )
                if attempt < self.retry_attempts - 1:
                    time.sleep(self.retry_delay * (attempt + 1))
        raise ChainConnectionError(
            f"RPC call failed after {self.retry_attempts} attempts: {last_error}"
        )

    def _get(self, path: str) -> Any:
        def _fetch() -> httpx.Response:
            return self._http.get(path)

        response: httpx.Response = self._retry_call(_fetch)
        if response.status_code != 200:
            raise RPCError(
                f"GET {path} returned {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise RPCError(f"GET {path} returned invalid JSON: {e}") from e

    def _block(self, block_id: str | int) -> dict[str, Any]:
        return _object(self._get(f"/chains/main/blocks/{block_id}"), f"block {block_id}")

    def _block_hash(self, block_id: str | int) -> str:
        return str(_field(self._block(block_id), "hash", f"block {block_id}"))

    # ── Reads ───────────────────────────────────────────────────────────────

    def get_head(self) -> Head:
        block: dict[str, Any] = self._block("head")
        metadata: object = block.get("metadata")
        level_info: object = None
        if isinstance(metadata, dict):
            level_info = metadata.get("level_info") or metadata.get("level")
        if not isinstance(level_info, dict) or "cycle" not in level_info:
            raise RPCError("head block carries no cycle information")
        if "level" in level_info:
            level: object = level_info["level"]
        else:
            level = _field(_field(block, "header", "head block"), "level", "head block header")
        return Head(
            hash=str(_field(block, "hash", "head block")),
            level=_as_int(level, "level"),
            cycle=_as_int(level_info["cycle"], "cycle"),
        )

    def get_network_constants(self, block_hash: str = "head") -> NetworkConstants:
        if self._constants is not None:
            return self._constants
        raw: object = self._get(f"/chains/main/blocks/{block_hash}/context/constants")
        self._constants = NetworkConstants(
            preserved_cycles=_as_int(
                _field(raw, "preserved_cycles", "constants"), "preserved_cycles"
            ),
            blocks_per_cycle=_as_int(
                _field(raw, "blocks_per_cycle", "constants"), "blocks_per_cycle"
            ),
            blocks_per_roll_snapshot=_as_int(
                _field(raw, "blocks_per_roll_snapshot", "constants"), "blocks_per_roll_snapshot"
            ),
        )
        return self._constants

    def get_cycle_metadata(self, cycle: int) -> CycleMetadata:
        """Random seed, roll snapshot and snapshot block hash of *cycle*."""
        if cycle in self._cycle_cache:
            return self._cycle_cache[cycle]

        head: Head = self.get_head()
        constants: NetworkConstants = self.get_network_constants(head.hash)
        if cycle > head.cycle + constants.preserved_cycles - 1:
            raise RPCError(f"cycle {cycle} is too far in the future (head is at {head.cycle})")

        block_id: str = head.hash
        if cycle < head.cycle:
            block_id = self._block_hash(cycle * constants.blocks_per_cycle + 1)

        raw: dict[str, Any] = _object(
            self._get(f"/chains/main/blocks/{block_id}/context/raw/json/cycle/{cycle}"),
            f"cycle {cycle}",
        )
        roll_snapshot: int = _as_int(
            _field(raw, "roll_snapshot", f"cycle {cycle}"), "roll_snapshot"
        )
        snapshot_level: int = max(
            1,
            (cycle - constants.preserved_cycles - 2) * constants.blocks_per_cycle
            + (roll_snapshot + 1) * constants.blocks_per_roll_snapshot,
        )
        metadata = CycleMetadata(
            cycle=cycle,
            random_seed=str(raw.get("random_seed", "")),
            roll_snapshot=roll_snapshot,
            block_hash=self._block_hash(snapshot_level),
        )
        # Only past cycles are immutable.
        if cycle < head.cycle:
            self._cycle_cache[cycle] = metadata
        return metadata

    def get_frozen_rewards(self, delegate: str, cycle: int) -> FrozenBalance:
        constants: NetworkConstants = self.get_network_constants()
        level: int = (cycle + 1) * constants.blocks_per_cycle + 1
        block_hash: str = self._block_hash(level)
        raw: dict[str, Any] = _object(
            self._get(
                f"/chains/main/blocks/{block_hash}/context/raw/json/contracts/index/"
                f"{delegate}/frozen_balance/{cycle}/"
            ),
            f"frozen balance of {delegate} for cycle {cycle}",
        )
        return FrozenBalance(
            deposits=_as_int(raw.get("deposits", 0), "deposits"),
            fees=_as_int(raw.get("fees", 0), "fees"),
            rewards=_as_int(raw.get("rewards", 0), "rewards"),
        )

    def get_staking_balance(self, delegate: str, cycle: int) -> int:
        snapshot: CycleMetadata = self.get_cycle_metadata(cycle)
        raw: object = self._get(
            f"/chains/main/blocks/{snapshot.block_hash}/context/delegates/{delegate}/staking_balance"
        )
        return _as_int(raw, "staking_balance")

    def get_delegators(self, delegate: str, cycle: int) -> list[str]:
        snapshot: CycleMetadata = self.get_cycle_metadata(cycle)
        raw: object = self._get(
            f"/chains/main/blocks/{snapshot.block_hash}/context/delegates/{delegate}/delegated_contracts"
        )
        if not isinstance(raw, list):
            raise RPCError(f"delegated_contracts for {delegate} is not a list")
        return [str(address) for address in raw]

    def get_balance(self, address: str, block_hash: str) -> int:
        raw: object = self._get(f"/chains/main/blocks/{block_hash}/context/contracts/{address}/balance")
        return _as_int(raw, "balance")

    def get_counter(self, address: str, block_hash: str) -> int:
        raw: object = self._get(f"/chains/main/blocks/{block_hash}/context/contracts/{address}/counter")
        return _as_int(raw, "counter")

    # ── Injection ───────────────────────────────────────────────────────────

    def submit_signed_operation(self, signed_bytes: bytes) -> str:
        """Inject a signed operation; returns the hash the node reports."""
        try:
            response: httpx.Response = self._http.post(
                "/injection/operation",
                params={"chain": "main"},
                json=signed_bytes.hex(),
            )
        except httpx.TimeoutException as e:
            raise SubmissionFailure(f"injection timed out after {self.timeout}s: {e}") from e
        except httpx.TransportError as e:
            raise SubmissionFailure(f"failed to inject operation: {e}") from e

        if response.status_code != 200:
            raise SubmissionFailure(
                f"node rejected operation ({response.status_code}): {response.text[:500]}"
            )
        try:
            op_hash: object = response.json()
        except json.JSONDecodeError as e:
            raise SubmissionFailure(f"injection returned invalid JSON: {e}") from e
        if not isinstance(op_hash, str):
            raise SubmissionFailure(f"injection returned unexpected body: {op_hash!r}")

        logger.info("Injected operation", operation_hash=op_hash)
        return op_hash
