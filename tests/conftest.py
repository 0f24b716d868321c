"""Shared fixtures: in-memory SQLite DB, a scripted node and signing keys."""

from collections.abc import Callable, Generator, Iterable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bakerpay.services.errors import RPCError
from bakerpay.services.schemas import (
    CycleMetadata,
    FrozenBalance,
    Head,
    NetworkConstants,
)
from bakerpay.tezos.encoding import b58encode, operation_hash
from bakerpay.tezos.keys import Key
from db.models import Base

BRANCH: str = "BLfEWKVudXH15N8nwHZehyLNjRuNLoJavJDjSZ7nq8ggfzbZ18p"
BOOTSTRAP1_SECRET: str = "edsk3gUfUPyBSfrS9CCgmCiQsTCHGkviBDusMxDJstFtojtc1zcpsh"
BOOTSTRAP1_ADDRESS: str = "tz1KqTpEZ7Yob7QbPE4Hy4Wo8fHG8LhKxZSx"
DELEGATE: str = BOOTSTRAP1_ADDRESS


def make_address(seed: int, prefix: str = "tz1") -> str:
    """Deterministic, checksum-valid address for tests."""
    return b58encode(bytes([seed]) * 20, prefix)


class FakeChain:
    """Scripted ChainReader. Names in ``fail`` make that lookup raise RPCError."""

    def __init__(
        self,
        *,
        heads: Iterable[int] = (100,),
        delegators: list[str] | None = None,
        balances: dict[str, int] | None = None,
        frozen_rewards: int = 70_000_000,
        staking_balance: int = 10_000_000_000,
        counter: int = 100,
        preserved_cycles: int = 5,
        fail: Iterable[str] = (),
        failing_delegators: Iterable[str] = (),
    ) -> None:
        self._heads: list[int] = list(heads)
        self.delegators: list[str] = delegators if delegators is not None else []
        self.balances: dict[str, int] = balances or {}
        self.frozen_rewards: int = frozen_rewards
        self.staking_balance: int = staking_balance
        self.counter: int = counter
        self.preserved_cycles: int = preserved_cycles
        self.fail: set[str] = set(fail)
        self.failing_delegators: set[str] = set(failing_delegators)
        self.submitted: list[bytes] = []
        self.head_calls: int = 0
        self.closed: bool = False

    def _check(self, name: str) -> None:
        if name in self.fail:
            raise RPCError(f"{name} unavailable")

    def get_head(self) -> Head:
        self._check("head")
        index: int = min(self.head_calls, len(self._heads) - 1)
        self.head_calls += 1
        cycle: int = self._heads[index]
        return Head(hash=BRANCH, level=cycle * 4096 + 1, cycle=cycle)

    def get_network_constants(self, block_hash: str = "head") -> NetworkConstants:
        self._check("constants")
        return NetworkConstants(
            preserved_cycles=self.preserved_cycles,
            blocks_per_cycle=4096,
            blocks_per_roll_snapshot=256,
        )

    def get_cycle_metadata(self, cycle: int) -> CycleMetadata:
        self._check("cycle")
        return CycleMetadata(cycle=cycle, random_seed="seed", roll_snapshot=3, block_hash=BRANCH)

    def get_frozen_rewards(self, delegate: str, cycle: int) -> FrozenBalance:
        self._check("frozen_balance")
        return FrozenBalance(deposits=0, fees=0, rewards=self.frozen_rewards)

    def get_staking_balance(self, delegate: str, cycle: int) -> int:
        self._check("staking_balance")
        return self.staking_balance

    def get_delegators(self, delegate: str, cycle: int) -> list[str]:
        self._check("delegators")
        return list(self.delegators)

    def get_balance(self, address: str, block_hash: str) -> int:
        self._check("balance")
        if address in self.failing_delegators:
            raise RPCError(f"no balance for {address}")
        return self.balances.get(address, 10_000_000_000)

    def get_counter(self, address: str, block_hash: str) -> int:
        self._check("counter")
        return self.counter

    def submit_signed_operation(self, signed_bytes: bytes) -> str:
        self._check("submit")
        self.submitted.append(signed_bytes)
        return operation_hash(signed_bytes)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng: Engine = create_engine(
        "sqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    sess: Session = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture()
def make_chain() -> Callable[..., FakeChain]:
    return FakeChain


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain(delegators=[make_address(1), make_address(2), make_address(3)])


@pytest.fixture()
def ed25519_key() -> Key:
    return Key.from_encoded_key(BOOTSTRAP1_SECRET)
