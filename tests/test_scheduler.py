"""Tests for bakerpay.services.scheduler."""

import threading

import httpx

from bakerpay.services.chain_client import TezosClient
from bakerpay.services.errors import LookupFailure
from bakerpay.services.payout_queue import PayoutQueue
from bakerpay.services.payouts import PayoutAssembler
from bakerpay.services.scheduler import CycleWatcher, WatcherState
from bakerpay.services.schemas import FrozenBalance, Payout, PayoutResult
from conftest import DELEGATE, FakeChain, make_address


def _payout(cycle: int) -> Payout:
    return Payout(
        delegate=DELEGATE,
        cycle=cycle,
        frozen_balance=FrozenBalance(deposits=0, fees=0, rewards=0),
        staking_balance=1,
    )


def _unused_handler(payout: Payout) -> PayoutResult:
    raise AssertionError("queue worker is not started in these tests")


class _Builder:
    def __init__(self, fail_times: int = 0) -> None:
        self.calls: list[int] = []
        self.fail_times: int = fail_times

    def __call__(self, cycle: int) -> Payout:
        self.calls.append(cycle)
        if len(self.calls) <= self.fail_times:
            raise LookupFailure(f"failed to get delegation earnings for cycle {cycle}")
        return _payout(cycle)


def _watcher(chain: FakeChain, build: _Builder, **kwargs: object) -> tuple[CycleWatcher, PayoutQueue]:
    q = PayoutQueue(_unused_handler)
    return CycleWatcher(chain, q, build, poll_interval=0, **kwargs), q  # type: ignore[arg-type]


class TestPollOnce:
    def test_first_poll_sets_baseline(self) -> None:
        build = _Builder()
        watcher, q = _watcher(FakeChain(heads=[5]), build)
        assert watcher.poll_once() is None
        assert watcher.last_cycle == 5
        assert build.calls == []
        assert len(q) == 0

    def test_acts_only_on_increasing_cycles(self) -> None:
        build = _Builder()
        watcher, q = _watcher(FakeChain(heads=[5, 5, 5, 6, 6, 7]), build)
        for _ in range(6):
            watcher.poll_once()
        assert build.calls == [5, 6]
        assert len(q) == 2
        assert watcher.last_cycle == 7

    def test_given_baseline(self) -> None:
        build = _Builder()
        watcher, q = _watcher(FakeChain(heads=[8]), build, last_cycle=7)
        item = watcher.poll_once()
        assert item is not None and item.payout.cycle == 7
        assert watcher.state is WatcherState.ENQUEUED

    def test_lower_cycle_is_ignored(self) -> None:
        build = _Builder()
        watcher, _ = _watcher(FakeChain(heads=[4]), build, last_cycle=7)
        assert watcher.poll_once() is None
        assert watcher.last_cycle == 7

    def test_failed_build_retries_next_tick(self) -> None:
        build = _Builder(fail_times=1)
        watcher, q = _watcher(FakeChain(heads=[5, 6, 6]), build)
        watcher.poll_once()
        assert watcher.poll_once() is None
        assert watcher.last_cycle == 5
        assert watcher.poll_once() is not None
        assert build.calls == [5, 5]
        assert watcher.last_cycle == 6
        assert len(q) == 1

    def test_head_failure_keeps_state(self) -> None:
        build = _Builder()
        watcher, _ = _watcher(FakeChain(fail=["head"]), build, last_cycle=3)
        assert watcher.poll_once() is None
        assert watcher.last_cycle == 3

    def test_wait_for_unfreeze_pays_older_cycle(self) -> None:
        build = _Builder()
        watcher, _ = _watcher(
            FakeChain(heads=[12], preserved_cycles=5), build, last_cycle=11, wait_for_unfreeze=True
        )
        watcher.poll_once()
        assert build.calls == [7]

    def test_already_paid_cycle_is_skipped(self) -> None:
        build = _Builder()
        watcher, q = _watcher(
            FakeChain(heads=[9]), build, last_cycle=8, already_paid=lambda cycle: cycle == 8
        )
        assert watcher.poll_once() is None
        assert build.calls == []
        assert watcher.last_cycle == 9
        assert len(q) == 0


class TestRunForever:
    def test_stops_when_event_set(self) -> None:
        stop = threading.Event()
        chain = FakeChain(heads=[1, 2, 3])
        calls: list[int] = []

        def build(cycle: int) -> Payout:
            calls.append(cycle)
            if cycle == 2:
                stop.set()
            return _payout(cycle)

        q = PayoutQueue(_unused_handler)
        watcher = CycleWatcher(chain, q, build, poll_interval=0)
        watcher.run_forever(stop)

        assert calls == [1, 2]
        assert watcher.state is WatcherState.IDLE

    def test_preset_stop_never_polls(self) -> None:
        stop = threading.Event()
        stop.set()
        chain = FakeChain()
        watcher = CycleWatcher(chain, PayoutQueue(_unused_handler), _Builder(), poll_interval=0)
        watcher.run_forever(stop)
        assert chain.head_calls == 0

    def test_unexpected_error_does_not_end_loop(self) -> None:
        stop = threading.Event()
        calls: list[int] = []

        def build(cycle: int) -> Payout:
            calls.append(cycle)
            if len(calls) == 1:
                raise RuntimeError("boom")
            stop.set()
            return _payout(cycle)

        watcher = CycleWatcher(
            FakeChain(heads=[1, 2, 2]), PayoutQueue(_unused_handler), build, poll_interval=0
        )
        watcher.run_forever(stop)

        assert calls == [1, 1]
        assert watcher.last_cycle == 2


class _Node:
    """Node RPC whose head sits at the first block of ``cycle``; later blocks 404."""

    BLOCKS_PER_CYCLE: int = 8

    def __init__(self, cycle: int) -> None:
        self.cycle: int = cycle
        self.constants: dict[str, object] = {
            "preserved_cycles": 2,
            "blocks_per_cycle": self.BLOCKS_PER_CYCLE,
            "blocks_per_roll_snapshot": 2,
        }

    @property
    def head_level(self) -> int:
        return self.cycle * self.BLOCKS_PER_CYCLE + 1

    def __call__(self, request: httpx.Request) -> httpx.Response:
        prefix: str = "/chains/main/blocks/"
        block_id, _, tail = request.url.path[len(prefix):].partition("/")
        if not tail and block_id == "head":
            return httpx.Response(
                200,
                json={
                    "hash": f"B{self.head_level}",
                    "header": {"level": self.head_level},
                    "metadata": {"level_info": {"level": self.head_level, "cycle": self.cycle}},
                },
            )
        if not tail and block_id.isdigit():
            if int(block_id) > self.head_level:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, json={"hash": f"B{block_id}"})
        if tail == "context/constants":
            return httpx.Response(200, json=self.constants)
        if tail.startswith("context/raw/json/cycle/"):
            return httpx.Response(200, json={"random_seed": "seed", "roll_snapshot": 0})
        if "/frozen_balance/" in tail:
            return httpx.Response(200, json={"rewards": "70000000"})
        if tail.endswith("/staking_balance"):
            return httpx.Response(200, json="10000000000")
        if tail.endswith("/delegated_contracts"):
            return httpx.Response(200, json=[make_address(1)])
        if tail.endswith("/balance"):
            return httpx.Response(200, json="1000000000")
        return httpx.Response(404, text="not found")


def _node_watcher(node: _Node, **kwargs: object) -> tuple[CycleWatcher, PayoutQueue]:
    client = TezosClient("http://node.test", retry_delay=0, transport=httpx.MockTransport(node))
    assembler = PayoutAssembler(client, 0.05, max_workers=1)
    q = PayoutQueue(_unused_handler)
    watcher = CycleWatcher(
        client,
        q,
        lambda cycle: assembler.assemble(DELEGATE, cycle),
        poll_interval=0,
        **kwargs,  # type: ignore[arg-type]
    )
    return watcher, q


class TestAgainstNode:
    def test_pays_each_completed_cycle(self) -> None:
        node = _Node(cycle=5)
        watcher, q = _node_watcher(node)
        paid: list[int] = []

        for cycle in (5, 6, 7):
            node.cycle = cycle
            for _ in range(3):
                item = watcher.poll_once()
                if item is not None:
                    paid.append(item.payout.cycle)

        assert paid == [5, 6]
        assert len(q) == 2
        assert watcher.last_cycle == 7

    def test_completed_cycle_payout_is_computed(self) -> None:
        node = _Node(cycle=6)
        watcher, _ = _node_watcher(node, last_cycle=5)
        item = watcher.poll_once()
        assert item is not None
        assert [e.delegator for e in item.payout.earnings] == [make_address(1)]
        assert item.payout.earnings[0].gross_rewards == 7_000_000

    def test_malformed_constants_do_not_escape(self) -> None:
        node = _Node(cycle=6)
        node.constants = {}
        watcher, q = _node_watcher(node, last_cycle=5, wait_for_unfreeze=True)
        assert watcher.poll_once() is None
        assert watcher.last_cycle == 5
        assert len(q) == 0
