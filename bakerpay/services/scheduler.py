"""Cycle watcher: polls the head and enqueues a payout per new cycle."""

import threading
from collections.abc import Callable
from enum import Enum

import structlog

from bakerpay.services.chain_client import ChainReader
from bakerpay.services.errors import ChainClientError, PayoutError
from bakerpay.services.payout_queue import PayoutQueue, PayoutQueueItem
from bakerpay.services.schemas import Head, Payout

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

PayoutBuilder = Callable[[int], Payout]
PaidCheck = Callable[[int], bool]


class WatcherState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    BUILDING = "building"
    ENQUEUED = "enqueued"


class CycleWatcher:
    """Acts only when the head's cycle strictly increases.

    The first successful poll sets the baseline unless ``last_cycle`` is
    given. A failed build leaves ``last_cycle`` alone, so the next tick tries
    the same cycle again.
    """

    def __init__(
        self,
        chain: ChainReader,
        payout_queue: PayoutQueue,
        build: PayoutBuilder,
        poll_interval: float = 30.0,
        wait_for_unfreeze: bool = False,
        already_paid: PaidCheck | None = None,
        last_cycle: int | None = None,
    ) -> None:
        self.chain: ChainReader = chain
        self.payout_queue: PayoutQueue = payout_queue
        self.build: PayoutBuilder = build
        self.poll_interval: float = poll_interval
        self.wait_for_unfreeze: bool = wait_for_unfreeze
        self.already_paid: PaidCheck | None = already_paid
        self.last_cycle: int | None = last_cycle
        self.state: WatcherState = WatcherState.IDLE

    def payout_cycle(self, head: Head) -> int:
        """The cycle that just ended, or the one whose rewards just unfroze."""
        if not self.wait_for_unfreeze:
            return head.cycle - 1 if self.last_cycle is None else self.last_cycle
        preserved: int = self.chain.get_network_constants(head.hash).preserved_cycles
        return head.cycle - preserved

    def poll_once(self) -> PayoutQueueItem | None:
        """Run one tick; returns the enqueued item when a payout was queued."""
        self.state = WatcherState.WATCHING
        try:
            head: Head = self.chain.get_head()
        except ChainClientError as e:
            logger.warning("Failed to get head", error=str(e))
            return None

        if self.last_cycle is None:
            self.last_cycle = head.cycle
            logger.info("Watching for new cycles", cycle=head.cycle, level=head.level)
            return None
        if head.cycle <= self.last_cycle:
            return None

        self.state = WatcherState.BUILDING
        try:
            cycle: int = self.payout_cycle(head)
            if self.already_paid is not None and self.already_paid(cycle):
                logger.info("Cycle already paid, skipping", cycle=cycle)
                self.last_cycle = head.cycle
                self.state = WatcherState.WATCHING
                return None
            payout: Payout = self.build(cycle)
        except (ChainClientError, PayoutError) as e:
            logger.error(
                "Failed to build payout, retrying next tick",
                head_cycle=head.cycle,
                error_type=type(e).__name__,
                error=str(e),
            )
            self.state = WatcherState.WATCHING
            return None

        item: PayoutQueueItem = self.payout_queue.enqueue(payout)
        self.last_cycle = head.cycle
        self.state = WatcherState.ENQUEUED
        return item

    def run_forever(self, stop: threading.Event) -> None:
        logger.info("Cycle watcher started", poll_interval=self.poll_interval)
        while not stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.exception(
                    "Watcher tick failed",
                    last_cycle=self.last_cycle,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                self.state = WatcherState.WATCHING
            stop.wait(self.poll_interval)
        self.state = WatcherState.IDLE
        logger.info("Cycle watcher stopped", last_cycle=self.last_cycle)
