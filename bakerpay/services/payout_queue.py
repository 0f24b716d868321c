"""FIFO payout queue drained by a single worker thread.

Every item taken off the queue produces exactly one PayoutResult, which is
handed to each subscribed observer in subscription order. Processing errors
become failure results; they never stop the worker.
"""

import queue
import threading
from collections.abc import Callable

import structlog

from bakerpay.services.schemas import Payout, PayoutResult

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

Observer = Callable[[PayoutResult], None]
Handler = Callable[[Payout], PayoutResult]


class PayoutQueueItem:
    def __init__(self, payout: Payout) -> None:
        self.payout: Payout = payout
        self.result: PayoutResult | None = None
        self._done: threading.Event = threading.Event()

    def complete(self, result: PayoutResult) -> None:
        self.result = result
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> PayoutResult | None:
        self._done.wait(timeout)
        return self.result


_STOP = object()


class PayoutQueue:
    """One payout in flight at a time, strictly in enqueue order."""

    def __init__(self, handler: Handler) -> None:
        self.handler: Handler = handler
        self._queue: queue.Queue[PayoutQueueItem | object] = queue.Queue()
        self._observers: list[Observer] = []
        self._lock: threading.Lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._stopping: bool = False

    def subscribe(self, observer: Observer) -> None:
        with self._lock:
            self._observers.append(observer)

    def enqueue(self, payout: Payout) -> PayoutQueueItem:
        item = PayoutQueueItem(payout)
        self._queue.put(item)
        logger.info("Payout enqueued", cycle=payout.cycle, earnings=len(payout.earnings))
        return item

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._worker = threading.Thread(target=self._run, name="payout-queue", daemon=True)
        self._worker.start()

    def stop(self, timeout: float | None = None) -> None:
        """Finish the items already queued, then stop the worker."""
        if self._worker is None:
            return
        if not self._stopping:
            self._stopping = True
            self._queue.put(_STOP)
        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.warning("Payout worker still busy after stop timeout", timeout=timeout)
            return
        self._worker = None

    def join(self) -> None:
        """Block until every enqueued item has been processed."""
        self._queue.join()

    def _process(self, item: PayoutQueueItem) -> PayoutResult:
        payout: Payout = item.payout
        try:
            return self.handler(payout)
        except Exception as e:
            logger.error(
                "Payout failed",
                cycle=payout.cycle,
                error_type=type(e).__name__,
                error=str(e),
            )
            return PayoutResult(
                cycle=payout.cycle,
                delegate=payout.delegate,
                success=False,
                payout=payout,
                error=f"{type(e).__name__}: {e}",
            )

    def _notify(self, result: PayoutResult) -> None:
        with self._lock:
            observers: list[Observer] = list(self._observers)
        for observer in observers:
            try:
                observer(result)
            except Exception as e:
                logger.error(
                    "Payout observer failed",
                    observer=getattr(observer, "__name__", repr(observer)),
                    error=str(e),
                )

    def _run(self) -> None:
        while True:
            item: PayoutQueueItem | object = self._queue.get()
            try:
                if not isinstance(item, PayoutQueueItem):
                    self._stopping = False
                    return
                result: PayoutResult = self._process(item)
                self._notify(result)
                item.complete(result)
            finally:
                self._queue.task_done()
