"""
Polling/merge store.

Holds the dashboard state and keeps it fresh with two independent timers:
a slow refresh of the static snapshot and a fast poll that merges new
transactions into a bounded, newest-first window.
"""
import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from .config import Settings, settings
from .errors import UpstreamError
from .models import DashboardSnapshot, StaticSnapshot, TransactionRecord, is_meaningful
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

Listener = Callable[[DashboardSnapshot], None]


def merge_transactions(
    window: List[TransactionRecord],
    incoming: Sequence[TransactionRecord],
    cap: int = 50,
) -> List[TransactionRecord]:
    """Prepend new meaningful records to ``window``, keeping at most ``cap``.

    Returns ``window`` itself when nothing new survives filtering.
    """
    seen = {tx.signature for tx in window}
    fresh: List[TransactionRecord] = []
    for tx in incoming:
        if tx.signature in seen or not is_meaningful(tx):
            continue
        seen.add(tx.signature)
        fresh.append(tx)
    if not fresh:
        return window
    return (fresh + window)[:cap]


class DashboardStore:
    def __init__(
        self,
        client: UpstreamClient,
        cfg: Settings = settings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.cfg = cfg
        self._sleep = sleep
        self._static = StaticSnapshot()
        self._transactions: List[TransactionRecord] = []
        self._static_loaded = False
        self._transactions_loaded = False
        self._error: Optional[str] = None
        self._version = 0
        self._closed = False
        self._tasks: List["asyncio.Task[None]"] = []
        self._listeners: List[Listener] = []

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------
    @property
    def static(self) -> StaticSnapshot:
        return self._static

    @property
    def transactions(self) -> List[TransactionRecord]:
        return list(self._transactions)

    @property
    def loading(self) -> bool:
        return not (self._static_loaded and self._transactions_loaded)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def snapshot(self) -> DashboardSnapshot:
        return DashboardSnapshot(
            metrics=self._static.metrics,
            supply=self._static.supply,
            holders=list(self._static.holders),
            transactions=list(self._transactions),
            token_metadata=self._static.token_metadata,
            loading=self.loading,
            error=self._error,
            version=self._version,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        self._version += 1
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Snapshot listener failed")

    # -------------------------------------------------------------------------
    # Refresh jobs
    # -------------------------------------------------------------------------
    async def refresh_static(self) -> None:
        try:
            metrics, supply, holders, metadata = await asyncio.gather(
                self.client.get_reward_metrics(),
                self.client.get_token_supply(),
                self.client.get_top_holders(),
                self.client.get_token_metadata(),
            )
        except UpstreamError as e:
            if self._closed:
                return
            logger.error("Failed to fetch static data: %s", e)
            self._error = str(e)
            self._static_loaded = True
            self._changed()
            return

        if self._closed:
            return
        self._static = StaticSnapshot(metrics=metrics, supply=supply, holders=holders, token_metadata=metadata)
        self._error = None
        self._static_loaded = True
        self._changed()

    async def poll_transactions(self, initial: bool = False) -> None:
        limit = self.cfg.INITIAL_POLL_LIMIT if initial else self.cfg.POLL_LIMIT
        try:
            incoming = await self.client.get_recent_transactions_enhanced(limit)
        except UpstreamError as e:
            if self._closed:
                return
            logger.error("Failed to fetch transactions: %s", e)
            self._error = str(e)
            self._transactions_loaded = True
            self._changed()
            return

        if self._closed:
            return
        merged = merge_transactions(self._transactions, incoming, self.cfg.TRANSACTION_WINDOW_SIZE)
        first_settle = not self._transactions_loaded
        recovered = self._error is not None
        self._transactions_loaded = True
        self._error = None
        if merged is self._transactions and not (first_settle or recovered):
            return
        if merged is not self._transactions:
            logger.debug("Merged %d new transactions", len(merged) - len(self._transactions))
        self._transactions = merged
        self._changed()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def _run_job(self, job: Callable[[], Awaitable[None]]) -> None:
        try:
            await job()
        except Exception:
            logger.exception("Scheduled refresh failed")

    async def _every(self, interval: float, job: Callable[[], Awaitable[None]]) -> None:
        while not self._closed:
            await self._sleep(interval)
            if self._closed:
                break
            await self._run_job(job)

    async def _run_static(self) -> None:
        await self._run_job(self.refresh_static)
        await self._every(self.cfg.STATIC_REFRESH_SECONDS, self.refresh_static)

    async def _run_polling(self) -> None:
        await self._run_job(partial(self.poll_transactions, initial=True))
        await self._every(self.cfg.TRANSACTION_POLL_SECONDS, self.poll_transactions)

    def start(self) -> None:
        if self.running:
            return
        self._closed = False
        self._tasks = [
            asyncio.create_task(self._run_static(), name="static-refresh"),
            asyncio.create_task(self._run_polling(), name="transaction-poll"),
        ]

    async def stop(self) -> None:
        self._closed = True
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
