"""
Debounced, retried delivery of optimistic mutations
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from core.models import OptimisticUpdate
from services.ledger import OptimisticLedger
from services.offline_queue import OfflineQueue

logger = logging.getLogger(__name__)

Executor = Callable[[OptimisticUpdate], Awaitable[Any]]

class MutationScheduler:
    """Coalesces same-target mutations and retries failed writes.

    Every submitted update is applied to the ledger at once; the network
    write waits for a quiet period per target key. A newer update for the
    same key cancels the pending timer. Writes for one key never overlap.
    """

    def __init__(self, executor: Executor, ledger: OptimisticLedger, offline_queue: OfflineQueue,
                 is_online: Callable[[], bool],
                 on_confirmed: Callable[[OptimisticUpdate, Any, bool], None],
                 on_failed: Callable[[OptimisticUpdate, Exception], None],
                 on_settled: Optional[Callable[[OptimisticUpdate], None]] = None,
                 debounce_delay: float = 0.3, retry_base_delay: float = 1.0, max_attempts: int = 3):
        self._executor = executor
        self.ledger = ledger
        self.offline_queue = offline_queue
        self._is_online = is_online
        self._on_confirmed = on_confirmed
        self._on_failed = on_failed
        self._on_settled = on_settled
        self.debounce_delay = debounce_delay
        self.retry_base_delay = retry_base_delay
        self.max_attempts = max_attempts

        self.active_timers: Dict[str, asyncio.Task] = {}
        self._attempts: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    def submit(self, update: OptimisticUpdate):
        """Apply the update locally and (re)start its debounce timer"""
        if self._closed:
            raise RuntimeError("Scheduler is closed")

        key = update.target_key
        if self._cancel_timer(key):
            logger.debug(f"⏱️ Debounced {key}")
        self._attempts.pop(key, None)

        self.ledger.apply(update)
        self._schedule(key, update, self.debounce_delay)

    def has_pending(self, key: str) -> bool:
        return key in self.active_timers

    def attempts(self, key: str) -> int:
        return self._attempts.get(key, 0)

    async def replay(self, update: OptimisticUpdate) -> Any:
        """Write a queued update, serialized with debounced writes for its key"""
        async with self._key_lock(update.target_key):
            return await self._executor(update)

    async def join(self):
        """Wait until every timer, write and retry has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self):
        """Cancel sleeping timers; writes already sent run to completion"""
        self._closed = True
        for key in list(self.active_timers.keys()):
            self._cancel_timer(key)
        self._attempts.clear()
        logger.info("🧹 Pending mutation timers cancelled")

    # ===== INTERNALS =====

    def _schedule(self, key: str, update: OptimisticUpdate, delay: float):
        task = asyncio.create_task(self._timer_worker(key, update, delay))
        self.active_timers[key] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self, key: str) -> bool:
        task = self.active_timers.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    @asynccontextmanager
    async def _key_lock(self, key: str):
        """Hold the write lock for a key; unused locks are dropped"""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _timer_worker(self, key: str, update: OptimisticUpdate, delay: float):
        task = asyncio.current_task()
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug(f"⏹️ Timer for {key} cancelled")
            return

        try:
            async with self._key_lock(key):
                # From here on the write is in flight and can no longer be superseded
                if self.active_timers.get(key) is task:
                    del self.active_timers[key]
                await self._deliver(key, update)
        except asyncio.CancelledError:
            logger.debug(f"⏹️ Timer for {key} cancelled while waiting to write")

    async def _deliver(self, key: str, update: OptimisticUpdate):
        if self._closed or update.id not in self.ledger:
            logger.debug(f"Skipping stale update {update.id}")
            return

        if not self._is_online():
            self._attempts.pop(key, None)
            self.offline_queue.enqueue(update)
            self._settle(key, update)
            return

        try:
            response = await self._executor(update)
        except Exception as e:
            self._handle_failure(key, update, e)
            return

        self._attempts.pop(key, None)
        if self._closed:
            return
        committed = self.ledger.commit(update.id)
        self._on_confirmed(update, response, committed)
        self._settle(key, update)

    def _handle_failure(self, key: str, update: OptimisticUpdate, error: Exception):
        attempt = self._attempts.get(key, 0) + 1
        self._attempts[key] = attempt

        if self._closed or update.id not in self.ledger:
            # Disposed or superseded while the write was in flight
            self._attempts.pop(key, None)
            return

        if attempt < self.max_attempts:
            delay = attempt * self.retry_base_delay
            logger.warning(f"⚠️ Write {key} failed (attempt {attempt}/{self.max_attempts}), "
                           f"retrying in {delay:.1f}s: {error}")
            self._schedule(key, update.with_retry(attempt), delay)
            return

        self._attempts.pop(key, None)
        logger.error(f"❌ Write {key} failed after {attempt} attempts: {error}")
        self.ledger.revert(update.id)
        self._on_failed(update, error)
        self._settle(key, update)

    def _settle(self, key: str, update: OptimisticUpdate):
        if self._on_settled and key not in self.active_timers:
            self._on_settled(update)
