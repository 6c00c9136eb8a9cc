# services/offline_queue.py

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, List, Optional

from core.models import OptimisticUpdate

logger = logging.getLogger(__name__)

Executor = Callable[[OptimisticUpdate], Awaitable[Any]]

@dataclass
class DrainResult:
    replayed: int = 0
    requeued: int = 0
    dropped: int = 0

class OfflineQueue:
    """
    Mutations deferred while the client had no connectivity.

    Replayed in submission order once connectivity returns. Replay skips the
    debounce: the optimistic effect was applied when the mutation was
    issued, and the retry budget of the debounced path is not spent here.
    The executor is expected to serialize with other writes for the same
    target.
    """

    def __init__(self, executor: Executor, is_online: Callable[[], bool],
                 on_replayed: Optional[Callable[[OptimisticUpdate, Any], None]] = None,
                 on_dropped: Optional[Callable[[OptimisticUpdate, Exception], None]] = None):
        self._executor = executor
        self._is_online = is_online
        self._on_replayed = on_replayed
        self._on_dropped = on_dropped
        self._items: Deque[OptimisticUpdate] = deque()
        self._draining = False
        self._closed = False

    def enqueue(self, update: OptimisticUpdate):
        self._items.append(update)
        logger.info(f"📥 Queued {update.type.value} ({update.target_key}) while offline, depth {len(self._items)}")

    async def drain(self) -> DrainResult:
        """Replay every queued mutation once"""
        result = DrainResult()
        if self._draining or not self._items:
            return result

        self._draining = True
        # Re-queued items land behind this batch and wait for the next drain
        batch_size = len(self._items)
        logger.info(f"🔄 Replaying {batch_size} offline mutation(s)")

        try:
            for _ in range(batch_size):
                if self._closed or not self._items:
                    break
                update = self._items.popleft()
                try:
                    response = await self._executor(update)
                except Exception as e:
                    if not self._is_online():
                        self._items.append(update)
                        result.requeued += 1
                        logger.warning(f"⚠️ Still offline, {update.target_key} re-queued: {e}")
                    else:
                        result.dropped += 1
                        logger.error(f"❌ Offline replay of {update.target_key} failed, dropping: {e}")
                        if self._on_dropped:
                            self._on_dropped(update, e)
                else:
                    result.replayed += 1
                    if self._on_replayed:
                        self._on_replayed(update, response)
        finally:
            self._draining = False

        logger.info(f"✅ Offline replay done: {result.replayed} replayed, "
                    f"{result.requeued} re-queued, {result.dropped} dropped")
        return result

    def discard(self, update_id: str) -> bool:
        """Withdraw a mutation that has not been replayed yet"""
        for update in self._items:
            if update.id == update_id:
                self._items.remove(update)
                logger.info(f"🗑️ Withdrew queued {update.type.value} ({update.target_key})")
                return True
        return False

    def items(self) -> List[OptimisticUpdate]:
        return list(self._items)

    def clear(self):
        self._items.clear()

    def close(self):
        """Stop replaying and forget pending mutations"""
        self._closed = True
        self._items.clear()

    @property
    def is_draining(self) -> bool:
        return self._draining

    def __len__(self) -> int:
        return len(self._items)
