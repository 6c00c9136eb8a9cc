# services/live_listener.py

import logging
from typing import Callable, List, Optional

from core.state import SyncState
from core.transform import TransformError, entry_from_row, habit_from_row
from database.backend import (
    ENTRIES_TABLE, HABITS_TABLE, ChangeEvent, ChangeType, HabitBackend, Subscription
)
from services.cache import ENTRIES_ENTITY, HABITS_ENTITY, SyncCache, cache_key

logger = logging.getLogger(__name__)

class LiveChangeListener:
    """
    Merges server-pushed row changes into local state.

    Subscriptions are owned by the listener: acquired in ``start`` and
    released in ``stop``. Events for records that are not held locally are
    ignored.
    """

    def __init__(self, backend: HabitBackend, state: SyncState, cache: SyncCache, user_id: str,
                 on_change: Optional[Callable[[ChangeEvent], None]] = None):
        self.backend = backend
        self.state = state
        self.cache = cache
        self.user_id = user_id
        self._on_change = on_change
        self._subscriptions: List[Subscription] = []
        self.events_applied = 0

    @property
    def is_active(self) -> bool:
        return bool(self._subscriptions)

    async def start(self):
        if self._subscriptions:
            return

        try:
            self._subscriptions.append(
                await self.backend.subscribe(HABITS_TABLE, self.user_id, self.handle_habit_change)
            )
            self._subscriptions.append(
                await self.backend.subscribe(ENTRIES_TABLE, self.user_id, self.handle_entry_change)
            )
        except Exception:
            await self.stop()
            raise

        logger.info(f"📡 Live updates subscribed for user {self.user_id}")

    async def stop(self):
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                await subscription.unsubscribe()
            except Exception as e:
                logger.error(f"❌ Failed to unsubscribe: {e}")
        if subscriptions:
            logger.info(f"📴 Live updates unsubscribed for user {self.user_id}")

    # ===== HANDLERS =====

    def handle_habit_change(self, event: ChangeEvent):
        logger.debug(f"Habits live update: {event.type.value} {event.record_id}")
        try:
            if event.type == ChangeType.INSERT:
                habit = habit_from_row(event.new)
                if habit.is_active:
                    self.state.upsert_habit(habit)
            elif event.type == ChangeType.UPDATE:
                habit = habit_from_row(event.new)
                if habit.is_active:
                    self.state.update_habit(habit)
                else:
                    # Soft delete
                    self.state.remove_habit(habit.id)
            elif event.type == ChangeType.DELETE:
                self._remove(self.state.remove_habit, event)
            self.events_applied += 1
        except TransformError as e:
            logger.error(f"❌ Ignoring malformed habit event: {e}")
        finally:
            self.cache.invalidate(cache_key(HABITS_ENTITY, self.user_id))
        self._notify(event)

    def handle_entry_change(self, event: ChangeEvent):
        logger.debug(f"Entries live update: {event.type.value} {event.record_id}")
        try:
            if event.type == ChangeType.INSERT:
                # Replaces the optimistic placeholder for the same habit and day
                self.state.upsert_entry(entry_from_row(event.new))
            elif event.type == ChangeType.UPDATE:
                self.state.update_entry(entry_from_row(event.new))
            elif event.type == ChangeType.DELETE:
                self._remove(self.state.remove_entry, event)
            self.events_applied += 1
        except TransformError as e:
            logger.error(f"❌ Ignoring malformed entry event: {e}")
        finally:
            self.cache.invalidate(cache_key(ENTRIES_ENTITY, self.user_id))
        self._notify(event)

    def _notify(self, event: ChangeEvent):
        if self._on_change:
            self._on_change(event)

    @staticmethod
    def _remove(remover, event: ChangeEvent) -> Optional[object]:
        record_id = event.old.get("id") or event.new.get("id")
        if record_id is None:
            return None
        return remover(record_id)
