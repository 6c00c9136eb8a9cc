#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Restrain Yourself v1.0 - Real-time Habit Sync Engine
Optimistic updates, debounced writes, offline queue and live changes

Version: 1.0.0
Date: 2025-07-10
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Set, Union

from config import SyncSettings, config
from core.models import (
    AddHabit, Habit, HabitEntry, HabitStats, NewHabit, OptimisticUpdate,
    RemoveHabit, TodayStats, ToggleEntry, new_temp_id
)
from core.state import SyncState
from core.stats import calculate_habit_stats, calculate_today_stats
from core.transform import (
    entry_from_row, entry_insert_payload, entry_update_payload,
    habit_from_row, habit_insert_payload, habit_soft_delete_payload
)
from database.backend import HabitBackend
from services.cache import ENTRIES_ENTITY, HABITS_ENTITY, SyncCache, cache_key
from services.ledger import OptimisticLedger
from services.live_listener import LiveChangeListener
from services.mutation_scheduler import MutationScheduler
from services.offline_queue import OfflineQueue
from utils.datetime_utils import today, utcnow

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "User not authenticated"

FAILURE_MESSAGES = {
    ToggleEntry: "Failed to save changes",
    AddHabit: "Failed to add habit",
    RemoveHabit: "Failed to remove habit"
}

class HabitSyncEngine:
    """
    Client-side source of truth for one user's habits and entries.

    Possibilities:
    - Optimistic toggles, debounced per habit and day, retried with backoff
    - Direct optimistic habit creation and soft deletion
    - Offline queue replayed when connectivity returns
    - Live change subscription merged into local state
    - Read cache with a fixed time-to-live
    - Per-target loading and error maps for the UI

    All state changes happen on the event loop thread; no read-decide-write
    sequence awaits in between.
    """

    def __init__(self, backend: HabitBackend, user_id: Optional[str],
                 settings: Optional[SyncSettings] = None,
                 timezone: Optional[str] = None,
                 clock: Callable[[], float] = time.monotonic,
                 today_provider: Optional[Callable[[], date]] = None,
                 online: bool = True):
        self.backend = backend
        self.user_id = user_id
        self.settings = settings or config.sync
        self._tz_name = timezone or config.timezone
        self._today = today_provider or (lambda: today(self._tz_name))

        # Core state
        self.state = SyncState()
        self.cache = SyncCache(ttl_seconds=self.settings.cache_ttl_seconds, clock=clock)
        self.ledger = OptimisticLedger(self.state, user_id or "")
        self.offline_queue = OfflineQueue(
            self._replay,
            is_online=lambda: self.is_online,
            on_replayed=self._handle_replayed,
            on_dropped=self._handle_dropped
        )
        self.scheduler = MutationScheduler(
            self._execute,
            self.ledger,
            self.offline_queue,
            is_online=lambda: self.is_online,
            on_confirmed=self._handle_confirmed,
            on_failed=self._handle_failed,
            on_settled=self._handle_settled,
            debounce_delay=self.settings.debounce_delay,
            retry_base_delay=self.settings.retry_base_delay,
            max_attempts=self.settings.max_retry_attempts
        )
        self.live = LiveChangeListener(
            backend, self.state, self.cache, user_id,
            on_change=lambda event: self.ledger.reapply()
        ) if user_id else None

        self.selected_date: date = self._today()
        self.current_month: date = self.selected_date.replace(day=1)

        # UI-facing status
        self.loading = False
        self.loading_states: Dict[str, bool] = {}
        self.errors: Dict[str, str] = {}
        self.is_online = online

        self._error_timers: Dict[str, asyncio.TimerHandle] = {}
        self._background: Set[asyncio.Task] = set()
        # Placeholder ids removed while their creation was already in flight
        self._abandoned_adds: Set[str] = set()
        self._started = False
        self._closed = False

    # ===== EXPOSED STATE =====

    @property
    def habits(self) -> List[Habit]:
        return list(self.state.habits)

    @property
    def entries(self) -> List[HabitEntry]:
        return list(self.state.entries)

    @property
    def optimistic_updates(self) -> List[OptimisticUpdate]:
        return self.ledger.updates()

    @property
    def pending_count(self) -> int:
        return len(self.ledger)

    @property
    def offline_queue_depth(self) -> int:
        return len(self.offline_queue)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    # ===== SESSION LIFECYCLE =====

    async def start(self):
        """Initial load and live subscriptions for the signed-in user"""
        if self._started:
            return
        self._started = True

        if not self.user_id:
            self.state.clear()
            return

        self.loading = True
        try:
            await asyncio.gather(self.load_habits(), self.load_entries())
        finally:
            self.loading = False

        try:
            await self.live.start()
        except Exception as e:
            logger.error(f"❌ Live updates unavailable: {e}")
            self.set_error("live", "Live updates unavailable")

        logger.info(f"✅ Sync session started for user {self.user_id}: "
                    f"{len(self.state.habits)} habits, {len(self.state.entries)} entries")

    async def stop(self):
        """Tear down: no writes are issued after this returns"""
        if self._closed:
            return
        self._closed = True

        self.scheduler.cancel_all()
        self.offline_queue.close()
        if self.live:
            await self.live.stop()

        for handle in self._error_timers.values():
            handle.cancel()
        self._error_timers.clear()

        self.ledger.clear()
        self.state.clear()
        logger.info(f"🛑 Sync session closed for user {self.user_id}")

    @asynccontextmanager
    async def session(self):
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    async def wait_idle(self):
        """Wait for pending writes, retries, replays and reloads to finish"""
        while True:
            await self.scheduler.join()
            if not self._background:
                break
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ===== LOADING =====

    async def load_habits(self, use_cache: bool = True):
        if not self.user_id:
            return

        key = cache_key(HABITS_ENTITY, self.user_id)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                self.state.set_habits(cached)
                self.ledger.reapply()
                return

        try:
            rows = await self.backend.fetch_habits(self.user_id)
            habits = [habit_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"❌ Error loading habits: {e}")
            self.set_error("habits", "Failed to load habits")
            return

        self.state.set_habits(habits)
        self.cache.set(key, habits)
        self.ledger.reapply()
        logger.debug(f"📂 Loaded {len(habits)} habits")

    async def load_entries(self, use_cache: bool = True):
        if not self.user_id:
            return

        key = cache_key(ENTRIES_ENTITY, self.user_id)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                self.state.set_entries(cached)
                self.ledger.reapply()
                return

        try:
            rows = await self.backend.fetch_entries(self.user_id)
            entries = [entry_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"❌ Error loading entries: {e}")
            self.set_error("entries", "Failed to load entries")
            return

        self.state.set_entries(entries)
        self.cache.set(key, entries)
        self.ledger.reapply()
        logger.debug(f"📂 Loaded {len(entries)} entries")

    async def refresh_data(self):
        """Drop the cache and reload both collections from the backend"""
        self.cache.clear()
        self.loading = True
        try:
            await asyncio.gather(self.load_habits(use_cache=False), self.load_entries(use_cache=False))
        finally:
            self.loading = False

    # ===== MUTATIONS =====

    def toggle_entry(self, habit_id: str, completed: bool, notes: Optional[str] = None):
        """Mark a habit for the selected date; the write is debounced"""
        if not self.user_id:
            self.set_error("toggle", NOT_AUTHENTICATED)
            return
        if self._closed:
            logger.warning(f"⚠️ Ignoring toggle of {habit_id} after session end")
            return

        mutation = ToggleEntry(habit_id=habit_id, date=self.selected_date, completed=completed, notes=notes)
        self.set_loading(mutation.status_key, True)
        self.clear_error(mutation.status_key)

        self.scheduler.submit(OptimisticUpdate.create(mutation))

    async def add_habit(self, new_habit: NewHabit) -> Optional[Habit]:
        """Create a habit. Network errors are re-raised after local rollback."""
        if not self.user_id:
            self.set_error("add_habit", NOT_AUTHENTICATED)
            return None
        if self._closed:
            logger.warning("⚠️ Ignoring new habit after session end")
            return None

        mutation = AddHabit(habit=new_habit, temp_id=new_temp_id("habit"))
        key = mutation.status_key
        self.set_loading(key, True)
        self.clear_error(key)

        update = OptimisticUpdate.create(mutation)
        self.ledger.apply(update)

        if not self.is_online:
            self.offline_queue.enqueue(update)
            self.set_loading(key, False)
            return self.state.find_habit(mutation.temp_id)

        try:
            habit = await self._execute(update)
        except Exception as e:
            logger.error(f"❌ Error adding habit: {e}")
            self.ledger.revert(update.id)
            if mutation.temp_id in self._abandoned_adds:
                self._abandoned_adds.discard(mutation.temp_id)
            else:
                self.set_error(key, FAILURE_MESSAGES[AddHabit])
            raise
        else:
            self._handle_confirmed(update, habit, self.ledger.commit(update.id))
            return habit
        finally:
            self.set_loading(key, False)

    async def remove_habit(self, habit_id: str):
        """Soft-delete a habit. Network errors are re-raised after local rollback."""
        if not self.user_id:
            self.set_error("remove_habit", NOT_AUTHENTICATED)
            return
        if self._closed:
            logger.warning(f"⚠️ Ignoring removal of {habit_id} after session end")
            return

        mutation = RemoveHabit(habit_id=habit_id)
        key = mutation.status_key
        self.set_loading(key, True)
        self.clear_error(key)

        habit = self.state.find_habit(habit_id)
        if habit is None:
            self.set_error(key, "Habit not found")
            self.set_loading(key, False)
            return

        if habit.is_temporary:
            # The server does not know this id yet
            self._cancel_pending_add(habit_id)
            self.set_loading(key, False)
            return

        update = OptimisticUpdate.create(mutation)
        self.ledger.apply(update)

        if not self.is_online:
            self.offline_queue.enqueue(update)
            self.set_loading(key, False)
            return

        try:
            await self._execute(update)
        except Exception as e:
            logger.error(f"❌ Error removing habit: {e}")
            self.ledger.revert(update.id)
            self.set_error(key, FAILURE_MESSAGES[RemoveHabit])
            raise
        else:
            self._handle_confirmed(update, None, self.ledger.commit(update.id))
        finally:
            self.set_loading(key, False)

    # ===== QUERIES =====

    def select_date(self, day: date):
        self.selected_date = day

    def set_current_month(self, day: date):
        self.current_month = day.replace(day=1)

    def get_habit_entry(self, habit_id: str, on: Optional[date] = None) -> Optional[HabitEntry]:
        return self.state.find_entry(habit_id, on or self.selected_date)

    def get_today_stats(self) -> TodayStats:
        return calculate_today_stats(self.state.entries, self.state.habits, self._today())

    def get_habit_stats(self, habit_id: str) -> HabitStats:
        return calculate_habit_stats(self.state.entries, habit_id, self._today())

    # ===== CONNECTIVITY =====

    def on_online(self):
        if self.is_online:
            return
        self.is_online = True
        logger.info(f"🌐 Back online, {len(self.offline_queue)} queued mutation(s)")
        if not self._closed:
            self._spawn(self.offline_queue.drain())

    def on_offline(self):
        if not self.is_online:
            return
        self.is_online = False
        logger.warning("📴 Connectivity lost, mutations will be queued")

    # ===== LOADING / ERROR MAPS =====

    def set_loading(self, key: str, loading: bool):
        self.loading_states[key] = loading

    def set_error(self, key: str, message: str):
        if self._closed:
            return
        self.errors[key] = message

        previous = self._error_timers.pop(key, None)
        if previous is not None:
            previous.cancel()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._error_timers[key] = loop.call_later(
            self.settings.error_display_seconds, self._expire_error, key
        )

    def clear_error(self, key: str):
        self.errors.pop(key, None)
        handle = self._error_timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _expire_error(self, key: str):
        self._error_timers.pop(key, None)
        self.errors.pop(key, None)

    # ===== NETWORK =====

    async def _execute(self, update: OptimisticUpdate) -> Union[Habit, HabitEntry, None]:
        """Perform the backend write for one update"""
        mutation = update.mutation

        if isinstance(mutation, ToggleEntry):
            existing = self.state.find_entry(mutation.habit_id, mutation.date)
            now = utcnow()
            if existing is not None and not existing.is_temporary:
                row = await self.backend.update_entry(
                    existing.id, self.user_id, entry_update_payload(mutation, now)
                )
            else:
                row = await self.backend.insert_entry(entry_insert_payload(self.user_id, mutation, now))
            return entry_from_row(row)

        if isinstance(mutation, AddHabit):
            row = await self.backend.insert_habit(habit_insert_payload(self.user_id, mutation.habit))
            return habit_from_row(row)

        if isinstance(mutation, RemoveHabit):
            await self.backend.update_habit(mutation.habit_id, self.user_id, habit_soft_delete_payload())
            return None

        raise TypeError(f"Unknown mutation {mutation!r}")

    async def _replay(self, update: OptimisticUpdate) -> Union[Habit, HabitEntry, None]:
        return await self.scheduler.replay(update)

    # ===== CALLBACKS =====

    def _handle_confirmed(self, update: OptimisticUpdate, response: Any, committed: bool):
        mutation = update.mutation

        if isinstance(mutation, ToggleEntry):
            self.cache.invalidate(cache_key(ENTRIES_ENTITY, self.user_id))
            if committed and response is not None:
                self.state.upsert_entry(response)
            elif response is not None:
                # Superseded: keep the newer optimistic values under the server id
                current = self.state.find_entry(mutation.habit_id, mutation.date)
                if current is not None and current.is_temporary:
                    self.state.put_entry(replace(current, id=response.id))
        else:
            self.cache.invalidate(cache_key(HABITS_ENTITY, self.user_id))
            if isinstance(mutation, AddHabit) and mutation.temp_id in self._abandoned_adds:
                self._abandoned_adds.discard(mutation.temp_id)
                if response is not None and not self._closed:
                    self._spawn(self._remove_created(response.id))
            elif committed and isinstance(mutation, AddHabit) and response is not None:
                self.state.replace_habit(mutation.temp_id, response)

        logger.info(f"✅ {update.type.value} confirmed ({update.target_key})")

    def _handle_failed(self, update: OptimisticUpdate, error: Exception):
        self.set_error(update.status_key, FAILURE_MESSAGES[type(update.mutation)])
        self._reload_for(update)

    def _handle_settled(self, update: OptimisticUpdate):
        self.set_loading(update.status_key, False)

    def _handle_replayed(self, update: OptimisticUpdate, response: Any):
        self._handle_confirmed(update, response, self.ledger.commit(update.id))

    def _handle_dropped(self, update: OptimisticUpdate, error: Exception):
        self.ledger.revert(update.id)
        mutation = update.mutation
        if isinstance(mutation, AddHabit) and mutation.temp_id in self._abandoned_adds:
            self._abandoned_adds.discard(mutation.temp_id)
            return
        self.set_error(update.status_key, FAILURE_MESSAGES[type(mutation)])
        self._reload_for(update)

    # ===== PLACEHOLDER REMOVAL =====

    def _cancel_pending_add(self, temp_id: str):
        """Drop a placeholder habit and withdraw or undo its creation"""
        record = self.ledger.pending_add(temp_id)
        if record is None:
            self.state.remove_habit(temp_id)
            return

        self.ledger.revert(record.update.id)
        if self.offline_queue.discard(record.update.id):
            logger.info(f"🗑️ Habit {temp_id} removed before it was created")
        else:
            # Creation already sent: soft-delete the confirmed record when it lands
            self._abandoned_adds.add(temp_id)
            logger.info(f"🗑️ Habit {temp_id} will be removed once its creation is confirmed")

    async def _remove_created(self, habit_id: str):
        """Soft-delete a habit whose placeholder the user already removed"""
        update = OptimisticUpdate.create(RemoveHabit(habit_id=habit_id))
        self.ledger.apply(update)

        if not self.is_online:
            self.offline_queue.enqueue(update)
            return

        try:
            await self.scheduler.replay(update)
        except Exception as e:
            logger.error(f"❌ Error removing habit {habit_id}: {e}")
            self._handle_dropped(update, e)
        else:
            self._handle_replayed(update, None)

    def _reload_for(self, update: OptimisticUpdate):
        """Non-cached reload of the collection a failed update touched"""
        if self._closed:
            return
        if isinstance(update.mutation, ToggleEntry):
            self._spawn(self.load_entries(use_cache=False))
        else:
            self._spawn(self.load_habits(use_cache=False))

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
