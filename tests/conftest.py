import asyncio
import itertools
from collections import Counter
from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from config import SyncSettings
from database.backend import (
    BackendConnectionError, BackendResponseError, ChangeEvent, ChangeType, HabitBackend, Subscription
)

USER_ID = "user-1"
TODAY = date(2025, 7, 10)

def habit_row(habit_id: str = "h1", name: str = "No smoking", created_at: str = "2025-07-01T08:00:00Z",
              is_active: bool = True, user_id: str = USER_ID, **overrides) -> Dict[str, Any]:
    row = {
        "id": habit_id,
        "user_id": user_id,
        "name": name,
        "category": "smoking",
        "color": "#ef4444",
        "icon": "🚭",
        "is_custom": False,
        "description": None,
        "created_at": created_at,
        "updated_at": created_at,
        "start_date": created_at,
        "is_active": is_active
    }
    row.update(overrides)
    return row

def entry_row(entry_id: str = "e1", habit_id: str = "h1", day: str = "2025-07-10", completed: bool = True,
              user_id: str = USER_ID, **overrides) -> Dict[str, Any]:
    row = {
        "id": entry_id,
        "habit_id": habit_id,
        "user_id": user_id,
        "date": day,
        "completed": completed,
        "timestamp": f"{day}T12:00:00+00:00",
        "notes": None
    }
    row.update(overrides)
    return row

class FakeSubscription(Subscription):
    def __init__(self, backend: "FakeBackend", table: str, callback):
        self.backend = backend
        self.table = table
        self.callback = callback
        self.active = True

    async def unsubscribe(self):
        self.active = False
        self.backend.subscriptions.remove(self)

class FakeBackend(HabitBackend):
    """In-memory backend with call counters and failure injection"""

    def __init__(self, habits: Optional[List[Dict[str, Any]]] = None,
                 entries: Optional[List[Dict[str, Any]]] = None):
        self.habits: Dict[str, Dict[str, Any]] = {row["id"]: dict(row) for row in habits or []}
        self.entries: Dict[str, Dict[str, Any]] = {row["id"]: dict(row) for row in entries or []}
        self.calls: Counter = Counter()
        self.writes: List[tuple] = []
        self.subscriptions: List[FakeSubscription] = []
        self._ids = itertools.count(100)

        # name -> remaining failures (-1: always)
        self.failures: Dict[str, int] = {}
        self.failure_error: Exception = BackendConnectionError("network down")
        self.subscribe_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.max_in_flight = 0
        self.reachable = True

    def fail(self, name: str, times: int = -1, error: Optional[Exception] = None):
        self.failures[name] = times
        if error is not None:
            self.failure_error = error

    async def _call(self, name: str):
        self.calls[name] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)

            remaining = self.failures.get(name, 0)
            if remaining:
                if remaining > 0:
                    self.failures[name] = remaining - 1
                raise self.failure_error
        finally:
            self.in_flight -= 1

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # ===== READS =====

    async def fetch_habits(self, user_id):
        await self._call("fetch_habits")
        rows = [dict(r) for r in self.habits.values() if r["user_id"] == user_id and r["is_active"]]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    async def fetch_entries(self, user_id):
        await self._call("fetch_entries")
        rows = [dict(r) for r in self.entries.values() if r["user_id"] == user_id]
        return sorted(rows, key=lambda r: r["date"], reverse=True)

    # ===== WRITES =====

    async def insert_habit(self, payload):
        await self._call("insert_habit")
        row = habit_row(self._new_id("habit"), created_at="2025-07-10T09:00:00Z", user_id=payload["user_id"])
        row.update(payload)
        self.habits[row["id"]] = row
        self.writes.append(("insert_habit", dict(row)))
        return dict(row)

    async def update_habit(self, habit_id, user_id, changes):
        await self._call("update_habit")
        row = self.habits.get(habit_id)
        if row is None or row["user_id"] != user_id:
            raise BackendResponseError(404, "habit not found")
        row.update(changes)
        self.writes.append(("update_habit", dict(row)))
        return dict(row)

    async def insert_entry(self, payload):
        await self._call("insert_entry")
        row = dict(payload, id=self._new_id("entry"))
        self.entries[row["id"]] = row
        self.writes.append(("insert_entry", dict(row)))
        return dict(row)

    async def update_entry(self, entry_id, user_id, changes):
        await self._call("update_entry")
        row = self.entries.get(entry_id)
        if row is None or row["user_id"] != user_id:
            raise BackendResponseError(404, "entry not found")
        row.update(changes)
        self.writes.append(("update_entry", dict(row)))
        return dict(row)

    # ===== LIVE =====

    async def subscribe(self, table, user_id, callback):
        self.calls["subscribe"] += 1
        if self.subscribe_error is not None:
            raise self.subscribe_error
        subscription = FakeSubscription(self, table, callback)
        self.subscriptions.append(subscription)
        return subscription

    def emit(self, table: str, change: ChangeType, new: Optional[Dict[str, Any]] = None,
             old: Optional[Dict[str, Any]] = None):
        event = ChangeEvent(table=table, type=change, new=new or {}, old=old or {})
        for subscription in list(self.subscriptions):
            if subscription.table == table:
                subscription.callback(event)

    async def ping(self):
        self.calls["ping"] += 1
        return self.reachable

    @property
    def network_writes(self) -> int:
        return sum(self.calls[name] for name in ("insert_habit", "update_habit", "insert_entry", "update_entry"))

@pytest.fixture
def fast_settings() -> SyncSettings:
    return SyncSettings(
        debounce_delay=0.01,
        max_retry_attempts=3,
        retry_base_delay=0.01,
        cache_ttl_seconds=300.0,
        error_display_seconds=5.0
    )

@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(
        habits=[habit_row("h1"), habit_row("h2", name="No soda", created_at="2025-07-02T08:00:00Z",
                                            category="junk-food")],
        entries=[]
    )

@pytest.fixture
def clock():
    class FakeClock:
        def __init__(self):
            self.now = 1000.0

        def __call__(self):
            return self.now

        def advance(self, seconds: float):
            self.now += seconds

    return FakeClock()
