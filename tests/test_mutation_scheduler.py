import asyncio
from datetime import date

import pytest

from core.models import OptimisticUpdate, ToggleEntry
from core.state import SyncState
from services.ledger import OptimisticLedger
from services.mutation_scheduler import MutationScheduler
from services.offline_queue import OfflineQueue

DAY = date(2025, 7, 10)

class Harness:
    """Scheduler wired to a scripted executor"""

    def __init__(self, failures: int = 0, online: bool = True):
        self.failures = failures
        self.online = online
        self.calls = []
        self.confirmed = []
        self.failed = []
        self.settled = []
        self.gate = None
        self.in_flight = 0
        self.max_in_flight = 0

        self.state = SyncState()
        self.ledger = OptimisticLedger(self.state, "u1")
        self.queue = OfflineQueue(self.execute, is_online=lambda: self.online)
        self.scheduler = MutationScheduler(
            self.execute,
            self.ledger,
            self.queue,
            is_online=lambda: self.online,
            on_confirmed=lambda update, response, committed: self.confirmed.append((update, committed)),
            on_failed=lambda update, error: self.failed.append(update),
            on_settled=lambda update: self.settled.append(update),
            debounce_delay=0.01,
            retry_base_delay=0.01,
            max_attempts=3
        )

    async def execute(self, update):
        self.calls.append(update)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.failures:
                self.failures -= 1
                raise ConnectionError("network down")
            return "ok"
        finally:
            self.in_flight -= 1

def toggle(completed: bool, habit_id: str = "h1") -> OptimisticUpdate:
    return OptimisticUpdate.create(ToggleEntry(habit_id=habit_id, date=DAY, completed=completed))

@pytest.mark.asyncio
async def test_rapid_toggles_coalesce_into_one_write():
    harness = Harness()

    for i in range(5):
        harness.scheduler.submit(toggle(completed=i % 2 == 0))
    await harness.scheduler.join()

    assert len(harness.calls) == 1
    assert harness.calls[0].mutation.completed is True
    assert len(harness.ledger) == 0
    assert len(harness.settled) == 1

@pytest.mark.asyncio
async def test_different_targets_are_written_separately():
    harness = Harness()

    harness.scheduler.submit(toggle(True, "h1"))
    harness.scheduler.submit(toggle(True, "h2"))
    await harness.scheduler.join()

    assert sorted(u.mutation.habit_id for u in harness.calls) == ["h1", "h2"]

@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    harness = Harness(failures=1)
    update = toggle(True)

    harness.scheduler.submit(update)
    await harness.scheduler.join()

    assert len(harness.calls) == 2
    assert harness.calls[1].retry_count == 1
    assert harness.failed == []
    assert len(harness.confirmed) == 1
    assert harness.scheduler.attempts(update.target_key) == 0

@pytest.mark.asyncio
async def test_retry_is_bounded():
    harness = Harness(failures=100)

    harness.scheduler.submit(toggle(True))
    await harness.scheduler.join()

    assert len(harness.calls) == 3
    assert len(harness.failed) == 1
    assert harness.confirmed == []
    # Reverted: the placeholder is gone
    assert harness.state.entries == []
    assert len(harness.ledger) == 0

@pytest.mark.asyncio
async def test_at_most_one_write_in_flight_per_key():
    harness = Harness()
    harness.gate = asyncio.Event()

    harness.scheduler.submit(toggle(True))
    await asyncio.sleep(0.05)
    assert len(harness.calls) == 1

    # Newer toggle while the first write is still pending
    harness.scheduler.submit(toggle(False))
    await asyncio.sleep(0.05)
    assert len(harness.calls) == 1

    harness.gate.set()
    await harness.scheduler.join()

    assert len(harness.calls) == 2
    assert harness.max_in_flight == 1
    assert harness.calls[1].mutation.completed is False
    # The first confirmation arrived after it had been superseded
    assert [committed for _, committed in harness.confirmed] == [False, True]
    assert harness.state.find_entry("h1", DAY).completed is False
    # Write locks do not outlive their key
    assert harness.scheduler._locks == {}

@pytest.mark.asyncio
async def test_replay_waits_for_in_flight_write():
    harness = Harness()
    harness.gate = asyncio.Event()

    harness.scheduler.submit(toggle(True))
    await asyncio.sleep(0.05)
    replaying = asyncio.create_task(harness.scheduler.replay(toggle(False)))
    await asyncio.sleep(0.02)
    assert len(harness.calls) == 1

    harness.gate.set()
    assert await replaying == "ok"
    await harness.scheduler.join()

    assert len(harness.calls) == 2
    assert harness.max_in_flight == 1
    assert harness.scheduler._locks == {}

@pytest.mark.asyncio
async def test_offline_submission_is_queued():
    harness = Harness(online=False)

    harness.scheduler.submit(toggle(True))
    await harness.scheduler.join()

    assert harness.calls == []
    assert len(harness.queue) == 1
    assert len(harness.ledger) == 1
    assert harness.state.find_entry("h1", DAY).completed is True

@pytest.mark.asyncio
async def test_cancel_all_prevents_writes():
    harness = Harness()

    harness.scheduler.submit(toggle(True))
    harness.scheduler.cancel_all()
    await harness.scheduler.join()

    assert harness.calls == []
    assert harness.scheduler.active_timers == {}
    with pytest.raises(RuntimeError):
        harness.scheduler.submit(toggle(False))
