import asyncio

import pytest

from config import ConnectivityConfig
from conftest import FakeBackend
from services.connectivity import ConnectivityMonitor

class SlowBackend(FakeBackend):
    async def ping(self):
        await asyncio.sleep(1)
        return True

def make_monitor(backend, **kwargs):
    monitor = ConnectivityMonitor(backend, ConnectivityConfig(probe_interval=0.01, probe_timeout=0.05), **kwargs)
    events = []
    monitor.add_listener(lambda: events.append("online"), lambda: events.append("offline"))
    return monitor, events

def test_listeners_fire_on_transitions_only():
    monitor, events = make_monitor(FakeBackend())

    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(False)
    monitor.set_online(True)

    assert events == ["offline", "online"]

def test_failing_listener_does_not_block_others():
    monitor = ConnectivityMonitor(FakeBackend())
    events = []

    def broken():
        raise RuntimeError("boom")

    monitor.add_listener(broken, broken)
    monitor.add_listener(lambda: events.append("online"), lambda: events.append("offline"))

    monitor.set_online(False)

    assert events == ["offline"]

@pytest.mark.asyncio
async def test_probe_follows_backend_reachability():
    backend = FakeBackend()
    monitor, events = make_monitor(backend)

    backend.reachable = False
    assert await monitor.probe() is False

    backend.reachable = True
    assert await monitor.probe() is True

    assert events == ["offline", "online"]

@pytest.mark.asyncio
async def test_probe_timeout_counts_as_offline():
    monitor, events = make_monitor(SlowBackend())

    assert await monitor.probe() is False
    assert events == ["offline"]

@pytest.mark.asyncio
async def test_background_probing():
    backend = FakeBackend()
    monitor, events = make_monitor(backend)

    monitor.start()
    assert monitor.is_running
    backend.reachable = False
    await asyncio.sleep(0.05)
    await monitor.stop()

    assert backend.calls["ping"] >= 2
    assert events == ["offline"]
    assert not monitor.is_running
