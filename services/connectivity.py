# services/connectivity.py

import asyncio
import logging
from typing import Callable, List, Optional

from config import ConnectivityConfig
from database.backend import HabitBackend

logger = logging.getLogger(__name__)

class ConnectivityMonitor:
    """
    Tracks whether the backend is reachable.

    Probes ``backend.ping()`` on a fixed interval; listeners are called only
    when the state flips. External signals can be forwarded with
    ``set_online``.
    """

    def __init__(self, backend: HabitBackend, settings: Optional[ConnectivityConfig] = None,
                 online: bool = True):
        self.backend = backend
        self.settings = settings or ConnectivityConfig()
        self.is_online = online
        self._online_listeners: List[Callable[[], None]] = []
        self._offline_listeners: List[Callable[[], None]] = []
        self._task: Optional[asyncio.Task] = None

    def add_listener(self, on_online: Callable[[], None], on_offline: Callable[[], None]):
        self._online_listeners.append(on_online)
        self._offline_listeners.append(on_offline)

    def set_online(self, online: bool):
        if online == self.is_online:
            return
        self.is_online = online
        logger.info("🌐 Connectivity restored" if online else "📴 Connectivity lost")

        for listener in (self._online_listeners if online else self._offline_listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"❌ Connectivity listener failed: {e}")

    async def probe(self) -> bool:
        try:
            reachable = await asyncio.wait_for(self.backend.ping(), timeout=self.settings.probe_timeout)
        except asyncio.TimeoutError:
            reachable = False
        except Exception as e:
            logger.debug(f"Probe failed: {e}")
            reachable = False

        self.set_online(bool(reachable))
        return self.is_online

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info(f"📶 Connectivity probe every {self.settings.probe_interval}s")

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self):
        while True:
            await self.probe()
            await asyncio.sleep(self.settings.probe_interval)
