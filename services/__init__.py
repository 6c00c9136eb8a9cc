# services/__init__.py

"""
Restrain Yourself v1.0 services

Synchronization engine for one signed-in user plus the background services
around it: connectivity probing and the daily reminder job.
"""

import logging
from typing import Iterable, List, Optional

from config import AppConfig, config
from database.backend import HabitBackend

from .connectivity import ConnectivityMonitor
from .reminders import DailyReminderJob, NotificationSender, ReminderBatchResult
from .sync_engine import HabitSyncEngine

logger = logging.getLogger(__name__)

class ServiceManager:
    """
    Owns the services of a running client

    Provides:
    - Start-up in dependency order (backend, engine, connectivity, reminders)
    - One sync session at a time; a new session closes the previous one
    - Shutdown in reverse order
    """

    def __init__(self, app_config: Optional[AppConfig] = None, backend: Optional[HabitBackend] = None,
                 sender: Optional[NotificationSender] = None):
        self.config = app_config or config
        self.backend = backend
        self.sender = sender
        self.engine: Optional[HabitSyncEngine] = None
        self.connectivity: Optional[ConnectivityMonitor] = None
        self.reminders: Optional[DailyReminderJob] = None
        self.initialized = False

    def _create_backend(self) -> HabitBackend:
        from database.supabase import SupabaseBackend
        return SupabaseBackend(self.config.require_backend(), self.config.realtime)

    async def _session_users(self) -> Iterable[str]:
        if self.engine is not None and self.engine.user_id:
            return [self.engine.user_id]
        return []

    async def start_session(self, user_id: Optional[str]) -> HabitSyncEngine:
        """Start syncing for ``user_id`` (None: signed out)"""
        if self.engine is not None:
            await self.close_session()

        logger.info("🔧 Starting Restrain Yourself services...")
        if self.backend is None:
            self.backend = self._create_backend()

        self.engine = HabitSyncEngine(
            self.backend,
            user_id,
            settings=self.config.sync,
            timezone=self.config.timezone
        )
        await self.engine.start()

        self.connectivity = ConnectivityMonitor(self.backend, self.config.connectivity)
        self.connectivity.add_listener(self.engine.on_online, self.engine.on_offline)
        self.connectivity.start()

        if self.config.reminders.enabled and self.sender is not None and self.reminders is None:
            self.reminders = DailyReminderJob(self.backend, self.sender, self._session_users,
                                              self.config.reminders)
            self.reminders.start()

        self.initialized = True
        logger.info("✅ All services started")
        return self.engine

    async def close_session(self):
        if self.connectivity is not None:
            await self.connectivity.stop()
            self.connectivity = None
        if self.engine is not None:
            await self.engine.stop()
            self.engine = None

    async def close(self):
        """Stop everything in reverse start-up order"""
        logger.info("🛑 Closing services...")
        try:
            if self.reminders is not None:
                self.reminders.stop()
                self.reminders = None

            await self.close_session()

            if self.backend is not None:
                await self.backend.close()
        except Exception as e:
            logger.error(f"❌ Error closing services: {e}")
            raise
        finally:
            self.initialized = False
        logger.info("✅ All services closed")

    def health_check(self) -> dict:
        """Status of every running service"""
        health = {
            "status": "healthy",
            "services": {}
        }

        if self.engine is not None:
            engine = self.engine
            health["services"]["sync"] = {
                "status": "warning" if engine.errors else "healthy",
                "user_id": engine.user_id,
                "habits": len(engine.habits),
                "entries": len(engine.entries),
                "pending_updates": engine.pending_count,
                "offline_queue": engine.offline_queue_depth,
                "live": bool(engine.live and engine.live.is_active),
                "cache": engine.cache.stats.to_dict(),
                "errors": dict(engine.errors)
            }

        if self.connectivity is not None:
            health["services"]["connectivity"] = {
                "status": "healthy" if self.connectivity.is_online else "warning",
                "online": self.connectivity.is_online
            }

        if self.reminders is not None:
            reminder_status = self.reminders.status()
            health["services"]["reminders"] = {
                "status": "healthy" if reminder_status["is_running"] else "warning",
                **reminder_status
            }

        statuses: List[str] = [s.get("status", "unknown") for s in health["services"].values()]
        if "error" in statuses:
            health["status"] = "error"
        elif "warning" in statuses:
            health["status"] = "warning"

        return health

# Global service manager
_service_manager: Optional[ServiceManager] = None

def get_service_manager() -> ServiceManager:
    global _service_manager
    if _service_manager is None:
        _service_manager = ServiceManager()
    return _service_manager

async def close_all_services():
    global _service_manager
    if _service_manager:
        await _service_manager.close()
        _service_manager = None

__all__ = [
    'ConnectivityMonitor',
    'DailyReminderJob',
    'HabitSyncEngine',
    'NotificationSender',
    'ReminderBatchResult',
    'ServiceManager',
    'get_service_manager',
    'close_all_services'
]
