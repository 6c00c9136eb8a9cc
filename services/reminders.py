"""
Daily reminder job
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import ReminderConfig
from core.transform import entry_from_row, habit_from_row
from database.backend import HabitBackend
from utils.datetime_utils import today

logger = logging.getLogger(__name__)

JOB_ID = 'daily_reminders'

UserIdsProvider = Callable[[], Awaitable[Iterable[str]]]

@dataclass
class DeliveryResult:
    """Outcome of one push to all of a user's devices"""
    sent_count: int = 0
    failed_count: int = 0

    @property
    def success(self) -> bool:
        return self.sent_count > 0

class NotificationSender(ABC):
    """Push transport (FCM, APNs, e-mail...)"""

    @abstractmethod
    async def send(self, user_id: str, title: str, body: str, data: Dict[str, str]) -> DeliveryResult:
        ...

@dataclass
class ReminderBatchResult:
    total_users: int = 0
    successful_users: int = 0
    total_notifications: int = 0
    successful_notifications: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

def reminder_message(unmarked: int):
    title = "Don't forget your habits! 🎯"
    body = (f"You have {unmarked} habit{'s' if unmarked > 1 else ''} to track today. "
            "Keep up the great work!")
    return title, body

class DailyReminderJob:
    """Evening nudge for users who have not marked every habit today.

    Only reads habits and entries; never writes to the tracker tables.
    """

    def __init__(self, backend: HabitBackend, sender: NotificationSender,
                 user_ids: UserIdsProvider, settings: Optional[ReminderConfig] = None):
        self.backend = backend
        self.sender = sender
        self.user_ids = user_ids
        self.settings = settings or ReminderConfig()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.last_result: Optional[ReminderBatchResult] = None

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self):
        if self.is_running:
            logger.info("Reminder job is already running")
            return

        self.scheduler = AsyncIOScheduler(timezone=self.settings.timezone)
        self.scheduler.add_job(
            self.run_once,
            CronTrigger(hour=self.settings.hour, minute=self.settings.minute,
                        timezone=self.settings.timezone),
            id=JOB_ID,
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(f"📅 Daily reminders scheduled at "
                    f"{self.settings.hour:02d}:{self.settings.minute:02d} {self.settings.timezone}")

    def stop(self):
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            logger.info("📅 Daily reminders stopped")
        self.scheduler = None

    def status(self) -> Dict[str, Optional[str]]:
        next_run = None
        if self.is_running:
            job = self.scheduler.get_job(JOB_ID)
            if job is not None and job.next_run_time is not None:
                next_run = job.next_run_time.isoformat()
        return {
            'is_running': self.is_running,
            'next_run': next_run
        }

    async def unmarked_habits(self, user_id: str) -> int:
        """Active habits with no entry for today"""
        day = today(self.settings.timezone)
        habits = [habit_from_row(row) for row in await self.backend.fetch_habits(user_id)]
        entries = [entry_from_row(row) for row in await self.backend.fetch_entries(user_id)]

        marked = {entry.habit_id for entry in entries if entry.date == day}
        return sum(1 for habit in habits if habit.is_active and habit.id not in marked)

    async def run_once(self) -> ReminderBatchResult:
        """Check every user and send reminders where needed"""
        result = ReminderBatchResult()
        logger.info("🔔 Processing daily reminders...")

        try:
            user_ids: List[str] = list(await self.user_ids())
        except Exception as e:
            logger.error(f"❌ Error listing users for reminders: {e}")
            self.last_result = result
            return result

        for user_id in user_ids:
            try:
                unmarked = await self.unmarked_habits(user_id)
                if not unmarked:
                    continue

                result.total_users += 1
                title, body = reminder_message(unmarked)
                delivery = await self.sender.send(user_id, title, body, {
                    'type': 'daily_reminder',
                    'unmarked_count': str(unmarked),
                    'deep_link': '/dashboard'
                })
            except Exception as e:
                logger.error(f"❌ Error sending reminder to user {user_id}: {e}")
                continue

            result.total_notifications += delivery.sent_count + delivery.failed_count
            result.successful_notifications += delivery.sent_count
            if delivery.success:
                result.successful_users += 1

        self.last_result = result
        logger.info(f"✅ Daily reminders done: {result.to_dict()}")
        return result
