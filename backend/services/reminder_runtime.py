"""Per-user reminder runtimes driven by one APScheduler interval job each."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import settings
from services.alert_effects import ClientAudioPlayer, InboxNotifier, safe_request_permission
from services.alert_session import AlertSession
from services.reminder_poller import ReminderPoller
from services.repositories import LogRepository, MedicationRepository, SettingsRepository
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def poller_job_id(user_id: int) -> str:
    return f"reminder-poller-{user_id}"


@dataclass
class ReminderRuntime:
    user_id: int
    session: AlertSession
    poller: ReminderPoller
    job: Job | None = None

    @property
    def running(self) -> bool:
        return self.job is not None

    def start(self, scheduler: AsyncIOScheduler) -> None:
        if self.running:
            return
        safe_request_permission(self.session.notifier)
        self.poller.reopen()
        # first check runs immediately, then every interval
        self.job = scheduler.add_job(
            self.poller.tick,
            "interval",
            seconds=self.poller.interval_seconds,
            next_run_time=utcnow(),
            id=poller_job_id(self.user_id),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def stop(self) -> None:
        job, self.job = self.job, None
        if job is not None:
            try:
                job.remove()
            except JobLookupError:
                pass
        self.poller.close()
        self.session.shutdown()


def build_runtime(user_id: int, session_factory=None) -> ReminderRuntime:
    log_repo = LogRepository(session_factory)
    session = AlertSession(
        user_id,
        log_repo,
        MedicationRepository(session_factory),
        notifier=InboxNotifier(user_id, session_factory),
        audio=ClientAudioPlayer(),
        alarm_window_seconds=settings.REMINDER_ALARM_WINDOW_SECONDS,
    )
    poller = ReminderPoller(
        user_id,
        log_repo,
        SettingsRepository(session_factory),
        session,
        interval_seconds=settings.REMINDER_POLL_INTERVAL_SECONDS,
        alarm_window_seconds=settings.REMINDER_ALARM_WINDOW_SECONDS,
        tz_name=settings.DEFAULT_TIMEZONE,
    )
    return ReminderRuntime(user_id=user_id, session=session, poller=poller)


class ReminderRegistry:
    """One reminder runtime per signed-in user, alive for that user's session.

    The scheduler is created on first use inside the running event loop and
    shut down by ``stop_all`` when the application stops.
    """

    def __init__(self, factory=build_runtime):
        self._factory = factory
        self._runtimes: dict[int, ReminderRuntime] = {}
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def scheduler(self) -> AsyncIOScheduler | None:
        return self._scheduler

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop(), timezone="UTC")
            self._scheduler.start()
            logger.info("Reminder scheduler started")
        return self._scheduler

    def get(self, user_id: int) -> ReminderRuntime | None:
        return self._runtimes.get(user_id)

    def start(self, user_id: int) -> ReminderRuntime:
        scheduler = self._ensure_scheduler()
        runtime = self._runtimes.get(user_id)
        if runtime is None:
            runtime = self._factory(user_id)
            self._runtimes[user_id] = runtime
        if not runtime.running:
            runtime.start(scheduler)
            logger.info(f"Reminder runtime started for user {user_id}")
        return runtime

    def stop(self, user_id: int) -> bool:
        runtime = self._runtimes.pop(user_id, None)
        if runtime is None:
            return False
        runtime.stop()
        logger.info(f"Reminder runtime stopped for user {user_id}")
        return True

    def stop_all(self) -> None:
        for user_id in list(self._runtimes):
            self.stop(user_id)
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Reminder scheduler shut down")

    def active_user_ids(self) -> list[int]:
        return sorted(self._runtimes)


reminder_registry = ReminderRegistry()
