from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable

from services.alert_session import AlertSession
from services.repositories import LogRecord, LogRepository, SettingsRepository
from utils.datetime_utils import as_utc, utcnow

logger = logging.getLogger(__name__)


def is_due(log: LogRecord, now: datetime, window: timedelta) -> bool:
    """Pending and scheduled in (now - window, now]."""
    if log.status != "pending":
        return False
    elapsed = as_utc(now) - as_utc(log.scheduled_time)
    return timedelta(0) <= elapsed < window


def due_logs(
    logs: Iterable[LogRecord],
    now: datetime,
    processed: Iterable[int],
    window: timedelta,
) -> list[LogRecord]:
    seen = set(processed)
    return [log for log in logs if log.id not in seen and is_due(log, now, window)]


class ReminderPoller:
    """Finds doses that just became due and rings the alert session for them.

    Only one alert rings at a time. When several doses are due in the same
    tick the first in fetch order rings; the rest are left unprocessed and
    ring on a later tick if they are still inside the alarm window.
    """

    def __init__(
        self,
        user_id: int,
        log_repo: LogRepository,
        settings_repo: SettingsRepository,
        session: AlertSession,
        *,
        interval_seconds: int = 60,
        alarm_window_seconds: int = 600,
        tz_name: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.user_id = user_id
        self.log_repo = log_repo
        self.settings_repo = settings_repo
        self.session = session
        self.interval_seconds = max(int(interval_seconds), 1)
        self.alarm_window = timedelta(seconds=alarm_window_seconds)
        self.tz_name = tz_name
        self._clock = clock
        # log id -> trigger time; lives as long as this poller
        self._processed: dict[int, datetime] = {}
        self.ticks = 0
        self._closed = False

    @property
    def processed_ids(self) -> set[int]:
        return set(self._processed)

    def was_processed(self, log_id: int) -> bool:
        return log_id in self._processed

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop opening alerts; a check already in flight ends quietly."""
        self._closed = True

    def reopen(self) -> None:
        self._closed = False

    async def tick(self, now: datetime | None = None) -> LogRecord | None:
        moment = as_utc(now or self._clock())
        self.ticks += 1
        self._evict_processed(moment)
        try:
            prefs = await self.settings_repo.get_settings(self.user_id)
            tz_name = (prefs.timezone if prefs else None) or self.tz_name
            logs = await self.log_repo.fetch_today_logs(self.user_id, moment, tz_name)
        except Exception as e:
            logger.warning(f"Reminder check failed for user {self.user_id}: {e}")
            return None

        if self._closed or self.session.is_ringing:
            return None
        candidates = due_logs(logs, moment, self._processed, self.alarm_window)
        if not candidates:
            return None

        log = candidates[0]
        self._processed[log.id] = moment
        if len(candidates) > 1:
            logger.info(
                f"{len(candidates) - 1} more due dose(s) for user {self.user_id} wait for a later check"
            )
        try:
            await self.session.open(log, prefs, moment)
        except Exception as e:
            logger.warning(f"Could not open reminder for log {log.id}: {e}")
            return None
        return log

    def _evict_processed(self, now: datetime) -> None:
        # A log triggered more than one window ago can no longer be due.
        cutoff = now - self.alarm_window
        stale = [log_id for log_id, triggered in self._processed.items() if triggered <= cutoff]
        for log_id in stale:
            del self._processed[log_id]
