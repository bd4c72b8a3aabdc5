"""Alert lifecycle for a single ringing medication reminder.

The session is either idle or ringing one dose. Opening it notifies the user
and arms an expiry timer, with the ringtone looping when sound is on. Every way out
(take, missed, snooze, expiry, shutdown) stops the audio and cancels that
timer. A failed take/missed write leaves the alert ringing so the user can
retry.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol

from services.alert_effects import (
    AudioPlayer,
    Notifier,
    NullAudioPlayer,
    NullNotifier,
    safe_notify,
    safe_play,
    safe_stop,
)
from services.repositories import (
    DataWriteError,
    LogRecord,
    LogNotFoundError,
    LogRepository,
    LogTransitionError,
    MedicationRepository,
    MedicationSummary,
    ReminderSettings,
    RepositoryError,
)
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class AlertState(str, enum.Enum):
    IDLE = "idle"
    RINGING = "ringing"


class AlertStateError(RuntimeError):
    """An action was attempted that the current alert state does not allow."""


class AlertActionError(RuntimeError):
    """A take/missed write failed; the alert is still ringing."""

    def __init__(self, action: str, log_id: int, message: str = "Failed to update status"):
        super().__init__(message)
        self.action = action
        self.log_id = log_id
        self.message = message


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerScheduler(Protocol):
    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioTimerScheduler:
    """Schedules callbacks on the running event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(float(delay_seconds), 0.0), callback)


@dataclass
class ActiveAlert:
    log: LogRecord
    started_at: datetime
    expires_at: datetime
    sound_source: str | None = None

    @property
    def medication(self) -> MedicationSummary | None:
        return self.log.medication

    def to_view(self) -> dict:
        med = self.medication
        return {
            "log_id": self.log.id,
            "medication_id": self.log.medication_id,
            "medication_name": (med.name if med else "") or "",
            "dosage": (med.dosage if med else "") or "",
            "photo_url": (med.photo_url if med else "") or "",
            "scheduled_time": self.log.scheduled_time.isoformat(),
            "started_at": self.started_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "sound_url": self.sound_source,
        }


@dataclass(frozen=True)
class AlertOutcome:
    log_id: int
    action: str  # taken | missed | snoozed | expired | already_resolved
    status: str
    title: str
    description: str
    remaining_quantity: int | None = None


class AlertSession:
    def __init__(
        self,
        user_id: int,
        log_repo: LogRepository,
        medication_repo: MedicationRepository,
        *,
        notifier: Notifier | None = None,
        audio: AudioPlayer | None = None,
        scheduler: TimerScheduler | None = None,
        alarm_window_seconds: int = 600,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.user_id = user_id
        self.log_repo = log_repo
        self.medication_repo = medication_repo
        self.notifier = notifier or NullNotifier()
        self.audio = audio or NullAudioPlayer()
        self.scheduler = scheduler or AsyncioTimerScheduler()
        self.alarm_window = timedelta(seconds=alarm_window_seconds)
        self._clock = clock
        self._active: ActiveAlert | None = None
        self._timer: TimerHandle | None = None
        self.last_outcome: AlertOutcome | None = None

    @property
    def state(self) -> AlertState:
        return AlertState.RINGING if self._active is not None else AlertState.IDLE

    @property
    def is_ringing(self) -> bool:
        return self._active is not None

    @property
    def active(self) -> ActiveAlert | None:
        return self._active

    def view(self) -> dict | None:
        if self._active is None:
            return None
        view = self._active.to_view()
        view["sound_url"] = self.audio.current_source if self.audio.is_playing else None
        return view

    async def open(
        self,
        log: LogRecord,
        settings: ReminderSettings | None,
        now: datetime | None = None,
    ) -> ActiveAlert:
        if self._active is not None:
            raise AlertStateError(f"Alert for log {self._active.log.id} is already ringing")
        prefs = settings or ReminderSettings.defaults()
        started = now or self._clock()
        alert = ActiveAlert(log=log, started_at=started, expires_at=started + self.alarm_window)
        self._active = alert
        self._timer = self.scheduler.call_later(
            self.alarm_window.total_seconds(),
            lambda: self._on_expired(alert),
        )
        logger.info(f"Reminder ringing for user {self.user_id}, log {log.id}")

        med = log.medication
        name = (med.name if med else "") or "your medication"
        dosage = (med.dosage if med else "") or ""
        await asyncio.to_thread(safe_notify, self.notifier, f"Time to take {name}", f"Dosage: {dosage}", str(log.id))

        if prefs.sound_enabled and self._active is alert:
            if safe_play(self.audio, prefs.ringtone):
                alert.sound_source = self.audio.current_source
        return alert

    async def take(self, log_id: int | None = None, now: datetime | None = None) -> AlertOutcome:
        return await self._resolve("taken", log_id, now)

    async def miss(self, log_id: int | None = None, now: datetime | None = None) -> AlertOutcome:
        return await self._resolve("missed", log_id, now)

    def snooze(self, log_id: int | None = None) -> AlertOutcome:
        alert = self._require_active(log_id)
        self._close(alert, "snoozed")
        outcome = AlertOutcome(
            log_id=alert.log.id,
            action="snoozed",
            status=alert.log.status,
            title="Reminder snoozed",
            description="The reminder has been silenced.",
        )
        self.last_outcome = outcome
        return outcome

    def change_ringtone(self, ringtone: str, sound_enabled: bool = True) -> None:
        alert = self._active
        if alert is None:
            return
        if not sound_enabled:
            safe_stop(self.audio)
            alert.sound_source = None
            return
        if safe_play(self.audio, ringtone):
            alert.sound_source = self.audio.current_source

    def shutdown(self) -> None:
        if self._active is not None:
            self._close(self._active, "shutdown")

    async def _resolve(self, status: str, log_id: int | None, now: datetime | None) -> AlertOutcome:
        alert = self._require_active(log_id)
        safe_stop(self.audio)
        moment = now or self._clock()
        try:
            await self.log_repo.update_log_status(
                alert.log.id,
                status,
                taken_time=moment if status == "taken" else None,
            )
        except (LogTransitionError, LogNotFoundError) as e:
            current = getattr(e, "current_status", "deleted")
            logger.info(f"Log {alert.log.id} is already {current}; closing reminder")
            self._close(alert, "already_resolved")
            outcome = AlertOutcome(
                log_id=alert.log.id,
                action="already_resolved",
                status=current,
                title="Already recorded",
                description=f"This dose is already {current}.",
            )
            self.last_outcome = outcome
            return outcome
        except DataWriteError as e:
            logger.warning(f"Failed to mark log {alert.log.id} as {status}: {e}")
            if self._active is not alert:
                # expired while the write was in flight; nothing left to retry
                outcome = self.last_outcome
                if outcome is None or outcome.log_id != alert.log.id:
                    outcome = self._expired_outcome(alert)
                return outcome
            raise AlertActionError(status, alert.log.id) from e
        except BaseException:
            self._close(alert, "error")
            raise

        remaining = None
        if status == "taken":
            try:
                remaining = await self.medication_repo.decrement_quantity(alert.log.medication_id)
            except RepositoryError as e:
                logger.warning(f"Inventory decrement failed for medication {alert.log.medication_id}: {e}")

        self._close(alert, status)
        if status == "taken":
            outcome = AlertOutcome(
                log_id=alert.log.id,
                action="taken",
                status="taken",
                title="Marked as Taken",
                description="Great job staying on track!",
                remaining_quantity=remaining,
            )
        else:
            outcome = AlertOutcome(
                log_id=alert.log.id,
                action="missed",
                status="missed",
                title="Marked as Missed",
                description="Dose marked as missed.",
            )
        self.last_outcome = outcome
        return outcome

    def _require_active(self, log_id: int | None) -> ActiveAlert:
        alert = self._active
        if alert is None:
            raise AlertStateError("No reminder is ringing")
        if log_id is not None and int(log_id) != alert.log.id:
            raise AlertStateError(f"Log {log_id} is not the ringing reminder")
        return alert

    def _on_expired(self, alert: ActiveAlert) -> None:
        if self._active is not alert:
            return
        self._timer = None
        self._close(alert, "expired")
        self.last_outcome = self._expired_outcome(alert)

    @staticmethod
    def _expired_outcome(alert: ActiveAlert) -> AlertOutcome:
        return AlertOutcome(
            log_id=alert.log.id,
            action="expired",
            status=alert.log.status,
            title="Reminder expired",
            description="The reminder stopped ringing.",
        )

    def _close(self, alert: ActiveAlert, reason: str) -> None:
        if self._active is not alert:
            return
        safe_stop(self.audio)
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self._active = None
        logger.info(f"Reminder for log {alert.log.id} closed ({reason})")
