"""Async data adapters used by the reminder runtime.

Each adapter opens a short-lived SQLAlchemy session per call and runs the
blocking work in a worker thread, so poll ticks and alert actions suspend
without blocking the event loop. Database failures are re-raised as
``DataFetchError`` / ``DataWriteError`` after the session is rolled back.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import (
    DEFAULT_DARK_MODE,
    DEFAULT_RINGTONE,
    DEFAULT_SNOOZE_MINUTES,
    DEFAULT_SOUND_ENABLED,
    RINGTONES,
)
from db.database import SessionLocal
from db.models import LOG_STATUSES, Medication, MedicationLog, UserSettings
from utils.datetime_utils import as_utc, day_bounds, to_naive_utc, utcnow

RESOLVED_STATUSES = set(LOG_STATUSES) - {"pending"}


class RepositoryError(Exception):
    """Base class for adapter failures."""


class DataFetchError(RepositoryError):
    """A read could not be completed; callers may retry."""


class DataWriteError(RepositoryError):
    """A mutation could not be persisted."""


class LogNotFoundError(DataWriteError):
    pass


class LogTransitionError(DataWriteError):
    """The log has already left the pending state."""

    def __init__(self, log_id: int, current_status: str):
        super().__init__(f"Log {log_id} is already {current_status}")
        self.log_id = log_id
        self.current_status = current_status


@dataclass(frozen=True)
class MedicationSummary:
    id: int
    name: str = ""
    dosage: str = ""
    photo_url: str | None = None


@dataclass(frozen=True)
class LogRecord:
    id: int
    user_id: int
    medication_id: int
    scheduled_time: datetime
    status: str = "pending"
    taken_time: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None
    medication: MedicationSummary | None = None

    @classmethod
    def from_row(cls, row: MedicationLog, medication: Medication | None = None) -> "LogRecord":
        summary = None
        if medication is not None:
            summary = MedicationSummary(
                id=medication.id,
                name=medication.name or "",
                dosage=medication.dosage or "",
                photo_url=medication.photo_url,
            )
        return cls(
            id=row.id,
            user_id=row.user_id,
            medication_id=row.medication_id,
            scheduled_time=as_utc(row.scheduled_time),
            status=row.status or "pending",
            taken_time=as_utc(row.taken_time) if row.taken_time else None,
            notes=row.notes,
            created_at=as_utc(row.created_at) if row.created_at else None,
            medication=summary,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "medication_id": self.medication_id,
            "scheduled_time": self.scheduled_time.isoformat(),
            "taken_time": self.taken_time.isoformat() if self.taken_time else None,
            "status": self.status,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "medication": (
                {
                    "name": self.medication.name,
                    "dosage": self.medication.dosage,
                    "photo_url": self.medication.photo_url,
                }
                if self.medication
                else None
            ),
        }


@dataclass(frozen=True)
class ReminderSettings:
    sound_enabled: bool = DEFAULT_SOUND_ENABLED
    ringtone: str = DEFAULT_RINGTONE
    snooze_minutes: int = DEFAULT_SNOOZE_MINUTES
    dark_mode: bool = DEFAULT_DARK_MODE
    timezone: str | None = None
    updated_at: datetime | None = field(default=None, compare=False)

    @classmethod
    def defaults(cls) -> "ReminderSettings":
        return cls()

    @classmethod
    def from_row(cls, row: UserSettings) -> "ReminderSettings":
        return cls(
            sound_enabled=DEFAULT_SOUND_ENABLED if row.sound_enabled is None else bool(row.sound_enabled),
            ringtone=row.ringtone or DEFAULT_RINGTONE,
            snooze_minutes=int(row.snooze_minutes or DEFAULT_SNOOZE_MINUTES),
            dark_mode=bool(row.dark_mode),
            timezone=row.timezone,
            updated_at=as_utc(row.updated_at) if row.updated_at else None,
        )


SETTINGS_FIELDS = ("sound_enabled", "ringtone", "snooze_minutes", "dark_mode", "timezone")


def validate_settings_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Drop unknown keys and reject values the reminder runtime cannot use."""
    cleaned: dict[str, Any] = {}
    for key, value in changes.items():
        if key not in SETTINGS_FIELDS or value is None:
            continue
        if key == "ringtone":
            value = str(value).strip().lower()
            if value not in RINGTONES:
                raise ValueError(f"Unknown ringtone '{value}'")
        elif key == "snooze_minutes":
            value = int(value)
            if value < 1:
                raise ValueError("snooze_minutes must be a positive integer")
        elif key in {"sound_enabled", "dark_mode"}:
            value = bool(value)
        cleaned[key] = value
    return cleaned


class _SessionAdapter:
    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory or SessionLocal

    def _run(self, work: Callable[..., Any], error_cls: type[RepositoryError], commit: bool, *args: Any) -> Any:
        db = self._session_factory()
        try:
            result = work(db, *args)
            if commit:
                db.commit()
            return result
        except RepositoryError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            raise error_cls(str(e)) from e
        finally:
            db.close()

    async def _read(self, work: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._run, work, DataFetchError, False, *args)

    async def _write(self, work: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._run, work, DataWriteError, True, *args)


def set_log_status(
    db: Session,
    log_id: int,
    status: str,
    taken_time: datetime | None = None,
    user_id: int | None = None,
) -> MedicationLog:
    """Move a pending log to taken/missed/skipped; resolved logs never change again."""
    if status not in RESOLVED_STATUSES:
        raise DataWriteError(f"Unsupported status '{status}'")
    query = db.query(MedicationLog).filter(MedicationLog.id == log_id)
    if user_id is not None:
        query = query.filter(MedicationLog.user_id == user_id)
    row = query.first()
    if row is None:
        raise LogNotFoundError(f"Log {log_id} not found")
    if (row.status or "pending") != "pending":
        raise LogTransitionError(log_id, row.status)
    row.status = status
    if taken_time is not None:
        row.taken_time = to_naive_utc(taken_time)
    db.flush()
    return row


def decrement_medication_quantity(db: Session, medication_id: int) -> int | None:
    med = db.query(Medication).filter(Medication.id == medication_id).first()
    if med is None or med.remaining_quantity is None:
        return None
    if med.remaining_quantity > 0:
        med.remaining_quantity = med.remaining_quantity - 1
        db.flush()
    return med.remaining_quantity


def upsert_settings_row(db: Session, user_id: int, changes: dict[str, Any]) -> UserSettings:
    row = db.query(UserSettings).filter(UserSettings.user_id == user_id).first()
    if row is None:
        base = ReminderSettings.defaults()
        row = UserSettings(
            user_id=user_id,
            sound_enabled=base.sound_enabled,
            ringtone=base.ringtone,
            snooze_minutes=base.snooze_minutes,
            dark_mode=base.dark_mode,
        )
        db.add(row)
    for key, value in changes.items():
        setattr(row, key, value)
    row.updated_at = to_naive_utc(utcnow())
    db.flush()
    return row


class LogRepository(_SessionAdapter):
    async def fetch_today_logs(
        self,
        user_id: int,
        now: datetime | None = None,
        tz_name: str | None = None,
    ) -> list[LogRecord]:
        start, end = day_bounds(now or utcnow(), tz_name)
        return await self._read(self._fetch_range, user_id, start, end, False)

    async def fetch_logs(
        self,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[LogRecord]:
        return await self._read(self._fetch_range, user_id, start, end, True)

    async def update_log_status(self, log_id: int, status: str, taken_time: datetime | None = None) -> LogRecord:
        return await self._write(self._update_status, log_id, status, taken_time)

    @staticmethod
    def _fetch_range(
        db: Session,
        user_id: int,
        start: datetime | None,
        end: datetime | None,
        newest_first: bool,
    ) -> list[LogRecord]:
        return query_log_records(db, user_id, start, end, newest_first=newest_first)

    @staticmethod
    def _update_status(db: Session, log_id: int, status: str, taken_time: datetime | None) -> LogRecord:
        row = set_log_status(db, log_id, status, taken_time)
        return LogRecord.from_row(row, row.medication)


def query_log_records(
    db: Session,
    user_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    newest_first: bool = True,
) -> list[LogRecord]:
    query = db.query(MedicationLog).filter(MedicationLog.user_id == user_id)
    if start is not None:
        query = query.filter(MedicationLog.scheduled_time >= to_naive_utc(start))
    if end is not None:
        query = query.filter(MedicationLog.scheduled_time <= to_naive_utc(end))
    order = MedicationLog.scheduled_time.desc() if newest_first else MedicationLog.scheduled_time.asc()
    rows = query.order_by(order, MedicationLog.id.asc()).all()
    if not rows:
        return []

    # Logs whose medication was deleted keep medication=None.
    med_ids = {row.medication_id for row in rows}
    meds = db.query(Medication).filter(Medication.id.in_(med_ids)).all()
    meds_by_id = {med.id: med for med in meds}
    return [LogRecord.from_row(row, meds_by_id.get(row.medication_id)) for row in rows]


class MedicationRepository(_SessionAdapter):
    async def decrement_quantity(self, medication_id: int) -> int | None:
        """Decrement remaining_quantity by one; returns the new value, or None when untracked."""
        return await self._write(decrement_medication_quantity, medication_id)


class SettingsRepository(_SessionAdapter):
    async def get_settings(self, user_id: int) -> ReminderSettings | None:
        return await self._read(self._get, user_id)

    async def upsert_settings(self, user_id: int, **changes: Any) -> ReminderSettings:
        cleaned = validate_settings_changes(changes)
        return await self._write(self._upsert, user_id, cleaned)

    @staticmethod
    def _get(db: Session, user_id: int) -> ReminderSettings | None:
        row = db.query(UserSettings).filter(UserSettings.user_id == user_id).first()
        return ReminderSettings.from_row(row) if row else None

    @staticmethod
    def _upsert(db: Session, user_id: int, changes: dict[str, Any]) -> ReminderSettings:
        return ReminderSettings.from_row(upsert_settings_row(db, user_id, changes))
