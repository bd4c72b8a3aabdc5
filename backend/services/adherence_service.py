"""Adherence statistics derived from a medication log history.

Everything here is pure: the same logs and the same ``now`` always give the
same result, and nothing is written back.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Iterable, Protocol, Sequence

from utils.datetime_utils import as_utc, day_bounds, lookback_start


class LogLike(Protocol):
    id: int
    medication_id: int
    scheduled_time: datetime
    status: str


@dataclass(frozen=True)
class AdherenceStats:
    total_doses: int = 0
    taken_doses: int = 0
    missed_doses: int = 0
    skipped_doses: int = 0
    adherence_rate: int = 0
    current_streak: int = 0
    longest_streak: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def logs_in_window(logs: Iterable[LogLike], now: datetime, days: int = 30) -> list[LogLike]:
    start = lookback_start(now, days)
    return [log for log in logs if as_utc(log.scheduled_time) >= start]


def adherence_rate(taken: int, total: int) -> int:
    if total <= 0:
        return 0
    # round-half-up to match percentage display
    return int(100 * taken / total + 0.5)


def current_streak(logs: Iterable[LogLike]) -> int:
    """Consecutive taken doses counted from the newest log back.

    Only a missed dose ends the walk; skipped and pending doses are passed
    over without counting.
    """
    streak = 0
    ordered = sorted(logs, key=lambda log: as_utc(log.scheduled_time), reverse=True)
    for log in ordered:
        if log.status == "taken":
            streak += 1
        elif log.status == "missed":
            break
    return streak


def compute_adherence_stats(
    logs: Iterable[LogLike],
    now: datetime,
    days: int = 30,
) -> AdherenceStats:
    window = logs_in_window(logs, now, days)
    taken = sum(1 for log in window if log.status == "taken")
    missed = sum(1 for log in window if log.status == "missed")
    skipped = sum(1 for log in window if log.status == "skipped")
    total = len(window)
    streak = current_streak(window)
    return AdherenceStats(
        total_doses=total,
        taken_doses=taken,
        missed_doses=missed,
        skipped_doses=skipped,
        adherence_rate=adherence_rate(taken, total),
        current_streak=streak,
        # no historical maximum is tracked yet
        longest_streak=streak,
    )


def todays_logs(logs: Iterable[LogLike], now: datetime, tz_name: str | None = None) -> list[LogLike]:
    start, end = day_bounds(now, tz_name)
    return [log for log in logs if start <= as_utc(log.scheduled_time) <= end]


def upcoming_doses(today_logs: Iterable[LogLike], limit: int = 5) -> list[LogLike]:
    pending = [log for log in today_logs if log.status == "pending"]
    pending.sort(key=lambda log: as_utc(log.scheduled_time))
    return pending[: max(int(limit), 0)]


def group_logs_by_medication(
    medication_ids: Sequence[int],
    today_logs: Iterable[LogLike],
) -> dict[int, list[LogLike]]:
    grouped: dict[int, list[LogLike]] = {med_id: [] for med_id in medication_ids}
    for log in today_logs:
        if log.medication_id in grouped:
            grouped[log.medication_id].append(log)
    for med_logs in grouped.values():
        med_logs.sort(key=lambda log: as_utc(log.scheduled_time))
    return grouped


def refill_alerts(medications: Iterable[Any]) -> list[Any]:
    flagged = []
    for med in medications:
        if not getattr(med, "active", True):
            continue
        remaining = getattr(med, "remaining_quantity", None)
        threshold = getattr(med, "refill_reminder_threshold", None)
        if remaining is None or threshold is None:
            continue
        if remaining <= threshold:
            flagged.append(med)
    return flagged


def build_dashboard(
    medications: Sequence[Any],
    today_logs: Sequence[LogLike],
    recent_logs: Sequence[LogLike],
    achievements: Sequence[Any],
    now: datetime,
    *,
    days: int = 30,
    upcoming_limit: int = 5,
    achievements_limit: int = 5,
) -> dict[str, Any]:
    grouped = group_logs_by_medication([med.id for med in medications], today_logs)
    return {
        "today_medications": [(med, grouped.get(med.id, [])) for med in medications],
        "upcoming_doses": upcoming_doses(today_logs, upcoming_limit),
        "adherence_stats": compute_adherence_stats(recent_logs, now, days),
        "recent_achievements": list(achievements)[: max(int(achievements_limit), 0)],
        "refill_alerts": refill_alerts(medications),
    }
