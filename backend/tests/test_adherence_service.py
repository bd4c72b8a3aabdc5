from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.adherence_service import (  # noqa: E402
    adherence_rate,
    build_dashboard,
    compute_adherence_stats,
    current_streak,
    group_logs_by_medication,
    refill_alerts,
    todays_logs,
    upcoming_doses,
)
from reminder_fakes import NOW, make_log  # noqa: E402


@dataclass
class _Med:
    id: int
    name: str = "Med"
    remaining_quantity: int | None = None
    refill_reminder_threshold: int = 7
    active: bool = True


def _newest_first(statuses: list[str]):
    return [make_log(i, NOW - timedelta(hours=i), status=s) for i, s in enumerate(statuses)]


def test_empty_window_has_zero_rate():
    stats = compute_adherence_stats([], NOW)
    assert stats.total_doses == 0
    assert stats.adherence_rate == 0
    assert stats.current_streak == 0


def test_streak_stops_at_first_missed_dose():
    assert current_streak(_newest_first(["taken", "taken", "missed", "taken"])) == 2


def test_skipped_dose_neither_breaks_nor_counts():
    assert current_streak(_newest_first(["taken", "skipped", "taken"])) == 2
    assert current_streak(_newest_first(["pending", "taken", "skipped", "taken", "missed"])) == 2


def test_streak_sorts_input_by_schedule():
    logs = list(reversed(_newest_first(["taken", "taken", "missed", "taken"])))
    assert current_streak(logs) == 2


def test_stats_tally_and_rounding():
    logs = _newest_first(["taken", "taken", "missed", "skipped", "taken", "pending"])
    stats = compute_adherence_stats(logs, NOW)

    assert stats.total_doses == 6
    assert stats.taken_doses == 3
    assert stats.missed_doses == 1
    assert stats.skipped_doses == 1
    assert stats.adherence_rate == 50
    assert stats.current_streak == 2
    assert stats.longest_streak == stats.current_streak


def test_adherence_rate_rounds_half_up():
    assert adherence_rate(1, 8) == 13  # 12.5
    assert adherence_rate(2, 3) == 67
    assert adherence_rate(0, 0) == 0


def test_window_excludes_logs_older_than_lookback():
    old = make_log(1, NOW - timedelta(days=31), status="missed")
    recent = make_log(2, NOW - timedelta(days=1), status="taken")
    stats = compute_adherence_stats([old, recent], NOW, days=30)

    assert stats.total_doses == 1
    assert stats.adherence_rate == 100
    assert stats.current_streak == 1


def test_upcoming_doses_pending_ascending_first_five():
    logs = [make_log(i, NOW + timedelta(minutes=10 * (7 - i))) for i in range(7)]
    logs.append(make_log(50, NOW - timedelta(minutes=5), status="taken"))

    upcoming = upcoming_doses(logs)

    assert len(upcoming) == 5
    assert [log.id for log in upcoming] == [6, 5, 4, 3, 2]


def test_group_keeps_medications_without_logs_today():
    logs = [make_log(1, NOW, medication_id=10), make_log(2, NOW - timedelta(hours=1), medication_id=10)]
    grouped = group_logs_by_medication([10, 20], logs)

    assert [log.id for log in grouped[10]] == [2, 1]
    assert grouped[20] == []


def test_todays_logs_uses_local_calendar_day():
    late_evening_utc = make_log(1, NOW.replace(hour=23, minute=30))
    morning = make_log(2, NOW.replace(hour=8))
    # 23:30 UTC on 10 March is already 11 March in Tokyo
    assert [log.id for log in todays_logs([late_evening_utc, morning], NOW, "Asia/Tokyo")] == [2]
    assert {log.id for log in todays_logs([late_evening_utc, morning], NOW, "UTC")} == {1, 2}


def test_refill_alerts_flag_low_active_stock():
    meds = [
        _Med(1, remaining_quantity=3),
        _Med(2, remaining_quantity=20),
        _Med(3, remaining_quantity=None),
        _Med(4, remaining_quantity=0, active=False),
        _Med(5, remaining_quantity=7),
    ]
    assert [m.id for m in refill_alerts(meds)] == [1, 5]


def test_build_dashboard_is_deterministic():
    meds = [_Med(1), _Med(2)]
    today = [make_log(1, NOW + timedelta(hours=1), medication_id=1)]
    recent = today + _newest_first(["taken", "missed"])
    achievements = [object() for _ in range(7)]

    first = build_dashboard(meds, today, recent, achievements, NOW)
    second = build_dashboard(meds, today, recent, achievements, NOW)

    assert first["adherence_stats"] == second["adherence_stats"]
    assert len(first["recent_achievements"]) == 5
    assert [(med.id, len(logs)) for med, logs in first["today_medications"]] == [(1, 1), (2, 0)]
    assert [log.id for log in first["upcoming_doses"]] == [1]
