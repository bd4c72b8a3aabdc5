from __future__ import annotations

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import RINGTONES  # noqa: E402
from services.alert_effects import ClientAudioPlayer  # noqa: E402
from services.alert_session import (  # noqa: E402
    AlertActionError,
    AlertSession,
    AlertState,
    AlertStateError,
)
from services.repositories import DataWriteError, ReminderSettings  # noqa: E402
from reminder_fakes import (  # noqa: E402
    NOW,
    BlockedAudio,
    FakeLogRepo,
    FakeMedicationRepo,
    ManualScheduler,
    RecordingNotifier,
    make_log,
)


def _session(logs=None, quantities=None, notifier=None, audio=None):
    log_repo = FakeLogRepo(logs)
    med_repo = FakeMedicationRepo(quantities)
    scheduler = ManualScheduler()
    session = AlertSession(
        1,
        log_repo,
        med_repo,
        notifier=notifier or RecordingNotifier(),
        audio=audio or ClientAudioPlayer(),
        scheduler=scheduler,
        alarm_window_seconds=600,
        clock=lambda: NOW,
    )
    return session, log_repo, med_repo, scheduler


def test_open_notifies_plays_default_ringtone_and_arms_expiry():
    log = make_log(11, NOW)
    notifier = RecordingNotifier()
    session, _, _, scheduler = _session([log], notifier=notifier)

    alert = asyncio.run(session.open(log, None, NOW))

    assert session.state is AlertState.RINGING
    assert alert.expires_at == NOW + timedelta(minutes=10)
    assert notifier.shown == [("Time to take Lisinopril", "Dosage: 10mg", "11")]
    assert session.audio.is_playing
    assert session.audio.current_source == RINGTONES["default"]
    assert len(scheduler.live_timers) == 1
    assert scheduler.live_timers[0].due == 600


def test_open_respects_sound_disabled_and_denied_permission():
    log = make_log(12, NOW)
    notifier = RecordingNotifier(permission="denied")
    session, _, _, _ = _session([log], notifier=notifier)

    asyncio.run(session.open(log, ReminderSettings(sound_enabled=False), NOW))

    assert session.is_ringing
    assert notifier.shown == []
    assert not session.audio.is_playing
    assert session.view()["sound_url"] is None


def test_unknown_ringtone_falls_back_to_default_sound():
    log = make_log(13, NOW)
    session, _, _, _ = _session([log])

    asyncio.run(session.open(log, ReminderSettings(ringtone="foghorn"), NOW))

    assert session.audio.current_source == RINGTONES["default"]


def test_blocked_autoplay_degrades_to_visual_alert():
    log = make_log(14, NOW)
    session, _, _, _ = _session([log], audio=BlockedAudio())

    alert = asyncio.run(session.open(log, None, NOW))

    assert session.is_ringing
    assert alert.sound_source is None


def test_second_open_while_ringing_is_rejected():
    first, second = make_log(15, NOW), make_log(16, NOW)
    session, _, _, _ = _session([first, second])
    asyncio.run(session.open(first, None, NOW))

    with pytest.raises(AlertStateError):
        asyncio.run(session.open(second, None, NOW))
    assert session.active.log.id == 15


def test_take_marks_taken_decrements_stock_and_cancels_timer():
    log = make_log(21, NOW, medication_id=4)
    session, log_repo, med_repo, scheduler = _session([log], quantities={4: 3})
    asyncio.run(session.open(log, None, NOW))

    outcome = asyncio.run(session.take(21, now=NOW + timedelta(minutes=2)))

    assert outcome.action == "taken"
    assert outcome.remaining_quantity == 2
    assert log_repo.logs[21].status == "taken"
    assert log_repo.updates == [(21, "taken", NOW + timedelta(minutes=2))]
    assert session.state is AlertState.IDLE
    assert not session.audio.is_playing
    assert scheduler.live_timers == []


def test_take_with_empty_stock_never_goes_negative():
    log = make_log(22, NOW, medication_id=5)
    session, _, med_repo, _ = _session([log], quantities={5: 0})
    asyncio.run(session.open(log, None, NOW))

    outcome = asyncio.run(session.take())

    assert outcome.remaining_quantity == 0
    assert med_repo.quantities[5] == 0


def test_inventory_failure_does_not_undo_taken_status():
    log = make_log(23, NOW, medication_id=6)
    session, log_repo, med_repo, _ = _session([log], quantities={6: 10})
    med_repo.fail = True
    asyncio.run(session.open(log, None, NOW))

    outcome = asyncio.run(session.take())

    assert outcome.status == "taken"
    assert outcome.remaining_quantity is None
    assert log_repo.logs[23].status == "taken"
    assert not session.is_ringing


def test_write_failure_keeps_alert_ringing_for_retry():
    log = make_log(24, NOW)
    session, log_repo, _, scheduler = _session([log])
    asyncio.run(session.open(log, None, NOW))
    log_repo.fail_updates = True

    with pytest.raises(AlertActionError):
        asyncio.run(session.miss())

    assert session.is_ringing
    assert len(scheduler.live_timers) == 1

    log_repo.fail_updates = False
    outcome = asyncio.run(session.miss())
    assert outcome.status == "missed"
    assert log_repo.logs[24].status == "missed"
    assert scheduler.live_timers == []


def test_snooze_silences_without_touching_status():
    log = make_log(25, NOW)
    session, log_repo, _, scheduler = _session([log])
    asyncio.run(session.open(log, None, NOW))

    outcome = session.snooze(25)

    assert outcome.action == "snoozed"
    assert log_repo.logs[25].status == "pending"
    assert log_repo.updates == []
    assert not session.audio.is_playing
    assert scheduler.live_timers == []


def test_expiry_timer_closes_alert_like_snooze():
    log = make_log(26, NOW)
    session, log_repo, _, scheduler = _session([log])
    asyncio.run(session.open(log, None, NOW))

    scheduler.advance(599)
    assert session.is_ringing

    scheduler.advance(1)
    assert session.state is AlertState.IDLE
    assert session.last_outcome.action == "expired"
    assert log_repo.logs[26].status == "pending"
    assert not session.audio.is_playing


def test_action_for_other_log_or_when_idle_is_rejected():
    log = make_log(27, NOW)
    session, _, _, _ = _session([log])

    with pytest.raises(AlertStateError):
        session.snooze()

    asyncio.run(session.open(log, None, NOW))
    with pytest.raises(AlertStateError):
        asyncio.run(session.take(99))
    assert session.is_ringing


def test_dose_resolved_elsewhere_closes_alert():
    log = make_log(28, NOW)
    session, log_repo, _, scheduler = _session([log])
    asyncio.run(session.open(log, None, NOW))
    log_repo.logs[28] = make_log(28, NOW, status="taken")

    outcome = asyncio.run(session.take())

    assert outcome.action == "already_resolved"
    assert outcome.status == "taken"
    assert not session.is_ringing
    assert scheduler.live_timers == []


def test_missing_medication_renders_empty_fields():
    log = make_log(29, NOW, name=None)
    notifier = RecordingNotifier()
    session, _, _, _ = _session([log], notifier=notifier)

    asyncio.run(session.open(log, None, NOW))
    view = session.view()

    assert view["medication_name"] == ""
    assert view["dosage"] == ""
    assert view["photo_url"] == ""
    assert notifier.shown[0][2] == "29"


def test_replaying_same_ringtone_does_not_restart_and_new_ringtone_swaps():
    log = make_log(30, NOW)
    session, _, _, _ = _session([log])
    asyncio.run(session.open(log, ReminderSettings(ringtone="chime"), NOW))
    assert session.audio.play_count == 1

    session.change_ringtone("chime")
    assert session.audio.play_count == 1

    session.change_ringtone("urgent")
    assert session.audio.play_count == 2
    assert session.view()["sound_url"] == RINGTONES["urgent"]

    session.change_ringtone("urgent", sound_enabled=False)
    assert not session.audio.is_playing


class _SlowFailingLogRepo(FakeLogRepo):
    """The write outlives the alarm window and then fails."""

    def __init__(self, logs, scheduler):
        super().__init__(logs)
        self.scheduler = scheduler

    async def update_log_status(self, log_id, status, taken_time=None):
        self.scheduler.advance(600)
        raise DataWriteError("write timed out")


def test_write_failure_after_expiry_reports_expired_instead_of_retry():
    log = make_log(31, NOW)
    scheduler = ManualScheduler()
    log_repo = _SlowFailingLogRepo([log], scheduler)
    session = AlertSession(
        1,
        log_repo,
        FakeMedicationRepo(),
        notifier=RecordingNotifier(),
        audio=ClientAudioPlayer(),
        scheduler=scheduler,
        alarm_window_seconds=600,
        clock=lambda: NOW,
    )
    asyncio.run(session.open(log, None, NOW))

    outcome = asyncio.run(session.take())

    assert outcome.action == "expired"
    assert outcome.log_id == 31
    assert outcome.status == "pending"
    assert session.state is AlertState.IDLE
    assert not session.audio.is_playing
    assert scheduler.live_timers == []
