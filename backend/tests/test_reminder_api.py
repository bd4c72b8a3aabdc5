from __future__ import annotations

import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from fastapi.testclient import TestClient


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import RINGTONES, settings  # noqa: E402
from main import app  # noqa: E402
from services.reminder_runtime import reminder_registry  # noqa: E402
from utils.datetime_utils import local_date, parse_iso_datetime  # noqa: E402


def _register(client: TestClient) -> int:
    username = f"dose_{uuid.uuid4().hex[:8]}"
    resp = client.post(
        "/api/auth/register",
        json={"username": username, "password": "Dose!Pass123", "display_name": "Dose User"},
    )
    assert resp.status_code == 201
    me = client.get("/api/auth/me")
    assert me.status_code == 200
    return int(me.json()["id"])


def _medication(client: TestClient, **overrides) -> dict:
    body = {"name": "Amlodipine", "dosage": "5mg", "reminder_times": ["09:00"], "remaining_quantity": 1}
    body.update(overrides)
    resp = client.post("/api/medications", json=body)
    assert resp.status_code == 201
    return resp.json()


def _log_due_now(client: TestClient, medication_id: int) -> dict:
    scheduled = datetime.now(timezone.utc) - timedelta(seconds=1)
    resp = client.post("/api/logs", json={"medication_id": medication_id, "scheduled_time": scheduled.isoformat()})
    assert resp.status_code == 201
    return resp.json()


def test_reminder_take_flow_updates_log_stock_and_dashboard():
    with TestClient(app) as client:
        user_id = _register(client)
        med = _medication(client)
        log = _log_due_now(client, med["id"])

        session = client.post("/api/reminders/session/start")
        assert session.status_code == 200
        assert session.json()["running"] is True

        check = client.post("/api/reminders/check")
        assert check.status_code == 200
        alert = client.get("/api/reminders/active")
        assert alert.status_code == 200
        body = alert.json()
        assert body["log_id"] == log["id"]
        assert body["medication_name"] == "Amlodipine"
        assert body["dosage"] == "5mg"
        assert body["sound_url"]

        taken = client.post("/api/reminders/active/take", json={"log_id": log["id"]})
        assert taken.status_code == 200
        assert taken.json()["status"] == "taken"
        assert taken.json()["remaining_quantity"] == 0

        assert client.get("/api/reminders/active").status_code == 404
        today = client.get("/api/logs/today").json()
        assert [row["status"] for row in today] == ["taken"]
        assert client.get(f"/api/medications/{med['id']}").json()["remaining_quantity"] == 0

        dashboard = client.get("/api/dashboard").json()
        assert dashboard["adherence_stats"]["taken_doses"] == 1
        assert dashboard["adherence_stats"]["adherence_rate"] == 100
        assert dashboard["adherence_stats"]["current_streak"] == 1
        assert dashboard["upcoming_doses"] == []
        assert [m["id"] for m in dashboard["refill_alerts"]] == [med["id"]]

        inbox = client.get("/api/notifications").json()
        assert any(n["category"] == "reminder" and n["payload"].get("tag") == str(log["id"]) for n in inbox)

        assert client.post("/api/auth/logout").status_code == 200
        assert reminder_registry.get(user_id) is None


def test_snoozed_reminder_stays_pending_and_does_not_ring_again():
    with TestClient(app) as client:
        _register(client)
        med = _medication(client, remaining_quantity=None)
        log = _log_due_now(client, med["id"])
        client.post("/api/reminders/session/start")

        client.post("/api/reminders/check")
        snoozed = client.post("/api/reminders/active/snooze")
        assert snoozed.status_code == 200
        assert snoozed.json()["action"] == "snoozed"

        again = client.post("/api/reminders/check")
        assert again.status_code == 200
        assert again.json() is None
        assert client.get("/api/reminders/active").status_code == 404
        today = client.get("/api/logs/today").json()
        assert [(row["id"], row["status"]) for row in today] == [(log["id"], "pending")]

        client.post("/api/reminders/session/stop")
        assert client.post("/api/reminders/check").status_code == 409


def test_reminder_settings_default_then_upsert():
    with TestClient(app) as client:
        _register(client)

        defaults = client.get("/api/settings/reminders").json()
        assert defaults["is_default"] is True
        assert defaults["sound_enabled"] is True
        assert defaults["ringtone"] == "default"
        assert defaults["snooze_minutes"] == 15
        assert defaults["dark_mode"] is False

        bad = client.put("/api/settings/reminders", json={"ringtone": "foghorn"})
        assert bad.status_code == 400

        saved = client.put("/api/settings/reminders", json={"ringtone": "gentle", "dark_mode": True})
        assert saved.status_code == 200
        assert saved.json()["ringtone"] == "gentle"
        assert saved.json()["is_default"] is False

        fetched = client.get("/api/settings/reminders").json()
        assert fetched["ringtone"] == "gentle"
        assert fetched["dark_mode"] is True
        assert fetched["snooze_minutes"] == 15

        keys = {row["key"] for row in client.get("/api/settings/ringtones").json()}
        assert keys == {"default", "chime", "gentle", "urgent"}


def test_manual_log_actions_only_leave_pending_once():
    with TestClient(app) as client:
        _register(client)
        med = _medication(client, remaining_quantity=0)
        log = _log_due_now(client, med["id"])

        skipped = client.post(f"/api/logs/{log['id']}/skip")
        assert skipped.status_code == 200
        assert skipped.json()["status"] == "skipped"

        assert client.post(f"/api/logs/{log['id']}/take").status_code == 409
        assert client.post("/api/logs/999999/miss").status_code == 404

        second = _log_due_now(client, med["id"])
        taken = client.post(f"/api/logs/{second['id']}/take")
        assert taken.status_code == 200
        assert taken.json()["remaining_quantity"] == 0


def test_dashboard_lists_medications_without_logs():
    with TestClient(app) as client:
        _register(client)
        with_log = _medication(client, name="Atorvastatin")
        without_log = _medication(client, name="Zinc", remaining_quantity=None)
        _log_due_now(client, with_log["id"])

        dashboard = client.get("/api/dashboard").json()
        by_id = {m["id"]: m for m in dashboard["today_medications"]}

        assert len(by_id[with_log["id"]]["logs"]) == 1
        assert by_id[without_log["id"]]["logs"] == []
        assert dashboard["adherence_stats"]["total_doses"] == 1
        assert dashboard["adherence_stats"]["adherence_rate"] == 0
        assert len(dashboard["upcoming_doses"]) == 1


def test_deleting_a_medication_keeps_its_dose_history():
    with TestClient(app) as client:
        _register(client)
        med = _medication(client, remaining_quantity=None)
        log = _log_due_now(client, med["id"])
        assert client.post(f"/api/logs/{log['id']}/take").status_code == 200
        before = client.get("/api/dashboard").json()["adherence_stats"]

        assert client.delete(f"/api/medications/{med['id']}").status_code == 200

        after = client.get("/api/dashboard").json()["adherence_stats"]
        assert after == before
        assert after["taken_doses"] == 1
        history = client.get("/api/logs").json()
        assert [(row["id"], row["status"]) for row in history] == [(log["id"], "taken")]
        assert history[0]["medication"]["name"] == "Amlodipine"
        assert client.get("/api/medications").json() == []
        archived = client.get("/api/medications", params={"include_inactive": True}).json()
        assert [(m["id"], m["active"]) for m in archived] == [(med["id"], False)]


def test_ringtone_change_retunes_the_ringing_alert():
    with TestClient(app) as client:
        _register(client)
        med = _medication(client, remaining_quantity=None)
        _log_due_now(client, med["id"])
        client.post("/api/reminders/session/start")
        client.post("/api/reminders/check")
        assert client.get("/api/reminders/active").json()["sound_url"] == RINGTONES["default"]

        assert client.put("/api/settings/reminders", json={"ringtone": "chime"}).status_code == 200
        assert client.get("/api/reminders/active").json()["sound_url"] == RINGTONES["chime"]

        assert client.put("/api/settings/reminders", json={"sound_enabled": False}).status_code == 200
        active = client.get("/api/reminders/active")
        assert active.status_code == 200
        assert active.json()["sound_url"] is None


def test_today_logs_and_dashboard_share_the_default_timezone(monkeypatch):
    tz_name = "Pacific/Kiritimati"  # UTC+14
    monkeypatch.setattr(settings, "DEFAULT_TIMEZONE", tz_name)
    with TestClient(app) as client:
        _register(client)
        med = _medication(client, remaining_quantity=None)
        now = datetime.now(timezone.utc)
        created = []
        for hours in (-20, 0, 20):
            scheduled = now + timedelta(hours=hours)
            resp = client.post(
                "/api/logs",
                json={"medication_id": med["id"], "scheduled_time": scheduled.isoformat()},
            )
            created.append(resp.json())

        expected = {
            row["id"]
            for row in created
            if local_date(parse_iso_datetime(row["scheduled_time"]), tz_name) == local_date(now, tz_name)
        }
        today_ids = {row["id"] for row in client.get("/api/logs/today").json()}
        dashboard = client.get("/api/dashboard").json()
        dashboard_ids = {log["id"] for m in dashboard["today_medications"] for log in m["logs"]}

        assert today_ids == expected
        assert dashboard_ids == expected
