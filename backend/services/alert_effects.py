"""Best-effort side effects for a ringing reminder: notifications and audio.

Both capabilities are optional. The null implementations let the alert
session run unchanged where no notification channel or audio output exists,
and every concrete implementation logs failures instead of raising them.
"""
from __future__ import annotations

import json
import logging
from typing import Callable, Protocol

from sqlalchemy.orm import Session

from config import ringtone_url
from db.database import SessionLocal
from db.models import Notification

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    permission: str  # default | granted | denied

    def request_permission(self) -> str: ...

    def show_notification(self, title: str, body: str, tag: str) -> bool: ...


class AudioPlayer(Protocol):
    @property
    def is_playing(self) -> bool: ...

    @property
    def current_source(self) -> str | None: ...

    def play_loop(self, sound_ref: str) -> None: ...

    def stop(self) -> None: ...


class NullNotifier:
    permission = "denied"

    def request_permission(self) -> str:
        return self.permission

    def show_notification(self, title: str, body: str, tag: str) -> bool:
        return False


class NullAudioPlayer:
    is_playing = False
    current_source = None

    def play_loop(self, sound_ref: str) -> None:
        return None

    def stop(self) -> None:
        return None


class InboxNotifier:
    """Delivers reminders into the user's in-app notification inbox.

    The tag is stored in the payload; a second notification with a tag that is
    already in the inbox is skipped.
    """

    def __init__(
        self,
        user_id: int,
        session_factory: Callable[[], Session] | None = None,
        permission: str = "default",
    ):
        self.user_id = user_id
        self.permission = permission
        self._session_factory = session_factory or SessionLocal

    def request_permission(self) -> str:
        if self.permission == "default":
            self.permission = "granted"
        return self.permission

    def show_notification(self, title: str, body: str, tag: str) -> bool:
        if self.permission != "granted":
            return False
        db = self._session_factory()
        try:
            existing = (
                db.query(Notification)
                .filter(Notification.user_id == self.user_id, Notification.category == "reminder")
                .order_by(Notification.created_at.desc())
                .limit(50)
                .all()
            )
            for row in existing:
                try:
                    payload = json.loads(row.payload or "{}")
                except ValueError:
                    continue
                if isinstance(payload, dict) and payload.get("tag") == tag:
                    return False
            db.add(
                Notification(
                    user_id=self.user_id,
                    category="reminder",
                    title=title,
                    message=body,
                    payload=json.dumps({"kind": "dose_due", "tag": tag}, ensure_ascii=True),
                )
            )
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            logger.warning(f"Reminder notification failed for user {self.user_id}: {e}")
            return False
        finally:
            db.close()


class ClientAudioPlayer:
    """Tracks looped playback that the browser client mirrors.

    The client polls the active alert and plays ``current_source`` on loop
    while ``is_playing`` is set.
    """

    def __init__(self, volume: float = 0.8):
        self.volume = volume
        self.loop = True
        self._source: str | None = None
        self._playing = False
        self.play_count = 0

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def current_source(self) -> str | None:
        return self._source

    def play_loop(self, sound_ref: str) -> None:
        url = ringtone_url(sound_ref)
        if self._playing and self._source == url:
            return
        self._source = url
        self._playing = True
        self.play_count += 1

    def stop(self) -> None:
        self._playing = False


def safe_request_permission(notifier: Notifier) -> str:
    try:
        return notifier.request_permission()
    except Exception as e:
        logger.warning(f"Notification permission request failed: {e}")
        return "denied"


def safe_notify(notifier: Notifier, title: str, body: str, tag: str) -> bool:
    try:
        if getattr(notifier, "permission", "denied") != "granted":
            return False
        return bool(notifier.show_notification(title, body, tag))
    except Exception as e:
        logger.warning(f"Notification failed for tag {tag}: {e}")
        return False


def safe_play(player: AudioPlayer, ringtone: str | None) -> bool:
    try:
        player.play_loop(ringtone or "default")
        return True
    except Exception as e:
        logger.warning(f"Audio playback blocked: {e}")
        return False


def safe_stop(player: AudioPlayer) -> None:
    try:
        player.stop()
    except Exception as e:
        logger.warning(f"Audio stop failed: {e}")
