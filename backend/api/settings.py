import logging
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from config import RINGTONES
from db.database import get_db
from db.models import User, UserSettings
from services.reminder_runtime import reminder_registry
from services.repositories import ReminderSettings, upsert_settings_row, validate_settings_changes

router = APIRouter(prefix="/settings", tags=["settings"])
logger = logging.getLogger(__name__)


class ReminderSettingsUpdate(BaseModel):
    sound_enabled: Optional[bool] = None
    ringtone: Optional[str] = None
    snooze_minutes: Optional[int] = None
    dark_mode: Optional[bool] = None
    timezone: Optional[str] = None


class ReminderSettingsResponse(BaseModel):
    sound_enabled: bool
    ringtone: str
    snooze_minutes: int
    dark_mode: bool
    timezone: Optional[str] = None
    is_default: bool
    updated_at: Optional[str] = None


class RingtoneOption(BaseModel):
    key: str
    url: str


def _response(prefs: ReminderSettings, is_default: bool) -> ReminderSettingsResponse:
    return ReminderSettingsResponse(
        sound_enabled=prefs.sound_enabled,
        ringtone=prefs.ringtone,
        snooze_minutes=prefs.snooze_minutes,
        dark_mode=prefs.dark_mode,
        timezone=prefs.timezone,
        is_default=is_default,
        updated_at=prefs.updated_at.isoformat() if prefs.updated_at else None,
    )


@router.get("/reminders", response_model=ReminderSettingsResponse)
def get_reminder_settings(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    row = db.query(UserSettings).filter(UserSettings.user_id == user.id).first()
    if row is None:
        return _response(ReminderSettings.defaults(), is_default=True)
    return _response(ReminderSettings.from_row(row), is_default=False)


@router.put("/reminders", response_model=ReminderSettingsResponse)
async def update_reminder_settings(
    req: ReminderSettingsUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    changes = req.model_dump(exclude_unset=True)
    if changes.get("timezone"):
        try:
            ZoneInfo(changes["timezone"])
        except Exception:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown timezone")
    try:
        cleaned = validate_settings_changes(changes)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    row = upsert_settings_row(db, user.id, cleaned)
    db.commit()
    db.refresh(row)
    prefs = ReminderSettings.from_row(row)
    logger.info(f"Saved reminder settings for user {user.id}: {sorted(cleaned)}")

    # A ringing alert follows ringtone / sound changes immediately. The alert
    # session lives on the event loop, so this route must stay async.
    runtime = reminder_registry.get(user.id)
    if runtime is not None and ("ringtone" in cleaned or "sound_enabled" in cleaned):
        runtime.session.change_ringtone(prefs.ringtone, sound_enabled=prefs.sound_enabled)
    return _response(prefs, is_default=False)


@router.get("/ringtones", response_model=list[RingtoneOption])
def list_ringtones():
    return [RingtoneOption(key=key, url=url) for key, url in RINGTONES.items()]
