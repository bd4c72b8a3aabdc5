from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.medications import serialize_medication
from auth.utils import get_current_user, user_timezone
from config import settings
from db.database import get_db
from db.models import Achievement, Medication, User
from services.adherence_service import build_dashboard, todays_logs
from services.repositories import query_log_records
from utils.datetime_utils import day_bounds, lookback_start, utcnow

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def _serialize_achievement(row: Achievement) -> dict:
    return {
        "id": row.id,
        "badge_type": row.badge_type,
        "earned_date": row.earned_date.isoformat() if row.earned_date else None,
        "streak_count": row.streak_count,
    }


@router.get("")
def get_dashboard(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    now = utcnow()
    tz_name = user_timezone(user)
    since = lookback_start(now, settings.ADHERENCE_LOOKBACK_DAYS)
    day_start, _day_end = day_bounds(now, tz_name)

    recent = query_log_records(db, user.id, start=min(since, day_start))
    today = todays_logs(recent, now, tz_name)
    medications = (
        db.query(Medication)
        .filter(Medication.user_id == user.id, Medication.active.is_(True))
        .order_by(Medication.name)
        .all()
    )
    achievements = (
        db.query(Achievement)
        .filter(Achievement.user_id == user.id)
        .order_by(Achievement.earned_date.desc())
        .limit(settings.RECENT_ACHIEVEMENTS_LIMIT)
        .all()
    )

    data = build_dashboard(
        medications,
        today,
        recent,
        achievements,
        now,
        days=settings.ADHERENCE_LOOKBACK_DAYS,
        upcoming_limit=settings.UPCOMING_DOSES_LIMIT,
        achievements_limit=settings.RECENT_ACHIEVEMENTS_LIMIT,
    )
    return {
        "today_medications": [
            {**serialize_medication(med).model_dump(), "logs": [log.to_dict() for log in logs]}
            for med, logs in data["today_medications"]
        ],
        "upcoming_doses": [log.to_dict() for log in data["upcoming_doses"]],
        "adherence_stats": data["adherence_stats"].to_dict(),
        "recent_achievements": [_serialize_achievement(a) for a in data["recent_achievements"]],
        "refill_alerts": [serialize_medication(med).model_dump() for med in data["refill_alerts"]],
    }
