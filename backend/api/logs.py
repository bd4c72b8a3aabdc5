import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.medications import get_owned_medication
from auth.utils import get_current_user, user_timezone
from db.database import get_db
from db.models import MedicationLog, User
from services.repositories import (
    LogNotFoundError,
    LogRecord,
    LogTransitionError,
    decrement_medication_quantity,
    query_log_records,
    set_log_status,
)
from utils.datetime_utils import day_bounds, parse_iso_datetime, to_naive_utc, utcnow

router = APIRouter(prefix="/logs", tags=["logs"])
logger = logging.getLogger(__name__)


class LogCreate(BaseModel):
    medication_id: int
    scheduled_time: str  # ISO-8601
    notes: Optional[str] = None


class LogStatusRequest(BaseModel):
    notes: Optional[str] = None


def _parse_bound(raw: Optional[str], field_name: str) -> datetime | None:
    if raw is None:
        return None
    parsed = parse_iso_datetime(raw)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {field_name} datetime")
    return parsed


@router.get("")
def list_logs(
    start: Optional[str] = Query(default=None),
    end: Optional[str] = Query(default=None),
    medication_id: Optional[int] = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    records = query_log_records(db, user.id, _parse_bound(start, "start"), _parse_bound(end, "end"))
    if medication_id is not None:
        records = [r for r in records if r.medication_id == medication_id]
    return [r.to_dict() for r in records]


@router.get("/today")
def list_today_logs(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    day_start, day_end = day_bounds(utcnow(), user_timezone(user))
    return [r.to_dict() for r in query_log_records(db, user.id, day_start, day_end, newest_first=False)]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_log(req: LogCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    med = get_owned_medication(db, user, req.medication_id)
    scheduled = parse_iso_datetime(req.scheduled_time)
    if scheduled is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid scheduled_time")
    row = MedicationLog(
        user_id=user.id,
        medication_id=med.id,
        scheduled_time=to_naive_utc(scheduled),
        status="pending",
        notes=req.notes,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return LogRecord.from_row(row, med).to_dict()


def _change_status(db: Session, user: User, log_id: int, new_status: str, notes: Optional[str]) -> dict:
    taken_time = utcnow() if new_status == "taken" else None
    try:
        row = set_log_status(db, log_id, new_status, taken_time=taken_time, user_id=user.id)
    except LogNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Log not found")
    except LogTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Dose is already {e.current_status}")
    if notes:
        row.notes = notes
    db.commit()

    remaining = None
    if new_status == "taken":
        try:
            remaining = decrement_medication_quantity(db, row.medication_id)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Inventory decrement failed for medication {row.medication_id}: {e}")
    db.refresh(row)
    payload = LogRecord.from_row(row, row.medication).to_dict()
    payload["remaining_quantity"] = remaining
    return payload


@router.post("/{log_id}/take")
def take_log(
    log_id: int,
    req: LogStatusRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _change_status(db, user, log_id, "taken", req.notes if req else None)


@router.post("/{log_id}/miss")
def miss_log(
    log_id: int,
    req: LogStatusRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _change_status(db, user, log_id, "missed", req.notes if req else None)


@router.post("/{log_id}/skip")
def skip_log(
    log_id: int,
    req: LogStatusRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _change_status(db, user, log_id, "skipped", req.notes if req else None)
