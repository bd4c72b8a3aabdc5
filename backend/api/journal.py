from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import HealthJournalEntry, User

router = APIRouter(prefix="/journal", tags=["journal"])

VALID_MOODS = {"great", "good", "okay", "bad", "terrible"}


class JournalEntryCreate(BaseModel):
    entry_date: str  # YYYY-MM-DD
    symptoms: Optional[str] = None
    mood: Optional[str] = None
    wellness_score: Optional[int] = Field(default=None, ge=1, le=10)
    notes: Optional[str] = None


class JournalEntryUpdate(BaseModel):
    symptoms: Optional[str] = None
    mood: Optional[str] = None
    wellness_score: Optional[int] = Field(default=None, ge=1, le=10)
    notes: Optional[str] = None


class JournalEntryResponse(BaseModel):
    id: int
    entry_date: str
    symptoms: Optional[str] = None
    mood: Optional[str] = None
    wellness_score: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def _clean_date(raw: str) -> str:
    try:
        return date.fromisoformat((raw or "").strip()).isoformat()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="entry_date must be YYYY-MM-DD")


def _clean_mood(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    mood = raw.strip().lower()
    if mood not in VALID_MOODS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid mood '{raw}'")
    return mood


def serialize_entry(row: HealthJournalEntry) -> JournalEntryResponse:
    return JournalEntryResponse(
        id=row.id,
        entry_date=row.entry_date,
        symptoms=row.symptoms,
        mood=row.mood,
        wellness_score=row.wellness_score,
        notes=row.notes,
        created_at=row.created_at.isoformat() if row.created_at else None,
        updated_at=row.updated_at.isoformat() if row.updated_at else None,
    )


def _owned_entry(db: Session, user: User, entry_id: int) -> HealthJournalEntry:
    row = (
        db.query(HealthJournalEntry)
        .filter(HealthJournalEntry.id == entry_id, HealthJournalEntry.user_id == user.id)
        .first()
    )
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Journal entry not found")
    return row


@router.get("", response_model=list[JournalEntryResponse])
def list_entries(
    limit: int = Query(default=30, ge=1, le=365),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(HealthJournalEntry)
        .filter(HealthJournalEntry.user_id == user.id)
        .order_by(HealthJournalEntry.entry_date.desc())
        .limit(limit)
        .all()
    )
    return [serialize_entry(row) for row in rows]


@router.get("/date/{entry_date}", response_model=Optional[JournalEntryResponse])
def get_entry_for_date(entry_date: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    row = (
        db.query(HealthJournalEntry)
        .filter(HealthJournalEntry.user_id == user.id, HealthJournalEntry.entry_date == _clean_date(entry_date))
        .first()
    )
    return serialize_entry(row) if row else None


@router.post("", response_model=JournalEntryResponse, status_code=status.HTTP_201_CREATED)
def create_entry(
    req: JournalEntryCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entry_date = _clean_date(req.entry_date)
    existing = (
        db.query(HealthJournalEntry)
        .filter(HealthJournalEntry.user_id == user.id, HealthJournalEntry.entry_date == entry_date)
        .first()
    )
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An entry for this date already exists")
    row = HealthJournalEntry(
        user_id=user.id,
        entry_date=entry_date,
        symptoms=req.symptoms,
        mood=_clean_mood(req.mood),
        wellness_score=req.wellness_score,
        notes=req.notes,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return serialize_entry(row)


@router.patch("/{entry_id}", response_model=JournalEntryResponse)
def update_entry(
    entry_id: int,
    req: JournalEntryUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = _owned_entry(db, user, entry_id)
    changes = req.model_dump(exclude_unset=True)
    if "mood" in changes:
        changes["mood"] = _clean_mood(changes["mood"])
    for key, value in changes.items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    return serialize_entry(row)


@router.delete("/{entry_id}")
def delete_entry(
    entry_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = _owned_entry(db, user, entry_id)
    db.delete(row)
    db.commit()
    return {"status": "ok"}
