import json
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import Medication, User

router = APIRouter(prefix="/medications", tags=["medications"])

VALID_FREQUENCIES = {
    "once_daily",
    "twice_daily",
    "three_times_daily",
    "four_times_daily",
    "as_needed",
    "custom",
}
REMINDER_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class MedicationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    dosage: str = ""
    frequency: str = "once_daily"
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    reminder_times: list[str] = Field(default_factory=lambda: ["09:00"])
    photo_url: Optional[str] = None
    notes: Optional[str] = None
    remaining_quantity: Optional[int] = Field(default=None, ge=0)
    refill_reminder_threshold: int = Field(default=7, ge=0)
    active: bool = True


class MedicationUpdate(BaseModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    reminder_times: Optional[list[str]] = None
    photo_url: Optional[str] = None
    notes: Optional[str] = None
    remaining_quantity: Optional[int] = Field(default=None, ge=0)
    refill_reminder_threshold: Optional[int] = Field(default=None, ge=0)
    active: Optional[bool] = None


class MedicationResponse(BaseModel):
    id: int
    name: str
    dosage: str
    frequency: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    reminder_times: list[str]
    photo_url: Optional[str] = None
    notes: Optional[str] = None
    remaining_quantity: Optional[int] = None
    refill_reminder_threshold: int
    active: bool


def parse_reminder_times(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    return [str(item) for item in parsed if isinstance(item, str)]


def _clean_reminder_times(times: list[str]) -> list[str]:
    cleaned = []
    for raw in times:
        value = (raw or "").strip()
        if not REMINDER_TIME_RE.match(value):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid reminder time '{raw}'")
        if value not in cleaned:
            cleaned.append(value)
    return sorted(cleaned)


def serialize_medication(med: Medication) -> MedicationResponse:
    return MedicationResponse(
        id=med.id,
        name=med.name,
        dosage=med.dosage or "",
        frequency=med.frequency or "once_daily",
        start_date=med.start_date,
        end_date=med.end_date,
        reminder_times=parse_reminder_times(med.reminder_times),
        photo_url=med.photo_url,
        notes=med.notes,
        remaining_quantity=med.remaining_quantity,
        refill_reminder_threshold=int(med.refill_reminder_threshold or 0),
        active=bool(med.active),
    )


def get_owned_medication(db: Session, user: User, medication_id: int) -> Medication:
    med = db.query(Medication).filter(Medication.id == medication_id, Medication.user_id == user.id).first()
    if not med:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Medication not found")
    return med


@router.get("", response_model=list[MedicationResponse])
def list_medications(
    include_inactive: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(Medication).filter(Medication.user_id == user.id)
    if not include_inactive:
        query = query.filter(Medication.active.is_(True))
    return [serialize_medication(med) for med in query.order_by(Medication.name).all()]


@router.post("", response_model=MedicationResponse, status_code=status.HTTP_201_CREATED)
def create_medication(
    req: MedicationCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if req.frequency not in VALID_FREQUENCIES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid frequency '{req.frequency}'")
    med = Medication(
        user_id=user.id,
        name=req.name.strip(),
        dosage=req.dosage.strip(),
        frequency=req.frequency,
        start_date=req.start_date,
        end_date=req.end_date,
        reminder_times=json.dumps(_clean_reminder_times(req.reminder_times)),
        photo_url=req.photo_url,
        notes=req.notes,
        remaining_quantity=req.remaining_quantity,
        refill_reminder_threshold=req.refill_reminder_threshold,
        active=req.active,
    )
    db.add(med)
    db.commit()
    db.refresh(med)
    return serialize_medication(med)


@router.get("/{medication_id}", response_model=MedicationResponse)
def get_medication(
    medication_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return serialize_medication(get_owned_medication(db, user, medication_id))


@router.patch("/{medication_id}", response_model=MedicationResponse)
def update_medication(
    medication_id: int,
    req: MedicationUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    med = get_owned_medication(db, user, medication_id)
    changes = req.model_dump(exclude_unset=True)
    if "frequency" in changes and changes["frequency"] not in VALID_FREQUENCIES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid frequency '{changes['frequency']}'")
    if "reminder_times" in changes:
        changes["reminder_times"] = json.dumps(_clean_reminder_times(changes["reminder_times"] or []))
    for key, value in changes.items():
        if value is None and key in {"name", "dosage", "frequency", "refill_reminder_threshold", "active"}:
            continue
        setattr(med, key, value)
    db.commit()
    db.refresh(med)
    return serialize_medication(med)


@router.delete("/{medication_id}")
def delete_medication(
    medication_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # Deactivate only; dose logs keep pointing at the row for adherence history.
    med = get_owned_medication(db, user, medication_id)
    med.active = False
    db.commit()
    return {"status": "ok"}
