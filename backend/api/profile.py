import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import Profile, User

router = APIRouter(prefix="/profile", tags=["profile"])
logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "full_name",
    "email",
    "phone",
    "mobile",
    "date_of_birth",
    "medical_history",
    "allergies",
    "emergency_contact_name",
    "emergency_contact_phone",
    "healthcare_provider",
    "photo_url",
    "onboarding_completed",
)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    date_of_birth: Optional[str] = None
    medical_history: Optional[str] = None
    allergies: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    healthcare_provider: Optional[str] = None
    photo_url: Optional[str] = None
    onboarding_completed: Optional[bool] = None


class ProfileResponse(BaseModel):
    username: str
    display_name: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    date_of_birth: Optional[str] = None
    medical_history: Optional[str] = None
    allergies: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    healthcare_provider: Optional[str] = None
    photo_url: Optional[str] = None
    onboarding_completed: bool = False


def _response(user: User, row: Profile | None) -> ProfileResponse:
    values = {field: getattr(row, field) for field in PROFILE_FIELDS} if row else {}
    values["onboarding_completed"] = bool(values.get("onboarding_completed"))
    return ProfileResponse(username=user.username, display_name=user.display_name, **values)


@router.get("", response_model=ProfileResponse)
def get_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    row = db.query(Profile).filter(Profile.user_id == user.id).first()
    return _response(user, row)


@router.put("", response_model=ProfileResponse)
def update_profile(
    req: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    changes = req.model_dump(exclude_unset=True)
    if changes.get("date_of_birth"):
        try:
            born = date.fromisoformat(changes["date_of_birth"])
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="date_of_birth must be YYYY-MM-DD")
        if born > date.today():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="date_of_birth is in the future")
    if changes.get("onboarding_completed") is None:
        changes.pop("onboarding_completed", None)

    row = db.query(Profile).filter(Profile.user_id == user.id).first()
    if row is None:
        row = Profile(user_id=user.id, onboarding_completed=False)
        db.add(row)
    for key, value in changes.items():
        setattr(row, key, value.strip() if isinstance(value, str) else value)
    db.commit()
    db.refresh(row)
    if changes.get("onboarding_completed"):
        logger.info(f"User {user.id} completed onboarding")
    return _response(user, row)
