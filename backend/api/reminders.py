import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from auth.utils import get_current_user
from db.models import User
from services.alert_session import AlertActionError, AlertOutcome, AlertStateError
from services.reminder_runtime import ReminderRuntime, reminder_registry

router = APIRouter(prefix="/reminders", tags=["reminders"])
logger = logging.getLogger(__name__)


class AlertActionRequest(BaseModel):
    log_id: Optional[int] = None


class ActiveAlertResponse(BaseModel):
    log_id: int
    medication_id: int
    medication_name: str
    dosage: str
    photo_url: str
    scheduled_time: str
    started_at: str
    expires_at: str
    sound_url: Optional[str] = None


class AlertOutcomeResponse(BaseModel):
    log_id: int
    action: str
    status: str
    title: str
    description: str
    remaining_quantity: Optional[int] = None


class ReminderSessionResponse(BaseModel):
    running: bool
    state: str
    processed_count: int


def _require_runtime(user: User) -> ReminderRuntime:
    runtime = reminder_registry.get(user.id)
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Reminder session is not running")
    return runtime


def _session_status(runtime: ReminderRuntime | None) -> ReminderSessionResponse:
    if runtime is None:
        return ReminderSessionResponse(running=False, state="idle", processed_count=0)
    return ReminderSessionResponse(
        running=runtime.running,
        state=runtime.session.state.value,
        processed_count=len(runtime.poller.processed_ids),
    )


def _outcome_response(outcome: AlertOutcome) -> AlertOutcomeResponse:
    return AlertOutcomeResponse(
        log_id=outcome.log_id,
        action=outcome.action,
        status=outcome.status,
        title=outcome.title,
        description=outcome.description,
        remaining_quantity=outcome.remaining_quantity,
    )


@router.get("/session", response_model=ReminderSessionResponse)
def get_session(user: User = Depends(get_current_user)):
    return _session_status(reminder_registry.get(user.id))


@router.post("/session/start", response_model=ReminderSessionResponse)
async def start_session(user: User = Depends(get_current_user)):
    return _session_status(reminder_registry.start(user.id))


@router.post("/session/stop", response_model=ReminderSessionResponse)
async def stop_session(user: User = Depends(get_current_user)):
    reminder_registry.stop(user.id)
    return _session_status(None)


@router.post("/check", response_model=Optional[ActiveAlertResponse])
async def check_now(user: User = Depends(get_current_user)):
    runtime = _require_runtime(user)
    await runtime.poller.tick()
    view = runtime.session.view()
    return ActiveAlertResponse(**view) if view else None


@router.get("/active", response_model=ActiveAlertResponse)
def get_active_alert(user: User = Depends(get_current_user)):
    runtime = _require_runtime(user)
    view = runtime.session.view()
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active reminder")
    return ActiveAlertResponse(**view)


async def _run_action(user: User, action: str, log_id: Optional[int]) -> AlertOutcomeResponse:
    runtime = _require_runtime(user)
    try:
        if action == "taken":
            outcome = await runtime.session.take(log_id)
        elif action == "missed":
            outcome = await runtime.session.miss(log_id)
        else:
            outcome = runtime.session.snooze(log_id)
    except AlertStateError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AlertActionError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return _outcome_response(outcome)


@router.post("/active/take", response_model=AlertOutcomeResponse)
async def take_active(req: AlertActionRequest | None = None, user: User = Depends(get_current_user)):
    return await _run_action(user, "taken", req.log_id if req else None)


@router.post("/active/missed", response_model=AlertOutcomeResponse)
async def miss_active(req: AlertActionRequest | None = None, user: User = Depends(get_current_user)):
    return await _run_action(user, "missed", req.log_id if req else None)


@router.post("/active/snooze", response_model=AlertOutcomeResponse)
async def snooze_active(req: AlertActionRequest | None = None, user: User = Depends(get_current_user)):
    return await _run_action(user, "snoozed", req.log_id if req else None)
