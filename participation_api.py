"""Registration, QR verification, attendance and scoring routes."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import Field
from pymongo.database import Database

from auth import get_current_user, require_role
from database import get_db, serialize_doc
from errors import PermissionDeniedError
from registrations import (
    attendance_for_registration,
    create_registration,
    event_registrations,
    registration_scores,
    scoreboard,
    upsert_attendance,
    upsert_score,
    user_registrations,
    verify_token,
)
from schemas import RequestModel

router = APIRouter(tags=["registrations"])

staff_only = require_role("member", "coordinator", "admin")


class RegisterRequest(RequestModel):
    group_members: List[str] = Field(default_factory=list)
    package_id: Optional[str] = None


class VerifyRequest(RequestModel):
    qr_code: str = Field(..., min_length=1)


class AttendanceRequest(RequestModel):
    registration_id: str
    participant_id: str
    status: str
    notes: Optional[str] = None


class ScoreRequest(RequestModel):
    registration_id: str
    participant_id: str
    score: float
    round: Optional[str] = None
    comments: Optional[str] = None


@router.post("/events/{event_id}/register", status_code=status.HTTP_201_CREATED)
def register_for_event(
    event_id: str,
    payload: RegisterRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    return create_registration(database, event_id, user, payload.group_members, payload.package_id)


@router.get("/users/{user_id}/registrations")
def list_user_registrations(
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    if str(user["_id"]) != user_id and user.get("role") != "admin":
        raise PermissionDeniedError("Not authorized")
    return user_registrations(database, user_id)


@router.get("/events/{event_id}/registrations")
def list_event_registrations(
    event_id: str,
    _: Dict[str, Any] = Depends(staff_only),
    database: Database = Depends(get_db),
):
    return event_registrations(database, event_id)


# Verification

@router.post("/verification/verify")
def verify_qr_code(
    payload: VerifyRequest,
    _: Dict[str, Any] = Depends(staff_only),
    database: Database = Depends(get_db),
):
    return verify_token(database, payload.qr_code.strip())


@router.post("/verification/attendance", status_code=status.HTTP_201_CREATED)
def mark_attendance(
    payload: AttendanceRequest,
    response: Response,
    verifier: Dict[str, Any] = Depends(staff_only),
    database: Database = Depends(get_db),
):
    record, created = upsert_attendance(
        database, verifier, payload.registration_id, payload.participant_id, payload.status, payload.notes
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return serialize_doc(record)


@router.get("/verification/attendance/{registration_id}")
def registration_attendance(
    registration_id: str,
    _: Dict[str, Any] = Depends(staff_only),
    database: Database = Depends(get_db),
):
    return attendance_for_registration(database, registration_id)


# Scores

@router.post("/scores", status_code=status.HTTP_201_CREATED)
def submit_score(
    payload: ScoreRequest,
    response: Response,
    judge: Dict[str, Any] = Depends(staff_only),
    database: Database = Depends(get_db),
):
    record, created = upsert_score(
        database,
        judge,
        payload.registration_id,
        payload.participant_id,
        payload.score,
        round=payload.round,
        comments=payload.comments,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return serialize_doc(record)


@router.get("/scores/event/{event_id}")
def event_scoreboard(event_id: str, database: Database = Depends(get_db)):
    return scoreboard(database, event_id)


@router.get("/scores/registration/{registration_id}")
def scores_for_registration(
    registration_id: str,
    _: Dict[str, Any] = Depends(staff_only),
    database: Database = Depends(get_db),
):
    return registration_scores(database, registration_id)
