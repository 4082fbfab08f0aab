"""Admin routes: user management, role/committee changes, stats and exports."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import EmailStr, Field
from pymongo.database import Database

from auth import require_role
from database import COMMITTEES, USERS, find_by_id, get_db, now_utc, serialize_doc
from errors import ConflictError, InvalidArgumentError
from logger import log_transaction
from membership import (
    add_coordinator,
    add_member,
    assign_committee,
    assign_role,
    delete_identity,
    identity_violations,
    remove_coordinator,
    remove_member,
    unassign_committee,
)
from registrations import search_registrations
from reports import admin_stats, attendance_csv, participants_csv
from schemas import PaymentStatus, RequestModel, Role

router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_role("admin")


class UpdateUserRequest(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    college_id: Optional[str] = None
    year: Optional[str] = None


class BlockUserRequest(RequestModel):
    is_blocked: bool


class AssignRoleRequest(RequestModel):
    role: Role
    committee_id: Optional[str] = None


class AssignCommitteeRequest(RequestModel):
    committee_id: str


class CommitteeUserRequest(RequestModel):
    user_id: str


def _committee_summary(committee: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": str(committee["_id"]), "name": committee.get("name")}


# Users

@router.get("/users")
def list_users(
    role: Optional[Role] = None,
    _: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    query = {"role": role} if role else {}
    users = list(database[USERS].find(query).sort("created_at", -1))
    committees = list(database[COMMITTEES].find({"is_active": True}))

    result = []
    for user in users:
        uid = str(user["_id"])
        item = serialize_doc(user)
        item["coordinator_of"] = [
            _committee_summary(c) for c in committees if uid in (c.get("coordinator_ids") or [])
        ]
        item["member_of"] = [_committee_summary(c) for c in committees if uid in (c.get("member_ids") or [])]
        result.append(item)
    return result


@router.put("/users/{user_id}")
def update_user(
    user_id: str,
    payload: UpdateUserRequest,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    user = find_by_id(database, USERS, user_id, "User")
    changes = payload.model_dump(exclude_unset=True)
    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
        clash = database[USERS].find_one({"email": changes["email"], "_id": {"$ne": user["_id"]}})
        if clash:
            raise ConflictError("Email already registered")
    if changes:
        changes["updated_at"] = now_utc()
        database[USERS].update_one({"_id": user["_id"]}, {"$set": changes})
    log_transaction("admin.update_user", str(admin["_id"]), target_user_id=str(user["_id"]))
    return serialize_doc(database[USERS].find_one({"_id": user["_id"]}))


@router.put("/users/{user_id}/block")
def block_user(
    user_id: str,
    payload: BlockUserRequest,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    user = find_by_id(database, USERS, user_id, "User")
    if user["_id"] == admin["_id"]:
        raise InvalidArgumentError("Cannot block yourself")
    database[USERS].update_one(
        {"_id": user["_id"]}, {"$set": {"is_blocked": payload.is_blocked, "updated_at": now_utc()}}
    )
    action = "admin.block_user" if payload.is_blocked else "admin.unblock_user"
    log_transaction(action, str(admin["_id"]), target_user_id=str(user["_id"]))
    return serialize_doc(database[USERS].find_one({"_id": user["_id"]}))


@router.delete("/users/{user_id}")
def delete_user(
    user_id: str,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    if str(admin["_id"]) == user_id:
        raise InvalidArgumentError("Cannot delete yourself")
    delete_identity(database, admin, user_id)
    return {"success": True}


@router.put("/users/{user_id}/role")
def update_role(
    user_id: str,
    payload: AssignRoleRequest,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    return serialize_doc(assign_role(database, admin, user_id, payload.role, payload.committee_id))


@router.put("/users/{user_id}/committee")
def update_committee_assignment(
    user_id: str,
    payload: AssignCommitteeRequest,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    return serialize_doc(assign_committee(database, admin, user_id, payload.committee_id))


@router.delete("/users/{user_id}/committee")
def remove_committee_assignment(
    user_id: str,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    return serialize_doc(unassign_committee(database, admin, user_id))


@router.get("/users/{user_id}/consistency")
def user_consistency(
    user_id: str,
    _: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    user = find_by_id(database, USERS, user_id, "User")
    violations = identity_violations(database, user)
    return {"user_id": str(user["_id"]), "consistent": not violations, "violations": violations}


# Coordinators

@router.post("/committees/{committee_id}/coordinators")
def create_coordinator(
    committee_id: str,
    payload: CommitteeUserRequest,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    committee, user = add_coordinator(database, admin, committee_id, payload.user_id)
    return {"committee": serialize_doc(committee), "user": serialize_doc(user)}


@router.delete("/committees/{committee_id}/coordinators/{user_id}")
def delete_coordinator(
    committee_id: str,
    user_id: str,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    committee, user = remove_coordinator(database, admin, committee_id, user_id)
    return {"committee": serialize_doc(committee), "user": serialize_doc(user)}


# Members

@router.post("/committees/{committee_id}/members")
def create_member(
    committee_id: str,
    payload: CommitteeUserRequest,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    return serialize_doc(add_member(database, admin, committee_id, payload.user_id))


@router.delete("/committees/{committee_id}/members/{member_id}")
def delete_member(
    committee_id: str,
    member_id: str,
    admin: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    return serialize_doc(remove_member(database, admin, committee_id, member_id))


# Reports

@router.get("/stats")
def stats(_: Dict[str, Any] = Depends(admin_only), database: Database = Depends(get_db)):
    return admin_stats(database)


@router.get("/registrations")
def registrations(
    q: Optional[str] = None,
    event_id: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    _: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    return search_registrations(database, q=q, event_id=event_id, payment_status=payment_status)


def _csv_response(content: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/export/participants")
def export_participants(
    event_id: Optional[str] = None,
    _: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    return _csv_response(participants_csv(database, event_id), "participants.csv")


@router.get("/export/attendance")
def export_attendance(
    event_id: Optional[str] = None,
    _: Dict[str, Any] = Depends(admin_only),
    database: Database = Depends(get_db),
):
    return _csv_response(attendance_csv(database, event_id), "attendance.csv")
