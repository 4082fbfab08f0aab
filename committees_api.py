"""Committee routes: admin CRUD plus the per-committee dashboard."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import Field
from pymongo.database import Database

from auth import get_current_user, require_role
from database import COMMITTEES, find_by_id, get_db, now_utc, serialize_doc, to_object_id
from errors import PermissionDeniedError
from logger import log_transaction
from membership import create_committee
from reports import dashboard
from schemas import RequestModel

router = APIRouter(prefix="/committees", tags=["committees"])


class CommitteeCreateRequest(RequestModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    coordinator_ids: List[str] = Field(default_factory=list)
    member_ids: List[str] = Field(default_factory=list)


class CommitteeUpdateRequest(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None


def _committee(database: Database, committee_id: str) -> Dict[str, Any]:
    return find_by_id(database, COMMITTEES, committee_id, "Committee")


@router.post("", status_code=status.HTTP_201_CREATED)
def new_committee(
    payload: CommitteeCreateRequest,
    admin: Dict[str, Any] = Depends(require_role("admin")),
    database: Database = Depends(get_db),
):
    committee = create_committee(
        database,
        admin,
        payload.name.strip(),
        payload.description,
        coordinator_ids=payload.coordinator_ids,
        member_ids=payload.member_ids,
    )
    return serialize_doc(committee)


@router.get("")
def list_committees(
    _: Dict[str, Any] = Depends(require_role("admin")),
    database: Database = Depends(get_db),
):
    cursor = database[COMMITTEES].find({"is_active": True}).sort("name", 1)
    return [serialize_doc(doc) for doc in cursor]


@router.get("/mine")
def my_committees(
    user: Dict[str, Any] = Depends(require_role("member", "coordinator", "admin")),
    database: Database = Depends(get_db),
):
    uid = str(user["_id"])
    query: Dict[str, Any] = {"is_active": True}
    if user.get("role") != "admin":
        query["$or"] = [{"coordinator_ids": uid}, {"member_ids": uid}]
    return [serialize_doc(doc) for doc in database[COMMITTEES].find(query).sort("name", 1)]


@router.put("/{committee_id}")
def update_committee(
    committee_id: str,
    payload: CommitteeUpdateRequest,
    admin: Dict[str, Any] = Depends(require_role("admin")),
    database: Database = Depends(get_db),
):
    committee = _committee(database, committee_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes:
        changes["updated_at"] = now_utc()
        database[COMMITTEES].update_one({"_id": committee["_id"]}, {"$set": changes})
    log_transaction("admin.update_committee", str(admin["_id"]), committee_id=str(committee["_id"]))
    return serialize_doc(_committee(database, committee_id))


@router.delete("/{committee_id}")
def delete_committee(
    committee_id: str,
    admin: Dict[str, Any] = Depends(require_role("admin")),
    database: Database = Depends(get_db),
):
    committee = _committee(database, committee_id)
    database[COMMITTEES].update_one(
        {"_id": committee["_id"]}, {"$set": {"is_active": False, "updated_at": now_utc()}}
    )
    log_transaction("admin.delete_committee", str(admin["_id"]), committee_id=str(committee["_id"]))
    return {"success": True}


@router.get("/{committee_id}/dashboard")
def committee_dashboard(
    committee_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    committee = database[COMMITTEES].find_one({"_id": to_object_id(committee_id, "committee")})
    uid = str(user["_id"])
    allowed = user.get("role") == "admin" or (
        committee is not None
        and (uid in (committee.get("coordinator_ids") or []) or uid in (committee.get("member_ids") or []))
    )
    if not allowed:
        raise PermissionDeniedError("Not authorized for this committee")
    if committee is None:
        committee = _committee(database, committee_id)

    result = dashboard(database, committee.get("assigned_event_ids") or [])
    result["committee"] = serialize_doc(committee)
    return result
