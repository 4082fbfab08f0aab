"""Coordinator and member routes, scoped to the caller's committees."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pymongo.database import Database

from auth import require_role
from database import COMMITTEES, USERS, find_many_by_ids, get_db, serialize_doc, to_object_id
from errors import NotFoundError, PermissionDeniedError
from membership import add_member, remove_member
from registrations import search_registrations, user_summary
from reports import committee_report, dashboard
from schemas import PaymentStatus, RequestModel

coordinator_router = APIRouter(prefix="/coordinator", tags=["coordinator"])
member_router = APIRouter(prefix="/member", tags=["member"])


@dataclass
class CoordinatorScope:
    user: Dict[str, Any]
    committees: List[Dict[str, Any]]

    def event_ids(self) -> List[str]:
        return [eid for c in self.committees for eid in c.get("assigned_event_ids") or []]

    def committee(self, committee_id: str) -> Dict[str, Any]:
        oid = to_object_id(committee_id, "committee")
        for committee in self.committees:
            if committee["_id"] == oid:
                return committee
        raise PermissionDeniedError("Not authorized for this committee")


class AddMemberRequest(RequestModel):
    user_id: str


def get_coordinator_scope(
    user: Dict[str, Any] = Depends(require_role("coordinator")),
    database: Database = Depends(get_db),
) -> CoordinatorScope:
    committees = list(
        database[COMMITTEES].find({"coordinator_ids": str(user["_id"]), "is_active": True}).sort("name", 1)
    )
    if not committees:
        raise PermissionDeniedError("Coordinator access required")
    return CoordinatorScope(user=user, committees=committees)


def _available_students(database: Database, exclude: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    query = {"role": "student", "committee_id": None, "is_blocked": {"$ne": True}}
    excluded = set(exclude or [])
    students = database[USERS].find(query).sort("name", 1)
    return [user_summary(s) for s in students if str(s["_id"]) not in excluded]


@coordinator_router.get("/committees")
def coordinator_committees(scope: CoordinatorScope = Depends(get_coordinator_scope)):
    return [serialize_doc(c) for c in scope.committees]


@coordinator_router.get("/dashboard")
def coordinator_dashboard(
    scope: CoordinatorScope = Depends(get_coordinator_scope),
    database: Database = Depends(get_db),
):
    result = dashboard(database, scope.event_ids())
    result["committees"] = [serialize_doc(c) for c in scope.committees]
    return result


@coordinator_router.get("/members/available")
def available_members(
    scope: CoordinatorScope = Depends(get_coordinator_scope),
    database: Database = Depends(get_db),
):
    return _available_students(database)


@coordinator_router.get("/registrations")
def coordinator_registrations(
    q: Optional[str] = None,
    event_id: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    scope: CoordinatorScope = Depends(get_coordinator_scope),
    database: Database = Depends(get_db),
):
    return search_registrations(database, scope.event_ids(), q=q, event_id=event_id, payment_status=payment_status)


@coordinator_router.get("/reports")
def coordinator_reports(
    scope: CoordinatorScope = Depends(get_coordinator_scope),
    database: Database = Depends(get_db),
):
    return committee_report(database, scope.event_ids())


@coordinator_router.get("/{committee_id}/dashboard")
def coordinator_committee_dashboard(
    committee_id: str,
    scope: CoordinatorScope = Depends(get_coordinator_scope),
    database: Database = Depends(get_db),
):
    committee = scope.committee(committee_id)
    result = dashboard(database, committee.get("assigned_event_ids") or [])
    result["committee"] = serialize_doc(committee)
    return result


@coordinator_router.get("/{committee_id}/members/available")
def available_committee_members(
    committee_id: str,
    scope: CoordinatorScope = Depends(get_coordinator_scope),
    database: Database = Depends(get_db),
):
    committee = scope.committee(committee_id)
    return _available_students(database, exclude=committee.get("member_ids"))


@coordinator_router.post("/{committee_id}/members")
def coordinator_add_member(
    committee_id: str,
    payload: AddMemberRequest,
    scope: CoordinatorScope = Depends(get_coordinator_scope),
    database: Database = Depends(get_db),
):
    scope.committee(committee_id)
    return serialize_doc(add_member(database, scope.user, committee_id, payload.user_id))


@coordinator_router.delete("/{committee_id}/members/{member_id}")
def coordinator_remove_member(
    committee_id: str,
    member_id: str,
    scope: CoordinatorScope = Depends(get_coordinator_scope),
    database: Database = Depends(get_db),
):
    scope.committee(committee_id)
    return serialize_doc(remove_member(database, scope.user, committee_id, member_id))


@coordinator_router.get("/{committee_id}/reports")
def coordinator_committee_reports(
    committee_id: str,
    scope: CoordinatorScope = Depends(get_coordinator_scope),
    database: Database = Depends(get_db),
):
    committee = scope.committee(committee_id)
    result = committee_report(database, committee.get("assigned_event_ids") or [])
    result["committee"] = serialize_doc(committee)
    return result


# Members

def get_member_committee(
    user: Dict[str, Any] = Depends(require_role("member")),
    database: Database = Depends(get_db),
) -> Dict[str, Any]:
    committee_id = user.get("committee_id")
    committee = None
    if committee_id:
        committee = database[COMMITTEES].find_one({"_id": to_object_id(committee_id, "committee"), "is_active": True})
    if committee is None:
        raise NotFoundError("No committee assigned")
    return committee


@member_router.get("/committee")
def member_committee(
    committee: Dict[str, Any] = Depends(get_member_committee),
    database: Database = Depends(get_db),
):
    people = find_many_by_ids(
        database, USERS, list(committee.get("coordinator_ids") or []) + list(committee.get("member_ids") or [])
    )
    result = serialize_doc(committee)
    result["coordinators"] = [
        user_summary(people[uid], ("name", "email")) for uid in committee.get("coordinator_ids") or [] if uid in people
    ]
    result["members"] = [
        user_summary(people[uid], ("name", "email")) for uid in committee.get("member_ids") or [] if uid in people
    ]
    return result


@member_router.get("/dashboard")
def member_dashboard(
    committee: Dict[str, Any] = Depends(get_member_committee),
    database: Database = Depends(get_db),
):
    result = dashboard(database, committee.get("assigned_event_ids") or [])
    result["committee"] = serialize_doc(committee)
    return result


@member_router.get("/reports")
def member_reports(
    committee: Dict[str, Any] = Depends(get_member_committee),
    database: Database = Depends(get_db),
):
    return committee_report(database, committee.get("assigned_event_ids") or [])


@member_router.get("/registrations")
def member_registrations(
    q: Optional[str] = None,
    event_id: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    committee: Dict[str, Any] = Depends(get_member_committee),
    database: Database = Depends(get_db),
):
    return search_registrations(
        database,
        list(committee.get("assigned_event_ids") or []),
        q=q,
        event_id=event_id,
        payment_status=payment_status,
    )
