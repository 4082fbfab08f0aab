"""
Membership consistency engine

Keeps a user's `role`, primary `committee_id` and `coordinated_committee_ids`
in step with each committee's `coordinator_ids` and `member_ids`.

Every public operation takes the authenticated caller (a user document),
checks authorization, validates its preconditions, then writes the committee
side first and the user side second inside a `UnitOfWork`. Role derivation
happens only in `transition`.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple, Union

from bson.objectid import ObjectId
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import COMMITTEES, EVENTS, USERS, create_document, find_by_id, now_utc, to_object_id
from errors import ConflictError, InternalError, InvalidArgumentError, PermissionDeniedError
from logger import get_logger, log_transaction
from schemas import ROLES, Committee

logger = get_logger(__name__)


# Role events

@dataclass(frozen=True)
class RoleAssigned:
    role: str
    committee_id: Optional[str] = None


@dataclass(frozen=True)
class CoordinatorAdded:
    committee_id: str


@dataclass(frozen=True)
class CoordinatorRemoved:
    committee_id: str


@dataclass(frozen=True)
class MemberAdded:
    committee_id: str


@dataclass(frozen=True)
class MemberRemoved:
    committee_id: str


@dataclass(frozen=True)
class CommitteeAssigned:
    committee_id: str


@dataclass(frozen=True)
class CommitteeUnassigned:
    committee_id: str


RoleEvent = Union[
    RoleAssigned,
    CoordinatorAdded,
    CoordinatorRemoved,
    MemberAdded,
    MemberRemoved,
    CommitteeAssigned,
    CommitteeUnassigned,
]


@dataclass(frozen=True)
class IdentityState:
    role: str = "student"
    committee_id: Optional[str] = None
    coordinated_committee_ids: Tuple[str, ...] = ()

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "IdentityState":
        return cls(
            role=doc.get("role") or "student",
            committee_id=doc.get("committee_id") or None,
            coordinated_committee_ids=tuple(str(c) for c in doc.get("coordinated_committee_ids") or ()),
        )

    def as_fields(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "committee_id": self.committee_id,
            "coordinated_committee_ids": list(self.coordinated_committee_ids),
        }


def _with(ids: Tuple[str, ...], value: str) -> Tuple[str, ...]:
    return ids if value in ids else ids + (value,)


def _without(ids: Tuple[str, ...], value: str) -> Tuple[str, ...]:
    return tuple(i for i in ids if i != value)


def _fallback_role(state: IdentityState) -> str:
    """Role an identity settles on after losing a committee link."""
    if state.role == "admin":
        return "admin"
    if state.coordinated_committee_ids:
        return "coordinator"
    if state.committee_id:
        return "member"
    return "student"


def transition(state: IdentityState, event: RoleEvent) -> IdentityState:
    """Derive the identity fields that follow from applying `event` to `state`."""
    if isinstance(event, RoleAssigned):
        if event.role not in ROLES:
            raise InvalidArgumentError("Invalid role")
        if event.role == "member":
            if not event.committee_id:
                raise InvalidArgumentError("Committee ID required for member role")
            return replace(state, role="member", committee_id=event.committee_id)
        if event.role in ("student", "admin"):
            # Old committee lists are left untouched here
            return replace(state, role=event.role, committee_id=None)
        coordinated = state.coordinated_committee_ids
        if event.committee_id and event.committee_id == state.committee_id:
            coordinated = _with(coordinated, event.committee_id)
        return replace(state, role="coordinator", coordinated_committee_ids=coordinated)

    if isinstance(event, CoordinatorAdded):
        return replace(
            state,
            role="coordinator",
            coordinated_committee_ids=_with(state.coordinated_committee_ids, event.committee_id),
        )

    if isinstance(event, CoordinatorRemoved):
        after = replace(
            state,
            coordinated_committee_ids=_without(state.coordinated_committee_ids, event.committee_id),
        )
        if not after.coordinated_committee_ids and state.role == "coordinator":
            after = replace(after, role=_fallback_role(after))
        return after

    if isinstance(event, MemberAdded):
        return replace(state, role="member", committee_id=event.committee_id)

    if isinstance(event, MemberRemoved):
        after = state
        if state.committee_id in (None, event.committee_id):
            after = replace(state, committee_id=None)
        return replace(after, role=_fallback_role(after))

    if isinstance(event, CommitteeAssigned):
        coordinated = state.coordinated_committee_ids
        if state.role == "coordinator":
            coordinated = _with(coordinated, event.committee_id)
        return replace(state, committee_id=event.committee_id, coordinated_committee_ids=coordinated)

    if isinstance(event, CommitteeUnassigned):
        after = replace(
            state,
            committee_id=None,
            coordinated_committee_ids=_without(state.coordinated_committee_ids, event.committee_id),
        )
        if state.role in ("member", "coordinator"):
            after = replace(after, role=_fallback_role(after))
        return after

    raise TypeError(f"Unknown role event: {event!r}")


class UnitOfWork:
    """
    Applies committee/user writes in order, remembering how to undo each one.

    If anything raises inside the block the already-applied writes are undone
    newest-first. A pymongo error is replaced by InternalError; any other
    exception propagates unchanged.
    """

    def __init__(self, database: Database, action: str) -> None:
        self._db = database
        self._action = action
        self._undo: List[Tuple[str, ObjectId, Dict[str, Any]]] = []

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            return False
        logger.error("%s failed, compensating %d write(s)", self._action, len(self._undo))
        self.rollback()
        if not issubclass(exc_type, PyMongoError):
            return False
        raise InternalError(f"{self._action} failed; partial changes were rolled back") from exc

    def _apply(self, collection: str, oid: ObjectId, update: Dict[str, Any], undo: Optional[Dict[str, Any]]) -> None:
        self._db[collection].update_one({"_id": oid}, update)
        if undo:
            self._undo.append((collection, oid, undo))

    def set_fields(self, collection: str, doc: Dict[str, Any], fields: Dict[str, Any]) -> None:
        previous = {key: doc.get(key) for key in fields}
        update = {"$set": dict(fields, updated_at=now_utc())}
        self._apply(collection, doc["_id"], update, {"$set": previous})

    def add_to_set(self, collection: str, doc: Dict[str, Any], field: str, value: str) -> None:
        present = value in (doc.get(field) or [])
        update = {"$addToSet": {field: value}, "$set": {"updated_at": now_utc()}}
        self._apply(collection, doc["_id"], update, None if present else {"$pull": {field: value}})

    def pull(self, collection: str, doc: Dict[str, Any], field: str, value: str) -> None:
        present = value in (doc.get(field) or [])
        update = {"$pull": {field: value}, "$set": {"updated_at": now_utc()}}
        self._apply(collection, doc["_id"], update, {"$addToSet": {field: value}} if present else None)

    def rollback(self) -> None:
        while self._undo:
            collection, oid, undo = self._undo.pop()
            try:
                self._db[collection].update_one({"_id": oid}, undo)
            except PyMongoError:
                logger.error(
                    "compensating write failed",
                    extra={"collection": collection, "doc_id": str(oid), "action": self._action},
                    exc_info=True,
                )


# Helpers

def _id(doc: Dict[str, Any]) -> str:
    return str(doc["_id"])


def _require_admin(actor: Dict[str, Any]) -> None:
    if actor.get("role") != "admin":
        raise PermissionDeniedError("Admin access required")


def is_coordinator_of(actor: Dict[str, Any], committee: Dict[str, Any]) -> bool:
    return _id(actor) in (committee.get("coordinator_ids") or [])


def _require_committee_manager(actor: Dict[str, Any], committee: Dict[str, Any]) -> None:
    if actor.get("role") == "admin":
        return
    if is_coordinator_of(actor, committee) and committee.get("is_active", True):
        return
    raise PermissionDeniedError("Not authorized for this committee")


def _load_user(database: Database, user_id: Any) -> Dict[str, Any]:
    return find_by_id(database, USERS, user_id, "User")


def _load_committee(database: Database, committee_id: Any) -> Dict[str, Any]:
    return find_by_id(database, COMMITTEES, committee_id, "Committee")


def _reload(database: Database, collection: str, doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return database[collection].find_one({"_id": doc["_id"]})


def _apply_transition(uow: UnitOfWork, user: Dict[str, Any], event: RoleEvent) -> IdentityState:
    after = transition(IdentityState.from_doc(user), event)
    fields = after.as_fields()
    changed = {key: value for key, value in fields.items() if user.get(key) != value}
    if changed:
        uow.set_fields(USERS, user, changed)
    return after


# Operations

def assign_role(
    database: Database,
    actor: Dict[str, Any],
    user_id: str,
    role: str,
    committee_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Set a user's role. Assigning `member` also links and enrolls the user in `committee_id`."""
    _require_admin(actor)
    if role not in ROLES:
        raise InvalidArgumentError("Invalid role")
    if role == "member" and not committee_id:
        raise InvalidArgumentError("Committee ID required for member role")

    user = _load_user(database, user_id)
    uid = _id(user)
    committee = None
    if role == "member" or (role == "coordinator" and committee_id and committee_id == user.get("committee_id")):
        committee = _load_committee(database, committee_id)
        committee_id = _id(committee)

    with UnitOfWork(database, "assign_role") as uow:
        if role == "member":
            uow.add_to_set(COMMITTEES, committee, "member_ids", uid)
        elif committee is not None:
            uow.add_to_set(COMMITTEES, committee, "coordinator_ids", uid)
        _apply_transition(uow, user, RoleAssigned(role, committee_id))

    log_transaction("admin.assign_role", _id(actor), target_user_id=uid, role=role, committee_id=committee_id)
    return _reload(database, USERS, user)


def add_coordinator(
    database: Database, actor: Dict[str, Any], committee_id: str, user_id: str
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    _require_admin(actor)
    user = _load_user(database, user_id)
    committee = _load_committee(database, committee_id)
    uid, cid = _id(user), _id(committee)

    if uid in (committee.get("coordinator_ids") or []):
        raise ConflictError("User is already a coordinator of this committee")

    with UnitOfWork(database, "add_coordinator") as uow:
        uow.add_to_set(COMMITTEES, committee, "coordinator_ids", uid)
        _apply_transition(uow, user, CoordinatorAdded(cid))

    log_transaction("admin.add_coordinator", _id(actor), committee_id=cid, target_user_id=uid)
    return _reload(database, COMMITTEES, committee), _reload(database, USERS, user)


def remove_coordinator(
    database: Database, actor: Dict[str, Any], committee_id: str, user_id: str
) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """Remove a coordinator; the user drops back to member/student once they coordinate nothing."""
    _require_admin(actor)
    committee = _load_committee(database, committee_id)
    cid = _id(committee)
    uid = str(to_object_id(user_id, "user"))

    if uid not in (committee.get("coordinator_ids") or []):
        raise InvalidArgumentError("User is not a coordinator of this committee")

    user = database[USERS].find_one({"_id": ObjectId(uid)})
    with UnitOfWork(database, "remove_coordinator") as uow:
        uow.pull(COMMITTEES, committee, "coordinator_ids", uid)
        if user:
            _apply_transition(uow, user, CoordinatorRemoved(cid))

    log_transaction("admin.remove_coordinator", _id(actor), committee_id=cid, target_user_id=uid)
    return _reload(database, COMMITTEES, committee), _reload(database, USERS, user) if user else None


def add_member(database: Database, actor: Dict[str, Any], committee_id: str, user_id: str) -> Dict[str, Any]:
    """Recruit a student into a committee. Caller must coordinate it or be an admin."""
    committee = _load_committee(database, committee_id)
    _require_committee_manager(actor, committee)
    user = _load_user(database, user_id)
    uid, cid = _id(user), _id(committee)

    if user.get("role") != "student":
        raise InvalidArgumentError("User must have student role")
    if uid in (committee.get("member_ids") or []):
        raise InvalidArgumentError("User already a member")

    with UnitOfWork(database, "add_member") as uow:
        uow.add_to_set(COMMITTEES, committee, "member_ids", uid)
        _apply_transition(uow, user, MemberAdded(cid))

    log_transaction("coordinator.add_member", _id(actor), committee_id=cid, member_id=uid)
    return _reload(database, COMMITTEES, committee)


def remove_member(database: Database, actor: Dict[str, Any], committee_id: str, member_id: str) -> Dict[str, Any]:
    committee = _load_committee(database, committee_id)
    _require_committee_manager(actor, committee)
    cid = _id(committee)
    mid = str(to_object_id(member_id, "member"))

    if mid not in (committee.get("member_ids") or []):
        raise InvalidArgumentError("User is not a member of this committee")

    user = database[USERS].find_one({"_id": ObjectId(mid)})
    with UnitOfWork(database, "remove_member") as uow:
        uow.pull(COMMITTEES, committee, "member_ids", mid)
        if user:
            _apply_transition(uow, user, MemberRemoved(cid))

    log_transaction("coordinator.remove_member", _id(actor), committee_id=cid, member_id=mid)
    return _reload(database, COMMITTEES, committee)


def delete_identity(database: Database, actor: Dict[str, Any], user_id: str) -> bool:
    """Hard-delete a user after pulling it from every committee list and event roster."""
    _require_admin(actor)
    user = _load_user(database, user_id)
    uid = _id(user)

    try:
        database[COMMITTEES].update_many(
            {"$or": [{"member_ids": uid}, {"coordinator_ids": uid}]},
            {"$pull": {"member_ids": uid, "coordinator_ids": uid}, "$set": {"updated_at": now_utc()}},
        )
        database[EVENTS].update_many(
            {"committee_member_ids": uid},
            {"$pull": {"committee_member_ids": uid}, "$set": {"updated_at": now_utc()}},
        )
        database[USERS].delete_one({"_id": user["_id"]})
    except PyMongoError as exc:
        logger.error("user deletion failed", extra={"target_user_id": uid}, exc_info=True)
        raise InternalError("Failed to delete user") from exc

    log_transaction("admin.delete_user", _id(actor), target_user_id=uid)
    return True


def assign_committee(database: Database, actor: Dict[str, Any], user_id: str, committee_id: str) -> Dict[str, Any]:
    """Move a member or coordinator to `committee_id` as their primary committee."""
    _require_admin(actor)
    user = _load_user(database, user_id)
    if user.get("role") not in ("member", "coordinator"):
        raise InvalidArgumentError("User must be member or coordinator to be assigned to committee")
    committee = _load_committee(database, committee_id)
    uid, cid = _id(user), _id(committee)

    previous_id = user.get("committee_id")
    previous = None
    if previous_id and previous_id != cid:
        previous = database[COMMITTEES].find_one({"_id": to_object_id(previous_id, "committee")})

    with UnitOfWork(database, "assign_committee") as uow:
        if previous is not None:
            uow.pull(COMMITTEES, previous, "member_ids", uid)
        uow.add_to_set(COMMITTEES, committee, "member_ids", uid)
        if user.get("role") == "coordinator":
            uow.add_to_set(COMMITTEES, committee, "coordinator_ids", uid)
        _apply_transition(uow, user, CommitteeAssigned(cid))

    log_transaction("admin.assign_committee", _id(actor), committee_id=cid, target_user_id=uid)
    return _reload(database, USERS, user)


def unassign_committee(database: Database, actor: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    _require_admin(actor)
    user = _load_user(database, user_id)
    uid = _id(user)
    cid = user.get("committee_id")
    if not cid:
        raise InvalidArgumentError("User is not assigned to any committee")

    committee = database[COMMITTEES].find_one({"_id": to_object_id(cid, "committee")})
    with UnitOfWork(database, "unassign_committee") as uow:
        if committee is not None:
            uow.pull(COMMITTEES, committee, "member_ids", uid)
            if is_coordinator_of(user, committee):
                uow.pull(COMMITTEES, committee, "coordinator_ids", uid)
        _apply_transition(uow, user, CommitteeUnassigned(cid))

    log_transaction("admin.unassign_committee", _id(actor), committee_id=cid, target_user_id=uid)
    return _reload(database, USERS, user)


def create_committee(
    database: Database,
    actor: Dict[str, Any],
    name: str,
    description: str = "",
    coordinator_ids: Optional[List[str]] = None,
    member_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Create a committee and enroll its initial coordinators and members.

    Every initial id is checked before anything is written. If enrolment still
    fails part-way, the enrolled users get their previous identity fields back
    and the new committee is deleted.
    """
    _require_admin(actor)
    coordinator_ids = list(dict.fromkeys(str(u) for u in coordinator_ids or []))
    member_ids = list(dict.fromkeys(str(u) for u in member_ids or []))

    snapshots: Dict[str, Tuple[ObjectId, Dict[str, Any]]] = {}
    for uid in coordinator_ids + member_ids:
        user = _load_user(database, uid)
        snapshots[uid] = (user["_id"], IdentityState.from_doc(user).as_fields())
        if uid in member_ids:
            if uid in coordinator_ids:
                raise InvalidArgumentError("User cannot be both coordinator and member of a new committee")
            if user.get("role") != "student":
                raise InvalidArgumentError("User must have student role")

    committee_id = create_document(database, COMMITTEES, Committee(name=name, description=description))
    try:
        for uid in coordinator_ids:
            add_coordinator(database, actor, committee_id, uid)
        for uid in member_ids:
            add_member(database, actor, committee_id, uid)
    except Exception:
        logger.error("create_committee failed, removing committee %s", committee_id)
        for oid, fields in snapshots.values():
            try:
                database[USERS].update_one({"_id": oid}, {"$set": fields})
            except PyMongoError:
                logger.error("compensating write failed", extra={"doc_id": str(oid)}, exc_info=True)
        database[COMMITTEES].delete_one({"_id": ObjectId(committee_id)})
        raise

    log_transaction(
        "admin.create_committee",
        _id(actor),
        committee_id=committee_id,
        coordinator_ids=coordinator_ids,
        member_ids=member_ids,
    )
    return _load_committee(database, committee_id)


def identity_violations(database: Database, user: Dict[str, Any]) -> List[str]:
    """List broken role/committee invariants for one user. Empty means consistent."""
    problems: List[str] = []
    uid = _id(user)
    state = IdentityState.from_doc(user)

    if state.role == "member":
        committee = None
        if state.committee_id and ObjectId.is_valid(state.committee_id):
            committee = database[COMMITTEES].find_one({"_id": ObjectId(state.committee_id)})
        if committee is None:
            problems.append("member without a primary committee")
        elif uid not in (committee.get("member_ids") or []):
            problems.append(f"member missing from committee {state.committee_id} member list")

    if state.role == "coordinator":
        if not state.coordinated_committee_ids:
            problems.append("coordinator without coordinated committees")
        for cid in state.coordinated_committee_ids:
            committee = database[COMMITTEES].find_one({"_id": ObjectId(cid)}) if ObjectId.is_valid(cid) else None
            if committee is None or uid not in (committee.get("coordinator_ids") or []):
                problems.append(f"coordinator missing from committee {cid} coordinator list")

    if state.role in ("student", "admin") and state.committee_id:
        problems.append(f"{state.role} linked to primary committee {state.committee_id}")

    return problems
