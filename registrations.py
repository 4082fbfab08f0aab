"""
Registrations, QR verification, attendance and scoring.

Attendance and scores are upserts keyed on their natural composite key, so a
second write for the same key overwrites the first instead of appending.
"""

import base64
import io
import math
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import (
    ATTENDANCE,
    EVENTS,
    REGISTRATIONS,
    SCORES,
    USERS,
    create_document,
    find_by_id,
    find_many_by_ids,
    now_utc,
    serialize_doc,
    to_object_id,
)
from errors import ConflictError, InvalidArgumentError, NotFoundError
from logger import log_transaction
from schemas import Attendance, Registration, Score


USER_SUMMARY_FIELDS = ("name", "email", "college_id", "year")


def user_summary(doc: Optional[Dict[str, Any]], fields=USER_SUMMARY_FIELDS) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    summary = {"id": str(doc["_id"])}
    summary.update({key: doc.get(key) for key in fields})
    return summary


def event_summary(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    return serialize_doc({key: doc.get(key) for key in ("_id", "title", "description", "date_time", "venue")})


def generate_qr_image(data: str) -> str:
    """Render `data` as a PNG QR code and return it as a data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_M,
        box_size=8,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("utf-8")


def participant_ids(registration: Dict[str, Any]) -> List[str]:
    return [registration["leader_id"]] + list(registration.get("group_members") or [])


def create_registration(
    database: Database,
    event_id: str,
    leader: Dict[str, Any],
    group_member_ids: Optional[List[str]] = None,
    package_id: Optional[str] = None,
) -> Dict[str, Any]:
    event = find_by_id(database, EVENTS, event_id, "Event")
    eid = str(event["_id"])
    leader_id = str(leader["_id"])

    if database[REGISTRATIONS].find_one({"event_id": eid, "leader_id": leader_id}):
        raise ConflictError("Already registered for this event")

    group = [str(m) for m in group_member_ids or []]
    if leader_id in group:
        raise InvalidArgumentError("Leader cannot also be listed as a group member")
    if len(set(group)) != len(group):
        raise InvalidArgumentError("Duplicate group members")
    total_members = len(group) + 1
    if group and not event.get("is_group"):
        raise InvalidArgumentError("This event does not accept group registrations")
    max_size = event.get("max_group_size") or 1
    if event.get("is_group") and total_members > max_size:
        raise InvalidArgumentError(f"Maximum group size is {max_size}")

    if group:
        for member_id in group:
            to_object_id(member_id, "group member")
        found = find_many_by_ids(database, USERS, group)
        if len(found) != len(group):
            raise InvalidArgumentError("Some group members not found")

    total_amount = event.get("fee", 0)
    if package_id:
        selected = next((p for p in event.get("packages") or [] if p.get("id") == package_id), None)
        if selected is None:
            raise InvalidArgumentError("Package not found for this event")
        total_amount = selected["price"]

    token = str(uuid4())
    registration = Registration(
        event_id=eid,
        leader_id=leader_id,
        group_members=group,
        package_id=package_id,
        qr_code=token,
        total_amount=total_amount,
        is_group_registration=bool(event.get("is_group")) and total_members > 1,
    )
    try:
        registration_id = create_document(database, REGISTRATIONS, registration)
    except DuplicateKeyError:
        raise ConflictError("Registration token collision, please retry")

    log_transaction("registration.create", leader_id, registration_id=registration_id, event_id=eid)
    return {
        "id": registration_id,
        "qr_code": token,
        "qr_code_image": generate_qr_image(token),
        "total_amount": total_amount,
        "payment_status": registration.payment_status,
        "is_group_registration": registration.is_group_registration,
    }


def verify_token(database: Database, token: str) -> Dict[str, Any]:
    """Look up the registration carrying `token`."""
    registration = database[REGISTRATIONS].find_one({"qr_code": token})
    if not registration:
        raise NotFoundError("Invalid QR code")

    users = find_many_by_ids(database, USERS, participant_ids(registration))
    event = database[EVENTS].find_one({"_id": to_object_id(registration["event_id"], "event")})
    return {
        "id": str(registration["_id"]),
        "event": event_summary(event),
        "leader": user_summary(users.get(registration["leader_id"])),
        "group_members": [user_summary(users.get(m)) for m in registration.get("group_members") or [] if m in users],
        "payment_status": registration.get("payment_status"),
        "is_group_registration": registration.get("is_group_registration", False),
        "total_amount": registration.get("total_amount"),
    }


def _load_participation(database: Database, registration_id: str, participant_id: str) -> Dict[str, Any]:
    registration = find_by_id(database, REGISTRATIONS, registration_id, "Registration")
    if str(participant_id) not in participant_ids(registration):
        raise InvalidArgumentError("Participant is not part of this registration")
    return registration


def upsert_attendance(
    database: Database,
    verifier: Dict[str, Any],
    registration_id: str,
    participant_id: str,
    status: str,
    notes: Optional[str] = None,
) -> Tuple[Dict[str, Any], bool]:
    """Create or overwrite the attendance record for (registration, participant)."""
    if status not in ("present", "absent"):
        raise InvalidArgumentError('Status must be either "present" or "absent"')
    registration = _load_participation(database, registration_id, participant_id)
    record = Attendance(
        registration_id=str(registration["_id"]),
        participant_id=str(participant_id),
        status=status,
        verified_by=str(verifier["_id"]),
        verified_at=now_utc(),
        notes=notes,
    )
    stamp = now_utc()
    key = {"registration_id": record.registration_id, "participant_id": record.participant_id}
    before = database[ATTENDANCE].find_one_and_update(
        key,
        {"$set": dict(record.model_dump(), updated_at=stamp), "$setOnInsert": {"created_at": stamp}},
        upsert=True,
        return_document=ReturnDocument.BEFORE,
    )
    created = before is None
    log_transaction(
        "attendance.mark",
        verifier["_id"],
        registration_id=record.registration_id,
        participant_id=record.participant_id,
        status=status,
        created=created,
    )
    return database[ATTENDANCE].find_one(key), created


def attendance_for_registration(database: Database, registration_id: str) -> List[Dict[str, Any]]:
    to_object_id(registration_id, "registration")
    records = list(database[ATTENDANCE].find({"registration_id": registration_id}).sort("verified_at", -1))
    people = find_many_by_ids(
        database, USERS, [r["participant_id"] for r in records] + [r["verified_by"] for r in records]
    )
    result = []
    for record in records:
        item = serialize_doc(record)
        item["participant"] = user_summary(people.get(record["participant_id"]))
        item["verified_by"] = user_summary(people.get(record["verified_by"]), ("name", "email"))
        result.append(item)
    return result


def upsert_score(
    database: Database,
    judge: Dict[str, Any],
    registration_id: str,
    participant_id: str,
    score: float,
    round: Optional[str] = None,
    comments: Optional[str] = None,
) -> Tuple[Dict[str, Any], bool]:
    """Create or overwrite the score for (registration, participant, round)."""
    if score is None or not math.isfinite(score) or not 0 <= score <= 100:
        raise InvalidArgumentError("Score must be between 0 and 100")
    registration = _load_participation(database, registration_id, participant_id)
    record = Score(
        registration_id=str(registration["_id"]),
        participant_id=str(participant_id),
        score=score,
        judge_id=str(judge["_id"]),
        round=round or "final",
        comments=comments,
    )
    stamp = now_utc()
    key = {
        "registration_id": record.registration_id,
        "participant_id": record.participant_id,
        "round": record.round,
    }
    before = database[SCORES].find_one_and_update(
        key,
        {"$set": dict(record.model_dump(), updated_at=stamp), "$setOnInsert": {"created_at": stamp}},
        upsert=True,
        return_document=ReturnDocument.BEFORE,
    )
    created = before is None
    log_transaction(
        "score.submit",
        judge["_id"],
        registration_id=record.registration_id,
        participant_id=record.participant_id,
        round=record.round,
        created=created,
    )
    return database[SCORES].find_one(key), created


def _scores_with_people(database: Database, scores: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    people = find_many_by_ids(
        database, USERS, [s["participant_id"] for s in scores] + [s["judge_id"] for s in scores]
    )
    result = []
    for score in scores:
        item = serialize_doc(score)
        item["participant"] = user_summary(people.get(score["participant_id"]))
        item["judge"] = user_summary(people.get(score["judge_id"]), ("name", "email"))
        result.append(item)
    return result


def scoreboard(database: Database, event_id: str) -> List[Dict[str, Any]]:
    """Mean score across all rounds per participant, best first."""
    to_object_id(event_id, "event")
    registration_ids = [str(r["_id"]) for r in database[REGISTRATIONS].find({"event_id": event_id}, {"_id": 1})]
    if not registration_ids:
        return []
    scores = _scores_with_people(
        database, list(database[SCORES].find({"registration_id": {"$in": registration_ids}}))
    )

    board: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for score in scores:
        entry = board.setdefault(
            score["participant_id"],
            {"participant": score["participant"], "scores": [], "average_score": 0},
        )
        entry["scores"].append(score)

    for entry in board.values():
        entry["average_score"] = sum(s["score"] for s in entry["scores"]) / len(entry["scores"])
    return sorted(board.values(), key=lambda e: e["average_score"], reverse=True)


def registration_scores(database: Database, registration_id: str) -> List[Dict[str, Any]]:
    to_object_id(registration_id, "registration")
    scores = list(database[SCORES].find({"registration_id": registration_id}).sort("created_at", -1))
    return _scores_with_people(database, scores)


def expand_registrations(database: Database, registrations: List[Dict[str, Any]], with_qr: bool = False) -> List[Dict[str, Any]]:
    people = find_many_by_ids(
        database, USERS, [pid for r in registrations for pid in participant_ids(r)]
    )
    events = find_many_by_ids(database, EVENTS, [r["event_id"] for r in registrations])
    result = []
    for registration in registrations:
        item = serialize_doc(registration)
        item["event"] = event_summary(events.get(registration["event_id"]))
        item["leader"] = user_summary(people.get(registration["leader_id"]))
        item["group_members"] = [
            user_summary(people[m]) for m in registration.get("group_members") or [] if m in people
        ]
        if with_qr:
            item["qr_code_image"] = generate_qr_image(registration["qr_code"])
        result.append(item)
    return result


def user_registrations(database: Database, user_id: str) -> List[Dict[str, Any]]:
    to_object_id(user_id, "user")
    registrations = list(database[REGISTRATIONS].find({"leader_id": user_id}).sort("created_at", -1))
    return expand_registrations(database, registrations, with_qr=True)


def event_registrations(database: Database, event_id: str) -> List[Dict[str, Any]]:
    to_object_id(event_id, "event")
    registrations = list(database[REGISTRATIONS].find({"event_id": event_id}).sort("created_at", -1))
    return expand_registrations(database, registrations)


def search_registrations(
    database: Database,
    event_ids: Optional[List[str]] = None,
    q: Optional[str] = None,
    event_id: Optional[str] = None,
    payment_status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Filter registrations by event scope, event, payment status and a free-text
    query matched case-insensitively against leader name/email and event title.
    """
    match: Dict[str, Any] = {}
    if event_ids is not None:
        match["event_id"] = {"$in": list(event_ids)}
    if event_id:
        if event_ids is not None and event_id not in event_ids:
            return []
        match["event_id"] = event_id
    if payment_status:
        match["payment_status"] = payment_status

    registrations = list(database[REGISTRATIONS].find(match).sort("created_at", -1))
    expanded = expand_registrations(database, registrations)
    if not q:
        return expanded

    needle = q.lower()

    def matches(item: Dict[str, Any]) -> bool:
        leader = item.get("leader") or {}
        event = item.get("event") or {}
        haystack = (leader.get("name"), leader.get("email"), event.get("title"))
        return any(needle in (value or "").lower() for value in haystack)

    return [item for item in expanded if matches(item)]
