"""Dashboard statistics, committee reports and CSV exports."""

import csv
import io
from typing import Any, Dict, Iterable, List, Optional

from pymongo.database import Database

from database import ATTENDANCE, COMMITTEES, EVENTS, REGISTRATIONS, USERS, find_many_by_ids, isoformat, serialize_doc
from registrations import expand_registrations, event_summary, participant_ids, user_summary


def active_events(database: Database, event_ids: Iterable[str]) -> List[Dict[str, Any]]:
    """Active events among `event_ids`, soonest first."""
    docs = find_many_by_ids(database, EVENTS, list(event_ids))
    events = [doc for doc in docs.values() if doc.get("is_active", True)]
    return sorted(events, key=lambda e: e.get("date_time"))


def _registration_ids(database: Database, event_id: str) -> List[str]:
    return [str(r["_id"]) for r in database[REGISTRATIONS].find({"event_id": event_id}, {"_id": 1})]


def event_stats(database: Database, events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    stats = []
    for event in events:
        registration_ids = _registration_ids(database, str(event["_id"]))
        item = serialize_doc(event)
        item["registration_count"] = len(registration_ids)
        item["attendance_count"] = database[ATTENDANCE].count_documents(
            {"registration_id": {"$in": registration_ids}, "status": "present"}
        )
        stats.append(item)
    return stats


def recent_registrations(database: Database, event_ids: Optional[List[str]] = None, limit: int = 10) -> List[Dict[str, Any]]:
    query = {} if event_ids is None else {"event_id": {"$in": list(event_ids)}}
    docs = list(database[REGISTRATIONS].find(query).sort("created_at", -1).limit(limit))
    return expand_registrations(database, docs)


def dashboard(database: Database, event_ids: Iterable[str]) -> Dict[str, Any]:
    event_ids = list(event_ids)
    stats = event_stats(database, active_events(database, event_ids))
    return {
        "events": stats,
        "recent_registrations": recent_registrations(database, event_ids),
        "total_events": len(stats),
        "total_registrations": sum(e["registration_count"] for e in stats),
        "total_attendance": sum(e["attendance_count"] for e in stats),
    }


def attendance_rate(present: int, participants: int) -> float:
    if participants <= 0:
        return 0
    return round(present / participants * 100, 2)


def committee_report(database: Database, event_ids: Iterable[str]) -> Dict[str, Any]:
    """Per-event participation and attendance, plus totals across the events."""
    events = active_events(database, event_ids)
    assignees = find_many_by_ids(
        database, USERS, [uid for e in events for uid in e.get("committee_member_ids") or []]
    )

    reports = []
    for event in events:
        registrations = list(database[REGISTRATIONS].find({"event_id": str(event["_id"])}))
        records = list(
            database[ATTENDANCE].find({"registration_id": {"$in": [str(r["_id"]) for r in registrations]}})
        )
        participants = sum(len(participant_ids(r)) for r in registrations)
        present = sum(1 for r in records if r.get("status") == "present")
        absent = sum(1 for r in records if r.get("status") == "absent")
        reports.append(
            {
                "event": dict(event_summary(event), fee=event.get("fee", 0)),
                "registrations": len(registrations),
                "total_participants": participants,
                "attendance": {
                    "present": present,
                    "absent": absent,
                    "not_marked": participants - present - absent,
                },
                "assigned_members": [
                    user_summary(assignees[uid], ("name", "email"))
                    for uid in event.get("committee_member_ids") or []
                    if uid in assignees
                ],
            }
        )

    summary = {
        "total_events": len(events),
        "total_registrations": sum(r["registrations"] for r in reports),
        "total_participants": sum(r["total_participants"] for r in reports),
        "total_present": sum(r["attendance"]["present"] for r in reports),
        "total_absent": sum(r["attendance"]["absent"] for r in reports),
    }
    summary["attendance_rate"] = attendance_rate(summary["total_present"], summary["total_participants"])
    return {"summary": summary, "event_reports": reports}


def admin_stats(database: Database) -> Dict[str, Any]:
    overview = {
        "total_users": database[USERS].count_documents({}),
        "total_events": database[EVENTS].count_documents({"is_active": True}),
        "total_registrations": database[REGISTRATIONS].count_documents({}),
        "total_committees": database[COMMITTEES].count_documents({"is_active": True}),
    }
    user_stats = [
        {"role": row["_id"], "count": row["count"]}
        for row in database[USERS].aggregate([{"$group": {"_id": "$role", "count": {"$sum": 1}}}])
    ]
    attendance_stats = [
        {"status": row["_id"], "count": row["count"]}
        for row in database[ATTENDANCE].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
    ]

    event_counts = []
    for event in database[EVENTS].find({"is_active": True}):
        event_counts.append(
            {
                "id": str(event["_id"]),
                "title": event.get("title"),
                "date_time": isoformat(event.get("date_time")),
                "registration_count": database[REGISTRATIONS].count_documents({"event_id": str(event["_id"])}),
            }
        )
    event_counts.sort(key=lambda e: e["registration_count"], reverse=True)

    return {
        "overview": overview,
        "user_stats": sorted(user_stats, key=lambda row: str(row["role"])),
        "event_stats": event_counts,
        "recent_registrations": recent_registrations(database),
        "attendance_stats": sorted(attendance_stats, key=lambda row: str(row["status"])),
    }


# CSV exports

PARTICIPANT_COLUMNS = [
    "Event Title",
    "Event Date",
    "Event Venue",
    "Leader Name",
    "Leader Email",
    "Leader College ID",
    "Leader Year",
    "Group Members",
    "Group Emails",
    "Payment Status",
    "Total Amount",
    "Registration Date",
    "QR Code",
]

ATTENDANCE_COLUMNS = [
    "Event Title",
    "Event Date",
    "Event Venue",
    "Participant Name",
    "Participant Email",
    "Participant College ID",
    "Participant Year",
    "Status",
    "Verified By",
    "Verified At",
    "Notes",
]


def _date(value: Optional[str]) -> str:
    return (value or "").split("T")[0]


def _write_csv(columns: List[str], rows: List[Dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=columns)
    writer.writeheader()
    writer.writerows(rows)
    return output.getvalue()


def participants_csv(database: Database, event_id: Optional[str] = None) -> str:
    query = {"event_id": event_id} if event_id else {}
    registrations = expand_registrations(database, list(database[REGISTRATIONS].find(query)))
    rows = []
    for reg in registrations:
        event = reg.get("event") or {}
        leader = reg.get("leader") or {}
        rows.append(
            {
                "Event Title": event.get("title", ""),
                "Event Date": _date(event.get("date_time")),
                "Event Venue": event.get("venue", ""),
                "Leader Name": leader.get("name", ""),
                "Leader Email": leader.get("email", ""),
                "Leader College ID": leader.get("college_id", ""),
                "Leader Year": leader.get("year", ""),
                "Group Members": ", ".join(m["name"] for m in reg["group_members"]),
                "Group Emails": ", ".join(m["email"] for m in reg["group_members"]),
                "Payment Status": reg.get("payment_status", ""),
                "Total Amount": reg.get("total_amount", ""),
                "Registration Date": _date(reg.get("created_at")),
                "QR Code": reg.get("qr_code", ""),
            }
        )
    return _write_csv(PARTICIPANT_COLUMNS, rows)


def attendance_csv(database: Database, event_id: Optional[str] = None) -> str:
    query: Dict[str, Any] = {}
    if event_id:
        query["registration_id"] = {"$in": _registration_ids(database, event_id)}
    records = list(database[ATTENDANCE].find(query))

    registrations = find_many_by_ids(database, REGISTRATIONS, [r["registration_id"] for r in records])
    events = find_many_by_ids(database, EVENTS, [r["event_id"] for r in registrations.values()])
    people = find_many_by_ids(
        database, USERS, [r["participant_id"] for r in records] + [r["verified_by"] for r in records]
    )

    rows = []
    for record in records:
        item = serialize_doc(record)
        registration = registrations.get(record["registration_id"]) or {}
        event = event_summary(events.get(registration.get("event_id"))) or {}
        participant = people.get(record["participant_id"]) or {}
        verifier = people.get(record["verified_by"]) or {}
        rows.append(
            {
                "Event Title": event.get("title", ""),
                "Event Date": _date(event.get("date_time")),
                "Event Venue": event.get("venue", ""),
                "Participant Name": participant.get("name", ""),
                "Participant Email": participant.get("email", ""),
                "Participant College ID": participant.get("college_id", ""),
                "Participant Year": participant.get("year", ""),
                "Status": item.get("status", ""),
                "Verified By": verifier.get("name", ""),
                "Verified At": item.get("verified_at", ""),
                "Notes": item.get("notes") or "",
            }
        )
    return _write_csv(ATTENDANCE_COLUMNS, rows)
