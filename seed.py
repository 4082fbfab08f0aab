"""Reset the database and load a small demo fest.

    python seed.py

Every seeded account uses the password "password123".
"""

from datetime import datetime, timedelta, timezone

from auth import hash_password
from database import (
    ATTENDANCE,
    COMMITTEES,
    EVENTS,
    REGISTRATIONS,
    SCORES,
    USERS,
    create_document,
    db,
    ensure_indexes,
    find_by_id,
)
from logger import configure_logging, get_logger
from membership import add_coordinator, add_member
from schemas import Committee, Event, EventPackage, User

logger = get_logger(__name__)

PASSWORD = "password123"

STUDENTS = [
    ("Aarav Shah", "aarav@college.edu", "CS2021001", "3"),
    ("Diya Patel", "diya@college.edu", "CS2022014", "2"),
    ("Kabir Rao", "kabir@college.edu", "EC2021033", "3"),
    ("Meera Iyer", "meera@college.edu", "ME2023007", "1"),
    ("Rohan Das", "rohan@college.edu", "CS2022051", "2"),
]


def _user(name: str, email: str, college_id: str, year: str, role: str = "student") -> str:
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(PASSWORD),
        role=role,
        college_id=college_id,
        year=year,
    )
    return create_document(db, USERS, user)


def seed() -> None:
    if db is None:
        raise SystemExit("DATABASE_URL is not set")

    for name in (USERS, COMMITTEES, EVENTS, REGISTRATIONS, ATTENDANCE, SCORES):
        db[name].delete_many({})
    ensure_indexes(db)

    admin_id = _user("Fest Admin", "admin@college.edu", "ADMIN001", "staff", role="admin")
    admin = find_by_id(db, USERS, admin_id, "User")
    student_ids = [_user(*row) for row in STUDENTS]

    technical = create_document(db, COMMITTEES, Committee(name="Technical", description="Hackathons and coding events"))
    cultural = create_document(db, COMMITTEES, Committee(name="Cultural", description="Music, dance and drama"))

    add_coordinator(db, admin, technical, student_ids[0])
    add_member(db, admin, technical, student_ids[1])
    add_coordinator(db, admin, cultural, student_ids[2])

    start = datetime.now(timezone.utc).replace(hour=10, minute=0, second=0, microsecond=0) + timedelta(days=14)
    events = [
        Event(
            title="Code Sprint",
            description="Three-hour competitive programming contest",
            committee_id=technical,
            date_time=start,
            venue="Lab Block 2",
            fee=100,
            packages=[EventPackage(name="Early bird", price=60, is_student_discount=True)],
            rules=["Individual participation", "Bring your own laptop"],
        ),
        Event(
            title="Hack Night",
            description="Overnight team hackathon",
            committee_id=technical,
            date_time=start + timedelta(days=1),
            venue="Main Auditorium",
            fee=400,
            is_group=True,
            max_group_size=4,
            packages=[EventPackage(name="Team of four", price=1200, is_bulk_package=True)],
        ),
        Event(
            title="Battle of Bands",
            description="Live band competition",
            committee_id=cultural,
            date_time=start + timedelta(days=2),
            venue="Open Air Theatre",
            fee=500,
            is_group=True,
            max_group_size=6,
        ),
    ]
    for event in events:
        event_id = create_document(db, EVENTS, event)
        db[COMMITTEES].update_one(
            {"_id": find_by_id(db, COMMITTEES, event.committee_id, "Committee")["_id"]},
            {"$addToSet": {"assigned_event_ids": event_id}},
        )

    logger.info(
        "seed complete",
        extra={"users": len(student_ids) + 1, "committees": 2, "events": len(events)},
    )


if __name__ == "__main__":
    configure_logging()
    seed()
