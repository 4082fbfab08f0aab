"""
Database Schemas for FestivoEMS

Each Pydantic model represents a collection in MongoDB. The collection name is the lowercase of the class name.

Collections:
- User ("user")
- Committee ("committee")
- Event ("event")
- Registration ("registration")
- Attendance ("attendance")
- Score ("score")

References between documents are stored as ObjectId strings.
"""

from datetime import datetime
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

Role = Literal["student", "member", "coordinator", "admin"]
ROLES = ("student", "member", "coordinator", "admin")

PaymentStatus = Literal["pending", "paid"]
AttendanceStatus = Literal["present", "absent"]


class RequestModel(BaseModel):
    """Base for request bodies: unknown fields are rejected."""
    model_config = ConfigDict(extra="forbid")


class User(BaseModel):
    """
    A registered person. Created at signup with role "student".
    Collection name: "user"
    """
    name: str = Field(..., description="Display name")
    email: EmailStr = Field(..., description="Unique, stored lowercase")
    password_hash: str = Field(..., description="Password hash (argon2)")
    role: Role = Field("student", description="Exactly one role tag")
    committee_id: Optional[str] = Field(None, description="Primary committee link (member path)")
    coordinated_committee_ids: List[str] = Field(default_factory=list, description="Committees this user coordinates")
    college_id: str = Field(..., description="College roll / ID number")
    year: str = Field(..., description="Year of study")
    is_blocked: bool = Field(False, description="Blocked users cannot authenticate")

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.strip().lower()


class Committee(BaseModel):
    """
    An administrative group owning events. Never hard-deleted.
    Collection name: "committee"
    """
    name: str = Field(..., description="Committee name")
    description: str = Field("", description="About the committee")
    coordinator_ids: List[str] = Field(default_factory=list, description="Coordinating user ids")
    member_ids: List[str] = Field(default_factory=list, description="Member user ids")
    assigned_event_ids: List[str] = Field(default_factory=list, description="Events owned by this committee")
    is_active: bool = Field(True, description="Soft-delete flag")


class EventPackage(BaseModel):
    """Optional fee package embedded in an event."""
    id: str = Field(default_factory=lambda: uuid4().hex, description="Package id, unique within the event")
    name: str
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    is_student_discount: bool = False
    is_bulk_package: bool = False


class Event(BaseModel):
    """
    A fest event owned by exactly one committee.
    Collection name: "event"
    """
    title: str = Field(..., description="Event title")
    description: str = Field(..., description="Event description")
    committee_id: str = Field(..., description="Owning committee id")
    committee_member_ids: List[str] = Field(default_factory=list, description="Assignee roster")
    date_time: datetime = Field(..., description="Event date and time (ISO)")
    venue: str = Field(..., description="Location of the event")
    fee: float = Field(0, ge=0, description="Base registration fee")
    packages: List[EventPackage] = Field(default_factory=list)

    # Group policy
    is_group: bool = Field(False, description="Whether teams may register")
    max_group_size: int = Field(1, ge=1, description="Maximum participants including the leader")

    rules: List[str] = Field(default_factory=list)
    is_active: bool = Field(True, description="Soft-delete flag")


class Registration(BaseModel):
    """
    One leader (plus optional group members) registered for one event.
    Collection name: "registration"
    """
    event_id: str
    leader_id: str
    group_members: List[str] = Field(default_factory=list)
    package_id: Optional[str] = None
    payment_status: PaymentStatus = "pending"
    qr_code: str = Field(..., description="Unique opaque token encoded in the QR image")
    total_amount: float
    is_group_registration: bool = False


class Attendance(BaseModel):
    """
    At most one record per (registration, participant); later writes overwrite.
    Collection name: "attendance"
    """
    registration_id: str
    participant_id: str
    status: AttendanceStatus
    verified_by: str
    verified_at: datetime
    notes: Optional[str] = None


class Score(BaseModel):
    """
    At most one record per (registration, participant, round).
    Collection name: "score"
    """
    registration_id: str
    participant_id: str
    score: float = Field(..., ge=0, le=100)
    judge_id: str
    round: str = "final"
    comments: Optional[str] = None
