import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field
from pymongo.database import Database

import admin_api
import auth
import committees_api
import coordinator_api
import participation_api
from auth import require_role
from database import (
    COMMITTEES,
    EVENTS,
    USERS,
    create_document,
    db,
    ensure_indexes,
    find_by_id,
    find_many_by_ids,
    get_db,
    get_documents,
    now_utc,
    serialize_doc,
)
from errors import FestivoError, InvalidArgumentError
from logger import configure_logging, get_logger, log_request, log_transaction
from schemas import Event, EventPackage, RequestModel
from settings import settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if db is not None:
        ensure_indexes(db)
    else:
        logger.warning("DATABASE_URL not set, running without a database")
    yield


app = FastAPI(title="FestivoEMS", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    log_request(request.method, request.url.path, response.status_code, (time.perf_counter() - started) * 1000)
    return response


@app.exception_handler(FestivoError)
async def festivo_error_handler(request: Request, exc: FestivoError):
    if exc.status_code >= 500:
        logger.error("request failed", extra={"path": request.url.path, "detail": exc.detail})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app.include_router(auth.router)
app.include_router(admin_api.router)
app.include_router(committees_api.router)
app.include_router(coordinator_api.coordinator_router)
app.include_router(coordinator_api.member_router)
app.include_router(participation_api.router)


@app.get("/")
def read_root():
    return {"message": "FestivoEMS Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    if db is not None:
        response["database"] = "✅ Available"
        response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
        response["database_name"] = getattr(db, "name", None) or "❌ Not Set"
        response["connection_status"] = "Connected"
        try:
            collections = db.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Events
class PackageRequest(RequestModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    is_student_discount: bool = False
    is_bulk_package: bool = False


class EventCreateRequest(RequestModel):
    title: str = Field(..., min_length=1)
    description: str
    committee_id: str
    date_time: datetime
    venue: str
    fee: float = Field(0, ge=0)
    packages: List[PackageRequest] = Field(default_factory=list)
    is_group: bool = False
    max_group_size: int = Field(1, ge=1)
    rules: List[str] = Field(default_factory=list)


class EventUpdateRequest(RequestModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    date_time: Optional[datetime] = None
    venue: Optional[str] = None
    fee: Optional[float] = Field(None, ge=0)
    packages: Optional[List[PackageRequest]] = None
    is_group: Optional[bool] = None
    max_group_size: Optional[int] = Field(None, ge=1)
    rules: Optional[List[str]] = None
    is_active: Optional[bool] = None


class AssignMembersRequest(RequestModel):
    member_ids: List[str]


def _with_committee(database: Database, events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    committees = find_many_by_ids(database, COMMITTEES, [e.get("committee_id") for e in events])
    docs = []
    for event in events:
        committee = committees.get(event.get("committee_id"))
        item = serialize_doc(event)
        item["committee"] = {"id": str(committee["_id"]), "name": committee.get("name")} if committee else None
        docs.append(item)
    return docs


@app.get("/events")
def list_events(limit: int = 100, database: Database = Depends(get_db)):
    events = get_documents(
        database, EVENTS, {"is_active": True}, sort=[("date_time", 1)], limit=min(max(limit, 1), 500)
    )
    return _with_committee(database, events)


@app.get("/events/{event_id}")
def get_event(event_id: str, database: Database = Depends(get_db)):
    event = find_by_id(database, EVENTS, event_id, "Event")
    return _with_committee(database, [event])[0]


@app.post("/events", status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreateRequest,
    admin: Dict[str, Any] = Depends(require_role("admin")),
    database: Database = Depends(get_db),
):
    committee = find_by_id(database, COMMITTEES, payload.committee_id, "Committee")
    event = Event(
        **payload.model_dump(exclude={"committee_id", "packages"}),
        committee_id=str(committee["_id"]),
        packages=[EventPackage(**p.model_dump()) for p in payload.packages],
    )
    event_id = create_document(database, EVENTS, event)
    database[COMMITTEES].update_one(
        {"_id": committee["_id"]},
        {"$addToSet": {"assigned_event_ids": event_id}, "$set": {"updated_at": now_utc()}},
    )
    log_transaction("admin.create_event", str(admin["_id"]), event_id=event_id, committee_id=str(committee["_id"]))
    return serialize_doc(find_by_id(database, EVENTS, event_id, "Event"))


@app.put("/events/{event_id}")
def update_event(
    event_id: str,
    payload: EventUpdateRequest,
    admin: Dict[str, Any] = Depends(require_role("admin")),
    database: Database = Depends(get_db),
):
    event = find_by_id(database, EVENTS, event_id, "Event")
    changes = payload.model_dump(exclude_unset=True, exclude={"packages"})
    if payload.packages is not None:
        changes["packages"] = [EventPackage(**p.model_dump()).model_dump() for p in payload.packages]
    if changes:
        changes["updated_at"] = now_utc()
        database[EVENTS].update_one({"_id": event["_id"]}, {"$set": changes})
    log_transaction("admin.update_event", str(admin["_id"]), event_id=str(event["_id"]))
    return serialize_doc(find_by_id(database, EVENTS, event_id, "Event"))


@app.delete("/events/{event_id}")
def delete_event(
    event_id: str,
    admin: Dict[str, Any] = Depends(require_role("admin")),
    database: Database = Depends(get_db),
):
    event = find_by_id(database, EVENTS, event_id, "Event")
    database[EVENTS].update_one({"_id": event["_id"]}, {"$set": {"is_active": False, "updated_at": now_utc()}})
    log_transaction("admin.delete_event", str(admin["_id"]), event_id=str(event["_id"]))
    return {"success": True}


@app.put("/events/{event_id}/assign-members")
def assign_event_members(
    event_id: str,
    payload: AssignMembersRequest,
    admin: Dict[str, Any] = Depends(require_role("admin")),
    database: Database = Depends(get_db),
):
    event = find_by_id(database, EVENTS, event_id, "Event")
    member_ids = list(dict.fromkeys(payload.member_ids))
    if len(find_many_by_ids(database, USERS, member_ids)) != len(member_ids):
        raise InvalidArgumentError("Some members not found")
    database[EVENTS].update_one(
        {"_id": event["_id"]}, {"$set": {"committee_member_ids": member_ids, "updated_at": now_utc()}}
    )
    log_transaction("admin.assign_event_members", str(admin["_id"]), event_id=str(event["_id"]), member_ids=member_ids)
    return serialize_doc(find_by_id(database, EVENTS, event_id, "Event"))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
