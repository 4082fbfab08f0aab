"""Credential handling and the authenticated-caller dependencies.

Tokens are HS256 JWTs carrying the user id (`sub`) and role. The role on the
stored user document is what authorization trusts; the claim is informational.
"""

from datetime import timedelta
from typing import Any, Callable, Dict, Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import USERS, create_document, get_db, now_utc, serialize_doc, to_object_id
from errors import AuthenticationError, ConflictError, InvalidArgumentError, PermissionDeniedError
from logger import log_transaction
from schemas import RequestModel, User
from settings import settings

PASSWORD_HASHER = PasswordHasher()

_ALGORITHM = "HS256"
_bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return PASSWORD_HASHER.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return PASSWORD_HASHER.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def create_access_token(user_id: str, role: str) -> str:
    issued = now_utc()
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.jwt_expire_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Raises jwt.InvalidTokenError subclasses on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[_ALGORITHM], options={"require": ["sub", "exp"]})


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    database: Database = Depends(get_db),
) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("No token, authorization denied")
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.InvalidTokenError:
        raise AuthenticationError("Token is not valid")

    try:
        user_oid = to_object_id(payload.get("sub"), "user")
    except InvalidArgumentError:
        raise AuthenticationError("Token is not valid")
    user = database[USERS].find_one({"_id": user_oid})
    if not user:
        raise AuthenticationError("Token is not valid")
    if user.get("is_blocked"):
        raise PermissionDeniedError("User is blocked")
    return user


def require_role(*roles: str) -> Callable[..., Dict[str, Any]]:
    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise PermissionDeniedError("Insufficient permissions")
        return user

    return dependency


# Routes

router = APIRouter(prefix="/auth", tags=["auth"])


class SignupRequest(RequestModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    college_id: str = Field(..., min_length=1)
    year: str = Field(..., min_length=1)


class LoginRequest(RequestModel):
    email: EmailStr
    password: str


def _token_response(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "token": create_access_token(str(user["_id"]), user.get("role", "student")),
        "user": serialize_doc(user),
    }


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, database: Database = Depends(get_db)):
    email = payload.email.strip().lower()
    if database[USERS].find_one({"email": email}):
        raise ConflictError("Email already registered")
    user = User(
        name=payload.name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        college_id=payload.college_id.strip(),
        year=payload.year.strip(),
    )
    try:
        user_id = create_document(database, USERS, user)
    except DuplicateKeyError:
        raise ConflictError("Email already registered")
    log_transaction("auth.signup", user_id)
    return _token_response(database[USERS].find_one({"_id": to_object_id(user_id)}))


@router.post("/login")
def login(payload: LoginRequest, database: Database = Depends(get_db)):
    user = database[USERS].find_one({"email": payload.email.strip().lower()})
    if not user or not verify_password(user.get("password_hash", ""), payload.password):
        raise AuthenticationError("Invalid credentials")
    if user.get("is_blocked"):
        raise PermissionDeniedError("User is blocked")
    return _token_response(user)


@router.get("/me")
def me(user: Dict[str, Any] = Depends(get_current_user)):
    return serialize_doc(user)
