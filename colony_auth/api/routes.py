"""HTTP route definitions for the colony authentication service."""

from __future__ import annotations

import json
import logging
from base64 import urlsafe_b64decode, urlsafe_b64encode

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field

from ..config import Settings
from ..directory import AccountDirectory
from ..domain.account import Account, AccountStatus, Role
from ..domain.contracts import AuthFailure, CreateAccountInput, FailureReason
from ..domain.errors import DuplicateIdentityError, InvalidIdentityError
from ..domain.service import AuthService
from ..security.tokens import decode_session_token, issue_session_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

_FAILURE_STATUS = {
    FailureReason.EMPTY_IDENTITY: status.HTTP_400_BAD_REQUEST,
    FailureReason.UNKNOWN_IDENTITY: status.HTTP_401_UNAUTHORIZED,
    FailureReason.INVALID_CREDENTIAL: status.HTTP_401_UNAUTHORIZED,
    FailureReason.ACCOUNT_EXPIRED: status.HTTP_403_FORBIDDEN,
    FailureReason.ACCOUNT_LOCKED: status.HTTP_403_FORBIDDEN,
}


class AccountResponse(BaseModel):
    """Serialised representation of an `Account` aggregate, without its credential."""

    account_id: str
    identity: str
    display_identity: str
    status: AccountStatus
    role: Role
    role_label: str
    failed_attempts: int
    session_active: bool
    last_activity_at: str | None
    created_at: str

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        with account.lock:
            return cls(
                account_id=account.account_id,
                identity=account.identity_key,
                display_identity=account.display_identity,
                status=account.status,
                role=account.role,
                role_label=account.role.label,
                failed_attempts=account.failed_attempts,
                session_active=account.session_active,
                last_activity_at=(
                    account.last_activity_at.isoformat() if account.last_activity_at else None
                ),
                created_at=account.created_at.isoformat(),
            )


class CreateAccountRequest(BaseModel):
    """Payload accepted when registering a colony account."""

    identity: str = Field(..., min_length=1)
    credential: str
    status: AccountStatus = AccountStatus.ACTIVE
    role: Role = Role.COLONY_RESIDENT


class LoginRequest(BaseModel):
    """Credentials submitted to open a session."""

    identity: str | None = None
    credential: str | None = None


class LoginResponse(BaseModel):
    """Session issuance response containing the bearer token and account view."""

    account: AccountResponse
    session_token: str
    token_type: str = "bearer"
    expires_in: int


class SessionResponse(BaseModel):
    """Liveness view of the caller's session."""

    account: AccountResponse
    expired: bool


class AuditLogResponse(BaseModel):
    """Envelope for paginated audit trail lines."""

    items: list[str]
    next_cursor: str | None = None


class LastErrorResponse(BaseModel):
    last_error: str | None = None


def get_service(request: Request) -> AuthService:
    """Resolve the `AuthService` stored on the FastAPI application state."""
    service: AuthService = request.app.state.auth_service
    return service


def get_directory(request: Request) -> AccountDirectory:
    """Resolve the `AccountDirectory` stored on the FastAPI application state."""
    directory: AccountDirectory = request.app.state.account_directory
    return directory


def get_app_settings(request: Request) -> Settings:
    """Resolve the `Settings` the application was created with."""
    settings: Settings = request.app.state.settings
    return settings


def get_session_account(
    authorization: str | None = Header(default=None),
    directory: AccountDirectory = Depends(get_directory),
    settings: Settings = Depends(get_app_settings),
) -> Account:
    """Resolve the account whose open session the bearer token names."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        claims = decode_session_token(token, settings)
    except jwt.PyJWTError as exc:
        logger.warning("rejected session token: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token") from exc
    account = directory.find_by_id(str(claims["sub"]))
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    with account.lock:
        current_sid = account.session_id
    if not current_sid or claims.get("sid") != current_sid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="session closed")
    return account


@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: CreateAccountRequest,
    directory: AccountDirectory = Depends(get_directory),
) -> AccountResponse:
    """Register an account; duplicate identities are rejected."""
    try:
        account = directory.create_account(
            CreateAccountInput(
                identity=payload.identity,
                credential=payload.credential,
                status=payload.status,
                role=payload.role,
            )
        )
    except DuplicateIdentityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except InvalidIdentityError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return AccountResponse.from_domain(account)


@router.get("/accounts/{identity}", response_model=AccountResponse)
def get_account(
    identity: str,
    directory: AccountDirectory = Depends(get_directory),
) -> AccountResponse:
    """Retrieve an account by its identity."""
    account = directory.find(identity)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="account not found")
    return AccountResponse.from_domain(account)


@router.post("/sessions", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    service: AuthService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
) -> LoginResponse:
    """Authenticate and open a session for the supplied identity."""
    result = service.login(payload.identity, payload.credential)
    if isinstance(result, AuthFailure):
        raise HTTPException(status_code=_FAILURE_STATUS[result.reason], detail=result.message)
    with result.lock:
        session_id = result.session_id
    if session_id is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="session closed during login")
    token, expires_in = issue_session_token(result, session_id, settings)
    return LoginResponse(
        account=AccountResponse.from_domain(result),
        session_token=token,
        expires_in=expires_in,
    )


@router.get("/sessions/current", response_model=SessionResponse)
def current_session(
    account: Account = Depends(get_session_account),
    service: AuthService = Depends(get_service),
) -> SessionResponse:
    """Report whether the caller's session is still live."""
    live = service.require_session(account)
    return SessionResponse(account=AccountResponse.from_domain(account), expired=not live)


@router.post("/sessions/touch", status_code=status.HTTP_204_NO_CONTENT)
def touch_session(
    account: Account = Depends(get_session_account),
    service: AuthService = Depends(get_service),
) -> Response:
    """Extend a live session; expired sessions must log in again."""
    if not service.require_session(account):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="session expired")
    service.touch(account)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/sessions", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    account: Account = Depends(get_session_account),
    service: AuthService = Depends(get_service),
) -> Response:
    """Close the caller's session."""
    service.logout(account)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/audit/logs", response_model=AuditLogResponse)
def list_audit_logs(
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    service: AuthService = Depends(get_service),
) -> AuditLogResponse:
    """Return audit trail lines in insertion order with cursor pagination."""
    try:
        start = _decode_cursor(cursor) if cursor else 0
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    items, next_start = service.audit_trail.page(start, limit)
    next_cursor = _encode_cursor(next_start) if next_start is not None else None
    return AuditLogResponse(items=items, next_cursor=next_cursor)


@router.get("/audit/last-error", response_model=LastErrorResponse)
def last_error(service: AuthService = Depends(get_service)) -> LastErrorResponse:
    """Return the failure message of the most recent login attempt."""
    return LastErrorResponse(last_error=service.get_last_error())


def _encode_cursor(position: int) -> str:
    payload = json.dumps({"position": position})
    return urlsafe_b64encode(payload.encode("utf-8")).decode("utf-8")


def _decode_cursor(cursor: str) -> int:
    try:
        data = json.loads(urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
        position = int(data["position"])
    except Exception as exc:
        raise ValueError("invalid cursor") from exc
    if position < 0:
        raise ValueError("invalid cursor")
    return position
