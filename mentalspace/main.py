"""MentalSpace EHR REST API.

All routes live under ``/api`` and answer with ``{"success": true, "data": ...}``.
Errors use ``{"success": false, "message": ..., "error": {...}}``.  Request
bodies for ``/auth/`` and ``/clients/`` routes may arrive wrapped as
``{"encryptedData": <ciphertext>}`` and are decrypted with the shared client
key before validation.
"""

from __future__ import annotations

import os
import re
import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional, Type, TypeVar

import jwt
import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest
from pydantic import BaseModel, ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog.contextvars import bind_contextvars, unbind_contextvars

from mentalspace import auth, clients as clients_service, notes_service, templates as templates_service
from mentalspace import staff as staff_service, waitlist as waitlist_service
from mentalspace.audit_log import list_audit_logs, record_audit_event, serialize_audit_entry
from mentalspace.db import get_session, init_db
from mentalspace.db.models import (
    AuditModule,
    AuditSeverity,
    ClientStatus,
    NoteStatus,
    NoteType,
    User,
    WaitlistStatus,
    WaitlistUrgency,
)
from mentalspace.encryption import get_encryptor
from mentalspace.errors import EncryptionError
from mentalspace.log_config import configure_logging
from mentalspace.rbac import has_permission
from mentalspace.schemas import (
    AuditLogCreateModel,
    ClientCreateModel,
    ClientUpdateModel,
    ContactAttemptModel,
    ErrorDetail,
    ErrorResponse,
    FinalizeNoteModel,
    LoginModel,
    NoteCreateModel,
    NoteDraftModel,
    NoteTemplateModel,
    NoteTemplateUpdateModel,
    NoteUpdateModel,
    RegisterModel,
    SupervisionReviewModel,
    SupervisionSubmitModel,
    UpdatePasswordModel,
    WaitlistCreateModel,
    WaitlistRemovalModel,
    WaitlistUpdateModel,
    envelope,
)
from mentalspace.security import hash_identifier
from mentalspace.time_utils import isoformat

configure_logging()
logger = structlog.get_logger(__name__)

_TRACE_ID_CTX: ContextVar[str | None] = ContextVar("trace_id", default=None)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _get_or_create_metric(metric_cls, name: str, documentation: str, labelnames):
    existing = REGISTRY._names_to_collectors.get(name)
    if existing is not None:
        return existing
    return metric_cls(name, documentation, labelnames=labelnames)


REQUEST_COUNTER = _get_or_create_metric(
    Counter,
    "mentalspace_requests_total",
    "Total HTTP requests processed by the API",
    ("method", "endpoint", "status"),
)
REQUEST_LATENCY = _get_or_create_metric(
    Histogram,
    "mentalspace_request_latency_seconds",
    "Latency of HTTP requests",
    ("method", "endpoint"),
)

_PATH_PARAM_RE = re.compile(r"/(?:[0-9]+|[0-9a-fA-F-]{8,})(?=/|$)")

SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


def _normalise_path_for_metrics(path: str) -> str:
    """Reduce high-cardinality segments in request paths for metrics labels."""

    if not path:
        return "/"
    return _PATH_PARAM_RE.sub("/:param", path)


def current_trace_id() -> str | None:
    return _TRACE_ID_CTX.get()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("MENTALSPACE_AUTO_MIGRATE", "1").lower() in {"1", "true", "yes"}:
        init_db()
    logger.info("lifespan_startup")
    yield
    logger.info("lifespan_shutdown")


app = FastAPI(title="MentalSpace EHR API", lifespan=lifespan)


@app.middleware("http")
async def inject_trace_id(request: Request, call_next):
    """Attach or propagate a trace identifier for each request."""

    trace_id = request.headers.get("x-request-id") or request.headers.get("x-trace-id") or uuid.uuid4().hex
    token = _TRACE_ID_CTX.set(trace_id)
    bind_contextvars(trace_id=trace_id, path=request.url.path, method=request.method)
    request.state.trace_id = trace_id
    response = None
    try:
        response = await call_next(request)
        return response
    except Exception:
        logger.exception("request_failed")
        raise
    finally:
        if response is not None:
            response.headers["X-Trace-Id"] = trace_id
        unbind_contextvars("trace_id", "path", "method", "user_id")
        _TRACE_ID_CTX.reset(token)


@app.middleware("http")
async def track_http_metrics(request: Request, call_next):
    """Emit Prometheus counters and histograms for each request."""

    start = time.perf_counter()
    normalised = _normalise_path_for_metrics(request.url.path)
    try:
        response = await call_next(request)
    except Exception:
        REQUEST_COUNTER.labels(request.method, normalised, "500").inc()
        REQUEST_LATENCY.labels(request.method, normalised).observe(time.perf_counter() - start)
        raise
    REQUEST_COUNTER.labels(request.method, normalised, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, normalised).observe(time.perf_counter() - start)
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, message: str, details: Any = None, headers=None) -> JSONResponse:
    payload = ErrorResponse(
        message=message,
        error=ErrorDetail(code=status_code, message=message, details=details),
    )
    return JSONResponse(status_code=status_code, content=payload.model_dump(), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Convert ``HTTPException`` instances into the standard error envelope."""

    message = exc.detail if isinstance(exc.detail, str) else "An error occurred"
    details = None if isinstance(exc.detail, str) else exc.detail
    return _error_response(exc.status_code, message, details, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    safe_errors = [{"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")} for err in errors]
    return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, message, safe_errors)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", error=type(exc).__name__, exc_info=exc)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

security = HTTPBearer(auto_error=False)


async def request_payload(request: Request) -> Dict[str, Any]:
    """Return the JSON body, decrypting ``{"encryptedData": ...}`` envelopes."""

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")
    if isinstance(body, dict) and set(body) == {"encryptedData"}:
        try:
            body = get_encryptor().decrypt_to_object(body["encryptedData"])
        except EncryptionError:
            raise HTTPException(status_code=400, detail="Encrypted payload could not be decrypted")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def _validate(model_cls: Type[ModelT], payload: Dict[str, Any]) -> ModelT:
    try:
        return model_cls.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())


def _client_details(request: Request) -> Dict[str, Optional[str]]:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    session: Session = Depends(get_session),
) -> User:
    """Decode the bearer token and load the active user it names."""

    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized to access this route")
    try:
        data = auth.decode_access_token(credentials.credentials)
        user_id = int(data["sub"])
    except (jwt.PyJWTError, KeyError, TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    user = session.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    bind_contextvars(user_id=user.id)
    return user


def _deny(session: Session, request: Request, user: User, description: str) -> HTTPException:
    record_audit_event(
        session,
        "AUTHORIZATION_FAILURE",
        description,
        AuditModule.AUTH,
        AuditSeverity.WARNING,
        user=user,
        entity_type="api",
        entity_id=request.url.path,
        **_client_details(request),
    )
    session.commit()
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient privileges")


def require_permission(resource: str, action: str):
    """Dependency factory enforcing the role permission matrix."""

    def checker(
        request: Request,
        user: User = Depends(get_current_user),
        session: Session = Depends(get_session),
    ) -> User:
        if not has_permission(user.role, resource, action):
            raise _deny(session, request, user, f"User role {user.role} denied {action} on {resource}")
        return user

    return checker


def require_roles(*roles: str):
    """Dependency factory ensuring the current user is in an allowed role."""

    allowed = {"admin", *roles}

    def checker(
        request: Request,
        user: User = Depends(get_current_user),
        session: Session = Depends(get_session),
    ) -> User:
        if user.role not in allowed:
            raise _deny(session, request, user, f"User role {user.role} denied access to {request.url.path}")
        return user

    return checker


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role,
        "is_active": user.is_active,
        "last_login": isoformat(user.last_login),
    }


router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Health and metrics
# ---------------------------------------------------------------------------


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", "time": isoformat(datetime.now().astimezone())}


@app.get("/metrics", response_model=None)
def metrics(user: User = Depends(require_roles("admin"))) -> Response:
    return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
def register(
    request: Request,
    payload: Dict[str, Any] = Depends(request_payload),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    session: Session = Depends(get_session),
):
    """Create a staff account.

    The very first account may be created anonymously; after that only
    users allowed to create staff may register others.
    """

    data = _validate(RegisterModel, payload)
    has_users = session.execute(select(func.count()).select_from(User)).scalar_one() > 0
    actor: Optional[User] = None
    if has_users:
        actor = get_current_user(credentials, session)
        if not has_permission(actor.role, "staff", "create"):
            raise _deny(session, request, actor, "User attempted to register staff without permission")
    try:
        user = auth.register_user(
            session,
            data.email,
            data.password,
            data.role,
            first_name=data.firstName,
            last_name=data.lastName,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    record_audit_event(
        session,
        "REGISTER_USER",
        f"Registered staff account with role {user.role}",
        AuditModule.STAFF,
        user=actor,
        entity_type="user",
        entity_id=user.id,
        **_client_details(request),
    )
    return envelope(serialize_user(user))


@router.post("/auth/login")
def login(
    request: Request,
    payload: Dict[str, Any] = Depends(request_payload),
    session: Session = Depends(get_session),
):
    data = _validate(LoginModel, payload)
    try:
        user = auth.authenticate_user(session, data.email, data.password)
    except auth.AuthError as exc:
        record_audit_event(
            session,
            "LOGIN_FAILED",
            f"Failed login for account {hash_identifier(data.email.lower())}: {exc.reason}",
            AuditModule.AUTH,
            AuditSeverity.WARNING,
            **_client_details(request),
        )
        session.commit()
        code = status.HTTP_423_LOCKED if exc.reason == "locked" else status.HTTP_401_UNAUTHORIZED
        raise HTTPException(status_code=code, detail=exc.message)
    token = auth.create_access_token(user)
    record_audit_event(
        session,
        "LOGIN",
        "User logged in",
        AuditModule.AUTH,
        user=user,
        **_client_details(request),
    )
    logger.info("login_succeeded", user_id=user.id)
    return envelope(serialize_user(user), token=token)


@router.get("/auth/me")
def me(user: User = Depends(get_current_user)):
    return envelope(serialize_user(user))


@router.put("/auth/updatepassword")
def update_password(
    request: Request,
    payload: Dict[str, Any] = Depends(request_payload),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    data = _validate(UpdatePasswordModel, payload)
    try:
        auth.change_password(session, user, data.currentPassword, data.newPassword)
    except auth.AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message)
    record_audit_event(
        session,
        "UPDATE_PASSWORD",
        "User changed their password",
        AuditModule.AUTH,
        user=user,
        **_client_details(request),
    )
    return envelope(serialize_user(user), token=auth.create_access_token(user))


# ---------------------------------------------------------------------------
# Staff directory
# ---------------------------------------------------------------------------


@router.get("/staff")
def list_staff(
    q: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    can_supervise: bool = False,
    page: int = 1,
    limit: int = 25,
    user: User = Depends(require_permission("staff", "read")),
    session: Session = Depends(get_session),
):
    rows, total = staff_service.search_staff(
        session,
        query=q,
        role=role,
        is_active=is_active,
        supervisors_only=can_supervise,
        page=page,
        limit=limit,
    )
    return envelope(
        [staff_service.serialize_staff(row) for row in rows],
        count=len(rows),
        total=total,
        pagination={"page": max(page, 1), "limit": limit},
    )


@router.get("/staff/{staff_id}")
def get_staff(
    staff_id: int,
    request: Request,
    user: User = Depends(require_permission("staff", "read")),
    session: Session = Depends(get_session),
):
    member = staff_service.get_staff(session, staff_id)
    record_audit_event(
        session,
        "VIEW_STAFF",
        f"Accessed staff record: {member.full_name or member.email}",
        AuditModule.STAFF,
        user=user,
        entity_type="staff",
        entity_id=str(member.id),
        **_client_details(request),
    )
    return envelope(staff_service.serialize_staff(member))


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


@router.get("/clients")
def list_clients(
    q: Optional[str] = None,
    client_status: Optional[ClientStatus] = None,
    therapist_id: Optional[int] = None,
    page: int = 1,
    limit: int = 25,
    user: User = Depends(require_permission("client", "read")),
    session: Session = Depends(get_session),
):
    rows, total = clients_service.search_clients(
        session,
        query=q,
        client_status=client_status,
        therapist_id=therapist_id,
        page=page,
        limit=limit,
    )
    return envelope(
        [clients_service.serialize_client(row) for row in rows],
        count=len(rows),
        total=total,
        pagination={"page": max(page, 1), "limit": limit},
    )


@router.post("/clients", status_code=201)
def create_client(
    request: Request,
    payload: Dict[str, Any] = Depends(request_payload),
    user: User = Depends(require_permission("client", "create")),
    session: Session = Depends(get_session),
):
    data = _validate(ClientCreateModel, payload)
    client = clients_service.create_client(session, user, data.model_dump())
    record_audit_event(
        session,
        "CREATE_CLIENT",
        "Created client record",
        AuditModule.CLIENT,
        user=user,
        entity_type="client",
        entity_id=client.id,
        **_client_details(request),
    )
    return envelope(clients_service.serialize_client(client))


@router.get("/clients/{client_id}")
def get_client(
    client_id: str,
    request: Request,
    user: User = Depends(require_permission("client", "read")),
    session: Session = Depends(get_session),
):
    client = clients_service.get_client(session, client_id)
    record_audit_event(
        session,
        "VIEW_CLIENT",
        "Viewed client record",
        AuditModule.CLIENT,
        user=user,
        entity_type="client",
        entity_id=client.id,
        **_client_details(request),
    )
    return envelope(clients_service.serialize_client(client))


@router.put("/clients/{client_id}")
def update_client(
    client_id: str,
    request: Request,
    payload: Dict[str, Any] = Depends(request_payload),
    user: User = Depends(require_permission("client", "update")),
    session: Session = Depends(get_session),
):
    data = _validate(ClientUpdateModel, payload)
    client = clients_service.get_client(session, client_id)
    changes = data.model_dump(exclude_unset=True)
    previous = clients_service.update_client(session, client, changes)
    record_audit_event(
        session,
        "UPDATE_CLIENT",
        f"Updated client fields: {', '.join(sorted(changes)) or 'none'}",
        AuditModule.CLIENT,
        user=user,
        entity_type="client",
        entity_id=client.id,
        old_value=sorted(clients_service.describe_changes(previous)),
        **_client_details(request),
    )
    return envelope(clients_service.serialize_client(client))


@router.delete("/clients/{client_id}")
def delete_client(
    client_id: str,
    request: Request,
    user: User = Depends(require_permission("client", "delete")),
    session: Session = Depends(get_session),
):
    client = clients_service.get_client(session, client_id)
    clients_service.delete_client(session, client)
    record_audit_event(
        session,
        "DELETE_CLIENT",
        "Deleted or deactivated client record",
        AuditModule.CLIENT,
        AuditSeverity.WARNING,
        user=user,
        entity_type="client",
        entity_id=client_id,
        **_client_details(request),
    )
    return envelope({})


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


def _note_event(
    session: Session,
    request: Request,
    user: User,
    action: str,
    description: str,
    note_id: str,
    severity: AuditSeverity = AuditSeverity.INFO,
) -> None:
    record_audit_event(
        session,
        action,
        description,
        AuditModule.DOCUMENTATION,
        severity,
        user=user,
        entity_type="note",
        entity_id=note_id,
        **_client_details(request),
    )


@router.get("/notes")
def list_notes(
    client_id: Optional[str] = None,
    provider_id: Optional[int] = None,
    note_status: Optional[NoteStatus] = None,
    note_type: Optional[NoteType] = None,
    supervisor_id: Optional[int] = None,
    user: User = Depends(require_permission("note", "read")),
    session: Session = Depends(get_session),
):
    rows = notes_service.list_notes(
        session,
        client_id=client_id,
        provider_id=provider_id,
        note_status=note_status,
        note_type=note_type,
        supervisor_id=supervisor_id,
    )
    return envelope([notes_service.serialize_note(note) for note in rows], count=len(rows))


@router.post("/notes", status_code=201)
def create_note(
    request: Request,
    data: NoteCreateModel,
    user: User = Depends(require_permission("note", "create")),
    session: Session = Depends(get_session),
):
    note = notes_service.create_note(
        session,
        user,
        client_id=data.client_id,
        note_type=data.note_type,
        content=data.content,
        appointment_id=data.appointment_id,
        template_id=data.template_id,
    )
    _note_event(session, request, user, "CREATE_NOTE", f"Created {data.note_type.value} note", note.id)
    return envelope(notes_service.serialize_note(note))


@router.get("/notes/{note_id}")
def get_note(
    note_id: str,
    request: Request,
    user: User = Depends(require_permission("note", "read")),
    session: Session = Depends(get_session),
):
    note = notes_service.get_note(session, note_id)
    _note_event(session, request, user, "VIEW_NOTE", "Viewed note", note.id)
    return envelope(notes_service.serialize_note(note))


@router.put("/notes/{note_id}")
def update_note(
    note_id: str,
    request: Request,
    data: NoteUpdateModel,
    user: User = Depends(require_permission("note", "update")),
    session: Session = Depends(get_session),
):
    note = notes_service.get_note(session, note_id)
    changes = {field: getattr(data, field) for field in data.model_fields_set}
    notes_service.update_note(session, user, note, changes)
    _note_event(session, request, user, "UPDATE_NOTE", "Updated note", note.id)
    return envelope(notes_service.serialize_note(note))


@router.put("/notes/{note_id}/draft")
def save_note_draft(
    note_id: str,
    request: Request,
    data: NoteDraftModel,
    user: User = Depends(require_permission("note", "update")),
    session: Session = Depends(get_session),
):
    note = notes_service.get_note(session, note_id)
    notes_service.save_draft(session, user, note, data.content)
    _note_event(session, request, user, "SAVE_DRAFT", "Saved note draft", note.id)
    return envelope(notes_service.serialize_note(note))


@router.put("/notes/{note_id}/finalize")
def finalize_note(
    note_id: str,
    request: Request,
    data: FinalizeNoteModel,
    user: User = Depends(require_permission("note", "update")),
    session: Session = Depends(get_session),
):
    note = notes_service.get_note(session, note_id)
    notes_service.finalize_note(session, user, note, data.signature)
    _note_event(session, request, user, "FINALIZE_NOTE", "Finalized and signed note", note.id)
    return envelope(notes_service.serialize_note(note))


@router.put("/notes/{note_id}/submit-for-supervision")
def submit_note_for_supervision(
    note_id: str,
    request: Request,
    data: SupervisionSubmitModel,
    user: User = Depends(require_permission("note", "update")),
    session: Session = Depends(get_session),
):
    note = notes_service.get_note(session, note_id)
    notes_service.submit_for_supervision(session, user, note, data.supervisorId)
    _note_event(session, request, user, "SUBMIT_FOR_SUPERVISION", "Submitted note for supervision", note.id)
    return envelope(notes_service.serialize_note(note))


@router.put("/notes/{note_id}/approve")
def approve_note(
    note_id: str,
    request: Request,
    data: SupervisionReviewModel,
    user: User = Depends(require_roles("supervisor")),
    session: Session = Depends(get_session),
):
    note = notes_service.get_note(session, note_id)
    notes_service.approve_note(session, user, note, data.comments)
    _note_event(session, request, user, "APPROVE_NOTE", "Approved note under supervision", note.id)
    return envelope(notes_service.serialize_note(note))


@router.put("/notes/{note_id}/reject")
def reject_note(
    note_id: str,
    request: Request,
    data: SupervisionReviewModel,
    user: User = Depends(require_roles("supervisor")),
    session: Session = Depends(get_session),
):
    note = notes_service.get_note(session, note_id)
    notes_service.reject_note(session, user, note, data.comments)
    _note_event(
        session, request, user, "REJECT_NOTE", "Rejected note under supervision", note.id, AuditSeverity.WARNING
    )
    return envelope(notes_service.serialize_note(note))


@router.get("/notes/{note_id}/versions")
def note_versions(
    note_id: str,
    user: User = Depends(require_permission("note", "read")),
    session: Session = Depends(get_session),
):
    note = notes_service.get_note(session, note_id)
    versions = notes_service.list_versions(session, note)
    return envelope([notes_service.serialize_version(v) for v in versions], count=len(versions))


@router.delete("/notes/{note_id}")
def delete_note(
    note_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    note = notes_service.get_note(session, note_id)
    # Authors may discard their own drafts even without note:delete.
    if note.provider_id != user.id and not has_permission(user.role, "note", "delete"):
        raise _deny(session, request, user, f"User role {user.role} denied delete on note")
    notes_service.delete_note(session, note)
    _note_event(session, request, user, "DELETE_NOTE", "Deleted draft note", note_id, AuditSeverity.WARNING)
    return envelope({})


# ---------------------------------------------------------------------------
# Note templates
# ---------------------------------------------------------------------------


@router.get("/note-templates")
def list_note_templates(
    template_type: Optional[NoteType] = None,
    include_inactive: bool = False,
    user: User = Depends(require_permission("note", "read")),
    session: Session = Depends(get_session),
):
    rows = templates_service.list_templates(
        session, user, template_type=template_type, include_inactive=include_inactive
    )
    return envelope([templates_service.serialize_template(t) for t in rows], count=len(rows))


@router.post("/note-templates", status_code=201)
def create_note_template(
    data: NoteTemplateModel,
    user: User = Depends(require_permission("note", "create")),
    session: Session = Depends(get_session),
):
    template = templates_service.create_template(session, user, data.model_dump())
    return envelope(templates_service.serialize_template(template))


@router.get("/note-templates/{template_id}")
def get_note_template(
    template_id: str,
    user: User = Depends(require_permission("note", "read")),
    session: Session = Depends(get_session),
):
    template = templates_service.get_template(session, user, template_id)
    return envelope(templates_service.serialize_template(template))


@router.put("/note-templates/{template_id}")
def update_note_template(
    template_id: str,
    data: NoteTemplateUpdateModel,
    user: User = Depends(require_permission("note", "update")),
    session: Session = Depends(get_session),
):
    template = templates_service.get_template(session, user, template_id)
    changes = {field: getattr(data, field) for field in data.model_fields_set}
    templates_service.update_template(session, user, template, changes)
    return envelope(templates_service.serialize_template(template))


@router.delete("/note-templates/{template_id}")
def delete_note_template(
    template_id: str,
    user: User = Depends(require_permission("note", "update")),
    session: Session = Depends(get_session),
):
    template = templates_service.get_template(session, user, template_id)
    templates_service.delete_template(session, user, template)
    return envelope({})


# ---------------------------------------------------------------------------
# Waitlist
# ---------------------------------------------------------------------------


def _waitlist_event(session: Session, request: Request, user: User, action: str, description: str, client_id: str):
    record_audit_event(
        session,
        action,
        description,
        AuditModule.CRM,
        user=user,
        entity_type="client",
        entity_id=client_id,
        **_client_details(request),
    )


@router.get("/waitlist")
def list_waitlist(
    entry_status: Optional[WaitlistStatus] = None,
    urgency: Optional[WaitlistUrgency] = None,
    client_id: Optional[str] = None,
    user: User = Depends(require_permission("client", "read")),
    session: Session = Depends(get_session),
):
    rows = waitlist_service.list_entries(session, entry_status=entry_status, urgency=urgency, client_id=client_id)
    return envelope([waitlist_service.serialize_entry(session, row) for row in rows], count=len(rows))


@router.post("/waitlist", status_code=201)
def create_waitlist_entry(
    request: Request,
    data: WaitlistCreateModel,
    user: User = Depends(require_permission("client", "create")),
    session: Session = Depends(get_session),
):
    entry = waitlist_service.create_entry(session, user, data.model_dump())
    _waitlist_event(session, request, user, "CREATE", "Added client to waitlist", entry.client_id)
    return envelope(waitlist_service.serialize_entry(session, entry))


@router.get("/waitlist/{entry_id}")
def get_waitlist_entry(
    entry_id: str,
    user: User = Depends(require_permission("client", "read")),
    session: Session = Depends(get_session),
):
    entry = waitlist_service.get_entry(session, entry_id)
    return envelope(waitlist_service.serialize_entry(session, entry))


@router.put("/waitlist/{entry_id}")
def update_waitlist_entry(
    entry_id: str,
    request: Request,
    data: WaitlistUpdateModel,
    user: User = Depends(require_permission("client", "update")),
    session: Session = Depends(get_session),
):
    entry = waitlist_service.get_entry(session, entry_id)
    waitlist_service.update_entry(session, user, entry, data.model_dump(exclude_unset=True))
    _waitlist_event(session, request, user, "UPDATE", "Updated waitlist entry", entry.client_id)
    return envelope(waitlist_service.serialize_entry(session, entry))


@router.post("/waitlist/{entry_id}/contactattempts")
def add_waitlist_contact_attempt(
    entry_id: str,
    request: Request,
    data: ContactAttemptModel,
    user: User = Depends(require_permission("client", "update")),
    session: Session = Depends(get_session),
):
    entry = waitlist_service.get_entry(session, entry_id)
    waitlist_service.add_contact_attempt(
        session, user, entry, method=data.method, notes=data.notes, successful=data.successful
    )
    _waitlist_event(session, request, user, "UPDATE", "Added waitlist contact attempt", entry.client_id)
    return envelope(waitlist_service.serialize_entry(session, entry))


@router.put("/waitlist/{entry_id}/remove")
def remove_waitlist_entry(
    entry_id: str,
    request: Request,
    data: WaitlistRemovalModel,
    user: User = Depends(require_permission("client", "update")),
    session: Session = Depends(get_session),
):
    entry = waitlist_service.get_entry(session, entry_id)
    waitlist_service.remove_entry(session, user, entry, data.removalReason, data.removalNotes)
    _waitlist_event(
        session,
        request,
        user,
        "UPDATE",
        f"Removed client from waitlist, reason: {data.removalReason}",
        entry.client_id,
    )
    return envelope(waitlist_service.serialize_entry(session, entry))


# ---------------------------------------------------------------------------
# Audit logs
# ---------------------------------------------------------------------------


@router.post("/auditlogs", status_code=201)
def create_audit_log(
    request: Request,
    data: AuditLogCreateModel,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    session: Session = Depends(get_session),
):
    """Store an event reported by a client.

    Events from signed-out clients are accepted only for the ``auth`` module
    (for example a rejected token being reported after it was cleared).
    """

    user: Optional[User] = None
    if credentials is not None:
        try:
            user = get_current_user(credentials, session)
        except HTTPException:
            user = None
    if user is None and data.module is not AuditModule.AUTH:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized to access this route")
    entry = record_audit_event(
        session,
        data.action,
        data.description,
        data.module,
        data.severity,
        user=user,
        entity_id=data.entityId,
        entity_type=data.entityType,
        old_value=data.oldValue,
        new_value=data.newValue,
        ip_address=request.client.host if request.client else None,
        user_agent=data.userAgent or request.headers.get("user-agent"),
        client_timestamp=data.timestamp,
    )
    if entry is None:
        raise HTTPException(status_code=503, detail="Audit log could not be stored")
    return envelope(serialize_audit_entry(entry))


@router.get("/auditlogs")
def get_audit_logs(
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    userId: Optional[int] = None,
    action: Optional[str] = None,
    module: Optional[AuditModule] = None,
    severity: Optional[AuditSeverity] = None,
    entityId: Optional[str] = None,
    entityType: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    user: User = Depends(require_permission("audit", "read")),
    session: Session = Depends(get_session),
):
    rows, total = list_audit_logs(
        session,
        start_date=startDate,
        end_date=endDate,
        user_id=userId,
        action=action,
        module=module,
        severity=severity,
        entity_id=entityId,
        entity_type=entityType,
        page=page,
        limit=limit,
    )
    return envelope(
        [serialize_audit_entry(row) for row in rows],
        count=len(rows),
        total=total,
        pagination={"page": max(page, 1), "limit": limit},
    )


app.include_router(router)


def run() -> None:
    """Serve the API with uvicorn (``mentalspace-server`` console script)."""

    import uvicorn

    uvicorn.run(
        "mentalspace.main:app",
        host=os.getenv("MENTALSPACE_HOST", "127.0.0.1"),
        port=int(os.getenv("MENTALSPACE_PORT", "5000")),
        log_config=None,
    )


__all__ = ["app", "current_trace_id", "run", "get_current_user", "require_permission", "require_roles"]
