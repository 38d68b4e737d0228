"""Request and response models for the MentalSpace API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mentalspace.db.models import (
    AuditModule,
    AuditSeverity,
    ClientStatus,
    ContactMethod,
    NoteStatus,
    NoteType,
    RiskFlag,
    WaitlistStatus,
    WaitlistUrgency,
)
from mentalspace.rbac import ROLES


class SuccessResponse(BaseModel):
    """Standard successful response envelope."""

    success: Literal[True] = True
    data: Any | None = None

    model_config = {"extra": "allow"}


class ErrorDetail(BaseModel):
    code: int | str | None = None
    message: str
    details: Any | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope; ``message`` mirrors ``error.message``."""

    success: Literal[False] = False
    message: str
    error: ErrorDetail


def _require_text(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{field} is required")
    return str(value).strip()


class RegisterModel(BaseModel):
    email: str
    password: str = Field(min_length=8)
    role: str = "clinician"
    firstName: Optional[str] = Field(default=None, alias="firstName")
    lastName: Optional[str] = Field(default=None, alias="lastName")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        value = _require_text(value, "email")
        if "@" not in value:
            raise ValueError("email must be a valid address")
        return value.lower()

    @field_validator("role")
    @classmethod
    def _validate_role(cls, value: str) -> str:
        if value not in ROLES:
            raise ValueError(f"role must be one of {sorted(ROLES)}")
        return value


class LoginModel(BaseModel):
    email: str
    password: str

    model_config = ConfigDict(extra="ignore")

    @field_validator("email")
    @classmethod
    def _require_email(cls, value: str) -> str:
        return _require_text(value, "email")

    @field_validator("password")
    @classmethod
    def _require_password(cls, value: str) -> str:
        if not value:
            raise ValueError("Password is required")
        return value


class UpdatePasswordModel(BaseModel):
    currentPassword: str = Field(alias="currentPassword")
    newPassword: str = Field(alias="newPassword", min_length=8)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ClientCreateModel(BaseModel):
    first_name: str
    last_name: str
    preferred_name: Optional[str] = None
    date_of_birth: date
    gender: str = "NOT_SPECIFIED"
    phone: Optional[str] = None
    email: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "USA"
    status: ClientStatus = ClientStatus.ACTIVE
    risk_flag: RiskFlag = RiskFlag.NONE
    assigned_therapist_id: Optional[int] = None
    referral_source: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("first_name", "last_name")
    @classmethod
    def _require_names(cls, value: str) -> str:
        return _require_text(value, "name")

    @field_validator("gender")
    @classmethod
    def _validate_gender(cls, value: str) -> str:
        allowed = {"MALE", "FEMALE", "OTHER", "NOT_SPECIFIED"}
        normalised = (value or "NOT_SPECIFIED").upper()
        if normalised not in allowed:
            raise ValueError(f"gender must be one of {sorted(allowed)}")
        return normalised


class ClientUpdateModel(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    preferred_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    status: Optional[ClientStatus] = None
    risk_flag: Optional[RiskFlag] = None
    assigned_therapist_id: Optional[int] = None
    referral_source: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class NoteCreateModel(BaseModel):
    client_id: str
    note_type: NoteType
    appointment_id: Optional[str] = None
    template_id: Optional[str] = None
    content: Any = Field(default=None, alias="structuredContent")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NoteUpdateModel(BaseModel):
    appointment_id: Optional[str] = None
    template_id: Optional[str] = None
    status: Optional[NoteStatus] = None
    content: Any = Field(default=None, alias="structuredContent")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NoteDraftModel(BaseModel):
    content: Any = Field(alias="structuredContent")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class FinalizeNoteModel(BaseModel):
    signature: str
    timestamp: Optional[datetime] = None

    @field_validator("signature")
    @classmethod
    def _require_signature(cls, value: str) -> str:
        return _require_text(value, "signature")


class SupervisionSubmitModel(BaseModel):
    supervisorId: int = Field(alias="supervisorId")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SupervisionReviewModel(BaseModel):
    comments: Optional[str] = None


class NoteTemplateModel(BaseModel):
    name: str
    template_type: NoteType
    content: str
    structured_content: Any = Field(default=None, alias="structuredContent")
    is_active: bool = True
    is_global: bool = False

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("name", "content")
    @classmethod
    def _require_fields(cls, value: str) -> str:
        return _require_text(value, "field")


class NoteTemplateUpdateModel(BaseModel):
    name: Optional[str] = None
    template_type: Optional[NoteType] = None
    content: Optional[str] = None
    structured_content: Any = Field(default=None, alias="structuredContent")
    is_active: Optional[bool] = None
    is_global: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AuditLogCreateModel(BaseModel):
    """Client-submitted audit event; unknown keys are ignored."""

    action: str
    description: str = ""
    module: AuditModule
    severity: AuditSeverity = AuditSeverity.INFO
    userId: Optional[str] = Field(default=None, alias="userId")
    entityId: Optional[str] = Field(default=None, alias="entityId")
    entityType: Optional[str] = Field(default=None, alias="entityType")
    oldValue: Optional[str] = Field(default=None, alias="oldValue")
    newValue: Optional[str] = Field(default=None, alias="newValue")
    userAgent: Optional[str] = Field(default=None, alias="userAgent")
    timestamp: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("action")
    @classmethod
    def _require_action(cls, value: str) -> str:
        return _require_text(value, "action")

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, value: Any) -> Any:
        # "error" is accepted from older clients and stored as a warning.
        if isinstance(value, str) and value.lower() == "error":
            return AuditSeverity.WARNING
        return value


class WaitlistCreateModel(BaseModel):
    client_id: str
    service_requested: str
    preferred_days: List[str] = Field(default_factory=list)
    preferred_times: List[str] = Field(default_factory=list)
    urgency: WaitlistUrgency = WaitlistUrgency.MEDIUM
    notes: Optional[str] = None
    priority: int = Field(default=5, ge=1, le=10)

    model_config = ConfigDict(extra="ignore")

    @field_validator("preferred_days")
    @classmethod
    def _validate_days(cls, value: List[str]) -> List[str]:
        allowed = {"Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"}
        invalid = [day for day in value if day not in allowed]
        if invalid:
            raise ValueError(f"invalid preferred days: {invalid}")
        return value

    @field_validator("preferred_times")
    @classmethod
    def _validate_times(cls, value: List[str]) -> List[str]:
        allowed = {"Morning", "Afternoon", "Evening"}
        invalid = [slot for slot in value if slot not in allowed]
        if invalid:
            raise ValueError(f"invalid preferred times: {invalid}")
        return value


class WaitlistUpdateModel(BaseModel):
    service_requested: Optional[str] = None
    urgency: Optional[WaitlistUrgency] = None
    notes: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    status: Optional[WaitlistStatus] = None

    model_config = ConfigDict(extra="ignore")


class ContactAttemptModel(BaseModel):
    method: Optional[ContactMethod] = None
    notes: Optional[str] = None
    successful: bool = False


class WaitlistRemovalModel(BaseModel):
    removalReason: Optional[str] = Field(default=None, alias="removalReason")
    removalNotes: Optional[str] = Field(default=None, alias="removalNotes")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def envelope(data: Any, **extra: Any) -> Dict[str, Any]:
    payload = SuccessResponse(data=data).model_dump()
    payload.update(extra)
    return payload


__all__ = [
    "AuditLogCreateModel",
    "ClientCreateModel",
    "ClientUpdateModel",
    "ContactAttemptModel",
    "ErrorDetail",
    "ErrorResponse",
    "FinalizeNoteModel",
    "LoginModel",
    "NoteCreateModel",
    "NoteDraftModel",
    "NoteTemplateModel",
    "NoteTemplateUpdateModel",
    "NoteUpdateModel",
    "RegisterModel",
    "SuccessResponse",
    "SupervisionReviewModel",
    "SupervisionSubmitModel",
    "UpdatePasswordModel",
    "WaitlistCreateModel",
    "WaitlistRemovalModel",
    "WaitlistUpdateModel",
    "envelope",
]
