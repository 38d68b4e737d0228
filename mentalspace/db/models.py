"""SQLAlchemy models for the MentalSpace EHR schema."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base


Base = declarative_base()


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class AuditModule(str, enum.Enum):
    """Application areas an audit event can originate from."""

    AUTH = "auth"
    STAFF = "staff"
    CLIENT = "client"
    SCHEDULING = "scheduling"
    DOCUMENTATION = "documentation"
    BILLING = "billing"
    MESSAGING = "messaging"
    CRM = "crm"
    SETTINGS = "settings"


class AuditSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class NoteType(str, enum.Enum):
    INTAKE = "INTAKE"
    PROGRESS = "PROGRESS"
    TREATMENT_PLAN = "TREATMENT_PLAN"
    DISCHARGE = "DISCHARGE"
    CANCELLATION = "CANCELLATION"
    CONTACT = "CONTACT"
    OTHER = "OTHER"


class NoteStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    COMPLETED = "COMPLETED"
    SIGNED = "SIGNED"
    LOCKED = "LOCKED"


class SupervisionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ClientStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    WAITLIST = "WAITLIST"


class RiskFlag(str, enum.Enum):
    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class WaitlistStatus(str, enum.Enum):
    ACTIVE = "Active"
    CONTACTED = "Contacted"
    SCHEDULED = "Scheduled"
    REMOVED = "Removed"
    DECLINED = "Declined"


class WaitlistUrgency(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ContactMethod(str, enum.Enum):
    PHONE = "Phone"
    EMAIL = "Email"
    TEXT = "Text"
    PORTAL = "Portal"
    OTHER = "Other"


class User(Base):
    """Staff account able to sign in to the EHR."""

    __tablename__ = "users"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    email = sa.Column(String, nullable=False, unique=True, index=True)
    password_hash = sa.Column(String, nullable=False)
    first_name = sa.Column(String, nullable=True)
    last_name = sa.Column(String, nullable=True)
    role = sa.Column(String, nullable=False)
    is_active = sa.Column(Boolean, nullable=False, server_default=sa.true(), default=True)
    failed_login_attempts = sa.Column(Integer, nullable=False, server_default=sa.text("0"), default=0)
    account_locked_until = sa.Column(DateTime(timezone=True), nullable=True)
    last_login = sa.Column(DateTime(timezone=True), nullable=True)
    created_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
    )
    updated_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Client(Base):
    __tablename__ = "clients"

    id = sa.Column(String, primary_key=True, default=_uuid)
    first_name = sa.Column(String, nullable=False)
    last_name = sa.Column(String, nullable=False)
    preferred_name = sa.Column(String, nullable=True)
    date_of_birth = sa.Column(Date, nullable=False)
    gender = sa.Column(String, nullable=False, server_default=sa.text("'NOT_SPECIFIED'"))
    phone = sa.Column(String, nullable=True)
    email = sa.Column(String, nullable=True)
    address_line1 = sa.Column(String, nullable=True)
    address_line2 = sa.Column(String, nullable=True)
    city = sa.Column(String, nullable=True)
    state = sa.Column(String, nullable=True)
    postal_code = sa.Column(String, nullable=True)
    country = sa.Column(String, nullable=False, server_default=sa.text("'USA'"), default="USA")
    status = sa.Column(
        sa.Enum(ClientStatus, name="client_status"),
        nullable=False,
        default=ClientStatus.ACTIVE,
    )
    risk_flag = sa.Column(sa.Enum(RiskFlag, name="risk_flag"), nullable=False, default=RiskFlag.NONE)
    assigned_therapist_id = sa.Column(Integer, ForeignKey("users.id"), nullable=True)
    referral_source = sa.Column(String, nullable=True)
    created_by = sa.Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now(), default=_utcnow)
    updated_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        sa.Index("idx_clients_therapist", "assigned_therapist_id"),
        sa.Index("idx_clients_name", "last_name", "first_name"),
    )


class NoteTemplate(Base):
    __tablename__ = "note_templates"

    id = sa.Column(String, primary_key=True, default=_uuid)
    name = sa.Column(String, nullable=False)
    template_type = sa.Column(sa.Enum(NoteType, name="note_type"), nullable=False)
    content = sa.Column(Text, nullable=False)
    structured_content = sa.Column(sa.JSON, nullable=True)
    created_by = sa.Column(Integer, ForeignKey("users.id"), nullable=False)
    is_active = sa.Column(Boolean, nullable=False, server_default=sa.true(), default=True)
    is_global = sa.Column(Boolean, nullable=False, server_default=sa.false(), default=False)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now(), default=_utcnow)
    updated_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )


class Note(Base):
    """Clinical note; ``content`` holds client-encrypted structured content."""

    __tablename__ = "notes"

    id = sa.Column(String, primary_key=True, default=_uuid)
    client_id = sa.Column(String, ForeignKey("clients.id"), nullable=False)
    provider_id = sa.Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_id = sa.Column(String, nullable=True)
    note_type = sa.Column(sa.Enum(NoteType, name="note_type"), nullable=False)
    content = sa.Column(sa.JSON, nullable=True)
    template_id = sa.Column(String, ForeignKey("note_templates.id"), nullable=True)
    status = sa.Column(sa.Enum(NoteStatus, name="note_status"), nullable=False, default=NoteStatus.DRAFT)
    signed_by = sa.Column(Integer, ForeignKey("users.id"), nullable=True)
    signed_at = sa.Column(DateTime(timezone=True), nullable=True)
    signature_hash = sa.Column(String, nullable=True)
    supervisor_id = sa.Column(Integer, ForeignKey("users.id"), nullable=True)
    supervision_status = sa.Column(sa.Enum(SupervisionStatus, name="supervision_status"), nullable=True)
    supervision_date = sa.Column(DateTime(timezone=True), nullable=True)
    supervision_comments = sa.Column(Text, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now(), default=_utcnow)
    updated_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        sa.Index("idx_notes_client", "client_id", "created_at"),
        sa.Index("idx_notes_provider", "provider_id"),
    )


class NoteVersion(Base):
    __tablename__ = "note_versions"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    note_id = sa.Column(String, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False)
    version = sa.Column(Integer, nullable=False)
    user_id = sa.Column(Integer, ForeignKey("users.id"), nullable=True)
    content = sa.Column(sa.JSON, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=True, server_default=sa.func.now(), default=_utcnow)

    __table_args__ = (
        sa.UniqueConstraint("note_id", "version", name="uq_note_versions_note_version"),
    )


class AuditLogEntry(Base):
    __tablename__ = "audit_log"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    timestamp = sa.Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now(), default=_utcnow)
    client_timestamp = sa.Column(String, nullable=True)
    user_id = sa.Column(Integer, ForeignKey("users.id"), nullable=True)
    username = sa.Column(String, nullable=True)
    action = sa.Column(String, nullable=False)
    description = sa.Column(Text, nullable=False, default="")
    module = sa.Column(sa.Enum(AuditModule, name="audit_module"), nullable=False)
    severity = sa.Column(sa.Enum(AuditSeverity, name="audit_severity"), nullable=False, default=AuditSeverity.INFO)
    entity_id = sa.Column(String, nullable=True)
    entity_type = sa.Column(String, nullable=True)
    old_value = sa.Column(Text, nullable=True)
    new_value = sa.Column(Text, nullable=True)
    ip_address = sa.Column(String, nullable=True)
    user_agent = sa.Column(String, nullable=True)

    __table_args__ = (
        sa.Index("idx_audit_log_user", "user_id", "timestamp"),
        sa.Index("idx_audit_log_action", "action"),
        sa.Index("idx_audit_log_entity", "entity_type", "entity_id"),
    )


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"

    id = sa.Column(String, primary_key=True, default=_uuid)
    client_id = sa.Column(String, ForeignKey("clients.id"), nullable=False)
    request_date = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    service_requested = sa.Column(String, nullable=False)
    preferred_days = sa.Column(sa.JSON, nullable=True)
    preferred_times = sa.Column(sa.JSON, nullable=True)
    urgency = sa.Column(
        sa.Enum(WaitlistUrgency, name="waitlist_urgency"),
        nullable=False,
        default=WaitlistUrgency.MEDIUM,
    )
    notes = sa.Column(Text, nullable=True)
    status = sa.Column(
        sa.Enum(WaitlistStatus, name="waitlist_status"),
        nullable=False,
        default=WaitlistStatus.ACTIVE,
    )
    priority = sa.Column(Integer, nullable=False, default=5)
    removal_reason = sa.Column(String, nullable=True)
    removal_notes = sa.Column(Text, nullable=True)
    created_by = sa.Column(Integer, ForeignKey("users.id"), nullable=False)
    updated_by = sa.Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now(), default=_utcnow)
    updated_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        sa.Index("idx_waitlist_client_status", "client_id", "status"),
    )


class WaitlistContactAttempt(Base):
    __tablename__ = "waitlist_contact_attempts"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    entry_id = sa.Column(String, ForeignKey("waitlist_entries.id", ondelete="CASCADE"), nullable=False)
    date = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    method = sa.Column(sa.Enum(ContactMethod, name="contact_method"), nullable=False)
    notes = sa.Column(Text, nullable=True)
    successful = sa.Column(Boolean, nullable=False, default=False)
    staff_member_id = sa.Column(Integer, ForeignKey("users.id"), nullable=False)


__all__ = [
    "AuditLogEntry",
    "AuditModule",
    "AuditSeverity",
    "Base",
    "Client",
    "ClientStatus",
    "ContactMethod",
    "Note",
    "NoteStatus",
    "NoteTemplate",
    "NoteType",
    "NoteVersion",
    "RiskFlag",
    "SupervisionStatus",
    "User",
    "WaitlistContactAttempt",
    "WaitlistEntry",
    "WaitlistStatus",
    "WaitlistUrgency",
]
