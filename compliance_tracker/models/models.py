"""SQLAlchemy ORM Models for the compliance tracker.

Column types are kept portable so the same models run on PostgreSQL in
production and on SQLite in the test suite.
"""

from datetime import date, datetime, timezone
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UUIDMixin


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


# =============================================================================
# ENUMS
# =============================================================================


class UserRoleType(str, PyEnum):
    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class RequirementStatus(str, PyEnum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    UPCOMING = "upcoming"


class EmailType(str, PyEnum):
    """Kind of queued email event."""
    STATUS_CHANGE = "status_change"
    REMINDER = "reminder"


class DigestFrequency(str, PyEnum):
    INSTANT = "instant"
    DAILY = "daily"
    WEEKLY = "weekly"
    NONE = "none"


class CompanyNotificationType(str, PyEnum):
    UPCOMING_DEADLINE = "upcoming_deadline"
    OVERDUE = "overdue"
    STATUS_CHANGE = "status_change"


# =============================================================================
# COMPANIES & USERS
# =============================================================================


class Company(Base, UUIDMixin, TimestampMixin):
    """A tenant whose compliance calendar is tracked."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    requirements: Mapped[list["RegulatoryRequirement"]] = relationship(
        back_populates="company"
    )


class User(Base, UUIDMixin, TimestampMixin):
    """Address book entry for a platform user."""

    __tablename__ = "users"

    email: Mapped[str | None] = mapped_column(String(320))
    full_name: Mapped[str | None] = mapped_column(String(255))


class UserRole(Base, UUIDMixin, TimestampMixin):
    """
    Role of a user within a company.

    A superadmin row with no company is a platform-wide superadmin and
    receives reminders for every company.
    """

    __tablename__ = "user_roles"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    company_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("companies.id"), nullable=True
    )
    role: Mapped[UserRoleType] = mapped_column(
        Enum(UserRoleType, name="user_role_type", values_callable=_enum_values),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "company_id", name="uq_user_roles_user_company"),
        Index("idx_user_roles_company", "company_id", "role"),
    )


# =============================================================================
# COMPLIANCE REQUIREMENTS
# =============================================================================


class RegulatoryRequirement(Base, UUIDMixin, TimestampMixin):
    """A dated statutory obligation of a company."""

    __tablename__ = "regulatory_requirements"

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    template_id: Mapped[UUID | None] = mapped_column(nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    requirement: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    due_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[RequirementStatus] = mapped_column(
        Enum(RequirementStatus, name="requirement_status", values_callable=_enum_values),
        default=RequirementStatus.NOT_STARTED,
        nullable=False,
    )
    penalty: Mapped[str | None] = mapped_column(Text)
    is_critical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    company: Mapped["Company"] = relationship(back_populates="requirements")

    __table_args__ = (
        Index("idx_requirements_company_due", "company_id", "due_date"),
        Index("idx_requirements_status_due", "status", "due_date"),
    )


# =============================================================================
# EMAIL PIPELINE
# =============================================================================


class EmailQueueItem(Base, UUIDMixin):
    """
    Pending notification event awaiting the digest flush.

    processed_at is NULL while pending and is set exactly once. Rows are
    kept for audit. claim_token/claimed_at hold a short lease taken by a
    flush run before it sends.
    """

    __tablename__ = "email_batch_queue"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    company_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("companies.id"), nullable=True
    )
    company_name: Mapped[str | None] = mapped_column(String(255))
    email_type: Mapped[EmailType] = mapped_column(
        Enum(EmailType, name="email_type", values_callable=_enum_values),
        nullable=False,
    )
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    claim_token: Mapped[UUID | None] = mapped_column(nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_email_batch_queue_pending", "processed_at", "created_at"),
        Index("idx_email_batch_queue_user", "user_id", "email_type"),
    )


class EmailPreference(Base, UUIDMixin):
    """Per-user email opt-outs. unsubscribe_all suppresses every kind."""

    __tablename__ = "email_preferences"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False, unique=True
    )
    unsubscribe_all: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    unsubscribe_status_changes: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    unsubscribe_reminders: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    unsubscribe_team_updates: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    digest_frequency: Mapped[DigestFrequency] = mapped_column(
        Enum(DigestFrequency, name="digest_frequency", values_callable=_enum_values),
        default=DigestFrequency.INSTANT,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    def suppresses(self, email_type: EmailType) -> bool:
        """Whether this preference row opts the user out of ``email_type``."""
        if self.unsubscribe_all:
            return True
        if email_type == EmailType.STATUS_CHANGE:
            return self.unsubscribe_status_changes
        if email_type == EmailType.REMINDER:
            return self.unsubscribe_reminders
        return False


class NotificationEmailLog(Base, UUIDMixin):
    """Append-only record of digests sent, for once-per-day idempotency."""

    __tablename__ = "notification_email_log"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "run_date", "kind", name="uq_notification_email_log_run"),
    )


class CompanyNotification(Base, UUIDMixin):
    """In-app notification shown in the tracker."""

    __tablename__ = "company_notifications"

    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[CompanyNotificationType] = mapped_column(
        Enum(
            CompanyNotificationType,
            name="company_notification_type",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    requirement_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("regulatory_requirements.id"), nullable=True
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_company_notifications_user", "user_id", "is_read"),
    )


# =============================================================================
# ENRICHMENT CACHE
# =============================================================================


class LegalResearchCache(Base, UUIDMixin, TimestampMixin):
    """
    Cached legal research for one kind of compliance requirement.

    An entry past expires_at is treated as absent. Writes are upserts on
    cache_key, so the last writer wins.
    """

    __tablename__ = "legal_research_cache"

    cache_key: Mapped[str] = mapped_column(String(600), nullable=False, unique=True)
    template_id: Mapped[UUID | None] = mapped_column(nullable=True)
    query: Mapped[str | None] = mapped_column(Text)
    jurisdiction: Mapped[str] = mapped_column(String(10), default="IN", nullable=False)
    legal_section: Mapped[str | None] = mapped_column(Text)
    penalty_provision: Mapped[str | None] = mapped_column(Text)
    sources: Mapped[list] = mapped_column(JSONType, default=list)
    business_impact: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    answer_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
