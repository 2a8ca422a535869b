"""SQLAlchemy ORM Models for the compliance tracker."""

from .base import Base, JSONType, TimestampMixin, UUIDMixin
from .models import (
    # Enums
    CompanyNotificationType,
    DigestFrequency,
    EmailType,
    RequirementStatus,
    UserRoleType,
    # Companies & users
    Company,
    User,
    UserRole,
    # Requirements
    RegulatoryRequirement,
    # Email pipeline
    CompanyNotification,
    EmailPreference,
    EmailQueueItem,
    NotificationEmailLog,
    # Enrichment
    LegalResearchCache,
    utc_now,
)

__all__ = [
    # Base
    "Base",
    "JSONType",
    "UUIDMixin",
    "TimestampMixin",
    # Enums
    "CompanyNotificationType",
    "DigestFrequency",
    "EmailType",
    "RequirementStatus",
    "UserRoleType",
    # Companies & users
    "Company",
    "User",
    "UserRole",
    # Requirements
    "RegulatoryRequirement",
    # Email pipeline
    "CompanyNotification",
    "EmailPreference",
    "EmailQueueItem",
    "NotificationEmailLog",
    # Enrichment
    "LegalResearchCache",
    "utc_now",
]
