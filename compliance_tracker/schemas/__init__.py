"""Compliance tracker API schemas.

Schemas are organized by domain:
- base: common configuration and error responses
- enrichment: requirement enrichment requests and results
- verification: CIN/DIN lookups
"""

from .base import (
    # Base classes
    TrackerBaseModel,
    # Errors
    ErrorDetail,
    ErrorResponse,
)
from .enrichment import (
    BusinessImpactResponse,
    EnrichedRequirementResponse,
    EnrichmentRequest,
    EnrichmentResponse,
    RequirementPayload,
)
from .verification import CinVerificationRequest, DinVerificationRequest

__all__ = [
    # Base
    "TrackerBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Enrichment
    "RequirementPayload",
    "EnrichmentRequest",
    "BusinessImpactResponse",
    "EnrichedRequirementResponse",
    "EnrichmentResponse",
    # Verification
    "CinVerificationRequest",
    "DinVerificationRequest",
]
