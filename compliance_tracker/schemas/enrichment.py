"""Pydantic schemas for requirement enrichment."""

from datetime import date
from uuid import UUID

from pydantic import Field, model_validator

from .base import TrackerBaseModel


class RequirementPayload(TrackerBaseModel):
    """A requirement sent inline by the client."""

    id: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=100)
    requirement: str = Field(..., min_length=1, max_length=500)
    status: str = Field(default="not_started")
    due_date: date | None = None
    penalty: str | None = None
    is_critical: bool = False
    template_id: str | None = Field(default=None, max_length=100)


class EnrichmentRequest(TrackerBaseModel):
    """
    Requirements to enrich.

    Either send the requirements inline or reference stored ones by id.
    Stored requirements are returned first, in the order given.
    """

    requirements: list[RequirementPayload] = Field(default_factory=list, max_length=500)
    requirement_ids: list[UUID] = Field(default_factory=list, max_length=500)
    max_searches: int | None = Field(default=None, ge=0, le=50)

    @model_validator(mode="after")
    def require_some_input(self) -> "EnrichmentRequest":
        if not self.requirements and not self.requirement_ids:
            raise ValueError("Provide requirements or requirement_ids")
        return self


class BusinessImpactResponse(TrackerBaseModel):
    financial: str
    reputation: str
    operations: str


class EnrichedRequirementResponse(TrackerBaseModel):
    """Legal research and impact annotations for one requirement."""

    requirement_id: str
    legal_section: str
    penalty_provision: str
    exact_penalty: str
    business_impact: BusinessImpactResponse
    source: str = Field(..., description="cache, fresh or fallback")
    sources: list[str] = Field(default_factory=list)


class EnrichmentResponse(TrackerBaseModel):
    results: list[EnrichedRequirementResponse]
    cached: int
    fresh: int
    fallback: int
