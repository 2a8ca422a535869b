"""Pydantic schemas for company and director verification."""

from pydantic import Field, field_validator

from .base import TrackerBaseModel


class CinVerificationRequest(TrackerBaseModel):
    cin: str = Field(..., min_length=1, max_length=30, description="CIN, LLPIN or FCRN")

    @field_validator("cin")
    @classmethod
    def normalize_cin(cls, v: str) -> str:
        return v.strip().upper()


class DinVerificationRequest(TrackerBaseModel):
    din: str = Field(..., min_length=1, max_length=20)

    @field_validator("din")
    @classmethod
    def normalize_din(cls, v: str) -> str:
        return v.strip()
