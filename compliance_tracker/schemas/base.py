"""Shared pydantic configuration and the API error envelope."""

from pydantic import BaseModel, ConfigDict


class TrackerBaseModel(BaseModel):
    """Reads ORM objects directly and serialises enums as their values."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERRORS
# =============================================================================


class ErrorDetail(TrackerBaseModel):
    """One problem with a request, optionally tied to a field."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(TrackerBaseModel):
    """Body returned by the global exception handler."""

    error: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str | None = None
