"""Error envelope schemas, used to document error responses in OpenAPI."""

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """A single field-level or contextual error detail."""

    field: str | None = None
    message: str


class ErrorBody(BaseModel):
    code: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str = Field(alias="requestId")

    model_config = {"populate_by_name": True}


class ErrorResponse(BaseModel):
    """Top-level error envelope returned by every failing request."""

    error: ErrorBody


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid input"},
    404: {"model": ErrorResponse, "description": "Event not found"},
    409: {"model": ErrorResponse, "description": "Event is in the wrong status"},
}
