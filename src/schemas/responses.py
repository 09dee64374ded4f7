"""Error envelope returned by every endpoint."""

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """A single field-level error."""

    field: str | None = None
    message: str


class ErrorBody(BaseModel):
    code: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str = Field(alias="requestId")

    model_config = {"populate_by_name": True}


class ErrorResponse(BaseModel):
    """Top-level error envelope: ``{"error": {code, message, details, requestId}}``."""

    error: ErrorBody


def error_content(code: str, message: str, request_id: str, details: list | None = None) -> dict:
    body = ErrorBody(code=code, message=message, details=details or [], request_id=request_id)
    return ErrorResponse(error=body).model_dump(by_alias=True)


# OpenAPI documentation for the error statuses the v1 routes can return
ERROR_RESPONSES: dict[int | str, dict] = {
    status: {"model": ErrorResponse}
    for status in (401, 403, 404, 409, 422, 429)
}
