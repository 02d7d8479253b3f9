"""FastAPI routes and API modules for partnerlink.

Provides the response envelope, error types and exception handlers.
"""

from typing import Any, Generic, Literal, TypeVar

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..linking.errors import LinkingError
from ..logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


# =========================
# Response Models
# =========================


class APIResponse(BaseModel, Generic[T]):
    """Success envelope: ``{"status": "success", "data": ...}``."""

    status: Literal["success"] = "success"
    data: T


class ErrorDetail(BaseModel):
    """Error information carried in the error envelope."""

    code: str
    message: str
    action_required: str | None = None


class ErrorResponse(BaseModel):
    """Error envelope: ``{"status": "error", "error": {...}}``."""

    status: Literal["error"] = "error"
    error: ErrorDetail


# =========================
# Exception Classes
# =========================


class APIError(HTTPException):
    """Base API error with structured response."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        action_required: str | None = None,
    ):
        self.error_code = error_code
        self.message = message
        self.action_required = action_required
        super().__init__(status_code=status_code, detail=message)


class InvalidAPIKeyError(APIError):
    """Missing or unknown partner API key."""

    def __init__(self, message: str = "Missing or invalid X-Outfit-Api-Key header"):
        super().__init__(
            status_code=401,
            error_code="INVALID_API_KEY",
            message=message,
        )


class InvalidDatesError(APIError):
    """Search criteria dates are inconsistent or in the past."""

    def __init__(self, message: str):
        super().__init__(
            status_code=400,
            error_code="INVALID_DATES",
            message=message,
        )


class SearchUnavailableAPIError(APIError):
    """The upstream search service failed."""

    def __init__(self, message: str = "Search service is unavailable"):
        super().__init__(
            status_code=502,
            error_code="SEARCH_UNAVAILABLE",
            message=message,
        )


# HTTP status per linking error code
LINKING_ERROR_STATUS = {
    "AGENT_NOT_LINKED": 404,
    "CLIENT_NOT_LINKED": 404,
    "DISAMBIGUATION_NOT_FOUND": 404,
    "INVALID_CANDIDATE": 400,
    "LINK_CONFLICT": 409,
    "AGENT_ACCOUNT_CONFLICT": 409,
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    action_required: str | None = None,
) -> JSONResponse:
    """Render the error envelope."""
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=code, message=message, action_required=action_required
            ),
        ).model_dump(),
        headers={"X-Error-Code": code},
    )


# =========================
# Exception Handlers
# =========================


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError exceptions."""
    return error_response(
        exc.status_code, exc.error_code, exc.message, exc.action_required
    )


async def linking_error_handler(request: Request, exc: LinkingError) -> JSONResponse:
    """Map domain linking errors onto the error envelope."""
    return error_response(
        LINKING_ERROR_STATUS.get(exc.code, 400),
        exc.code,
        exc.message,
        exc.action_required,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures as VALIDATION_ERROR."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return error_response(422, "VALIDATION_ERROR", "; ".join(messages) or "Invalid request")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle generic HTTPException."""
    return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


def register_exception_handlers(app) -> None:
    """Register exception handlers with the FastAPI app."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(LinkingError, linking_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


def success(data: Any) -> dict[str, Any]:
    """Wrap a payload in the success envelope.

    Unset optional fields are dropped, so a linked result carries no
    ``candidates`` key and a disambiguation result no ``action``.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", exclude_none=True)
    return {"status": "success", "data": data}
