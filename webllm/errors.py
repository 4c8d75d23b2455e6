from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    type: str = Field(..., description="Machine-readable error kind")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


class ErrorResponse(BaseModel):
    """
    OpenAI-style error envelope returned by every endpoint:
    {
        "error": {"type": "provider_busy", "message": "...", "code": 503}
    }
    """

    error: ErrorBody


class GatewayError(RuntimeError):
    """
    Base class for failures that map to a structured HTTP error.
    """

    kind = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=ErrorBody(
                type=self.kind,
                message=self.message,
                code=self.status_code,
                details=self.details,
            )
        )

    def to_payload(self) -> Dict[str, Any]:
        return self.to_response().model_dump(exclude_none=True)


class InvalidRequest(GatewayError):
    kind = "invalid_request"
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(GatewayError):
    kind = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(GatewayError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ProviderBusy(GatewayError):
    kind = "provider_busy"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, provider_id: str):
        super().__init__(
            f"Provider '{provider_id}' is handling another request, please retry later",
            details={"provider": provider_id},
        )
        self.provider_id = provider_id


class SessionUnavailable(GatewayError):
    kind = "session_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class LoginRequired(GatewayError):
    kind = "login_required"
    status_code = status.HTTP_412_PRECONDITION_FAILED


def error_response(exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def internal_error_payload(message: str) -> Dict[str, Any]:
    """
    Payload for an error frame emitted inside an already-started stream.
    """
    return GatewayError(message).to_payload()


__all__ = [
    "ErrorBody",
    "ErrorResponse",
    "GatewayError",
    "InvalidRequest",
    "Unauthorized",
    "Forbidden",
    "ProviderBusy",
    "SessionUnavailable",
    "LoginRequired",
    "error_response",
    "internal_error_payload",
]
