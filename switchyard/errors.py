from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from pydantic import BaseModel, Field

from switchyard.exceptions import (
    ConversationNotFoundError,
    ConversationStateError,
    FallbackExhaustedError,
    ModelNotFoundError,
    ProviderNotFoundError,
    ProviderUnavailableError,
    SwitchyardError,
    ValidationError,
)


class ErrorResponse(BaseModel):
    """
    Standard error payload used by every switchyard endpoint.

    {
        "error": "not_found",
        "message": "Provider 'openai' not found",
        "code": 404,
        "details": {...}
    }
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


def http_error(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> HTTPException:
    """
    Helper to create an HTTPException with a standardised error body.
    """
    payload = ErrorResponse(
        error=error,
        message=message,
        code=status_code,
        details=details,
    )
    return HTTPException(status_code=status_code, detail=payload.model_dump())


def not_found(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_404_NOT_FOUND, error="not_found", message=message, details=details
    )


def conflict(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_409_CONFLICT, error="conflict", message=message, details=details
    )


def status_code_for(exc: SwitchyardError) -> int:
    """领域异常到 HTTP 状态码的映射。"""
    if isinstance(exc, (ProviderNotFoundError, ModelNotFoundError, ConversationNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ConversationStateError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, (ProviderUnavailableError, FallbackExhaustedError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response_for(exc: SwitchyardError) -> ErrorResponse:
    return ErrorResponse(
        error=exc.error_code,
        message=exc.message,
        code=status_code_for(exc),
        details=exc.details or None,
    )


__all__ = [
    "ErrorResponse",
    "conflict",
    "error_response_for",
    "http_error",
    "not_found",
    "status_code_for",
]
