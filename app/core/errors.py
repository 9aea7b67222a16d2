# app/core/errors.py
"""
Result and error types shared by the service layer.

Services never raise to signal an expected failure: they return a
`ServiceResult` whose `error` carries an `ErrorCode`. Routes turn failed
results into JSON with `error_response`.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

from fastapi.responses import JSONResponse

T = TypeVar("T")


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    RETRYABLE = "retryable"
    INTERNAL = "internal"


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    GOAL_NOT_FOUND = "GOAL_NOT_FOUND"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    GOAL_ALREADY_COMPLETED = "GOAL_ALREADY_COMPLETED"
    NO_ROUTE = "NO_ROUTE"
    NETWORK_ERROR = "NETWORK_ERROR"
    BLOCKHASH_EXPIRED = "BLOCKHASH_EXPIRED"
    SLIPPAGE_EXCEEDED = "SLIPPAGE_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


DEFAULT_STATUS_CODES: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.AUTH_ERROR: 401,
    ErrorCode.GOAL_NOT_FOUND: 404,
    ErrorCode.INVALID_STATUS_TRANSITION: 400,
    ErrorCode.GOAL_ALREADY_COMPLETED: 400,
    ErrorCode.NO_ROUTE: 422,
    ErrorCode.NETWORK_ERROR: 503,
    ErrorCode.BLOCKHASH_EXPIRED: 409,
    ErrorCode.SLIPPAGE_EXCEEDED: 409,
    ErrorCode.INTERNAL_ERROR: 500,
}


@dataclass
class ServiceError:
    code: ErrorCode
    message: str
    retryable: bool = False
    status_code: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.status_code is None:
            self.status_code = DEFAULT_STATUS_CODES[self.code]

    @property
    def category(self) -> ErrorCategory:
        if self.retryable:
            return ErrorCategory.RETRYABLE
        if self.code == ErrorCode.AUTH_ERROR:
            return ErrorCategory.AUTH
        if self.code in (ErrorCode.INTERNAL_ERROR, ErrorCode.NETWORK_ERROR):
            return ErrorCategory.INTERNAL
        return ErrorCategory.VALIDATION

    def to_body(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "retryable": self.retryable,
            "error": {"code": self.code.value, "message": self.message},
        }
        if request_id:
            body["requestId"] = request_id
        body.update(self.payload)
        return body


@dataclass
class ServiceResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ServiceResult[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        message: str,
        *,
        retryable: bool = False,
        status_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "ServiceResult[T]":
        return cls(error=ServiceError(
            code=code,
            message=message,
            retryable=retryable,
            status_code=status_code,
            payload=payload or {},
        ))

    @classmethod
    def from_error(cls, error: ServiceError) -> "ServiceResult[T]":
        return cls(error=error)


def error_response(error: ServiceError, request_id: Optional[str] = None) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_body(request_id))
