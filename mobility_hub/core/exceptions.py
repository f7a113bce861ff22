"""
Custom Exception Hierarchy

Every error that can reach an HTTP client or a log line is an AppException
with a stable error code.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    RATE_LIMITED = "ERR_1006"
    INVALID_SIGNATURE = "ERR_1007"

    # Records (2xxx)
    QUOTE_NOT_FOUND = "ERR_2001"
    VEHICLE_NOT_FOUND = "ERR_2002"
    PROVIDER_NOT_FOUND = "ERR_2003"
    DUPLICATE_PAYMENT = "ERR_2004"
    INVALID_QUOTE_STATUS = "ERR_2005"

    # External service errors (5xxx)
    WHATSAPP_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # State machine errors (6xxx)
    SESSION_CONFLICT = "ERR_6002"
    CONTEXT_MISMATCH = "ERR_6003"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class AlreadyExistsException(AppException):
    """Raised when a unique business key is reused"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.ALREADY_EXISTS
    ):
        super().__init__(
            message=f"{resource} already exists: {identifier}",
            error_code=error_code,
            status_code=409,
            details={"resource": resource, "identifier": str(identifier)}
        )


class SignatureVerificationError(AppException):
    """Raised when a webhook body does not carry a valid platform signature"""

    def __init__(self, reason: str = "invalid signature"):
        super().__init__(
            message="Webhook signature verification failed",
            error_code=ErrorCode.INVALID_SIGNATURE,
            status_code=403,
            details={"reason": reason}
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.service_name = service_name
        self.details["service"] = service_name

    @staticmethod
    def from_response(
        service_name: str,
        operation: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "ExternalServiceException":
        """Build from an httpx.Response without dumping a huge body into logs."""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return ExternalServiceException(
            service_name=service_name,
            message=f"{service_name} {operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class WhatsAppError(ExternalServiceException):
    """Raised when the WhatsApp Cloud API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="whatsapp",
            message=f"WhatsApp API error: {message}",
            error_code=ErrorCode.WHATSAPP_ERROR,
            details=details
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


class StateMachineException(AppException):
    """Base exception for state machine errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 400,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class SessionConflictError(StateMachineException):
    """Raised when a session write keeps losing the version race"""

    def __init__(self, user_id: str, attempts: int):
        super().__init__(
            message=f"Session update conflicted {attempts} times",
            error_code=ErrorCode.SESSION_CONFLICT,
            status_code=409,
            details={"user_id": user_id, "attempts": attempts}
        )


class ContextMismatchError(StateMachineException):
    """Raised when a stored context does not belong to the flow owning the state"""

    def __init__(self, state: str, expected_flow: str, actual_flow: str):
        super().__init__(
            message=f"State '{state}' expects a '{expected_flow}' context, got '{actual_flow}'",
            error_code=ErrorCode.CONTEXT_MISMATCH,
            details={
                "state": state,
                "expected_flow": expected_flow,
                "actual_flow": actual_flow,
            }
        )


class InvalidQuoteStatusError(AppException):
    """Raised when a backoffice milestone arrives for a quote in the wrong status"""

    def __init__(self, quote_id: int, current_status: str, operation: str):
        super().__init__(
            message=f"Quote {quote_id} is '{current_status}', cannot {operation}",
            error_code=ErrorCode.INVALID_QUOTE_STATUS,
            status_code=409,
            details={
                "quote_id": quote_id,
                "current_status": current_status,
                "operation": operation,
            }
        )
