"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    NOT_FOUND = "ERR_1002"

    # Webhook errors (2xxx)
    INVALID_SIGNATURE = "ERR_2001"
    UNKNOWN_OBJECT_TYPE = "ERR_2002"

    # Tenant errors (3xxx)
    TENANT_NOT_FOUND = "ERR_3001"
    CREDENTIAL_UNREADABLE = "ERR_3002"

    # External service errors (5xxx)
    GRAPH_API_ERROR = "ERR_5001"
    REPLY_PIPELINE_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"


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


class AuthenticityFailure(AppException):
    """
    חתימת webhook חסרה או שגויה.

    ה-diagnostic מתאר מה נכשל (header חסר, prefix שגוי, אי-התאמה)
    ולעולם לא כולל את הסוד עצמו.
    """

    def __init__(self, diagnostic: str):
        super().__init__(
            message="Invalid webhook signature",
            error_code=ErrorCode.INVALID_SIGNATURE,
            status_code=401,
            details={"reason": diagnostic}
        )
        self.diagnostic = diagnostic


class UnknownObjectTypeError(AppException):
    """Raised when a webhook payload declares an unexpected object type"""

    def __init__(self, received: Any, expected: str):
        super().__init__(
            message=f"Unsupported webhook object type: {received!r}",
            error_code=ErrorCode.UNKNOWN_OBJECT_TYPE,
            status_code=404,
            details={"received": str(received), "expected": expected}
        )


class TenantNotFoundError(NotFoundException):
    """Raised when a tenant account is not found"""

    def __init__(self, tenant_id: int):
        super().__init__("Tenant", tenant_id, error_code=ErrorCode.TENANT_NOT_FOUND)


class CredentialError(AppException):
    """Raised when a stored tenant credential cannot be decrypted"""

    def __init__(self, message: str, tenant_id: int | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.CREDENTIAL_UNREADABLE,
            status_code=500,
        )
        if tenant_id is not None:
            self.details["tenant_id"] = tenant_id


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
        self.details["service"] = service_name


class GraphAPIError(ExternalServiceException):
    """Raised when the Instagram / Facebook Graph API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="graph_api",
            message=f"Graph API error: {message}",
            error_code=ErrorCode.GRAPH_API_ERROR,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "GraphAPIError":
        """
        יצירת GraphAPIError מתוך HTTP response בצורה עקבית.

        Args:
            operation: שם הפעולה (לדוגמה: lookup_account, fetch_profile)
            response: אובייקט response (למשל httpx.Response)
            message: הודעת שגיאה מותאמת (אם לא סופק, נבנית אוטומטית)
            max_response_chars: אורך מקסימלי לשמירת response_text
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ReplyPipelineError(ExternalServiceException):
    """Raised when the downstream reply pipeline rejects a hand-off"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="reply_pipeline",
            message=f"Reply pipeline error: {message}",
            error_code=ErrorCode.REPLY_PIPELINE_ERROR,
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
