from typing import Optional, Any


class TableTextError(Exception):
    """
    Base exception for the TableText application.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class ResourceNotFoundError(TableTextError):
    """
    Raised when a requested resource is not found.
    """
    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)


class AuthenticationError(TableTextError):
    """
    Raised when authentication fails.
    """
    def __init__(self, message: str = "Authentication failed", details: Optional[Any] = None):
        super().__init__(message, code="AUTHENTICATION_FAILED", status_code=401, details=details)


class ValidationError(TableTextError):
    """
    Raised when input validation fails.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)


class ExternalServiceError(TableTextError):
    """
    Raised when an external service (Resy, Linq, Anthropic) fails.
    """
    def __init__(self, message: str = "External service error", details: Optional[Any] = None):
        super().__init__(message, code="EXTERNAL_SERVICE_ERROR", status_code=502, details=details)


class ReservationPlatformError(ExternalServiceError):
    """
    Raised when a Resy API call fails. Carries the upstream status code.
    """
    def __init__(self, message: str = "Reservation platform error", upstream_status: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, details=details)
        self.code = "RESERVATION_PLATFORM_ERROR"
        self.upstream_status = upstream_status


class ReservationAuthError(ReservationPlatformError):
    """
    Raised when the Resy credential is expired or invalid.
    """
    def __init__(self, message: str = "Reservation credential expired or invalid", upstream_status: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, upstream_status=upstream_status, details=details)
        self.code = "RESERVATION_AUTH_EXPIRED"
        self.status_code = 401


class MessagingGatewayError(ExternalServiceError):
    """
    Raised when the Linq messaging API fails.
    """
    def __init__(self, message: str = "Messaging gateway error", details: Optional[Any] = None):
        super().__init__(message, details=details)
        self.code = "MESSAGING_GATEWAY_ERROR"


class CredentialDecryptionError(TableTextError):
    """
    Raised when a stored credential blob cannot be decrypted
    (tampered ciphertext, wrong key, malformed payload).
    """
    def __init__(self, message: str = "Credential decryption failed", details: Optional[Any] = None):
        super().__init__(message, code="CREDENTIAL_DECRYPTION_FAILED", status_code=500, details=details)
