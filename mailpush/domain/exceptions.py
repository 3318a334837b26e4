"""
Domain exceptions for the push backend.

Provider and delivery failures are classified here so that the notification
pipeline can decide between retrying, skipping and aborting without knowing
which client library raised the underlying error.
"""

from typing import Any


class MailPushException(Exception):
    """
    Base exception for all push backend errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error code for API responses
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class AuthenticationException(MailPushException):
    """Raised when the shared API key is missing or wrong."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, "AUTHENTICATION_ERROR")


class RegistrationNotFoundError(MailPushException):
    """Raised when no registration exists for an (email, provider) pair."""

    def __init__(self, email: str, provider: str):
        super().__init__(
            f"No registration for {email} ({provider})",
            "REGISTRATION_NOT_FOUND",
            {"email": email, "provider": provider},
        )


# Provider errors


class AuthExpiredError(MailPushException):
    """Access token rejected by the provider. Recoverable by one refresh-and-retry."""

    def __init__(self, provider: str, reason: str = ""):
        super().__init__(
            f"{provider} rejected the access token",
            "AUTH_EXPIRED",
            {"provider": provider, "reason": reason},
        )


class MessageNotFoundError(MailPushException):
    """Message or resource vanished before it could be read. Skippable."""

    def __init__(self, provider: str, message_id: str):
        super().__init__(
            f"{provider} message not found: {message_id}",
            "MESSAGE_NOT_FOUND",
            {"provider": provider, "message_id": message_id},
        )


class ProviderError(MailPushException):
    """Upstream failure other than auth expiry or not-found. Aborts the current run."""

    def __init__(self, provider: str, reason: str, status_code: int | None = None):
        super().__init__(
            f"{provider} request failed: {reason}",
            "PROVIDER_ERROR",
            {"provider": provider, "reason": reason, "status_code": status_code},
        )
        self.status_code = status_code


class CredentialExchangeError(ProviderError):
    """Authorization-code exchange or refresh-token grant failed."""

    def __init__(self, provider: str, reason: str):
        super().__init__(provider, reason)
        self.error_code = "CREDENTIAL_EXCHANGE_FAILED"


class TransientError(MailPushException):
    """Network failure, timeout or 5xx. Safe to retry on the next signal."""

    def __init__(self, service: str, reason: str):
        super().__init__(
            f"{service} temporarily unavailable: {reason}",
            "TRANSIENT_ERROR",
            {"service": service, "reason": reason},
        )


# Delivery errors


class DeliveryRejectedError(MailPushException):
    """Push gateway permanently rejected the device token. Do not retry."""

    def __init__(self, device_token: str, reason: str, status_code: int):
        super().__init__(
            f"Push delivery rejected: {reason}",
            "DELIVERY_REJECTED",
            {
                "device_token": device_token[:8] + "...",
                "reason": reason,
                "status_code": status_code,
            },
        )
        self.reason = reason
        self.status_code = status_code
