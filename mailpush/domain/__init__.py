"""
Domain layer.

Registrations, pending events, provider signals and the error taxonomy.
It has no dependencies on other layers.
"""

from mailpush.domain.entities import (DeltaResult, GmailSignal,
                                      NotificationContent,
                                      OutlookNotification, PendingEvent,
                                      ProviderCredential, PushResult,
                                      RegistrationKey, SubscriptionHandle,
                                      UserRegistration)
from mailpush.domain.enums import ProviderKind, SignalOutcome
from mailpush.domain.exceptions import (AuthenticationException,
                                        AuthExpiredError,
                                        CredentialExchangeError,
                                        DeliveryRejectedError,
                                        MailPushException,
                                        MessageNotFoundError, ProviderError,
                                        RegistrationNotFoundError,
                                        TransientError)

__all__ = [
    # Entities
    "RegistrationKey",
    "PendingEvent",
    "ProviderCredential",
    "SubscriptionHandle",
    "DeltaResult",
    "UserRegistration",
    "NotificationContent",
    "PushResult",
    "GmailSignal",
    "OutlookNotification",
    # Enums
    "ProviderKind",
    "SignalOutcome",
    # Exceptions
    "MailPushException",
    "AuthenticationException",
    "RegistrationNotFoundError",
    "AuthExpiredError",
    "MessageNotFoundError",
    "ProviderError",
    "CredentialExchangeError",
    "TransientError",
    "DeliveryRejectedError",
]
