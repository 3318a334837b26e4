import hmac
from datetime import timedelta

from fastapi import Request

from mailpush.application.services.subscription_manager import \
    SubscriptionManager
from mailpush.application.use_cases.lifecycle import DeviceLifecycleService
from mailpush.application.use_cases.notifications import NotificationPipeline
from mailpush.domain.enums import ProviderKind
from mailpush.domain.exceptions import AuthenticationException
from mailpush.infrastructure.config.settings import get_settings
from mailpush.infrastructure.external.email.encryption import \
    CredentialEncryptor
from mailpush.infrastructure.external.email.factory import MailProviderFactory
from mailpush.infrastructure.external.email.oauth_manager import \
    UnifiedOAuthManager
from mailpush.infrastructure.external.push import ApnsDispatcher
from mailpush.infrastructure.persistence.database import get_session_factory
from mailpush.infrastructure.persistence.stores import (PendingEventStore,
                                                        RegistrationStore)

# Global service instances (singletons)
_encryptor: CredentialEncryptor | None = None
_dispatcher: ApnsDispatcher | None = None
_subscription_manager: SubscriptionManager | None = None


async def verify_api_key(request: Request) -> None:
    """Reject requests that do not carry the shared client secret"""
    settings = get_settings()
    provided = request.headers.get(settings.api_key_header, "")
    if not provided or not hmac.compare_digest(provided.encode(), settings.api_key.encode()):
        raise AuthenticationException()


def get_encryptor() -> CredentialEncryptor:
    global _encryptor
    if _encryptor is None:
        _encryptor = CredentialEncryptor()
    return _encryptor


def get_push_dispatcher() -> ApnsDispatcher:
    """
    Push dispatcher dependency (singleton)

    The dispatcher owns the cached APNs provider token, so one instance is
    shared by every request in the process.
    """
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ApnsDispatcher()
    return _dispatcher


def get_subscription_manager() -> SubscriptionManager:
    global _subscription_manager
    if _subscription_manager is None:
        _subscription_manager = SubscriptionManager(MailProviderFactory.create_all())
    return _subscription_manager


def get_registration_store() -> RegistrationStore:
    return RegistrationStore(get_session_factory(), get_encryptor())


def get_pending_event_store() -> PendingEventStore:
    return PendingEventStore(get_session_factory())


def get_notification_pipeline() -> NotificationPipeline:
    return NotificationPipeline(
        registrations=get_registration_store(),
        pending_events=get_pending_event_store(),
        subscriptions=get_subscription_manager(),
        dispatcher=get_push_dispatcher(),
        app_name=get_settings().app_name,
    )


def get_lifecycle_service() -> DeviceLifecycleService:
    return DeviceLifecycleService(
        registrations=get_registration_store(),
        pending_events=get_pending_event_store(),
        subscriptions=get_subscription_manager(),
        oauth_manager_factory=_oauth_manager_for,
        renewal_threshold=timedelta(hours=get_settings().renewal_threshold_hours),
    )


def _oauth_manager_for(provider: ProviderKind) -> UnifiedOAuthManager:
    return UnifiedOAuthManager.for_provider(provider)
