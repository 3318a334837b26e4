"""
Device lifecycle use cases: registration, app open and the renewal sweep.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from mailpush.application.services.credentials import authorize_registration
from mailpush.application.services.subscription_manager import needs_renewal
from mailpush.domain.entities import RegistrationKey, UserRegistration
from mailpush.domain.exceptions import (MailPushException,
                                        RegistrationNotFoundError)
from mailpush.shared.telemetry.logging import get_logger
from mailpush.shared.utils import utc_now

if TYPE_CHECKING:
    from mailpush.application.interfaces.services import (IPendingEventStore,
                                                          IRegistrationStore)
    from mailpush.application.services.subscription_manager import \
        SubscriptionManager
    from mailpush.domain.entities import (ProviderCredential,
                                          SubscriptionHandle)
    from mailpush.domain.enums import ProviderKind
    from mailpush.infrastructure.external.email.oauth_manager import \
        UnifiedOAuthManager

logger = get_logger(__name__)

RENEWAL_FAILED = "Renewal failed"


@dataclass(frozen=True)
class AppOpenedResult:
    renewed: bool
    expiry: datetime | None
    error: str | None = None


@dataclass(frozen=True)
class RenewalSummary:
    checked: int
    renewed: int
    failed: int


class DeviceLifecycleService:
    """Client-driven lifecycle of a registration"""

    def __init__(
        self,
        registrations: IRegistrationStore,
        pending_events: IPendingEventStore,
        subscriptions: SubscriptionManager,
        oauth_manager_factory: Callable[[ProviderKind], UnifiedOAuthManager],
        renewal_threshold: timedelta = timedelta(hours=24),
    ) -> None:
        self.registrations = registrations
        self.pending_events = pending_events
        self.subscriptions = subscriptions
        self.oauth_manager_factory = oauth_manager_factory
        self.renewal_threshold = renewal_threshold

    async def register_device(
        self, email: str, device_token: str, auth_code: str, provider: ProviderKind
    ) -> UserRegistration:
        """
        Exchange the client's auth code, start a watch and store the registration.

        Re-registering the same (email, provider) replaces the previous
        registration, including its pending queue.

        Raises:
            CredentialExchangeError: the provider refused the authorization code
            ProviderError: the watch / subscription could not be created
            TransientError: a provider endpoint was unreachable
        """
        key = RegistrationKey(email.strip().lower(), provider)

        credential = await self.oauth_manager_factory(provider).exchange_code_for_tokens(auth_code)
        handle = await self.subscriptions.establish(provider, credential)

        registration = UserRegistration(
            key=key,
            device_token=device_token,
            credential=credential,
        ).with_subscription(handle)
        await self.registrations.save(registration)

        logger.info("Registered device for %s (watch expires %s)", key, handle.expiry.isoformat())
        return registration

    async def _renew(
        self,
        registration: UserRegistration,
        threshold: timedelta,
        now: datetime | None = None,
    ) -> SubscriptionHandle | None:
        if not needs_renewal(registration.expiry, threshold, now):
            return None

        provider = self.subscriptions.provider_for(registration.provider)
        credential: ProviderCredential = await authorize_registration(
            provider, self.registrations, registration
        )
        handle = await self.subscriptions.renew_if_expiring(
            registration, credential, threshold, now
        )
        if handle is not None:
            await self.registrations.update_subscription(registration.key, handle)
        return handle

    async def app_opened(self, email: str, provider: ProviderKind) -> AppOpenedResult:
        """
        Clear pending events and renew the watch when it is close to expiry.

        A renewal failure is reported in the result, never raised: the
        existing watch is usually still valid for a while.

        Raises:
            RegistrationNotFoundError: no registration for (email, provider)
        """
        key = RegistrationKey(email.strip().lower(), provider)
        registration = await self.registrations.get(key)
        if registration is None:
            raise RegistrationNotFoundError(key.email, provider.value)

        await self.pending_events.flush(key)

        try:
            handle = await self._renew(registration, self.renewal_threshold)
        except MailPushException as e:
            logger.warning("Renewal for %s failed: %s", key, e.message)
            return AppOpenedResult(renewed=False, expiry=registration.expiry, error=RENEWAL_FAILED)
        except Exception:
            logger.exception("Unexpected error renewing %s", key)
            return AppOpenedResult(renewed=False, expiry=registration.expiry, error=RENEWAL_FAILED)

        if handle is None:
            return AppOpenedResult(renewed=False, expiry=registration.expiry)
        return AppOpenedResult(renewed=True, expiry=handle.expiry)

    async def renew_expiring_registrations(self, within_hours: int = 24) -> RenewalSummary:
        """
        Renew every registration whose watch expires within the window.

        Failures are logged per registration and do not stop the sweep.
        """
        now = utc_now()
        window = timedelta(hours=within_hours)
        cutoff = now + window
        expiring = await self.registrations.list_expiring(cutoff)
        logger.info("Renewal sweep: %d registrations expire before %s", len(expiring), cutoff.isoformat())

        renewed = failed = 0
        for registration in expiring:
            try:
                if await self._renew(registration, window, now=now) is not None:
                    renewed += 1
            except MailPushException as e:
                failed += 1
                logger.error("Renewal for %s failed: %s", registration.key, e.message)
            except Exception:
                failed += 1
                logger.exception("Unexpected error renewing %s", registration.key)

        return RenewalSummary(checked=len(expiring), renewed=renewed, failed=failed)
