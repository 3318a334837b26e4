"""
Subscription management for provider-side watches.

Gmail watches and Graph subscriptions both expire (7 days and ~3 days).
Renewal is checked only when the app is opened or by the maintenance
sweep, never while handling a provider signal, so a failed renewal can
never delay or suppress a notification.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from mailpush.shared.telemetry.logging import get_logger
from mailpush.shared.utils import ensure_utc, utc_now

if TYPE_CHECKING:
    from mailpush.application.interfaces.services import IMailProvider
    from mailpush.domain.entities import (DeltaResult, ProviderCredential,
                                          SubscriptionHandle,
                                          UserRegistration)
    from mailpush.domain.enums import ProviderKind

logger = get_logger(__name__)

DEFAULT_RENEWAL_THRESHOLD = timedelta(hours=24)


def needs_renewal(
    expiry: datetime | None,
    threshold: timedelta = DEFAULT_RENEWAL_THRESHOLD,
    now: datetime | None = None,
) -> bool:
    """True when now is past expiry - threshold, or when no expiry is known"""
    if expiry is None:
        return True
    now = now or utc_now()
    return now > ensure_utc(expiry) - threshold


class SubscriptionManager:
    """Dispatches watch lifecycle operations to the provider for a registration"""

    def __init__(self, providers: dict[ProviderKind, IMailProvider]):
        self._providers = providers

    def provider_for(self, kind: ProviderKind) -> IMailProvider:
        try:
            return self._providers[kind]
        except KeyError:
            raise ValueError(f"No provider configured for {kind}") from None

    async def establish(self, kind: ProviderKind, credential: ProviderCredential) -> SubscriptionHandle:
        handle = await self.provider_for(kind).establish(credential)
        logger.info("Established %s watch, expires %s", kind.value, handle.expiry.isoformat())
        return handle

    async def renew_if_expiring(
        self,
        registration: UserRegistration,
        credential: ProviderCredential,
        threshold: timedelta = DEFAULT_RENEWAL_THRESHOLD,
        now: datetime | None = None,
    ) -> SubscriptionHandle | None:
        """
        Renew the watch only when it is inside the renewal window.

        Returns:
            The new handle, or None when the current watch is still good
        """
        if not needs_renewal(registration.expiry, threshold, now):
            logger.debug(
                "Watch for %s valid until %s, no renewal needed",
                registration.key, registration.expiry,
            )
            return None

        handle = await self.provider_for(registration.provider).renew(registration, credential)
        logger.info("Renewed watch for %s, now expires %s", registration.key, handle.expiry.isoformat())
        return handle

    async def resolve_delta(
        self, kind: ProviderKind, credential: ProviderCredential, since_position: str
    ) -> DeltaResult:
        return await self.provider_for(kind).resolve_delta(credential, since_position)

    async def current_position(self, kind: ProviderKind, credential: ProviderCredential) -> str:
        return await self.provider_for(kind).current_position(credential)
