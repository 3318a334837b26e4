"""Just-in-time access tokens for stored registrations"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mailpush.shared.telemetry.logging import get_logger

if TYPE_CHECKING:
    from mailpush.application.interfaces.services import (IMailProvider,
                                                          IRegistrationStore)
    from mailpush.domain.entities import ProviderCredential, UserRegistration

logger = get_logger(__name__)


async def authorize_registration(
    provider: IMailProvider,
    registrations: IRegistrationStore,
    registration: UserRegistration,
    *,
    force: bool = False,
) -> ProviderCredential:
    """
    Return a usable credential for the registration, refreshing if needed.

    Whenever the provider actually refreshed, the returned refresh and
    access tokens are written back in one atomic update, even when the
    refresh token did not change. The registration object is updated in
    place so later calls in the same run see the new tokens.
    """
    credential = await provider.authorize(registration.credential, force=force)
    if credential is registration.credential:
        return credential

    await registrations.update_credential(registration.key, credential)
    if credential.refresh_token != registration.credential.refresh_token:
        logger.info("Stored rotated refresh token for %s", registration.key)
    registration.credential = credential
    return credential
