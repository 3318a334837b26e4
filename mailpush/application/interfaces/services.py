"""
Ports used by the application layer.

Gmail and Outlook are two implementations of IMailProvider; the pipeline
dispatches on the signal's provider kind instead of subclassing.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from mailpush.domain.entities import (DeltaResult, PendingEvent,
                                      ProviderCredential, PushResult,
                                      RegistrationKey, SubscriptionHandle,
                                      UserRegistration)
from mailpush.domain.enums import ProviderKind


class IMailProvider(Protocol):
    """Capability interface over one provider's mail API"""

    kind: ProviderKind

    async def authorize(
        self, credential: ProviderCredential, *, force: bool = False
    ) -> ProviderCredential:
        """
        Return a credential with a usable access token.

        Refreshes when the cached access token is stale (or when force is
        set). The returned refresh token may differ from the input one when
        the provider rotates it.
        """
        ...

    async def establish(self, credential: ProviderCredential) -> SubscriptionHandle:
        """Create the provider-side watch / subscription"""
        ...

    async def renew(
        self, registration: UserRegistration, credential: ProviderCredential
    ) -> SubscriptionHandle:
        """Extend or re-create the watch for an existing registration"""
        ...

    async def resolve_delta(
        self, credential: ProviderCredential, since_position: str
    ) -> DeltaResult:
        """New inbox message ids since a cursor (cursor-based providers only)"""
        ...

    async def current_position(self, credential: ProviderCredential) -> str:
        """Mailbox's current cursor, used to start fresh after a resync signal"""
        ...

    async def fetch_metadata(
        self, credential: ProviderCredential, message_id: str
    ) -> PendingEvent:
        """Sender, subject and arrival time of one message"""
        ...


class IRegistrationStore(Protocol):
    async def get(self, key: RegistrationKey) -> UserRegistration | None: ...

    async def get_by_subscription_id(self, subscription_id: str) -> UserRegistration | None: ...

    async def save(self, registration: UserRegistration) -> None: ...

    async def update_credential(self, key: RegistrationKey, credential: ProviderCredential) -> None: ...

    async def update_cursor(self, key: RegistrationKey, cursor: str) -> None: ...

    async def update_subscription(self, key: RegistrationKey, handle: SubscriptionHandle) -> None: ...

    async def list_expiring(self, cutoff: datetime) -> list[UserRegistration]: ...


class IPendingEventStore(Protocol):
    async def append(self, key: RegistrationKey, event: PendingEvent) -> list[PendingEvent]: ...

    async def flush(self, key: RegistrationKey) -> None: ...

    async def list(self, key: RegistrationKey) -> list[PendingEvent]: ...


class IPushDispatcher(Protocol):
    async def send(self, device_token: str, title: str, body: str) -> PushResult:
        """
        Deliver one alert.

        Raises:
            DeliveryRejectedError: device token permanently invalid
            TransientError: network failure, timeout or gateway error
        """
        ...
