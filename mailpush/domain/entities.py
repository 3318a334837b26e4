"""
Domain entities for the push backend.

These are plain dataclasses independent of how registrations are stored
or which client library talks to the providers.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from mailpush.domain.enums import ProviderKind
from mailpush.shared.utils import ensure_utc, utc_now


@dataclass(frozen=True)
class RegistrationKey:
    """Identity of a registration: one per (account email, provider kind)"""

    email: str
    provider: ProviderKind

    def __str__(self) -> str:
        return f"{self.email}/{self.provider.value}"


@dataclass(frozen=True)
class PendingEvent:
    """Metadata of one new email waiting to be shown in a digest"""

    sender: str
    subject: str
    timestamp: datetime
    message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sender": self.sender,
            "subject": self.subject,
            "timestamp": ensure_utc(self.timestamp).isoformat(),
        }
        if self.message_id:
            data["message_id"] = self.message_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingEvent":
        return cls(
            sender=data["sender"],
            subject=data["subject"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            message_id=data.get("message_id"),
        )


@dataclass(frozen=True)
class ProviderCredential:
    """Refresh token plus the short-lived access token derived from it"""

    refresh_token: str
    access_token: str | None = None
    access_token_expires_at: datetime | None = None

    def is_stale(self, margin: timedelta = timedelta(minutes=5), now: datetime | None = None) -> bool:
        """True when there is no access token or it expires within the margin"""
        if not self.access_token or self.access_token_expires_at is None:
            return True
        now = now or utc_now()
        return ensure_utc(self.access_token_expires_at) <= now + margin

    def __repr__(self) -> str:
        return (
            f"ProviderCredential(refresh_token=***, "
            f"access_token={'***' if self.access_token else None}, "
            f"access_token_expires_at={self.access_token_expires_at!r})"
        )


@dataclass(frozen=True)
class SubscriptionHandle:
    """
    Provider-side watch registration.

    position is the Gmail historyId or the Graph subscription id;
    client_state is only issued for Graph subscriptions.
    """

    position: str
    expiry: datetime
    client_state: str | None = None


@dataclass(frozen=True)
class DeltaResult:
    """New inbox message ids since a history cursor"""

    message_ids: list[str]
    new_position: str | None
    needs_full_resync: bool = False


@dataclass
class UserRegistration:
    """Device registration and provider state for one account"""

    key: RegistrationKey
    device_token: str
    credential: ProviderCredential
    cursor: str | None = None  # Gmail historyId
    subscription_id: str | None = None  # Graph subscription id
    client_state: str | None = None  # Graph clientState secret
    expiry: datetime | None = None  # watch / subscription expiry
    pending_events: list[PendingEvent] = field(default_factory=list)

    @property
    def provider(self) -> ProviderKind:
        return self.key.provider

    def with_subscription(self, handle: SubscriptionHandle) -> "UserRegistration":
        """Copy of this registration pointing at a (re-)established watch"""
        if self.provider is ProviderKind.GMAIL:
            return replace(self, cursor=handle.position, expiry=handle.expiry)
        return replace(
            self,
            subscription_id=handle.position,
            client_state=handle.client_state or self.client_state,
            expiry=handle.expiry,
        )


@dataclass(frozen=True)
class NotificationContent:
    """Title and body of a push alert"""

    title: str
    body: str


@dataclass(frozen=True)
class PushResult:
    """Outcome of a successful push delivery"""

    success: bool
    apns_id: str | None = None


@dataclass(frozen=True)
class GmailSignal:
    """Decoded Gmail Pub/Sub notification"""

    email_address: str
    history_id: str


@dataclass(frozen=True)
class OutlookNotification:
    """One entry of a Microsoft Graph change-notification batch"""

    subscription_id: str
    client_state: str | None
    change_type: str
    resource: str | None = None
    resource_id: str | None = None
