"""Tests for domain entities"""

from datetime import UTC, datetime, timedelta

from mailpush.domain.entities import (PendingEvent, ProviderCredential,
                                      RegistrationKey, SubscriptionHandle,
                                      UserRegistration)
from mailpush.domain.enums import ProviderKind

NOW = datetime(2024, 5, 1, 10, 0, tzinfo=UTC)


class TestProviderCredential:
    def test_missing_access_token_is_stale(self):
        assert ProviderCredential(refresh_token="r").is_stale(now=NOW)

    def test_token_expiring_within_margin_is_stale(self):
        credential = ProviderCredential("r", "a", NOW + timedelta(minutes=4))

        assert credential.is_stale(now=NOW)

    def test_token_valid_beyond_margin_is_fresh(self):
        credential = ProviderCredential("r", "a", NOW + timedelta(minutes=10))

        assert not credential.is_stale(now=NOW)

    def test_repr_hides_tokens(self):
        text = repr(ProviderCredential("refresh-secret", "access-secret", NOW))

        assert "refresh-secret" not in text
        assert "access-secret" not in text


class TestPendingEvent:
    def test_dict_round_trip(self):
        event = PendingEvent("GitHub", "New issue", NOW, "m1")

        data = event.to_dict()

        assert data == {
            "sender": "GitHub",
            "subject": "New issue",
            "timestamp": "2024-05-01T10:00:00+00:00",
            "message_id": "m1",
        }
        assert PendingEvent.from_dict(data) == event

    def test_message_id_is_optional(self):
        data = PendingEvent("GitHub", "New issue", NOW).to_dict()

        assert "message_id" not in data
        assert PendingEvent.from_dict(data).message_id is None


class TestUserRegistration:
    def test_gmail_watch_sets_cursor_and_expiry(self):
        registration = UserRegistration(
            key=RegistrationKey("user@example.com", ProviderKind.GMAIL),
            device_token="token",
            credential=ProviderCredential("r"),
        )

        updated = registration.with_subscription(SubscriptionHandle("4242", NOW))

        assert updated.cursor == "4242"
        assert updated.expiry == NOW
        assert updated.subscription_id is None
        assert registration.cursor is None

    def test_outlook_subscription_keeps_client_state_when_not_reissued(self):
        registration = UserRegistration(
            key=RegistrationKey("user@outlook.com", ProviderKind.OUTLOOK),
            device_token="token",
            credential=ProviderCredential("r"),
            subscription_id="sub-1",
            client_state="state-1",
        )

        updated = registration.with_subscription(SubscriptionHandle("sub-1", NOW))

        assert updated.subscription_id == "sub-1"
        assert updated.client_state == "state-1"
        assert updated.cursor is None
