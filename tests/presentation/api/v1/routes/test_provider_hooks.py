"""Tests for the Pub/Sub and Microsoft Graph webhook endpoints"""

import base64
import json
from datetime import UTC, datetime

import pytest

from mailpush.domain.entities import (DeltaResult, PendingEvent,
                                      RegistrationKey)
from mailpush.domain.enums import ProviderKind
from mailpush.domain.exceptions import TransientError

GMAIL_KEY = RegistrationKey("user@example.com", ProviderKind.GMAIL)
OUTLOOK_KEY = RegistrationKey("user@example.com", ProviderKind.OUTLOOK)
EVENT = PendingEvent("Amazon", "Your order has shipped", datetime(2024, 5, 1, 10, 0, tzinfo=UTC), "m1")


def pubsub_envelope(payload) -> dict:
    raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return {
        "message": {
            "data": base64.b64encode(raw).decode(),
            "messageId": "2070443601311540",
        },
        "subscription": "projects/sweep-push/subscriptions/gmail-push",
    }


def graph_batch(client_state: str = "secret-state", subscription_id: str = "sub-1") -> dict:
    return {
        "value": [
            {
                "subscriptionId": subscription_id,
                "clientState": client_state,
                "changeType": "created",
                "resource": "Users/0001/Messages/AAMk1",
                "resourceData": {"@odata.type": "#Microsoft.Graph.Message", "id": "AAMk1"},
                "tenantId": "tenant-1",
            }
        ]
    }


class TestGmailNotification:
    @pytest.mark.asyncio
    async def test_new_mail_is_pushed_and_acknowledged(
        self, client, make_registration, gmail_provider, dispatcher, registration_store
    ):
        await make_registration()
        gmail_provider.resolve_delta.return_value = DeltaResult(message_ids=["m1"], new_position="1010")
        gmail_provider.fetch_metadata.return_value = EVENT

        response = await client.post(
            "/onGmailNotification",
            json=pubsub_envelope({"emailAddress": "user@example.com", "historyId": 1010}),
        )

        assert response.status_code == 204
        dispatcher.send.assert_awaited_once()
        assert (await registration_store.get(GMAIL_KEY)).cursor == "1010"

    @pytest.mark.asyncio
    async def test_unknown_user_is_acknowledged(self, client, dispatcher):
        response = await client.post(
            "/onGmailNotification",
            json=pubsub_envelope({"emailAddress": "stranger@example.com", "historyId": 1}),
        )

        assert response.status_code == 204
        dispatcher.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_failure_asks_for_redelivery(self, client, make_registration, gmail_provider):
        await make_registration()
        gmail_provider.resolve_delta.side_effect = TransientError("Gmail API", "HTTP 503")

        response = await client.post(
            "/onGmailNotification",
            json=pubsub_envelope({"emailAddress": "user@example.com", "historyId": 1010}),
        )

        assert response.status_code == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            b"not json at all",
            {"emailAddress": "user@example.com"},
            {"historyId": 1010},
        ],
    )
    async def test_malformed_message_is_acknowledged(self, client, gmail_provider, payload):
        response = await client.post("/onGmailNotification", json=pubsub_envelope(payload))

        assert response.status_code == 204
        gmail_provider.resolve_delta.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_needs_no_api_key(self, client):
        response = await client.post(
            "/onGmailNotification",
            json=pubsub_envelope({"emailAddress": "user@example.com", "historyId": 1}),
        )

        assert response.status_code != 401


class TestOutlookNotification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_validation_token_is_echoed_as_plain_text(self, client, method):
        response = await client.request(
            method, "/onOutlookNotification", params={"validationToken": "Validation: Testing client application"}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Validation: Testing client application"

    @pytest.mark.asyncio
    async def test_get_without_token_is_bad_request(self, client):
        response = await client.get("/onOutlookNotification")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_batch_is_accepted_and_processed(
        self, client, make_registration, outlook_provider, dispatcher, pending_store
    ):
        """
        GIVEN an Outlook registration with subscription sub-1
        WHEN Graph posts a created notification with the matching clientState
        THEN the request is accepted and the message is queued and pushed
        """
        await make_registration(provider=ProviderKind.OUTLOOK)
        outlook_provider.fetch_metadata.return_value = EVENT

        response = await client.post("/onOutlookNotification", json=graph_batch())

        assert response.status_code == 202
        outlook_provider.fetch_metadata.assert_awaited_once()
        assert outlook_provider.fetch_metadata.await_args.args[1] == "AAMk1"
        assert await pending_store.list(OUTLOOK_KEY) == [EVENT]
        dispatcher.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wrong_client_state_is_accepted_but_ignored(
        self, client, make_registration, outlook_provider, dispatcher, pending_store
    ):
        await make_registration(provider=ProviderKind.OUTLOOK)

        response = await client.post("/onOutlookNotification", json=graph_batch(client_state="forged"))

        assert response.status_code == 202
        outlook_provider.fetch_metadata.assert_not_awaited()
        dispatcher.send.assert_not_awaited()
        assert await pending_store.list(OUTLOOK_KEY) == []

    @pytest.mark.asyncio
    async def test_malformed_body_is_bad_request(self, client):
        response = await client.post(
            "/onOutlookNotification",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_notification_without_subscription_id_is_bad_request(self, client):
        response = await client.post("/onOutlookNotification", json={"value": [{"changeType": "created"}]})

        assert response.status_code == 400
