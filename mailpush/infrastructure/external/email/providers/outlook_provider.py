"""Outlook/Office365 provider implementation using Microsoft Graph API"""
import secrets
from datetime import timedelta
from typing import Any

import httpx
import requests
from msal import ConfidentialClientApplication

from mailpush.domain.entities import (DeltaResult, PendingEvent,
                                      ProviderCredential, SubscriptionHandle,
                                      UserRegistration)
from mailpush.domain.enums import ProviderKind
from mailpush.domain.exceptions import (AuthExpiredError,
                                        CredentialExchangeError,
                                        MessageNotFoundError, ProviderError,
                                        TransientError)
from mailpush.infrastructure.config.settings import Settings, get_settings
from mailpush.shared.telemetry.logging import get_logger
from mailpush.shared.utils import (isoformat_z, parse_iso8601, run_in_thread,
                                   utc_now)

logger = get_logger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"
INBOX_RESOURCE = "me/mailFolders('inbox')/messages"
# offline_access is implied by MSAL and must not be requested explicitly
GRAPH_SCOPES = ["Mail.Read", "Mail.ReadWrite", "User.Read"]
NO_SUBJECT = "(No subject)"
UNKNOWN_SENDER = "Unknown"


class OutlookProvider:
    """
    Outlook provider using Microsoft Graph change-notification subscriptions.

    Implements: IMailProvider

    Graph subscriptions on mail expire after at most ~3 days; they are
    extended with a PATCH and re-created if Graph has already dropped them.
    """

    kind = ProviderKind.OUTLOOK

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        msal_app: Any = None,
    ):
        self._settings = settings or get_settings()
        self._transport = transport
        self._msal_app = msal_app
        self._graph_url = GRAPH_URL

    def _get_msal_app(self) -> Any:
        if self._msal_app is None:
            self._msal_app = ConfidentialClientApplication(
                self._settings.azure_client_id,
                authority=self._settings.azure_authority,
                client_credential=self._settings.azure_client_secret,
                timeout=self._settings.http_timeout_seconds,
            )
        return self._msal_app

    async def _request(
        self,
        method: str,
        path: str,
        credential: ProviderCredential,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        message_id: str | None = None,
    ) -> dict[str, Any]:
        """Call Graph with a fresh client; the client is closed on every path"""
        async with httpx.AsyncClient(
            base_url=self._graph_url,
            timeout=self._settings.http_timeout_seconds,
            transport=self._transport,
        ) as client:
            try:
                response = await client.request(
                    method,
                    path,
                    headers={"Authorization": f"Bearer {credential.access_token}"},
                    json=json,
                    params=params,
                )
            except httpx.TimeoutException as e:
                raise TransientError("Microsoft Graph", f"timeout: {e}") from e
            except httpx.TransportError as e:
                raise TransientError("Microsoft Graph", str(e)) from e

        status = response.status_code
        if status == 401:
            raise AuthExpiredError(self.kind.value, response.text)
        if status == 404 and message_id:
            raise MessageNotFoundError(self.kind.value, message_id)
        if status == 429 or status >= 500:
            raise TransientError("Microsoft Graph", f"HTTP {status}")
        if status >= 400:
            raise ProviderError(self.kind.value, response.text, status)

        try:
            data = response.json() if response.content else {}
        except ValueError as e:
            raise ProviderError(self.kind.value, f"Malformed Microsoft Graph response: {e}") from e
        if not isinstance(data, dict):
            raise ProviderError(self.kind.value, "Unexpected response format from Microsoft Graph API")
        return data

    async def authorize(
        self, credential: ProviderCredential, *, force: bool = False
    ) -> ProviderCredential:
        """
        Redeem the refresh token for an access token.

        Microsoft rotates refresh tokens: when a new one comes back the old
        one must be considered dead, so the caller persists the result.
        """
        if not force and not credential.is_stale():
            return credential

        app = self._get_msal_app()
        try:
            result = await run_in_thread(
                app.acquire_token_by_refresh_token,
                credential.refresh_token,
                scopes=GRAPH_SCOPES,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientError("Microsoft identity platform", str(e)) from e

        if "access_token" not in result:
            reason = result.get("error_description") or result.get("error") or "unknown error"
            logger.error("Outlook token refresh failed: %s", reason)
            raise CredentialExchangeError(self.kind.value, reason)

        return ProviderCredential(
            refresh_token=result.get("refresh_token") or credential.refresh_token,
            access_token=result["access_token"],
            access_token_expires_at=utc_now() + timedelta(seconds=int(result.get("expires_in", 3600))),
        )

    def _next_expiry(self) -> str:
        minutes = self._settings.outlook_subscription_minutes
        return isoformat_z(utc_now() + timedelta(minutes=minutes))

    async def establish(self, credential: ProviderCredential) -> SubscriptionHandle:
        """Create a Graph subscription for new inbox messages"""
        client_state = secrets.token_urlsafe(32)
        subscription = {
            "changeType": "created",
            "notificationUrl": self._settings.outlook_webhook_url,
            "resource": INBOX_RESOURCE,
            "expirationDateTime": self._next_expiry(),
            "clientState": client_state,
        }
        result = await self._request("POST", "/subscriptions", credential, json=subscription)

        handle = self._handle_from(result, client_state)
        logger.info("Outlook subscription %s created (expires %s)", handle.position, handle.expiry)
        return handle

    async def renew(
        self, registration: UserRegistration, credential: ProviderCredential
    ) -> SubscriptionHandle:
        """
        Extend the stored subscription; re-create it if Graph no longer knows it.

        Mail received between the server-side expiry and re-creation is not
        recovered.
        """
        if not registration.subscription_id:
            return await self.establish(credential)

        try:
            result = await self._request(
                "PATCH",
                f"/subscriptions/{registration.subscription_id}",
                credential,
                json={"expirationDateTime": self._next_expiry()},
            )
        except ProviderError as e:
            if e.status_code != 404:
                raise
            logger.warning(
                "Outlook subscription %s no longer exists for %s, re-creating",
                registration.subscription_id, registration.key,
            )
            return await self.establish(credential)

        result.setdefault("id", registration.subscription_id)
        return self._handle_from(result, registration.client_state)

    def _handle_from(self, result: dict[str, Any], client_state: str | None) -> SubscriptionHandle:
        try:
            return SubscriptionHandle(
                position=result["id"],
                expiry=parse_iso8601(result["expirationDateTime"]),
                client_state=client_state,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderError(self.kind.value, f"Unexpected subscription response: {result}") from e

    async def resolve_delta(
        self, credential: ProviderCredential, since_position: str
    ) -> DeltaResult:
        raise NotImplementedError("Outlook notifications carry message ids; there is no history cursor")

    async def current_position(self, credential: ProviderCredential) -> str:
        raise NotImplementedError("Outlook subscriptions have no resumable cursor")

    async def fetch_metadata(
        self, credential: ProviderCredential, message_id: str
    ) -> PendingEvent:
        data = await self._request(
            "GET",
            f"/me/messages/{message_id}",
            credential,
            params={"$select": "from,subject,receivedDateTime"},
            message_id=message_id,
        )
        email_address = (data.get("from") or {}).get("emailAddress") or {}
        try:
            received = parse_iso8601(data["receivedDateTime"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderError(self.kind.value, f"Message {message_id} has no valid receivedDateTime") from e

        return PendingEvent(
            sender=email_address.get("name") or email_address.get("address") or UNKNOWN_SENDER,
            subject=data.get("subject") or NO_SUBJECT,
            timestamp=received,
            message_id=message_id,
        )
