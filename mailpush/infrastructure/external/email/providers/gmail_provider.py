"""Gmail provider implementation using Gmail API"""
import re
from typing import Any

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailpush.domain.entities import (DeltaResult, PendingEvent,
                                      ProviderCredential, SubscriptionHandle,
                                      UserRegistration)
from mailpush.domain.enums import ProviderKind
from mailpush.domain.exceptions import (AuthExpiredError,
                                        CredentialExchangeError,
                                        MailPushException,
                                        MessageNotFoundError, ProviderError,
                                        TransientError)
from mailpush.infrastructure.config.settings import Settings, get_settings
from mailpush.shared.telemetry.logging import get_logger
from mailpush.shared.utils import (ensure_utc, from_timestamp_ms_utc,
                                   run_in_thread)

logger = get_logger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
NO_SUBJECT = "(No subject)"
UNKNOWN_SENDER = "Unknown"

_DISPLAY_NAME = re.compile(r"^([^<]+)")


def parse_from_header(value: str) -> tuple[str, str]:
    """
    Split a raw From header into (display name, address).

    'Jane Doe <jane@example.com>' -> ('Jane Doe', 'jane@example.com')
    '"Amazon.com" <ship@amazon.com>' -> ('Amazon.com', 'ship@amazon.com')
    'jane@example.com' -> ('jane@example.com', 'jane@example.com')
    """
    value = value.strip()
    if not value:
        return UNKNOWN_SENDER, ""

    address = value
    if "<" in value and ">" in value:
        address = value[value.index("<") + 1:value.rindex(">")].strip()

    match = _DISPLAY_NAME.match(value)
    name = match.group(1).strip().replace('"', "") if match else ""
    return name or address, address


class GmailProvider:
    """
    Gmail provider: users.watch registrations, history deltas and message metadata.

    Implements: IMailProvider

    Note: watch notifications are published to a Google Cloud Pub/Sub topic;
    gmail-api-push@system.gserviceaccount.com needs publisher rights on it.
    """

    kind = ProviderKind.GMAIL

    def __init__(self, settings: Settings | None = None, service_factory: Any = None) -> None:
        self._settings = settings or get_settings()
        self._service_factory = service_factory or self._build_service

    def _google_credentials(self, credential: ProviderCredential) -> Credentials:
        return Credentials(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=TOKEN_URI,
            client_id=self._settings.google_client_id,
            client_secret=self._settings.google_client_secret,
        )

    def _build_service(self, credential: ProviderCredential) -> Any:
        """Gmail service bound to one user's credentials with a bounded socket timeout"""
        http = google_auth_httplib2.AuthorizedHttp(
            self._google_credentials(credential),
            http=httplib2.Http(timeout=self._settings.http_timeout_seconds),
        )
        return build("gmail", "v1", http=http, cache_discovery=False)

    async def _execute(self, request: Any, message_id: str | None = None) -> dict[str, Any]:
        """Run a googleapiclient request off the event loop and classify failures"""
        try:
            return await run_in_thread(request.execute)
        except HttpError as e:
            raise self._classify(e, message_id) from e
        except RefreshError as e:
            raise CredentialExchangeError(self.kind.value, str(e)) from e
        except (TransportError, httplib2.HttpLib2Error, OSError) as e:
            # OSError covers socket timeouts and connection resets
            raise TransientError("Gmail API", str(e)) from e

    def _classify(self, error: HttpError, message_id: str | None = None) -> MailPushException:
        status = error.resp.status
        if status == 401:
            return AuthExpiredError(self.kind.value, str(error))
        if status == 404 and message_id:
            return MessageNotFoundError(self.kind.value, message_id)
        if status == 429 or status >= 500:
            return TransientError("Gmail API", f"HTTP {status}")
        return ProviderError(self.kind.value, str(error), status)

    async def authorize(
        self, credential: ProviderCredential, *, force: bool = False
    ) -> ProviderCredential:
        """Mint an access token from the refresh token when the cached one is stale"""
        if not force and not credential.is_stale():
            return credential

        creds = self._google_credentials(credential)
        try:
            await run_in_thread(creds.refresh, Request())
        except RefreshError as e:
            logger.error("Gmail token refresh failed: %s", e)
            raise CredentialExchangeError(self.kind.value, str(e)) from e
        except TransportError as e:
            raise TransientError("Google token endpoint", str(e)) from e

        return ProviderCredential(
            refresh_token=creds.refresh_token or credential.refresh_token,
            access_token=creds.token,
            access_token_expires_at=ensure_utc(creds.expiry) if creds.expiry else None,
        )

    async def establish(self, credential: ProviderCredential) -> SubscriptionHandle:
        """Start (or restart) a users.watch on the inbox"""
        service = self._service_factory(credential)
        body = {
            "labelIds": ["INBOX"],
            "topicName": self._settings.gmail_topic,
        }
        response = await self._execute(service.users().watch(userId="me", body=body))

        history_id = response.get("historyId")
        expiration = response.get("expiration")
        if not history_id or not expiration:
            raise ProviderError(self.kind.value, f"Unexpected watch response: {response}")

        handle = SubscriptionHandle(
            position=str(history_id),
            expiry=from_timestamp_ms_utc(expiration),
        )
        logger.info("Gmail watch established (historyId=%s, expires %s)", handle.position, handle.expiry)
        return handle

    async def renew(
        self, registration: UserRegistration, credential: ProviderCredential
    ) -> SubscriptionHandle:
        """Calling users.watch again extends an existing watch"""
        return await self.establish(credential)

    async def resolve_delta(
        self, credential: ProviderCredential, since_position: str
    ) -> DeltaResult:
        """
        Collect inbox messages added since a history ID.

        An expired or unknown start ID (HTTP 404) is reported as
        needs_full_resync instead of raising.
        """
        service = self._service_factory(credential)
        message_ids: list[str] = []
        seen: set[str] = set()
        new_position: str | None = None
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {
                "userId": "me",
                "startHistoryId": since_position,
                "historyTypes": ["messageAdded"],
                "labelId": "INBOX",
            }
            if page_token:
                params["pageToken"] = page_token

            try:
                result = await run_in_thread(service.users().history().list(**params).execute)
            except HttpError as e:
                if e.resp.status == 404:
                    logger.warning(
                        "Gmail history ID %s expired or invalid, full resync required",
                        since_position,
                    )
                    return DeltaResult(message_ids=[], new_position=None, needs_full_resync=True)
                raise self._classify(e) from e
            except RefreshError as e:
                raise CredentialExchangeError(self.kind.value, str(e)) from e
            except (TransportError, httplib2.HttpLib2Error, OSError) as e:
                raise TransientError("Gmail API", str(e)) from e

            if result.get("historyId"):
                new_position = str(result["historyId"])

            for record in result.get("history", []):
                for added in record.get("messagesAdded", []):
                    message = added.get("message", {})
                    gmail_id = message.get("id")
                    if gmail_id and "INBOX" in message.get("labelIds", []) and gmail_id not in seen:
                        seen.add(gmail_id)
                        message_ids.append(gmail_id)

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        logger.info(
            "Gmail history: %d new inbox messages since %s (new ID %s)",
            len(message_ids), since_position, new_position,
        )
        return DeltaResult(message_ids=message_ids, new_position=new_position)

    async def current_position(self, credential: ProviderCredential) -> str:
        """Current mailbox history ID from users.getProfile"""
        service = self._service_factory(credential)
        profile = await self._execute(service.users().getProfile(userId="me"))
        history_id = profile.get("historyId")
        if not history_id:
            raise ProviderError(self.kind.value, "Gmail profile did not return historyId")
        return str(history_id)

    async def fetch_metadata(
        self, credential: ProviderCredential, message_id: str
    ) -> PendingEvent:
        service = self._service_factory(credential)
        request = service.users().messages().get(
            userId="me",
            id=message_id,
            format="metadata",
            metadataHeaders=["From", "Subject"],
        )
        msg = await self._execute(request, message_id=message_id)

        headers = {
            h.get("name"): h.get("value", "")
            for h in (msg.get("payload") or {}).get("headers", [])
        }
        sender, _ = parse_from_header(headers.get("From") or "")
        try:
            received = from_timestamp_ms_utc(msg["internalDate"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(self.kind.value, f"Message {message_id} has no valid internalDate") from e

        return PendingEvent(
            sender=sender,
            subject=headers.get("Subject") or NO_SUBJECT,
            timestamp=received,
            message_id=message_id,
        )
