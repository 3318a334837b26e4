"""
Apple Push Notification service client.

APNs authenticates providers with a short-lived ES256 JWT signed by the
team's .p8 key. Apple rejects tokens older than an hour and throttles
tokens regenerated more often than every 20 minutes, so one token is
cached per process and reused until it is close to expiry.
"""

import time
from collections.abc import Callable
from typing import Any

import httpx
from jose import jwt

from mailpush.domain.entities import PushResult
from mailpush.domain.exceptions import DeliveryRejectedError, TransientError
from mailpush.infrastructure.config.settings import Settings, get_settings
from mailpush.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

# Device token is dead or belongs to another app; retrying cannot succeed
REJECTED_REASONS = frozenset({"BadDeviceToken", "DeviceTokenNotForTopic", "Unregistered"})
TOKEN_REASONS = frozenset({"ExpiredProviderToken", "InvalidProviderToken"})


class ProviderTokenCache:
    """Process-wide APNs provider token, regenerated lazily before it expires"""

    def __init__(
        self,
        team_id: str,
        key_id: str,
        private_key: str,
        ttl_seconds: int = 3600,
        refresh_margin_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self._team_id = team_id
        self._key_id = key_id
        # Keys passed through env vars often arrive with escaped newlines
        self._private_key = private_key.replace("\\n", "\n")
        self._ttl = ttl_seconds
        self._margin = refresh_margin_seconds
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0

    def get(self) -> str:
        now = self._clock()
        if self._token and now < self._expires_at - self._margin:
            return self._token

        if not self._private_key:
            raise TransientError("APNs", "APNs signing key not configured")

        issued_at = int(now)
        self._token = jwt.encode(
            {"iss": self._team_id, "iat": issued_at},
            self._private_key,
            algorithm="ES256",
            headers={"kid": self._key_id},
        )
        self._expires_at = issued_at + self._ttl
        logger.debug("Generated new APNs provider token (kid=%s)", self._key_id)
        return self._token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


class ApnsDispatcher:
    """
    Sends alert notifications through APNs over HTTP/2.

    Implements: IPushDispatcher

    Every alert carries the same collapse id, so several digests sent in
    quick succession replace each other on the device instead of stacking.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        token_cache: ProviderTokenCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings or get_settings()
        self._tokens = token_cache or ProviderTokenCache(
            team_id=self._settings.apns_team_id,
            key_id=self._settings.apns_key_id,
            private_key=self._settings.apns_private_key,
            ttl_seconds=self._settings.apns_token_ttl_seconds,
            refresh_margin_seconds=self._settings.apns_token_refresh_margin_seconds,
        )
        self._transport = transport

    @staticmethod
    def build_payload(title: str, body: str) -> dict[str, Any]:
        return {
            "aps": {
                "alert": {"title": title, "body": body},
                "sound": "default",
                "mutable-content": 1,
            }
        }

    def _headers(self) -> dict[str, str]:
        return {
            "authorization": f"bearer {self._tokens.get()}",
            "apns-topic": self._settings.apns_bundle_id,
            "apns-collapse-id": self._settings.apns_collapse_id,
            "apns-push-type": "alert",
        }

    async def send(self, device_token: str, title: str, body: str) -> PushResult:
        """
        Deliver one alert to one device.

        Raises:
            DeliveryRejectedError: the device token is permanently invalid
            TransientError: timeout, connection failure, throttling or gateway error
        """
        url = f"https://{self._settings.apns_host}/3/device/{device_token}"

        # The client (and its HTTP/2 connection) is closed on every exit path
        async with httpx.AsyncClient(
            http2=True,
            timeout=self._settings.http_timeout_seconds,
            transport=self._transport,
        ) as client:
            try:
                response = await client.post(
                    url,
                    headers=self._headers(),
                    json=self.build_payload(title, body),
                )
            except httpx.TimeoutException as e:
                raise TransientError("APNs", f"timeout: {e}") from e
            except httpx.TransportError as e:
                raise TransientError("APNs", str(e)) from e

        if response.status_code == 200:
            apns_id = response.headers.get("apns-id")
            logger.info("Push delivered to %s... (apns-id=%s)", device_token[:8], apns_id)
            return PushResult(success=True, apns_id=apns_id)

        reason = self._reason(response)
        status = response.status_code

        if status == 410 or (status == 400 and reason in REJECTED_REASONS):
            logger.warning("APNs rejected device token %s...: %s", device_token[:8], reason)
            raise DeliveryRejectedError(device_token, reason, status)

        if status == 403 and reason in TOKEN_REASONS:
            self._tokens.invalidate()

        logger.error("APNs delivery failed with HTTP %s: %s", status, reason)
        raise TransientError("APNs", f"HTTP {status}: {reason}")

    @staticmethod
    def _reason(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or "unknown"
        if isinstance(data, dict):
            return str(data.get("reason") or "unknown")
        return "unknown"
