"""
OAuth code exchange for mail providers.

The iOS app signs the user in and forwards a one-time server authorization
code; this module trades it for a long-lived refresh token (plus a first
access token) at the provider's token endpoint.

Supports: Gmail, Outlook.
"""

from datetime import timedelta

import requests
from authlib.integrations.base_client.errors import OAuthError
from authlib.integrations.requests_client import OAuth2Session

from mailpush.domain.entities import ProviderCredential
from mailpush.domain.enums import ProviderKind
from mailpush.domain.exceptions import CredentialExchangeError, TransientError
from mailpush.infrastructure.config.settings import Settings, get_settings
from mailpush.shared.telemetry.logging import get_logger
from mailpush.shared.utils import run_in_thread, utc_now

logger = get_logger(__name__)


class OAuthProvider:
    """OAuth provider configuration"""

    def __init__(self, name: str, token_endpoint: str, scopes: list[str]):
        self.name = name
        self.token_endpoint = token_endpoint
        self.scopes = scopes


# Provider configurations
OAUTH_PROVIDERS = {
    ProviderKind.GMAIL: OAuthProvider(
        name="Gmail",
        token_endpoint="https://oauth2.googleapis.com/token",
        scopes=[
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/gmail.modify",
        ],
    ),
    ProviderKind.OUTLOOK: OAuthProvider(
        name="Outlook",
        token_endpoint="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        scopes=["Mail.Read", "Mail.ReadWrite", "User.Read", "offline_access"],
    ),
}


class UnifiedOAuthManager:
    """
    Authorization-code exchange for one provider.

    Usage:
        manager = UnifiedOAuthManager.for_provider(ProviderKind.OUTLOOK)
        credential = await manager.exchange_code_for_tokens(auth_code)
    """

    def __init__(
        self,
        provider: ProviderKind,
        client_id: str,
        client_secret: str,
        redirect_uri: str | None = None,
        timeout: float = 10.0,
    ):
        self.provider = provider
        self.provider_config = OAUTH_PROVIDERS[provider]
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri or None
        self.timeout = timeout

    @classmethod
    def for_provider(cls, provider: ProviderKind, settings: Settings | None = None) -> "UnifiedOAuthManager":
        settings = settings or get_settings()
        if provider is ProviderKind.GMAIL:
            return cls(
                provider,
                settings.google_client_id,
                settings.google_client_secret,
                settings.google_redirect_uri,
                settings.http_timeout_seconds,
            )
        return cls(
            provider,
            settings.azure_client_id,
            settings.azure_client_secret,
            settings.azure_redirect_uri,
            settings.http_timeout_seconds,
        )

    def _fetch_token(self, code: str) -> dict:
        session = OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=self.provider_config.scopes,
        )
        try:
            return session.fetch_token(
                url=self.provider_config.token_endpoint,
                code=code,
                grant_type="authorization_code",
                scope=" ".join(self.provider_config.scopes),
                timeout=self.timeout,
            )
        finally:
            session.close()

    async def exchange_code_for_tokens(self, code: str) -> ProviderCredential:
        """
        Exchange a one-time authorization code for provider credentials.

        Raises:
            CredentialExchangeError: provider refused the code, or no refresh token came back
            TransientError: token endpoint unreachable or timed out
        """
        if not code:
            raise CredentialExchangeError(self.provider.value, "Authorization code is required")

        try:
            token_response = await run_in_thread(self._fetch_token, code)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientError(f"{self.provider_config.name} token endpoint", str(e)) from e
        except OAuthError as e:
            logger.error(
                "Failed to exchange authorization code for %s: %s",
                self.provider_config.name,
                e.description or e.error,
            )
            raise CredentialExchangeError(self.provider.value, e.description or e.error) from e

        if "access_token" not in token_response:
            raise CredentialExchangeError(self.provider.value, "Token response missing access_token")

        refresh_token = token_response.get("refresh_token")
        if not refresh_token:
            # Without a refresh token the backend cannot read mail once the access token lapses
            raise CredentialExchangeError(
                self.provider.value,
                "No refresh_token returned. Gmail needs offline access and "
                "Outlook needs the offline_access scope.",
            )

        expires_in = int(token_response.get("expires_in", 3600))
        logger.info("Exchanged authorization code for %s tokens", self.provider_config.name)

        return ProviderCredential(
            refresh_token=refresh_token,
            access_token=token_response["access_token"],
            access_token_expires_at=utc_now() + timedelta(seconds=expires_in),
        )
