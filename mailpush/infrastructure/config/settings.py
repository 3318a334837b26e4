from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    app_name: str = "Sweep"
    app_version: str = "1.0.0"
    debug: bool = False

    # Database
    database_url: str = ""  # Loaded from environment, validated in model_validator
    database_echo: bool = False
    database_auto_create: bool = False  # create tables on startup (local development)

    # Security
    secret_key: str = ""  # Used to derive the credential encryption key
    encryption_salt: str = ""
    api_key: str = ""  # Shared secret sent by the iOS client
    api_key_header: str = "X-Sweep-Key"
    max_request_size: int = 1024 * 1024  # 1MB
    rate_limit_register: str = "30/hour"

    # Google / Gmail
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""  # iOS server auth codes are exchanged without a redirect
    gmail_project_id: str = "sweep-push"
    gmail_topic_name: str | None = None  # defaults to projects/{gmail_project_id}/topics/gmail-notifications

    # Microsoft / Outlook
    azure_client_id: str = ""
    azure_client_secret: str = ""
    azure_redirect_uri: str = "msauth.com.sam.sweep://auth"
    azure_authority: str = "https://login.microsoftonline.com/common"
    outlook_webhook_url: str = ""
    outlook_subscription_minutes: int = 4200  # Graph maximum for mail resources is 4230

    # APNs
    apns_team_id: str = ""
    apns_key_id: str = ""
    apns_private_key: str = ""  # PEM contents of the .p8 key
    apns_bundle_id: str = "com.sambender.Sweep"
    apns_collapse_id: str = "sweep-inbox"
    apns_use_sandbox: bool = False
    apns_token_ttl_seconds: int = 3600
    apns_token_refresh_margin_seconds: int = 60

    # Timeouts and renewal policy
    http_timeout_seconds: float = 10.0
    renewal_threshold_hours: int = 24

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration"""
        if not self.database_url:
            raise ValueError("DATABASE_URL is required. Set in environment or .env file.")
        if not self.secret_key:
            raise ValueError("SECRET_KEY is required. Generate with: openssl rand -hex 32")
        if not self.encryption_salt:
            raise ValueError("ENCRYPTION_SALT is required. Generate with: openssl rand -hex 16")
        if not self.api_key:
            raise ValueError("API_KEY is required. It must match the key shipped in the iOS app.")
        if self.renewal_threshold_hours <= 0:
            raise ValueError("RENEWAL_THRESHOLD_HOURS must be positive")
        return self

    @property
    def gmail_topic(self) -> str:
        return self.gmail_topic_name or f"projects/{self.gmail_project_id}/topics/gmail-notifications"

    @property
    def apns_host(self) -> str:
        return "api.sandbox.push.apple.com" if self.apns_use_sandbox else "api.push.apple.com"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="allow", case_sensitive=False
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
