"""Pydantic schemas for the client-facing lifecycle endpoints"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mailpush.domain.enums import ProviderKind


def _normalize_provider(v: object) -> object:
    return v.strip().lower() if isinstance(v, str) else v


class RegisterDeviceRequest(BaseModel):
    """Body of POST /registerDevice, as sent by the iOS client"""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    device_token: str = Field(alias="deviceToken")
    auth_code: str = Field(alias="authCode")
    provider: ProviderKind

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v.strip().lower()

    @field_validator("device_token", "auth_code")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Field must not be empty")
        return v.strip()

    @field_validator("provider", mode="before")
    @classmethod
    def validate_provider(cls, v: object) -> object:
        return _normalize_provider(v)


class RegisterDeviceResponse(BaseModel):
    """Exactly one of watchExpiry (Gmail) or subscriptionExpiry (Outlook) is set"""

    success: bool = True
    provider: ProviderKind
    watch_expiry: datetime | None = Field(default=None, serialization_alias="watchExpiry")
    subscription_expiry: datetime | None = Field(default=None, serialization_alias="subscriptionExpiry")


class AppOpenedRequest(BaseModel):
    """Body of POST /appOpened. Older clients omit provider and mean Gmail."""

    email: str
    provider: ProviderKind = ProviderKind.GMAIL

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Field must not be empty")
        return v.strip().lower()

    @field_validator("provider", mode="before")
    @classmethod
    def validate_provider(cls, v: object) -> object:
        return _normalize_provider(v)


class AppOpenedResponse(BaseModel):
    success: bool = True
    renewed: bool | None = None
    expiry: datetime | None = None
    error: str | None = None
