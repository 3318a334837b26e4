"""Client-facing lifecycle endpoints called by the iOS app"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from mailpush.application.use_cases.lifecycle import DeviceLifecycleService
from mailpush.domain.enums import ProviderKind
from mailpush.infrastructure.config.settings import get_settings
from mailpush.presentation.api.dependencies import (get_lifecycle_service,
                                                    verify_api_key)
from mailpush.presentation.api.v1.schemas.lifecycle import (
    AppOpenedRequest, AppOpenedResponse, RegisterDeviceRequest,
    RegisterDeviceResponse)
from mailpush.shared.telemetry.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])
limiter = Limiter(key_func=get_remote_address)


def _register_limit() -> str:
    return get_settings().rate_limit_register


@router.post(
    "/registerDevice",
    response_model=RegisterDeviceResponse,
    response_model_exclude_none=True,
)
@limiter.limit(_register_limit)
async def register_device(
    request: Request,  # Required for slowapi
    data: RegisterDeviceRequest,
    lifecycle: Annotated[DeviceLifecycleService, Depends(get_lifecycle_service)],
):
    """
    Register a device for push notifications.

    Exchanges the one-time auth code for a refresh token, starts the
    provider watch and stores the registration. Provider failures surface
    as 500 through the application exception handler.
    """
    registration = await lifecycle.register_device(
        email=data.email,
        device_token=data.device_token,
        auth_code=data.auth_code,
        provider=data.provider,
    )

    if data.provider is ProviderKind.GMAIL:
        return RegisterDeviceResponse(provider=data.provider, watch_expiry=registration.expiry)
    return RegisterDeviceResponse(provider=data.provider, subscription_expiry=registration.expiry)


@router.post(
    "/appOpened",
    response_model=AppOpenedResponse,
    response_model_exclude_none=True,
)
async def app_opened(
    data: AppOpenedRequest,
    lifecycle: Annotated[DeviceLifecycleService, Depends(get_lifecycle_service)],
):
    """Clear pending events and renew the watch when it is close to expiry"""
    result = await lifecycle.app_opened(data.email, data.provider)

    if result.error:
        return AppOpenedResponse(error=result.error)
    return AppOpenedResponse(renewed=result.renewed, expiry=result.expiry)
