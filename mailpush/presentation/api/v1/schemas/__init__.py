from mailpush.presentation.api.v1.schemas.lifecycle import (
    AppOpenedRequest, AppOpenedResponse, RegisterDeviceRequest,
    RegisterDeviceResponse)
from mailpush.presentation.api.v1.schemas.notifications import (
    GraphNotification, GraphNotificationBatch, PubSubMessage,
    PubSubPushEnvelope)

__all__ = [
    "AppOpenedRequest",
    "AppOpenedResponse",
    "RegisterDeviceRequest",
    "RegisterDeviceResponse",
    "GraphNotification",
    "GraphNotificationBatch",
    "PubSubMessage",
    "PubSubPushEnvelope",
]
