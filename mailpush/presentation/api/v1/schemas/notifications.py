"""Pydantic schemas for provider-triggered notification payloads"""

import base64
import binascii
import json

from pydantic import BaseModel, ConfigDict, Field

from mailpush.domain.entities import GmailSignal, OutlookNotification


class PubSubMessage(BaseModel):
    """Google Cloud Pub/Sub push message"""

    model_config = ConfigDict(populate_by_name=True)

    data: str = ""
    message_id: str | None = Field(default=None, alias="messageId")
    attributes: dict[str, str] | None = None

    def decode_gmail_signal(self) -> GmailSignal:
        """
        Decode the base64 JSON body Gmail publishes.

        Raises:
            ValueError: data is not base64 JSON with emailAddress and historyId
        """
        if not self.data:
            raise ValueError("Pub/Sub message has no data")
        try:
            payload = json.loads(base64.b64decode(self.data, validate=False))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Undecodable Pub/Sub data: {e}") from e

        if not isinstance(payload, dict) or not payload.get("emailAddress") or not payload.get("historyId"):
            raise ValueError("Pub/Sub data missing emailAddress or historyId")
        return GmailSignal(email_address=str(payload["emailAddress"]), history_id=str(payload["historyId"]))


class PubSubPushEnvelope(BaseModel):
    message: PubSubMessage
    subscription: str | None = None


class GraphResourceData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None


class GraphNotification(BaseModel):
    """One entry of a Microsoft Graph change-notification batch"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    subscription_id: str = Field(alias="subscriptionId")
    client_state: str | None = Field(default=None, alias="clientState")
    change_type: str = Field(default="created", alias="changeType")
    resource: str | None = None
    resource_data: GraphResourceData | None = Field(default=None, alias="resourceData")

    def to_domain(self) -> OutlookNotification:
        return OutlookNotification(
            subscription_id=self.subscription_id,
            client_state=self.client_state,
            change_type=self.change_type,
            resource=self.resource,
            resource_id=self.resource_data.id if self.resource_data else None,
        )


class GraphNotificationBatch(BaseModel):
    value: list[GraphNotification] = Field(default_factory=list)
