"""Endpoints called by the mail providers (Pub/Sub push and Graph webhooks)"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError

from mailpush.application.use_cases.notifications import NotificationPipeline
from mailpush.domain.enums import SignalOutcome
from mailpush.presentation.api.dependencies import get_notification_pipeline
from mailpush.presentation.api.v1.schemas.notifications import (
    GraphNotificationBatch, PubSubPushEnvelope)
from mailpush.shared.telemetry.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("/onGmailNotification")
async def on_gmail_notification(
    envelope: PubSubPushEnvelope,
    pipeline: Annotated[NotificationPipeline, Depends(get_notification_pipeline)],
):
    """
    Pub/Sub push endpoint for Gmail watch notifications.

    Any 2xx acknowledges the message. A 503 makes Pub/Sub redeliver, which
    is what we want when a provider call failed before the cursor moved.
    """
    try:
        signal = envelope.message.decode_gmail_signal()
    except ValueError as e:
        # Redelivery cannot fix a malformed message, so acknowledge it
        logger.warning("Dropping Pub/Sub message %s: %s", envelope.message.message_id, e)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    outcome = await pipeline.handle_gmail_signal(signal)
    logger.info("Gmail notification for %s: %s", signal.email_address, outcome.value)

    if outcome is SignalOutcome.FAILED:
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.api_route("/onOutlookNotification", methods=["GET", "POST"])
async def on_outlook_notification(
    request: Request,
    background_tasks: BackgroundTasks,
    pipeline: Annotated[NotificationPipeline, Depends(get_notification_pipeline)],
):
    """
    Microsoft Graph webhook.

    Subscription creation is validated by echoing validationToken back as
    text/plain. Notification batches are acknowledged with 202 at once and
    processed after the response, since Graph expects an answer within a
    few seconds.
    """
    validation_token = request.query_params.get("validationToken")
    if validation_token is not None:
        logger.info("Answering Graph subscription validation")
        return PlainTextResponse(content=validation_token, status_code=status.HTTP_200_OK)

    if request.method != "POST":
        return PlainTextResponse("validationToken required", status_code=status.HTTP_400_BAD_REQUEST)

    try:
        batch = GraphNotificationBatch.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning("Malformed Graph notification batch: %s", e)
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    notifications = [item.to_domain() for item in batch.value]
    if notifications:
        background_tasks.add_task(pipeline.handle_outlook_notifications, notifications)

    return Response(status_code=status.HTTP_202_ACCEPTED)
