"""
Notification pipeline.

Turns one inbound provider signal into pending events and a digest push.
Provider signals are at-least-once: the pipeline never advances a Gmail
history cursor past events that are not yet durably queued, so a retried
signal re-derives everything it missed from the provider.
"""

from __future__ import annotations

import hmac
import re
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, TypeVar

from mailpush.application.services.credentials import authorize_registration
from mailpush.application.services.digest_formatter import (APP_NAME,
                                                            format_digest)
from mailpush.domain.entities import RegistrationKey
from mailpush.domain.enums import ProviderKind, SignalOutcome
from mailpush.domain.exceptions import (AuthExpiredError,
                                        DeliveryRejectedError,
                                        MailPushException,
                                        MessageNotFoundError, TransientError)
from mailpush.shared.telemetry.logging import get_logger

if TYPE_CHECKING:
    from mailpush.application.interfaces.services import (IPendingEventStore,
                                                          IPushDispatcher,
                                                          IRegistrationStore)
    from mailpush.application.services.subscription_manager import \
        SubscriptionManager
    from mailpush.domain.entities import (GmailSignal, OutlookNotification,
                                          PendingEvent, ProviderCredential,
                                          UserRegistration)

logger = get_logger(__name__)

T = TypeVar("T")

# Graph resources look like "Users/{user-id}/Messages/{message-id}"
_RESOURCE_MESSAGE_ID = re.compile(r"messages/([^/]+)$", re.IGNORECASE)


def message_id_from_resource(resource: str | None) -> str | None:
    if not resource:
        return None
    match = _RESOURCE_MESSAGE_ID.search(resource)
    return match.group(1) if match else None


class NotificationPipeline:
    """Orchestrates provider signal -> pending queue -> digest -> push"""

    def __init__(
        self,
        registrations: IRegistrationStore,
        pending_events: IPendingEventStore,
        subscriptions: SubscriptionManager,
        dispatcher: IPushDispatcher,
        app_name: str = APP_NAME,
    ) -> None:
        self.registrations = registrations
        self.pending_events = pending_events
        self.subscriptions = subscriptions
        self.dispatcher = dispatcher
        self.app_name = app_name

    async def _authorize(self, registration: UserRegistration, *, force: bool = False) -> ProviderCredential:
        provider = self.subscriptions.provider_for(registration.provider)
        return await authorize_registration(provider, self.registrations, registration, force=force)

    async def _with_reauth(
        self,
        registration: UserRegistration,
        operation: Callable[[ProviderCredential], Awaitable[T]],
    ) -> T:
        """Run a provider call, retrying exactly once after a forced token refresh"""
        credential = await self._authorize(registration)
        try:
            return await operation(credential)
        except AuthExpiredError:
            logger.info("Access token rejected for %s, refreshing and retrying once", registration.key)
            credential = await self._authorize(registration, force=True)
            return await operation(credential)

    async def _fetch_and_append(self, registration: UserRegistration, message_id: str) -> bool:
        """Fetch one message and queue it. Returns False when the message is gone."""
        provider = self.subscriptions.provider_for(registration.provider)
        try:
            event: PendingEvent = await self._with_reauth(
                registration,
                lambda credential: provider.fetch_metadata(credential, message_id),
            )
        except MessageNotFoundError:
            logger.info("Message %s for %s no longer exists, skipping", message_id, registration.key)
            return False

        await self.pending_events.append(registration.key, event)
        return True

    async def _push_digest(self, registration: UserRegistration) -> bool:
        """
        Send the digest of everything still pending.

        Delivery failures are logged and swallowed: the events stay queued
        and the next signal or app open picks them up.
        """
        pending = await self.pending_events.list(registration.key)
        if not pending:
            return False

        content = format_digest(pending, title=self.app_name)
        try:
            await self.dispatcher.send(registration.device_token, content.title, content.body)
        except DeliveryRejectedError as e:
            # De-registration is left to account removal
            logger.warning("Device token for %s rejected by APNs: %s", registration.key, e.reason)
            return False
        except TransientError as e:
            logger.error("Push to %s failed, events stay pending: %s", registration.key, e.message)
            return False

        logger.info("Sent digest of %d emails to %s", len(pending), registration.key)
        return True

    # Gmail

    async def handle_gmail_signal(self, signal: GmailSignal) -> SignalOutcome:
        """
        Process one Gmail Pub/Sub notification.

        Returns FAILED when a provider or transient error aborted the run;
        the caller should let Pub/Sub redeliver in that case.
        """
        key = RegistrationKey(signal.email_address.strip().lower(), ProviderKind.GMAIL)
        registration = await self.registrations.get(key)
        if registration is None:
            logger.info("Gmail notification for unknown user %s, dropping", key.email)
            return SignalOutcome.DROPPED

        try:
            return await self._process_gmail(registration)
        except MailPushException as e:
            logger.error(
                "Gmail notification for %s aborted (historyId=%s): %s",
                key, signal.history_id, e.message,
            )
            return SignalOutcome.FAILED
        except Exception:
            logger.exception("Unexpected error processing Gmail notification for %s", key)
            return SignalOutcome.FAILED

    async def _process_gmail(self, registration: UserRegistration) -> SignalOutcome:
        key = registration.key
        if not registration.cursor:
            return await self._resync_gmail(registration)

        delta = await self._with_reauth(
            registration,
            lambda credential: self.subscriptions.resolve_delta(key.provider, credential, registration.cursor),
        )
        if delta.needs_full_resync:
            return await self._resync_gmail(registration)

        appended = 0
        for message_id in delta.message_ids:
            # Any error other than not-found escapes here, before the cursor moves
            if await self._fetch_and_append(registration, message_id):
                appended += 1

        if delta.new_position and delta.new_position != registration.cursor:
            await self.registrations.update_cursor(key, delta.new_position)

        if appended == 0:
            logger.info("No new inbox messages for %s", key)
            return SignalOutcome.NO_NEW_MAIL

        await self._push_digest(registration)
        return SignalOutcome.NOTIFIED

    async def _resync_gmail(self, registration: UserRegistration) -> SignalOutcome:
        """Start fresh from the mailbox's current history ID; older mail is not replayed"""
        position = await self._with_reauth(
            registration,
            lambda credential: self.subscriptions.current_position(registration.provider, credential),
        )
        await self.registrations.update_cursor(registration.key, position)
        logger.warning("Re-baselined history cursor for %s to %s", registration.key, position)
        return SignalOutcome.RESYNCED

    # Outlook

    async def handle_outlook_notifications(
        self, notifications: Iterable[OutlookNotification]
    ) -> list[SignalOutcome]:
        """
        Process a Graph notification batch.

        Items are independent: a failure is logged and does not affect the
        other notifications in the batch.
        """
        outcomes = []
        for notification in notifications:
            try:
                outcome = await self.handle_outlook_notification(notification)
            except MailPushException as e:
                logger.error(
                    "Outlook notification for subscription %s failed: %s",
                    notification.subscription_id, e.message,
                )
                outcome = SignalOutcome.FAILED
            except Exception:
                logger.exception(
                    "Unexpected error processing Outlook notification for subscription %s",
                    notification.subscription_id,
                )
                outcome = SignalOutcome.FAILED
            outcomes.append(outcome)
        return outcomes

    async def handle_outlook_notification(self, notification: OutlookNotification) -> SignalOutcome:
        registration = await self.registrations.get_by_subscription_id(notification.subscription_id)
        if registration is None:
            logger.info("Notification for unknown subscription %s, dropping", notification.subscription_id)
            return SignalOutcome.DROPPED

        expected = registration.client_state or ""
        received = notification.client_state or ""
        if not expected or not hmac.compare_digest(expected.encode(), received.encode()):
            logger.warning(
                "clientState mismatch for subscription %s (%s), ignoring notification",
                notification.subscription_id, registration.key,
            )
            return SignalOutcome.DROPPED

        if notification.change_type != "created":
            logger.debug("Ignoring %s change for %s", notification.change_type, registration.key)
            return SignalOutcome.DROPPED

        await self._authorize(registration)

        message_id = notification.resource_id or message_id_from_resource(notification.resource)
        if message_id:
            await self._fetch_and_append(registration, message_id)
        else:
            logger.debug("Notification for %s carries no message id", registration.key)

        if not await self.pending_events.list(registration.key):
            return SignalOutcome.NO_NEW_MAIL

        await self._push_digest(registration)
        return SignalOutcome.NOTIFIED
