"""
Transactional stores over the user_registration table.

Every public method runs in its own short transaction so that each write is
durable as soon as the call returns. Read-modify-write operations lock the
user's row first, which serializes concurrent signals for the same mailbox
without any coordination in the callers.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailpush.domain.entities import (PendingEvent, ProviderCredential,
                                      RegistrationKey, SubscriptionHandle,
                                      UserRegistration)
from mailpush.domain.enums import ProviderKind
from mailpush.domain.exceptions import RegistrationNotFoundError
from mailpush.infrastructure.external.email.encryption import \
    CredentialEncryptor
from mailpush.infrastructure.persistence.models.user_registration import \
    UserRegistrationModel
from mailpush.infrastructure.persistence.repositories.registration_repo import \
    RegistrationRepository
from mailpush.shared.telemetry.logging import get_logger
from mailpush.shared.utils import ensure_utc

logger = get_logger(__name__)


def _is_newer(cursor: str, current: str | None) -> bool:
    """Gmail history IDs increase monotonically within a mailbox"""
    if current is None:
        return True
    try:
        return int(cursor) > int(current)
    except ValueError:
        return cursor != current


class RegistrationStore:
    """Load and update registrations and their credential / subscription state"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryptor: CredentialEncryptor,
    ):
        self._session_factory = session_factory
        self._encryptor = encryptor

    def _to_entity(self, row: UserRegistrationModel) -> UserRegistration:
        return UserRegistration(
            key=RegistrationKey(row.email, ProviderKind(row.provider)),
            device_token=row.device_token,
            credential=self._encryptor.decrypt_credential(row.credentials_encrypted),
            cursor=row.history_id,
            subscription_id=row.subscription_id,
            client_state=row.client_state,
            expiry=ensure_utc(row.expiry) if row.expiry else None,
            pending_events=[PendingEvent.from_dict(item) for item in row.pending_events or []],
        )

    async def _locked_row(self, repo: RegistrationRepository, key: RegistrationKey) -> UserRegistrationModel:
        row = await repo.get_by_key(key.email, key.provider.value, for_update=True)
        if row is None:
            raise RegistrationNotFoundError(key.email, key.provider.value)
        return row

    async def get(self, key: RegistrationKey) -> UserRegistration | None:
        async with self._session_factory() as session:
            row = await RegistrationRepository(session).get_by_key(key.email, key.provider.value)
            return self._to_entity(row) if row else None

    async def get_by_subscription_id(self, subscription_id: str) -> UserRegistration | None:
        async with self._session_factory() as session:
            row = await RegistrationRepository(session).get_by_subscription_id(subscription_id)
            return self._to_entity(row) if row else None

    async def save(self, registration: UserRegistration) -> None:
        """
        Create or overwrite the registration for its key.

        Re-registering a device replaces credentials and watch state and
        resets the pending queue to whatever the entity carries.
        """
        key = registration.key
        async with self._session_factory() as session:
            async with session.begin():
                repo = RegistrationRepository(session)
                row = await repo.get_by_key(key.email, key.provider.value, for_update=True)
                if row is None:
                    row = UserRegistrationModel(email=key.email, provider=key.provider.value)
                    self._apply(row, registration)
                    await repo.create(row)
                else:
                    self._apply(row, registration)
        logger.info("Saved registration %s", key)

    def _apply(self, row: UserRegistrationModel, registration: UserRegistration) -> None:
        row.device_token = registration.device_token
        row.credentials_encrypted = self._encryptor.encrypt_credential(registration.credential)
        row.history_id = registration.cursor
        row.subscription_id = registration.subscription_id
        row.client_state = registration.client_state
        row.expiry = registration.expiry
        row.pending_events = [event.to_dict() for event in registration.pending_events]

    async def update_credential(self, key: RegistrationKey, credential: ProviderCredential) -> None:
        """Overwrite the stored tokens in one atomic per-user update"""
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._locked_row(RegistrationRepository(session), key)
                row.credentials_encrypted = self._encryptor.encrypt_credential(credential)

    async def update_cursor(self, key: RegistrationKey, cursor: str) -> None:
        """
        Move the Gmail history cursor forward.

        Overlapping runs can finish out of order; a cursor older than the
        stored one is ignored so already-seen history is not replayed.
        """
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._locked_row(RegistrationRepository(session), key)
                if not _is_newer(cursor, row.history_id):
                    logger.info("Ignoring stale history cursor %s for %s (stored %s)", cursor, key, row.history_id)
                    return
                row.history_id = cursor
        logger.debug("Advanced history cursor for %s to %s", key, cursor)

    async def update_subscription(self, key: RegistrationKey, handle: SubscriptionHandle) -> None:
        """Persist a (re-)established watch or subscription"""
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._locked_row(RegistrationRepository(session), key)
                if key.provider is ProviderKind.GMAIL:
                    # A renewed watch keeps delivering from the stored cursor; moving
                    # it to the watch's historyId would skip unprocessed changes
                    if row.history_id is None:
                        row.history_id = handle.position
                else:
                    row.subscription_id = handle.position
                    if handle.client_state:
                        row.client_state = handle.client_state
                row.expiry = handle.expiry
        logger.info("Updated subscription for %s (expires %s)", key, handle.expiry.isoformat())

    async def list_expiring(self, cutoff: datetime) -> list[UserRegistration]:
        async with self._session_factory() as session:
            rows = await RegistrationRepository(session).list_expiring(cutoff)
            return [self._to_entity(row) for row in rows]


class PendingEventStore:
    """Per-user queue of mail events not yet seen by the client"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, key: RegistrationKey, event: PendingEvent) -> list[PendingEvent]:
        """
        Append one event under a row lock and return the whole queue.

        An event whose provider message id is already queued is not added
        again, so redelivered provider signals do not duplicate digest lines.
        """
        async with self._session_factory() as session:
            async with session.begin():
                repo = RegistrationRepository(session)
                row = await repo.get_by_key(key.email, key.provider.value, for_update=True)
                if row is None:
                    raise RegistrationNotFoundError(key.email, key.provider.value)

                pending = list(row.pending_events or [])
                duplicate = event.message_id is not None and any(
                    item.get("message_id") == event.message_id for item in pending
                )
                if duplicate:
                    logger.info("Skipping duplicate message %s for %s", event.message_id, key)
                else:
                    pending.append(event.to_dict())
                    # Assign a new list so the JSON column is marked dirty
                    row.pending_events = pending

        return [PendingEvent.from_dict(item) for item in pending]

    async def flush(self, key: RegistrationKey) -> None:
        """Clear the queue. Clearing an empty queue is a no-op."""
        async with self._session_factory() as session:
            async with session.begin():
                repo = RegistrationRepository(session)
                row = await repo.get_by_key(key.email, key.provider.value, for_update=True)
                if row is None:
                    raise RegistrationNotFoundError(key.email, key.provider.value)
                if row.pending_events:
                    row.pending_events = []
        logger.info("Flushed pending events for %s", key)

    async def list(self, key: RegistrationKey) -> list[PendingEvent]:
        async with self._session_factory() as session:
            repo = RegistrationRepository(session)
            row = await repo.get_by_key(key.email, key.provider.value)
            if row is None:
                return []
            return [PendingEvent.from_dict(item) for item in row.pending_events or []]
