"""Tests for the registration and pending-event stores (SQLite)"""

import asyncio
from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (AsyncSession, async_sessionmaker,
                                    create_async_engine)

from mailpush.domain.entities import (PendingEvent, ProviderCredential,
                                      RegistrationKey, SubscriptionHandle,
                                      UserRegistration)
from mailpush.domain.enums import ProviderKind
from mailpush.domain.exceptions import RegistrationNotFoundError
from mailpush.infrastructure.persistence.database import Base
from mailpush.infrastructure.persistence.stores import (PendingEventStore,
                                                        RegistrationStore)

GMAIL_KEY = RegistrationKey("user@example.com", ProviderKind.GMAIL)
T0 = datetime(2024, 5, 1, 9, 30, 15, 123456, tzinfo=UTC)


class TestPendingEventStore:
    @pytest.mark.asyncio
    async def test_append_then_list_round_trip(self, pending_store, make_registration):
        """
        GIVEN a registration with an empty queue
        WHEN events are appended
        THEN list returns them in insertion order with exact timestamps.
        """
        await make_registration()
        events = [
            PendingEvent("Amazon", "Order shipped", T0, "m1"),
            PendingEvent("GitHub", "PR merged", T0 - timedelta(hours=2), "m2"),
            PendingEvent("Bank", "Statement", datetime(2024, 5, 1, 11, 0, tzinfo=timezone(timedelta(hours=2)))),
        ]

        for item in events:
            await pending_store.append(GMAIL_KEY, item)
        stored = await pending_store.list(GMAIL_KEY)

        assert [e.subject for e in stored] == ["Order shipped", "PR merged", "Statement"]
        assert [e.timestamp for e in stored] == [e.timestamp for e in events]
        assert stored[0].timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_append_returns_whole_queue(self, pending_store, make_registration):
        await make_registration()

        await pending_store.append(GMAIL_KEY, PendingEvent("A", "one", T0, "m1"))
        queue = await pending_store.append(GMAIL_KEY, PendingEvent("B", "two", T0, "m2"))

        assert [e.sender for e in queue] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_duplicate_message_id_not_appended_twice(self, pending_store, make_registration):
        await make_registration()

        await pending_store.append(GMAIL_KEY, PendingEvent("A", "one", T0, "m1"))
        queue = await pending_store.append(GMAIL_KEY, PendingEvent("A", "one", T0, "m1"))

        assert len(queue) == 1
        assert len(await pending_store.list(GMAIL_KEY)) == 1

    @pytest.mark.asyncio
    async def test_flush_is_idempotent(self, pending_store, make_registration):
        """
        GIVEN a queue with one event
        WHEN flush is called twice
        THEN the queue is empty after both calls and the second is not an error.
        """
        await make_registration()
        await pending_store.append(GMAIL_KEY, PendingEvent("A", "one", T0, "m1"))

        await pending_store.flush(GMAIL_KEY)
        assert await pending_store.list(GMAIL_KEY) == []

        await pending_store.flush(GMAIL_KEY)
        assert await pending_store.list(GMAIL_KEY) == []

    @pytest.mark.asyncio
    async def test_append_to_unknown_registration(self, pending_store):
        with pytest.raises(RegistrationNotFoundError):
            await pending_store.append(GMAIL_KEY, PendingEvent("A", "one", T0))

    @pytest.mark.asyncio
    async def test_list_unknown_registration_is_empty(self, pending_store):
        assert await pending_store.list(GMAIL_KEY) == []

    @pytest.mark.asyncio
    async def test_queues_are_per_provider(self, pending_store, make_registration):
        await make_registration(provider=ProviderKind.GMAIL)
        await make_registration(provider=ProviderKind.OUTLOOK)
        outlook_key = RegistrationKey("user@example.com", ProviderKind.OUTLOOK)

        await pending_store.append(outlook_key, PendingEvent("A", "one", T0, "m1"))

        assert await pending_store.list(GMAIL_KEY) == []
        assert len(await pending_store.list(outlook_key)) == 1


class TestRegistrationStore:
    @pytest.mark.asyncio
    async def test_save_and_get(self, registration_store, make_registration):
        saved = await make_registration()

        loaded = await registration_store.get(GMAIL_KEY)

        assert loaded is not None
        assert loaded.device_token == saved.device_token
        assert loaded.credential == saved.credential
        assert loaded.cursor == "1000"
        assert loaded.expiry == saved.expiry
        assert loaded.expiry.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_missing(self, registration_store):
        assert await registration_store.get(GMAIL_KEY) is None

    @pytest.mark.asyncio
    async def test_credentials_are_encrypted_at_rest(self, session_factory, make_registration):
        from mailpush.infrastructure.persistence.models import \
            UserRegistrationModel

        await make_registration()

        async with session_factory() as session:
            row = await session.get(UserRegistrationModel, ("user@example.com", "gmail"))

        assert "refresh-1" not in row.credentials_encrypted
        assert "access-1" not in row.credentials_encrypted

    @pytest.mark.asyncio
    async def test_save_overwrites_and_resets_queue(self, registration_store, pending_store, make_registration):
        """
        GIVEN an existing registration with pending events
        WHEN the device registers again
        THEN the new token replaces the old one and the queue starts empty.
        """
        await make_registration()
        await pending_store.append(GMAIL_KEY, PendingEvent("A", "one", T0, "m1"))

        await make_registration(device_token="new-device")

        loaded = await registration_store.get(GMAIL_KEY)
        assert loaded.device_token == "new-device"
        assert loaded.pending_events == []

    @pytest.mark.asyncio
    async def test_update_credential(self, registration_store, make_registration):
        await make_registration()
        rotated = ProviderCredential("refresh-2", "access-2", datetime(2030, 1, 1, tzinfo=UTC))

        await registration_store.update_credential(GMAIL_KEY, rotated)

        assert (await registration_store.get(GMAIL_KEY)).credential == rotated

    @pytest.mark.asyncio
    async def test_update_cursor(self, registration_store, make_registration):
        await make_registration()

        await registration_store.update_cursor(GMAIL_KEY, "1234")

        assert (await registration_store.get(GMAIL_KEY)).cursor == "1234"

    @pytest.mark.asyncio
    async def test_update_cursor_unknown_registration(self, registration_store):
        with pytest.raises(RegistrationNotFoundError):
            await registration_store.update_cursor(GMAIL_KEY, "1234")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("older", ["900", "1000"])
    async def test_update_cursor_never_moves_backwards(self, registration_store, make_registration, older):
        """
        GIVEN a Gmail registration whose cursor is 1000
        WHEN a run that started earlier finishes with an older or equal history id
        THEN the stored cursor stays at 1000
        """
        await make_registration()

        await registration_store.update_cursor(GMAIL_KEY, older)

        assert (await registration_store.get(GMAIL_KEY)).cursor == "1000"

    @pytest.mark.asyncio
    async def test_update_subscription_outlook(self, registration_store, make_registration):
        await make_registration(provider=ProviderKind.OUTLOOK)
        key = RegistrationKey("user@example.com", ProviderKind.OUTLOOK)
        expiry = datetime(2024, 6, 1, tzinfo=UTC)

        await registration_store.update_subscription(key, SubscriptionHandle("sub-2", expiry, "state-2"))

        loaded = await registration_store.get(key)
        assert loaded.subscription_id == "sub-2"
        assert loaded.client_state == "state-2"
        assert loaded.expiry == expiry

    @pytest.mark.asyncio
    async def test_gmail_renewal_keeps_unprocessed_cursor(self, registration_store, make_registration):
        """
        GIVEN a Gmail registration whose cursor is 1000
        WHEN a renewed watch reports historyId 2000
        THEN the expiry moves but the cursor stays at 1000
        """
        await make_registration()
        expiry = datetime(2024, 6, 1, tzinfo=UTC)

        await registration_store.update_subscription(GMAIL_KEY, SubscriptionHandle("2000", expiry))

        loaded = await registration_store.get(GMAIL_KEY)
        assert loaded.cursor == "1000"
        assert loaded.expiry == expiry

    @pytest.mark.asyncio
    async def test_gmail_renewal_seeds_missing_cursor(self, registration_store, make_registration):
        await make_registration(cursor=None)

        await registration_store.update_subscription(
            GMAIL_KEY, SubscriptionHandle("2000", datetime(2024, 6, 1, tzinfo=UTC))
        )

        assert (await registration_store.get(GMAIL_KEY)).cursor == "2000"

    @pytest.mark.asyncio
    async def test_get_by_subscription_id(self, registration_store, make_registration):
        await make_registration(provider=ProviderKind.OUTLOOK, subscription_id="sub-77")

        found = await registration_store.get_by_subscription_id("sub-77")

        assert found is not None
        assert found.key == RegistrationKey("user@example.com", ProviderKind.OUTLOOK)
        assert await registration_store.get_by_subscription_id("nope") is None

    @pytest.mark.asyncio
    async def test_list_expiring(self, registration_store, make_registration):
        now = datetime.now(UTC)
        await make_registration(email="soon@example.com", expiry=now + timedelta(hours=3))
        await make_registration(email="later@example.com", expiry=now + timedelta(days=6))
        await make_registration(email="unknown@example.com", expiry=None)

        expiring = await registration_store.list_expiring(now + timedelta(hours=24))

        assert {r.key.email for r in expiring} == {"soon@example.com", "unknown@example.com"}


@pytest.fixture
async def file_engine(tmp_path):
    """
    File-backed SQLite with one connection per session.

    Transactions start with BEGIN IMMEDIATE so a writer holds the database
    lock from its first read, the way SELECT ... FOR UPDATE holds the row.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'registrations.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


class TestConcurrentAppends:
    @pytest.mark.asyncio
    async def test_simultaneous_appends_all_survive(self, file_engine, encryptor):
        """
        GIVEN one registration in a database shared by separate connections
        WHEN five events for it are appended at the same time
        THEN every event ends up in the queue.
        """
        factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
        registrations = RegistrationStore(factory, encryptor)
        pending = PendingEventStore(factory)
        await registrations.save(UserRegistration(
            key=GMAIL_KEY,
            device_token="a1b2c3d4e5f6",
            credential=ProviderCredential("refresh-1"),
            cursor="1000",
        ))
        events = [PendingEvent(f"Sender {i}", f"Subject {i}", T0 + timedelta(minutes=i), f"m{i}") for i in range(5)]

        await asyncio.gather(*(pending.append(GMAIL_KEY, e) for e in events))

        queued = await pending.list(GMAIL_KEY)
        assert sorted(e.message_id for e in queued) == ["m0", "m1", "m2", "m3", "m4"]
