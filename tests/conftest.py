"""Shared test fixtures for pytest"""
import os
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

# Settings are read on first import of the app modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENCRYPTION_SALT"] = "test-salt"
os.environ["API_KEY"] = "test-api-key"
os.environ["OUTLOOK_WEBHOOK_URL"] = "https://push.example.com/onOutlookNotification"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (AsyncSession, async_sessionmaker,
                                    create_async_engine)
from sqlalchemy.pool import StaticPool

from mailpush.application.services.subscription_manager import \
    SubscriptionManager
from mailpush.application.use_cases.lifecycle import DeviceLifecycleService
from mailpush.application.use_cases.notifications import NotificationPipeline
from mailpush.domain.entities import (ProviderCredential, PushResult,
                                      RegistrationKey, UserRegistration)
from mailpush.domain.enums import ProviderKind
from mailpush.infrastructure.external.email.encryption import \
    CredentialEncryptor
from mailpush.infrastructure.persistence import models  # noqa: F401
from mailpush.infrastructure.persistence.database import Base, get_db
from mailpush.infrastructure.persistence.stores import (PendingEventStore,
                                                        RegistrationStore)

# Access token far from expiry, so providers are not asked to refresh
FRESH_CREDENTIAL = ProviderCredential(
    refresh_token="refresh-1",
    access_token="access-1",
    access_token_expires_at=datetime(2099, 1, 1, tzinfo=UTC),
)


@pytest.fixture
async def test_engine():
    """In-memory SQLite shared by every session of one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def encryptor() -> CredentialEncryptor:
    return CredentialEncryptor(secret_key="test-secret-key", salt="test-salt")


@pytest.fixture
def registration_store(session_factory, encryptor) -> RegistrationStore:
    return RegistrationStore(session_factory, encryptor)


@pytest.fixture
def pending_store(session_factory) -> PendingEventStore:
    return PendingEventStore(session_factory)


def _mock_provider(kind: ProviderKind) -> AsyncMock:
    provider = AsyncMock()
    provider.kind = kind
    # Credentials pass through unchanged unless a test says otherwise
    provider.authorize.side_effect = lambda credential, force=False: credential
    return provider


@pytest.fixture
def gmail_provider() -> AsyncMock:
    return _mock_provider(ProviderKind.GMAIL)


@pytest.fixture
def outlook_provider() -> AsyncMock:
    return _mock_provider(ProviderKind.OUTLOOK)


@pytest.fixture
def subscription_manager(gmail_provider, outlook_provider) -> SubscriptionManager:
    return SubscriptionManager({
        ProviderKind.GMAIL: gmail_provider,
        ProviderKind.OUTLOOK: outlook_provider,
    })


@pytest.fixture
def dispatcher() -> AsyncMock:
    mock = AsyncMock()
    mock.send.return_value = PushResult(success=True, apns_id="apns-1")
    return mock


@pytest.fixture
def pipeline(registration_store, pending_store, subscription_manager, dispatcher) -> NotificationPipeline:
    return NotificationPipeline(
        registrations=registration_store,
        pending_events=pending_store,
        subscriptions=subscription_manager,
        dispatcher=dispatcher,
    )


@pytest.fixture
def oauth_manager() -> MagicMock:
    manager = MagicMock()
    manager.exchange_code_for_tokens = AsyncMock(return_value=FRESH_CREDENTIAL)
    return manager


@pytest.fixture
def lifecycle(registration_store, pending_store, subscription_manager, oauth_manager) -> DeviceLifecycleService:
    return DeviceLifecycleService(
        registrations=registration_store,
        pending_events=pending_store,
        subscriptions=subscription_manager,
        oauth_manager_factory=lambda provider: oauth_manager,
        renewal_threshold=timedelta(hours=24),
    )


@pytest.fixture
def make_registration(registration_store):
    """Persist a registration with sensible defaults and return it"""

    async def _make(
        email: str = "user@example.com",
        provider: ProviderKind = ProviderKind.GMAIL,
        **overrides,
    ) -> UserRegistration:
        values = {
            "device_token": "a1b2c3d4e5f6",
            "credential": FRESH_CREDENTIAL,
            "expiry": datetime.now(UTC) + timedelta(days=5),
        }
        if provider is ProviderKind.GMAIL:
            values["cursor"] = "1000"
        else:
            values["subscription_id"] = "sub-1"
            values["client_state"] = "secret-state"
        values.update(overrides)

        registration = UserRegistration(key=RegistrationKey(email, provider), **values)
        await registration_store.save(registration)
        return registration

    return _make


@pytest.fixture
async def client(session_factory, pipeline, lifecycle):
    """HTTP client for API testing"""
    from main import app
    from mailpush.presentation.api.dependencies import (
        get_lifecycle_service, get_notification_pipeline)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_pipeline] = lambda: pipeline
    app.dependency_overrides[get_lifecycle_service] = lambda: lifecycle

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
