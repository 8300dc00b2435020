import inspect
from unittest.mock import AsyncMock, MagicMock

import anyio
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from shield.core.settings import Settings, get_settings
from shield.db.engine import get_session
from shield.integrations.billing import RevenueCatBilling, SubscriptionSnapshot
from shield.integrations.courial import (
    NOT_ELIGIBLE,
    CourialDiscountChecker,
    CourialIdLookup,
    CourialIdResult,
    DiscountCheckResult,
)
from shield.integrations.push import NotificationTokenApi, PushRegistrationResult
from shield.integrations.sms import DeliveryResult, TwilioSmsSender, get_sms_sender
from shield.main import app
from shield.otp.challenges import OtpChallengeStore, get_challenge_store
from shield.session.bootstrap import Collaborators, SessionRegistry, get_registry
from shield.session.models import Session as ShieldSession
from shield.session.models import UserRecord
from shield.session.store import SessionStore

USER_ID = "0b8f1d3e-6f0a-4c55-9d7e-2f1c8f5b7a10"
SERVICE_TOKEN = "test-session-token"


def pytest_configure(config: pytest.Config) -> None:
    # Tests use @pytest.mark.asyncio, but we intentionally rely on anyio.
    config.addinivalue_line(
        "markers",
        "asyncio: run async tests using anyio (project-local hook)",
    )


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Run @pytest.mark.asyncio tests with anyio.

    This avoids adding an external pytest-asyncio dependency.
    """
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None

    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    funcargs = {
        name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
    }

    async def _run_async_test() -> None:
        await test_func(**funcargs)

    anyio.run(_run_async_test)
    return True


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(name="session")
def session_fixture(engine):
    """Create an in-memory SQLite database for testing."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="user")
def user_fixture() -> UserRecord:
    return UserRecord(id=USER_ID, email="driver@example.com", first_name="Dana")


@pytest.fixture(name="shield_session")
def shield_session_fixture(user: UserRecord) -> ShieldSession:
    """An onboarded, authenticated session with a user and a push token."""
    session = ShieldSession(is_onboarded=True, is_authenticated=True)
    session.replace_user(user)
    session.device.push_token = "ExponentPushToken[test]"
    session.device.platform = "ios"
    return session


@pytest.fixture(name="mock_push")
def mock_push_fixture():
    push = MagicMock(spec=NotificationTokenApi)
    push.register = AsyncMock(
        return_value=PushRegistrationResult(success=True, token="ExponentPushToken[test]")
    )
    push.unregister = AsyncMock(return_value=None)
    return push


@pytest.fixture(name="mock_billing")
def mock_billing_fixture():
    billing = MagicMock(spec=RevenueCatBilling)
    billing.entitlement_id = "premium"
    billing.initialize = AsyncMock(return_value=None)
    billing.is_configured.return_value = True
    billing.identify = AsyncMock(return_value=None)
    billing.fetch_snapshot = AsyncMock(
        return_value=SubscriptionSnapshot(app_user_id=USER_ID)
    )
    billing.log_out = AsyncMock(return_value=None)
    return billing


@pytest.fixture(name="mock_resolver")
def mock_resolver_fixture():
    resolver = MagicMock(spec=CourialIdLookup)
    resolver.resolve = AsyncMock(return_value=CourialIdResult(success=True, courial_id=4242))
    return resolver


@pytest.fixture(name="mock_discounts")
def mock_discounts_fixture():
    """Discount checker that stamps the session the way the real one does."""
    discounts = MagicMock(spec=CourialDiscountChecker)

    async def check(session):
        session.stamp_discount(eligible=False, discount_percentage=0, completed_rides=0)
        return DiscountCheckResult(success=True, data=NOT_ELIGIBLE)

    discounts.check = AsyncMock(side_effect=check)
    return discounts


@pytest.fixture(name="collaborators")
def collaborators_fixture(mock_push, mock_billing, mock_resolver, mock_discounts):
    return Collaborators(
        push=mock_push,
        billing=mock_billing,
        resolver=mock_resolver,
        discounts=mock_discounts,
    )


@pytest.fixture(name="mock_sms")
def mock_sms_fixture():
    sender = MagicMock(spec=TwilioSmsSender)
    sender.send = AsyncMock(return_value=DeliveryResult(success=True))
    return sender


@pytest.fixture(name="mock_settings")
def mock_settings_fixture():
    """Create mock settings."""
    return Settings(
        ENV_NAME="test",
        DATABASE_URL="sqlite://",
        READINESS_DELAY_SECONDS=0,
        REVENUECAT_API_KEY="test-revenuecat-key",
        SESSION_API_TOKEN=SERVICE_TOKEN,
    )


@pytest.fixture(name="registry")
def registry_fixture(engine, collaborators):
    registry = SessionRegistry(
        SessionStore(engine),
        collaborators_factory=lambda: collaborators,
        readiness_delay=0,
    )
    yield registry
    registry.close()


@pytest.fixture(name="challenge_store")
def challenge_store_fixture():
    return OtpChallengeStore(ttl_seconds=600, resend_cooldown_seconds=60)


@pytest.fixture(name="client")
def client_fixture(
    session: Session,
    registry: SessionRegistry,
    challenge_store: OtpChallengeStore,
    mock_sms: MagicMock,
    mock_settings: Settings,
):
    """Create a test client with overridden dependencies."""
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_challenge_store] = lambda: challenge_store
    app.dependency_overrides[get_sms_sender] = lambda: mock_sms
    app.dependency_overrides[get_settings] = lambda: mock_settings

    client = TestClient(app, headers={"Authorization": f"Bearer {SERVICE_TOKEN}"})
    yield client

    app.dependency_overrides.clear()
