import time
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from libs.common.cache import InMemoryTTLCache
from libs.common.config import get_settings
from libs.common.errors import ExternalServiceError
from libs.db.base import Base
from services.commerce_service import models as _commerce_models  # noqa: F401
from services.commerce_service.integrations.payments import (
    AuthorizationRef,
    CaptureResult,
    PaymentGateway,
)

settings = get_settings()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Session configured like the application's ``AsyncSessionLocal``."""
    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def quarantine(db_session):
    from services.commerce_service.services.category_tree import ensure_quarantine

    category = await ensure_quarantine(db_session)
    await db_session.commit()
    return category


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeGateway(PaymentGateway):
    """Records every call; capture outcome is configurable per test."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.capture_result = CaptureResult(succeeded=True, status="succeeded")
        self.capture_error: Optional[Exception] = None
        self._counter = 0

    async def create_customer(self, profile):
        self.calls.append(("create_customer", profile.user_id))
        return f"cus_{profile.user_id}"

    async def attach_payment_method(self, customer_ref, method_ref):
        self.calls.append(("attach_payment_method", customer_ref, method_ref))

    async def authorize(self, customer_ref, amount, method_ref, metadata=None):
        self._counter += 1
        self.calls.append(("authorize", customer_ref, Decimal(amount)))
        return AuthorizationRef(
            id=f"pi_test_{self._counter}",
            amount=Decimal(amount),
            status="requires_confirmation",
        )

    async def update_amount(self, auth_ref, amount):
        self.calls.append(("update_amount", auth_ref, Decimal(amount)))

    async def capture(self, auth_ref, amount=None):
        self.calls.append(("capture", auth_ref, amount))
        if self.capture_error is not None:
            raise self.capture_error
        return self.capture_result

    async def cancel_authorization(self, auth_ref):
        self.calls.append(("cancel_authorization", auth_ref))

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str, dict]] = []
        self.fail = fail

    async def send_transactional(self, to, template_kind, data):
        if self.fail:
            return False
        self.sent.append((to, template_kind, data))
        return True

    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]


class FakeMailingList:
    def __init__(self):
        self.contacts: list[tuple[str, str]] = []

    async def upsert_contact(self, email, tag, first_name=None, last_name=None):
        self.contacts.append((email, tag))
        return True


class FakeStorage:
    def __init__(self):
        self.deleted: list[str] = []

    def build_key(self, folder, filename):
        return f"{folder}/fixed-{filename}"

    def public_url(self, key):
        return f"https://media.test/{key}"

    def presign_upload(self, key, content_type):
        return f"https://upload.test/{key}?content-type={content_type}"

    def presign_download(self, key):
        return f"https://download.test/{key}"

    async def delete(self, key):
        self.deleted.append(key)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def failing_gateway() -> FakeGateway:
    gw = FakeGateway()
    gw.capture_error = ExternalServiceError("payments", "timeout calling /confirm")
    return gw


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def mailing_list() -> FakeMailingList:
    return FakeMailingList()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def cache() -> InMemoryTTLCache:
    return InMemoryTTLCache()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def make_token(sub: str, role: Optional[str] = None, email: Optional[str] = None) -> str:
    now = int(time.time())
    payload = {"sub": sub, "iat": now, "exp": now + 3600}
    if role is not None:
        payload["role"] = role
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('admin-1', role='admin', email='admin@test.com')}"}


@pytest.fixture
def wholesale_headers() -> dict:
    return {
        "Authorization": f"Bearer {make_token('buyer-1', role='Wholesale', email='buyer@test.com')}"
    }


@pytest_asyncio.fixture
async def client(
    db_session, cache, gateway, notifier, mailing_list, storage
) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient over the commerce app with fake collaborators on app.state."""
    from libs.db.session import get_async_db
    from services.commerce_service.app.main import app

    # The lifespan does not run under ASGITransport
    app.dependency_overrides[get_async_db] = lambda: db_session
    app.state.cache = cache
    app.state.payment_gateway = gateway
    app.state.notifier = notifier
    app.state.mailing_list = mailing_list
    app.state.storage = storage

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
