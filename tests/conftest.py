"""Shared pytest fixtures for all tests."""
import os
import tempfile
from datetime import datetime, timedelta, timezone

# Settings are read at import time, so the environment must be ready first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-jwt-signing-0123456789")
os.environ.setdefault("ADMIN_EMAIL", "owner@jotcomps.com")
os.environ.setdefault("IOTEC_CLIENT_ID", "test-client")
os.environ.setdefault("IOTEC_CLIENT_SECRET", "test-secret")
os.environ.setdefault("IOTEC_WALLET_ID", "wallet-123")
os.environ.setdefault("IOTEC_STATUS_RETRY_DELAY_SECONDS", "0")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "talentpay-test-logs"))

import httpx
import jwt
import pytest
import respx
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from talentpay.config import settings
from talentpay.database import Base, get_session_factory
from talentpay.main import app
from talentpay.models.payment import Payment, utcnow
from talentpay.services.idempotency import IdempotencyRegistry
from talentpay.services.iotec import IotecCollectionsClient, TokenProvider
from talentpay.services.notifications import NotificationSink
from talentpay.services.payment_initiator import PaymentInitiator
from talentpay.services.payment_store import PaymentStore
from talentpay.services.side_effects import SideEffectQueue
from talentpay.services.status_reconciler import StatusReconciler

TOKEN_URL = settings.IOTEC_TOKEN_URL
COLLECT_URL = f"{settings.IOTEC_BASE_URL}/collections/collect"


def status_url(collection_id: str) -> str:
    return f"{settings.IOTEC_BASE_URL}/collections/{collection_id}"


# ===== DATABASE =====

@pytest.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database file per test; every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def side_effects():
    queue = SideEffectQueue(max_retries=2, retry_delay_seconds=0)
    yield queue
    await queue.close()


# ===== DEPENDENCY OVERRIDE =====

@pytest.fixture(autouse=True)
def override_dependencies(session_factory, side_effects):
    """Point the app at the per-test database and side-effect queue."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.side_effects = side_effects

    yield

    app.dependency_overrides.clear()
    app.state.side_effects = None


# ===== ioTec MOCK =====

@pytest.fixture
def iotec():
    """respx router with the ioTec token endpoint already answering."""
    with respx.mock(assert_all_called=False) as router:
        router.post(TOKEN_URL, name="token").mock(
            return_value=httpx.Response(
                200, json={"access_token": "test-access-token", "expires_in": 300}
            )
        )
        yield router


# ===== SERVICES =====

@pytest.fixture
def store(db_session):
    return PaymentStore(db_session)


@pytest.fixture
def token_provider():
    return TokenProvider.from_settings(settings)


@pytest.fixture
def collections():
    return IotecCollectionsClient.from_settings(settings)


@pytest.fixture
def idempotency(db_session):
    return IdempotencyRegistry(db_session, settings.IDEMPOTENCY_WINDOW_HOURS)


@pytest.fixture
def initiator(store, token_provider, collections, idempotency):
    return PaymentInitiator(
        store, token_provider, collections, settings, idempotency=idempotency
    )


@pytest.fixture
def reconciler(store, token_provider, collections, side_effects, session_factory):
    return StatusReconciler(
        store,
        token_provider,
        collections,
        settings,
        side_effects=side_effects,
        notifications=NotificationSink(session_factory),
    )


@pytest.fixture
def make_payment(session_factory):
    """Insert a payment row directly and return its transaction id."""

    async def _make(
        transaction_id: str = "TXN_1700000000000_abc123xyz",
        status: str = "PENDING",
        phone: str = "0700000000",
        email: str = "a@b.com",
        provider_id: str | None = None,
        created_at=None,
    ) -> str:
        async with session_factory() as session:
            now = created_at or utcnow()
            session.add(
                Payment(
                    transaction_id=transaction_id,
                    provider_transaction_id=provider_id,
                    amount=1000000,
                    currency="UGX",
                    method="MobileMoney",
                    payer_phone=phone,
                    payer_email=email,
                    payer_name="Test Payer",
                    competition_id="firstRound",
                    status=status,
                    status_message="seeded",
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.commit()
        return transaction_id

    return _make


# ===== HTTP =====

@pytest.fixture
async def client():
    """Create test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def mint_token(claims: dict) -> str:
    """Sign a session token the way the session provider does."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=60)
    return jwt.encode(
        {**claims, "exp": expire}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
    )


@pytest.fixture
def admin_token():
    return mint_token({"sub": "admin@x.com", "email": "admin@x.com", "admin": True})


@pytest.fixture
def user_token():
    return mint_token({"sub": "user@x.com", "email": "user@x.com"})
