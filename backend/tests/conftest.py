"""
Pytest fixtures for the generation backend tests.

Every test gets its own on-disk SQLite database (aiosqlite) with the full
schema, a CreditLedger bound to it, and factories for users, pipelines and
gateways. The external worker is an httpx.MockTransport, so no network is used.
"""

import os

# Must be set before gictor is imported: the module-level engine reads it.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
from collections.abc import Callable
from typing import Any
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from gictor.api.deps import get_authenticator, get_rate_limiter, get_session_maker, get_worker_client
from gictor.config import Settings, get_settings
from gictor.exceptions import UnauthenticatedError
from gictor.main import app
from gictor.models import Base, GenerationRequest, Pipeline, User
from gictor.models.credit import CreditTransaction
from gictor.services.authentication import Principal
from gictor.services.credit_ledger import CreditLedger
from gictor.services.dispatch_gateway import DispatchGateway
from gictor.services.rate_limiter import FixedWindowRateLimiter
from gictor.services.status_reconciler import StatusReconciler
from gictor.services.worker_client import WorkerClient

WORKER_URL = "http://worker.test/webhook/generate"
WORKER_API_KEY = "worker-shared-secret"
CALLBACK_SECRET = "callback-shared-secret"
PROJECT_ID = uuid.UUID("7d1f4a52-3b8e-4c11-9a6b-2f0e8c9d1a10")


def configure_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class FakeAuthenticator:
    """Maps bearer tokens to user ids; anything else is unauthenticated."""

    def __init__(self, tokens: dict[str, uuid.UUID] | None = None):
        self.tokens = tokens or {}

    async def authenticate(self, token: str | None) -> Principal:
        if token is None or token not in self.tokens:
            raise UnauthenticatedError("Invalid authentication token")
        return Principal(user_id=self.tokens[token])


class RecordingWorker:
    """Mock worker endpoint; records every request it receives."""

    def __init__(self, handler: Callable[[httpx.Request], Any] | None = None):
        self.requests: list[httpx.Request] = []
        self._handler = handler or (lambda request: httpx.Response(200, json={"message": "Workflow was started"}))

    def __call__(self, request: httpx.Request) -> Any:
        self.requests.append(request)
        return self._handler(request)

    def client(self, timeout_seconds: float = 30.0) -> WorkerClient:
        return WorkerClient(
            WORKER_URL,
            WORKER_API_KEY,
            timeout_seconds=timeout_seconds,
            transport=httpx.MockTransport(self),
        )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        worker_webhook_url=WORKER_URL,
        worker_api_key=WORKER_API_KEY,
        callback_secret=CALLBACK_SECRET,
        stripe_webhook_secret="whsec_test",
        dev_mode=False,
    )


@pytest_asyncio.fixture
async def engine(tmp_path):
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gictor.db'}", poolclass=NullPool)
    event.listens_for(db_engine.sync_engine, "connect")(configure_sqlite_pragmas)
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def ledger(session_maker) -> CreditLedger:
    return CreditLedger(session_maker)


@pytest.fixture
def make_user(session_maker, ledger):
    """Create a user whose credit account holds `balance`."""

    async def _make(balance: str = "5.00") -> uuid.UUID:
        async with session_maker() as db:
            user = User(firebase_uid=f"uid-{uuid.uuid4()}", email="creator@example.com", name="Creator")
            db.add(user)
            await db.flush()
            await ledger.open_account(user.id, Decimal(balance), session=db)
            await db.commit()
            return user.id

    return _make


@pytest.fixture
def make_pipeline(session_maker):
    async def _make(user_id: uuid.UUID, pipeline_type: str = "talking_head") -> uuid.UUID:
        async with session_maker() as db:
            pipeline = Pipeline(
                user_id=user_id,
                project_id=PROJECT_ID,
                name="Launch video",
                pipeline_type=pipeline_type,
                stage_flags={},
                stage_outputs={},
            )
            db.add(pipeline)
            await db.commit()
            return pipeline.id

    return _make


# =============================================================================
# Query helpers
# =============================================================================


@pytest.fixture
def fetch(session_maker):
    """Helpers reading committed state with a fresh session."""

    class _Fetch:
        async def request(self, request_id) -> GenerationRequest | None:
            async with session_maker() as db:
                return await db.get(GenerationRequest, request_id)

        async def requests(self, user_id) -> list[GenerationRequest]:
            async with session_maker() as db:
                result = await db.execute(select(GenerationRequest).where(GenerationRequest.user_id == user_id))
                return list(result.scalars().all())

        async def pipeline(self, pipeline_id) -> Pipeline | None:
            async with session_maker() as db:
                return await db.get(Pipeline, pipeline_id)

        async def transactions(self, user_id, transaction_type: str | None = None) -> list[CreditTransaction]:
            async with session_maker() as db:
                query = select(CreditTransaction).where(CreditTransaction.user_id == user_id)
                if transaction_type:
                    query = query.where(CreditTransaction.transaction_type == transaction_type)
                result = await db.execute(query)
                return list(result.scalars().all())

    return _Fetch()


# =============================================================================
# Saga components
# =============================================================================


@pytest.fixture
def worker() -> RecordingWorker:
    return RecordingWorker()


@pytest.fixture
def rate_limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(limit=50, window_seconds=60)


@pytest.fixture
def authenticator() -> FakeAuthenticator:
    return FakeAuthenticator()


@pytest.fixture
def make_gateway(session_maker, ledger, rate_limiter, authenticator, settings):
    def _make(worker: RecordingWorker, **overrides) -> DispatchGateway:
        return DispatchGateway(
            session_maker=session_maker,
            ledger=ledger,
            rate_limiter=overrides.get("rate_limiter", rate_limiter),
            worker=overrides.get("worker_client") or worker.client(),
            authenticator=authenticator,
            settings=overrides.get("settings", settings),
        )

    return _make


@pytest.fixture
def reconciler(session_maker, ledger, settings) -> StatusReconciler:
    return StatusReconciler(session_maker, ledger, settings)


# =============================================================================
# HTTP app
# =============================================================================


@pytest.fixture
def override(settings, session_maker, worker, authenticator, rate_limiter):
    """Bind the app to the test database, worker and authenticator."""
    app.dependency_overrides.update(
        {
            get_settings: lambda: settings,
            get_session_maker: lambda: session_maker,
            get_worker_client: lambda: worker.client(),
            get_authenticator: lambda: authenticator,
            get_rate_limiter: lambda: rate_limiter,
        }
    )
    yield app.dependency_overrides
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(override):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
