"""FastAPI dependency providers.

Each saga component is built by a provider so tests can swap any of them
through `app.dependency_overrides`.
"""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated, Any, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gictor.config import Settings, get_settings
from gictor.models.database import async_session_maker
from gictor.services.authentication import Authenticator, Principal, TokenAuthenticator
from gictor.services.credit_ledger import CreditLedger
from gictor.services.dispatch_gateway import DispatchGateway
from gictor.services.rate_limiter import FixedWindowRateLimiter
from gictor.services.status_reconciler import StatusReconciler
from gictor.services.worker_client import WorkerClient

# Use auto_error=False to allow dev token bypass
security = HTTPBearer(auto_error=False)

SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return async_session_maker


SessionMakerDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_maker)]


async def get_db(session_maker: SessionMakerDep) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@lru_cache
def get_rate_limiter() -> FixedWindowRateLimiter:
    """Process-wide limiter; its counters are the only shared in-memory state."""
    settings = get_settings()
    return FixedWindowRateLimiter(
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


def get_worker_client(settings: SettingsDep) -> WorkerClient:
    return WorkerClient.from_settings(settings)


def get_ledger(session_maker: SessionMakerDep) -> CreditLedger:
    return CreditLedger(session_maker)


def get_authenticator(
    session_maker: SessionMakerDep,
    ledger: Annotated[CreditLedger, Depends(get_ledger)],
    settings: SettingsDep,
) -> Authenticator:
    return TokenAuthenticator(session_maker, ledger, settings)


def get_dispatch_gateway(
    session_maker: SessionMakerDep,
    ledger: Annotated[CreditLedger, Depends(get_ledger)],
    rate_limiter: Annotated[FixedWindowRateLimiter, Depends(get_rate_limiter)],
    worker: Annotated[WorkerClient, Depends(get_worker_client)],
    authenticator: Annotated[Authenticator, Depends(get_authenticator)],
    settings: SettingsDep,
) -> DispatchGateway:
    return DispatchGateway(session_maker, ledger, rate_limiter, worker, authenticator, settings)


def get_status_reconciler(
    session_maker: SessionMakerDep,
    ledger: Annotated[CreditLedger, Depends(get_ledger)],
    settings: SettingsDep,
) -> StatusReconciler:
    return StatusReconciler(session_maker, ledger, settings)


async def get_bearer_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str | None:
    return credentials.credentials if credentials else None


BearerToken = Annotated[Optional[str], Depends(get_bearer_token)]


async def get_current_principal(
    token: BearerToken,
    authenticator: Annotated[Authenticator, Depends(get_authenticator)],
) -> Principal:
    return await authenticator.authenticate(token)


async def read_json_object(request: Request) -> dict[str, Any]:
    """Request body as a dict; anything else (bad JSON, arrays) becomes {}."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
LedgerDep = Annotated[CreditLedger, Depends(get_ledger)]
DispatchGatewayDep = Annotated[DispatchGateway, Depends(get_dispatch_gateway)]
StatusReconcilerDep = Annotated[StatusReconciler, Depends(get_status_reconciler)]
