"""Principal resolution for bearer tokens.

Authentication order:
1. dev-token (or no token) when dev_mode is on -> the configured dev user
2. Firebase ID token
The first authenticated request of a new principal creates the user and opens
a credit account with the configured initial credits.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin import exceptions as firebase_exceptions
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gictor.config import Settings
from gictor.exceptions import StorageError, UnauthenticatedError
from gictor.models.database import session_scope
from gictor.models.user import User
from gictor.services.credit_ledger import CreditLedger

logger = logging.getLogger(__name__)

DEV_TOKEN = "dev-token"

_firebase_app = None


def get_firebase_app(project_id: str) -> firebase_admin.App:
    global _firebase_app
    if _firebase_app is None:
        try:
            _firebase_app = firebase_admin.get_app()
        except ValueError:
            # App not initialized yet
            if project_id:
                cred = credentials.ApplicationDefault()
                _firebase_app = firebase_admin.initialize_app(cred, {"projectId": project_id})
            else:
                _firebase_app = firebase_admin.initialize_app()
    return _firebase_app


@dataclass(frozen=True)
class Principal:
    """Authenticated caller. Holds no DB connection."""

    user_id: uuid.UUID
    email: str = ""


class Authenticator(Protocol):
    async def authenticate(self, token: str | None) -> Principal: ...


@dataclass(frozen=True)
class _Identity:
    uid: str
    email: str
    name: str
    picture: str | None = None


class TokenAuthenticator:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        ledger: CreditLedger,
        settings: Settings,
    ):
        self._session_maker = session_maker
        self._ledger = ledger
        self._settings = settings

    async def authenticate(self, token: str | None) -> Principal:
        identity = self._resolve_identity(token)
        try:
            async with session_scope(self._session_maker) as db:
                user = await self._get_or_create_user(db, identity)
                return Principal(user_id=user.id, email=user.email)
        except SQLAlchemyError as e:
            logger.exception("Failed to load authenticated user")
            raise StorageError(f"Failed to load user: {e}") from e

    def _resolve_identity(self, token: str | None) -> _Identity:
        settings = self._settings
        if settings.dev_mode and (token is None or token == DEV_TOKEN):
            return _Identity(
                uid=settings.dev_user_id,
                email=settings.dev_user_email,
                name=settings.dev_user_name,
            )

        # Require credentials in production
        if not token:
            raise UnauthenticatedError("Missing authentication token")

        try:
            get_firebase_app(settings.firebase_project_id)
            decoded_token = firebase_auth.verify_id_token(token)
        except (ValueError, firebase_exceptions.FirebaseError) as e:
            logger.info(f"Rejected bearer token: {type(e).__name__}")
            raise UnauthenticatedError("Invalid authentication token") from e

        email = decoded_token.get("email", "")
        return _Identity(
            uid=decoded_token["uid"],
            email=email,
            name=decoded_token.get("name", email.split("@")[0]),
            picture=decoded_token.get("picture"),
        )

    async def _get_or_create_user(self, db: AsyncSession, identity: _Identity) -> User:
        result = await db.execute(select(User).where(User.firebase_uid == identity.uid))
        user = result.scalar_one_or_none()
        if user is not None:
            return user

        user = User(
            firebase_uid=identity.uid,
            email=identity.email,
            name=identity.name,
            avatar_url=identity.picture,
        )
        db.add(user)
        await db.flush()
        await self._ledger.open_account(user.id, self._settings.initial_credits, session=db)
        logger.info(f"Created user {user.id} for principal {identity.uid}")
        return user
