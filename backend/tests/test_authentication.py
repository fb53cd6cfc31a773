"""Tests for bearer-token principal resolution and account opening."""

from decimal import Decimal
from unittest.mock import patch

import pytest
from firebase_admin import auth as firebase_auth

from gictor.exceptions import UnauthenticatedError
from gictor.models.credit import TRANSACTION_GRANT
from gictor.services.authentication import DEV_TOKEN, TokenAuthenticator


@pytest.fixture
def firebase():
    """Firebase app bootstrap and token verification, both patched."""
    with (
        patch("gictor.services.authentication.get_firebase_app"),
        patch("gictor.services.authentication.firebase_auth.verify_id_token") as verify,
    ):
        yield verify


class TestDevMode:
    @pytest.mark.asyncio
    async def test_dev_token_resolves_dev_user(self, session_maker, ledger, settings):
        authenticator = TokenAuthenticator(session_maker, ledger, settings.model_copy(update={"dev_mode": True}))

        first = await authenticator.authenticate(DEV_TOKEN)
        second = await authenticator.authenticate(None)

        assert first.user_id == second.user_id
        assert first.email == "dev@example.com"

    @pytest.mark.asyncio
    async def test_dev_token_rejected_outside_dev_mode(self, session_maker, ledger, settings, firebase):
        firebase.side_effect = firebase_auth.InvalidIdTokenError("Malformed token")
        authenticator = TokenAuthenticator(session_maker, ledger, settings)

        with pytest.raises(UnauthenticatedError):
            await authenticator.authenticate(DEV_TOKEN)


class TestFirebaseTokens:
    @pytest.mark.asyncio
    async def test_missing_token(self, session_maker, ledger, settings):
        authenticator = TokenAuthenticator(session_maker, ledger, settings)

        with pytest.raises(UnauthenticatedError):
            await authenticator.authenticate(None)

    @pytest.mark.asyncio
    async def test_invalid_token(self, session_maker, ledger, settings, firebase):
        firebase.side_effect = ValueError("Illegal ID token")
        authenticator = TokenAuthenticator(session_maker, ledger, settings)

        with pytest.raises(UnauthenticatedError):
            await authenticator.authenticate("garbage")

    @pytest.mark.asyncio
    async def test_first_sign_in_opens_account(self, session_maker, ledger, settings, firebase, fetch):
        firebase.return_value = {"uid": "firebase-uid-1", "email": "maker@example.com"}
        authenticator = TokenAuthenticator(session_maker, ledger, settings)

        principal = await authenticator.authenticate("valid-token")

        assert principal.email == "maker@example.com"
        assert await ledger.get_balance(principal.user_id) == Decimal("10.00")
        grants = await fetch.transactions(principal.user_id, TRANSACTION_GRANT)
        assert len(grants) == 1

    @pytest.mark.asyncio
    async def test_returning_user_keeps_balance(self, session_maker, ledger, settings, firebase, fetch):
        firebase.return_value = {"uid": "firebase-uid-1", "email": "maker@example.com"}
        authenticator = TokenAuthenticator(session_maker, ledger, settings)

        principal = await authenticator.authenticate("valid-token")
        await ledger.reserve(principal.user_id, Decimal("1.00"), "req-1")
        again = await authenticator.authenticate("valid-token")

        assert again.user_id == principal.user_id
        assert await ledger.get_balance(principal.user_id) == Decimal("9.00")
        assert len(await fetch.transactions(principal.user_id, TRANSACTION_GRANT)) == 1
