"""Credit Ledger: per-user balances with an append-only transaction log.

Every balance change is paired with exactly one CreditTransaction row in the
same database transaction, so the balance always equals the signed sum of the
user's ledger rows.

Each operation takes an optional `session`. When given, the operation joins
the caller's transaction (the dispatch gateway reserves credit and creates
the request record atomically this way); otherwise it commits on its own.
"""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gictor.exceptions import CreditAccountNotFoundError, StorageError
from gictor.models.base import utcnow
from gictor.models.credit import (
    TRANSACTION_GRANT,
    TRANSACTION_PURCHASE,
    TRANSACTION_REFUND,
    TRANSACTION_USAGE,
    CreditAccount,
    CreditTransaction,
)
from gictor.models.database import session_scope

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class ReservationResult:
    """Outcome of a reservation. Insufficient credit is a result, not an error."""

    reserved: bool
    balance: Decimal  # balance after the debit, or the unchanged available balance


def _to_amount(value: Decimal | float | int | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


class CreditLedger:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_balance(self, user_id: uuid.UUID, session: AsyncSession | None = None) -> Decimal:
        """Current balance; zero for a user without an account."""
        try:
            async with session_scope(self._session_maker, session) as db:
                return await self._balance(db, user_id)
        except SQLAlchemyError as e:
            logger.exception(f"Failed to read balance for user {user_id}")
            raise StorageError(f"Failed to read credit balance: {e}") from e

    async def list_transactions(
        self,
        user_id: uuid.UUID,
        *,
        limit: int = 50,
        offset: int = 0,
        session: AsyncSession | None = None,
    ) -> Sequence[CreditTransaction]:
        try:
            async with session_scope(self._session_maker, session) as db:
                result = await db.execute(
                    select(CreditTransaction)
                    .where(CreditTransaction.user_id == user_id)
                    .order_by(CreditTransaction.created_at.desc())
                    .limit(limit)
                    .offset(offset)
                )
                return result.scalars().all()
        except SQLAlchemyError as e:
            logger.exception(f"Failed to list credit transactions for user {user_id}")
            raise StorageError(f"Failed to list credit transactions: {e}") from e

    # =========================================================================
    # Mutations
    # =========================================================================

    async def open_account(
        self,
        user_id: uuid.UUID,
        initial_credits: Decimal,
        session: AsyncSession | None = None,
    ) -> CreditAccount:
        """Create the user's account holding `initial_credits` (no-op if it exists)."""
        initial = _to_amount(initial_credits)
        try:
            async with session_scope(self._session_maker, session) as db:
                account = await db.get(CreditAccount, user_id)
                if account is not None:
                    return account

                account = CreditAccount(user_id=user_id, balance=initial)
                db.add(account)
                if initial > 0:
                    db.add(
                        CreditTransaction(
                            user_id=user_id,
                            amount=initial,
                            transaction_type=TRANSACTION_GRANT,
                            description="Initial credits",
                            reference_id=f"account:{user_id}",
                        )
                    )
                await db.flush()
                logger.info(f"Opened credit account for user {user_id} with {initial} credits")
                return account
        except SQLAlchemyError as e:
            logger.exception(f"Failed to open credit account for user {user_id}")
            raise StorageError(f"Failed to open credit account: {e}") from e

    async def reserve(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        reference_id: str,
        *,
        description: str | None = None,
        session: AsyncSession | None = None,
    ) -> ReservationResult:
        """Atomically debit `amount` if the balance covers it.

        The check and the debit are a single conditional UPDATE, so concurrent
        reservations can never overdraw the account.
        """
        amount = _to_amount(amount)
        if amount <= 0:
            raise ValueError(f"Reservation amount must be positive, got {amount}")

        try:
            async with session_scope(self._session_maker, session) as db:
                result = await db.execute(
                    update(CreditAccount)
                    .where(CreditAccount.user_id == user_id, CreditAccount.balance >= amount)
                    .values(balance=CreditAccount.balance - amount, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    available = await self._balance(db, user_id)
                    logger.info(
                        f"Reservation refused for user {user_id}: required={amount} available={available}"
                    )
                    return ReservationResult(reserved=False, balance=available)

                db.add(
                    CreditTransaction(
                        user_id=user_id,
                        amount=-amount,
                        transaction_type=TRANSACTION_USAGE,
                        description=description,
                        reference_id=reference_id,
                    )
                )
                await db.flush()
                balance = await self._balance(db, user_id)
                logger.info(f"Reserved {amount} credits for {reference_id} (user {user_id}, balance {balance})")
                return ReservationResult(reserved=True, balance=balance)
        except IntegrityError as e:
            logger.warning(f"Duplicate usage row for {reference_id}: {e}")
            raise StorageError(f"Credit already reserved for {reference_id}") from e
        except SQLAlchemyError as e:
            logger.exception(f"Failed to reserve credits for {reference_id}")
            raise StorageError(f"Failed to reserve credits: {e}") from e

    async def refund(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        reference_id: str,
        *,
        description: str | None = None,
        session: AsyncSession | None = None,
    ) -> bool:
        """Return `amount` to the user, at most once per reference.

        Returns False (and changes nothing) when a refund for `reference_id`
        already exists.
        """
        return await self._credit(
            user_id,
            amount,
            reference_id,
            TRANSACTION_REFUND,
            description=description,
            session=session,
        )

    async def purchase(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        reference_id: str,
        *,
        description: str | None = None,
        session: AsyncSession | None = None,
    ) -> bool:
        """Add purchased credits, at most once per payment reference."""
        return await self._credit(
            user_id,
            amount,
            reference_id,
            TRANSACTION_PURCHASE,
            description=description,
            session=session,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    async def _balance(db: AsyncSession, user_id: uuid.UUID) -> Decimal:
        result = await db.execute(select(CreditAccount.balance).where(CreditAccount.user_id == user_id))
        balance = result.scalar_one_or_none()
        return _to_amount(balance) if balance is not None else Decimal("0.00")

    async def _credit(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        reference_id: str,
        transaction_type: str,
        *,
        description: str | None,
        session: AsyncSession | None,
    ) -> bool:
        amount = _to_amount(amount)
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        try:
            async with session_scope(self._session_maker, session) as db:
                existing = await db.execute(
                    select(CreditTransaction.id).where(
                        CreditTransaction.reference_id == reference_id,
                        CreditTransaction.transaction_type == transaction_type,
                    )
                )
                if existing.scalar_one_or_none() is not None:
                    logger.info(f"Skipping duplicate {transaction_type} for {reference_id}")
                    return False

                result = await db.execute(
                    update(CreditAccount)
                    .where(CreditAccount.user_id == user_id)
                    .values(balance=CreditAccount.balance + amount, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise CreditAccountNotFoundError(str(user_id))

                db.add(
                    CreditTransaction(
                        user_id=user_id,
                        amount=amount,
                        transaction_type=transaction_type,
                        description=description,
                        reference_id=reference_id,
                    )
                )
                await db.flush()
                logger.info(f"Credited {amount} ({transaction_type}) to user {user_id} for {reference_id}")
                return True
        except IntegrityError as e:
            # A concurrent writer recorded the same reference first; the caller
            # retries and then sees the existing row.
            logger.warning(f"Concurrent {transaction_type} for {reference_id}: {e}")
            raise StorageError(f"Concurrent {transaction_type} for {reference_id}") from e
        except SQLAlchemyError as e:
            logger.exception(f"Failed to record {transaction_type} for {reference_id}")
            raise StorageError(f"Failed to record {transaction_type}: {e}") from e
