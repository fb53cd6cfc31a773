import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gictor.models.base import Base, UUIDMixin, utcnow

# Ledger transaction types
TRANSACTION_USAGE = "usage"
TRANSACTION_REFUND = "refund"
TRANSACTION_PURCHASE = "purchase"
TRANSACTION_GRANT = "grant"


class CreditAccount(Base):
    """Credit balance of one user.

    The balance is only ever changed through CreditLedger, which pairs every
    mutation with exactly one CreditTransaction row.
    """

    __tablename__ = "credit_accounts"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="credit_account")  # noqa: F821

    def __repr__(self) -> str:
        return f"<CreditAccount {self.user_id} balance={self.balance}>"


class CreditTransaction(Base, UUIDMixin):
    """Append-only ledger row. Never updated, never deleted."""

    __tablename__ = "credit_transactions"
    # At most one row per (reference, type): one usage and one refund per request,
    # one purchase per checkout session.
    __table_args__ = (
        UniqueConstraint("reference_id", "transaction_type", name="uq_credit_transactions_reference_type"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Negative for usage, positive for refund/purchase/grant
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # GenerationRequest id for usage/refund, checkout session id for purchase
    reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<CreditTransaction {self.transaction_type} {self.amount} ref={self.reference_id}>"
