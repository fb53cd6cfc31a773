from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class CreditBalanceResponse(BaseModel):
    balance: float


class CreditTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: float
    transaction_type: str
    description: str | None
    reference_id: str | None
    created_at: datetime
