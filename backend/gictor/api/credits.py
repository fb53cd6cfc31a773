from typing import Annotated

from fastapi import APIRouter, Query

from gictor.api.deps import CurrentPrincipal, LedgerDep
from gictor.schemas.credit import CreditBalanceResponse, CreditTransactionResponse

router = APIRouter()


@router.get("", response_model=CreditBalanceResponse)
async def get_balance(principal: CurrentPrincipal, ledger: LedgerDep) -> CreditBalanceResponse:
    balance = await ledger.get_balance(principal.user_id)
    return CreditBalanceResponse(balance=float(balance))


@router.get("/transactions", response_model=list[CreditTransactionResponse])
async def list_transactions(
    principal: CurrentPrincipal,
    ledger: LedgerDep,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[CreditTransactionResponse]:
    """Ledger rows of the caller, newest first."""
    rows = await ledger.list_transactions(principal.user_id, limit=limit, offset=offset)
    return [CreditTransactionResponse.model_validate(row) for row in rows]
