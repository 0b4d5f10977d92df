"""Principal balance routes.

Routes:
    GET    /api/v1/accounts/{principal}         — Current balance
    POST   /api/v1/accounts/{principal}/credit  — Fund a principal (development only)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_custody.api.deps import get_app_settings, get_db_session
from crystal_custody.config import Settings
from crystal_custody.infrastructure.database.engine import run_unit_of_work
from crystal_custody.logging_config import get_logger
from crystal_custody.schemas.custody import BalanceResponse, CreditRequest
from crystal_custody.services.transfer_service import LedgerTransferService

router = APIRouter(prefix="/api/v1/accounts", tags=["Accounts"])
logger = get_logger(__name__)


@router.get(
    "/{principal}",
    response_model=BalanceResponse,
    summary="Get a principal's balance",
)
async def get_balance(
    principal: str,
    session: AsyncSession = Depends(get_db_session),
) -> BalanceResponse:
    balance = await LedgerTransferService(session).balance_of(principal)
    return BalanceResponse(principal=principal, balance=balance)


@router.post(
    "/{principal}/credit",
    response_model=BalanceResponse,
    summary="Credit a principal (development only)",
)
async def credit(
    principal: str,
    request: CreditRequest,
    settings: Settings = Depends(get_app_settings),
) -> BalanceResponse:
    """Mint energy into a principal's balance so it can fund crystals."""
    if not settings.is_development:
        raise HTTPException(status_code=404, detail="Not Found")
    if principal == settings.custody_account:
        raise HTTPException(status_code=400, detail="The custody account cannot be credited directly")

    balance = await run_unit_of_work(
        lambda session: LedgerTransferService(session).credit(principal, request.amount)
    )
    return BalanceResponse(principal=principal, balance=balance)
