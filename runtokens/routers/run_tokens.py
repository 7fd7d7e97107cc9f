from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from runtokens.core.exceptions import InvalidRequestError
from runtokens.deps import get_ledger
from runtokens.services.ledger import LedgerService

router = APIRouter()

ACTIONS = ("get", "consume", "refund", "redeem")


class RunTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    user_id: str | None = Field(default=None, alias="userId")
    code: str | None = None


class RunTokenResponse(BaseModel):
    success: Literal[True] = True
    balance: int
    granted_amount: int | None = None
    message: str | None = None


@router.post("", response_model=RunTokenResponse, response_model_exclude_none=True)
async def run_tokens(body: RunTokenRequest, ledger: LedgerService = Depends(get_ledger)):
    """Dispatch get / consume / refund / redeem for one user."""
    if body.action == "get":
        result = await ledger.get(body.user_id)
    elif body.action == "consume":
        result = await ledger.consume(body.user_id)
    elif body.action == "refund":
        result = await ledger.refund(body.user_id)
    elif body.action == "redeem":
        result = await ledger.redeem(body.user_id, body.code)
    else:
        raise InvalidRequestError("Unknown action", details={"allowed": list(ACTIONS)})
    if not result.success:
        raise result.to_error()
    return RunTokenResponse(
        balance=result.balance,
        granted_amount=result.granted_amount,
        message=result.message,
    )
