from runtokens.models.account import RunTokenAccount
from runtokens.models.redeem_code import RedeemCode

__all__ = [
    "RunTokenAccount",
    "RedeemCode",
]
