from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class RedeemCode(Document):
    code: Indexed(str, unique=True)
    amount: int = Field(ge=1)
    used: bool = False
    used_by: str | None = None  # set together with used, never changed afterwards
    used_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "redeem_codes"
