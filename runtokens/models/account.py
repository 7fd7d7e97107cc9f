from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class RunTokenAccount(Document):
    """One balance row per user; mutated only through conditional updates."""
    user_id: Indexed(str, unique=True)
    balance: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "run_token_accounts"
