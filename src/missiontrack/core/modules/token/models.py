"""Signed credential models."""

from datetime import datetime, timedelta
from enum import StrEnum
from typing import NewType

from pydantic import BaseModel, Field

UserId = NewType("UserId", str)


class TokenKind(StrEnum):
    """Token kinds; each kind has its own secret and lifetime."""

    ACCESS = "access"
    REFRESH = "refresh"


TOKEN_LIFETIMES: dict[TokenKind, timedelta] = {
    TokenKind.ACCESS: timedelta(minutes=15),
    TokenKind.REFRESH: timedelta(days=30),
}


class TokenPayload(BaseModel):
    """Claims of a token that passed verification.

    Only produced by TokenService.verify_*; never build one from unverified input.
    """

    subject: UserId = Field(..., description="User ID the token was issued to")
    token_id: str = Field(..., description="Unique per issuance, usable as a revocation key")
    kind: TokenKind
    issued_at: datetime | None = None
    expires_at: datetime


class TokenPair(BaseModel):
    """Access and refresh tokens issued together."""

    access_token: str
    refresh_token: str
