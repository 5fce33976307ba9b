from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import jwt
import structlog

from missiontrack.config import Config
from missiontrack.core.modules.token.models import TOKEN_LIFETIMES, TokenKind, TokenPair, TokenPayload, UserId
from missiontrack.errors import (
    ConfigurationError,
    InvalidSignatureError,
    MalformedTokenError,
    TokenError,
    TokenExpiredError,
    ValidationError,
)
from missiontrack.utils import now

logger = structlog.get_logger(__name__)

JWT_ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["sub", "jti", "exp"]


@dataclass(frozen=True, repr=False)
class TokenSecrets:
    """Signing secrets, one per token kind. Both are mandatory."""

    access_secret: str
    refresh_secret: str

    def __post_init__(self) -> None:
        if not isinstance(self.access_secret, str) or not self.access_secret:
            raise ConfigurationError("Missing JWT_ACCESS_SECRET")
        if not isinstance(self.refresh_secret, str) or not self.refresh_secret:
            raise ConfigurationError("Missing JWT_REFRESH_SECRET")

    def __repr__(self) -> str:
        return "TokenSecrets(access_secret=***, refresh_secret=***)"

    @classmethod
    def from_config(cls, config: Config) -> "TokenSecrets":
        return cls(access_secret=config.jwt_access_secret, refresh_secret=config.jwt_refresh_secret)

    def for_kind(self, kind: TokenKind) -> str:
        return self.access_secret if kind == TokenKind.ACCESS else self.refresh_secret


class TokenService:
    """Issues and verifies stateless JWT access and refresh tokens.

    Nothing is persisted: a token's validity is its signature plus the
    wall-clock comparison against ``exp``. Each token carries a fresh
    ``jti`` so a revocation list can be keyed on it later.
    """

    def __init__(self, secrets: TokenSecrets, clock: Callable[[], datetime] = now) -> None:
        self._secrets = secrets
        self._clock = clock

    def issue_access(self, user_id: str) -> str:
        """Issue a 15 minute access token."""
        return self._issue(user_id, TokenKind.ACCESS)

    def issue_refresh(self, user_id: str) -> str:
        """Issue a 30 day refresh token."""
        return self._issue(user_id, TokenKind.REFRESH)

    def issue_pair(self, user_id: str) -> TokenPair:
        return TokenPair(access_token=self.issue_access(user_id), refresh_token=self.issue_refresh(user_id))

    def verify_access(self, token: str) -> TokenPayload:
        return self._verify(token, TokenKind.ACCESS)

    def verify_refresh(self, token: str) -> TokenPayload:
        return self._verify(token, TokenKind.REFRESH)

    def rotate(self, refresh_token: str) -> TokenPair:
        """Exchange a valid refresh token for a new access/refresh pair."""
        payload = self.verify_refresh(refresh_token)
        logger.info("token_rotated", user_id=payload.subject, old_token_id=payload.token_id)
        return self.issue_pair(payload.subject)

    def _issue(self, user_id: str, kind: TokenKind) -> str:
        if not isinstance(user_id, str) or not user_id:
            raise ValidationError("User ID is required")

        issued_at = self._clock()
        token_id = uuid4().hex
        claims: dict[str, Any] = {
            "sub": user_id,
            "jti": token_id,
            "iat": issued_at,
            "exp": issued_at + TOKEN_LIFETIMES[kind],
        }
        token = jwt.encode(claims, self._secrets.for_kind(kind), algorithm=JWT_ALGORITHM)
        logger.debug("token_issued", kind=kind, user_id=user_id, token_id=token_id)
        return token

    def _verify(self, token: str, kind: TokenKind) -> TokenPayload:
        error: TokenError
        try:
            claims = jwt.decode(
                token,
                self._secrets.for_kind(kind),
                algorithms=[JWT_ALGORITHM],
                # Expiry is checked against the service clock below
                options={"require": REQUIRED_CLAIMS, "verify_exp": False, "verify_iat": False},
            )
            payload = self._to_payload(claims, kind)
        except jwt.InvalidSignatureError:
            error = InvalidSignatureError()
        except (jwt.InvalidTokenError, MalformedTokenError, OverflowError, ValueError, OSError):
            error = MalformedTokenError()
        else:
            if self._clock() < payload.expires_at:
                return payload
            error = TokenExpiredError()

        logger.info("token_rejected", kind=kind, reason=error.reason)
        raise error

    @staticmethod
    def _to_payload(claims: dict[str, Any], kind: TokenKind) -> TokenPayload:
        subject, token_id, expires = claims["sub"], claims["jti"], claims["exp"]
        if not isinstance(subject, str) or not subject or not isinstance(token_id, str) or not token_id:
            raise MalformedTokenError
        if isinstance(expires, bool) or not isinstance(expires, int | float):
            raise MalformedTokenError
        issued_at = claims.get("iat")
        return TokenPayload(
            subject=UserId(subject),
            token_id=token_id,
            kind=kind,
            issued_at=datetime.fromtimestamp(issued_at, UTC) if isinstance(issued_at, int | float) else None,
            expires_at=datetime.fromtimestamp(expires, UTC),
        )
