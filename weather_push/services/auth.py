"""Authentication gate: JWT verification and issuance."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import ExpiredSignatureError, JWTError, jwt

from weather_push.config import get_settings
from weather_push.services.errors import ExpiredToken, MalformedToken, MissingConfiguration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthClaims:
    """Caller identity decoded from a verified token."""

    user_id: str
    username: str | None
    issued_at: datetime | None
    expires_at: datetime | None


def _timestamp(value: object) -> datetime | None:
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value, UTC)
    return None


class AuthGate:
    """Verifies signed bearer tokens against a single shared secret."""

    def __init__(self, secret: str | None = None, algorithm: str | None = None) -> None:
        settings = get_settings()
        self.secret = secret if secret is not None else settings.jwt_secret
        self.algorithm = algorithm or settings.jwt_algorithm

    def verify(self, token: str | None) -> AuthClaims:
        """Verify a token and return its claims.

        Raises:
            MissingConfiguration: No verification secret is configured
            ExpiredToken: The token's ``exp`` has passed
            MalformedToken: Any other verification failure
        """
        if not self.secret:
            logger.error("JWT secret is not configured")
            raise MissingConfiguration("Token verification is not configured")
        if not token:
            raise MalformedToken("Token is required")

        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            logger.info("Token verification failed: token has expired")
            raise ExpiredToken("Token has expired") from e
        except JWTError as e:
            logger.info(f"Token verification failed: {e}")
            raise MalformedToken("Invalid token") from e

        user_id = payload.get("userId")
        if user_id is None or str(user_id) == "":
            raise MalformedToken("Token is missing the userId claim")

        claims = AuthClaims(
            user_id=str(user_id),
            username=payload.get("username"),
            issued_at=_timestamp(payload.get("iat")),
            expires_at=_timestamp(payload.get("exp")),
        )
        logger.debug(f"Token verified for user {claims.user_id}")
        return claims


def create_access_token(
    user_id: str,
    username: str,
    secret: str | None = None,
    expires_in: timedelta | None = None,
) -> str:
    """Create a JWT access token carrying ``userId`` and ``username``."""
    settings = get_settings()
    signing_secret = secret if secret is not None else settings.jwt_secret
    if not signing_secret:
        raise MissingConfiguration("JWT_SECRET is not configured")

    now = datetime.now(UTC)
    lifetime = expires_in if expires_in is not None else timedelta(
        minutes=settings.jwt_expiration_minutes
    )
    to_encode = {
        "userId": str(user_id),
        "username": username,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(to_encode, signing_secret, algorithm=settings.jwt_algorithm)
