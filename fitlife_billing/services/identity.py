"""Identity-provider token verification."""

import logging
from dataclasses import dataclass

from jose import JWTError, jwt

from fitlife_billing.config import settings
from fitlife_billing.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerIdentity:
    account_id: str
    email: str | None = None


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip() or None
    return None


def verify_id_token(token: str) -> CallerIdentity:
    """Decode and verify an identity-provider JWT.

    ``aud`` and ``iss`` are checked only when configured.
    """
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured; rejecting bearer token")
        raise AuthenticationError("Invalid token")
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
    except JWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise AuthenticationError("Invalid token") from exc
    account_id = payload.get("sub") or payload.get("uid")
    if not account_id:
        raise AuthenticationError("Invalid token")
    email = payload.get("email")
    return CallerIdentity(account_id=str(account_id), email=str(email) if email else None)
