"""
Travel Booking Backend — Access Token Verification
====================================================

What:  Turns a bearer JWT into an `Actor` (user id, email, role).
How:   python-jose verifies signature, expiry, issuer and audience. The
       token issuer (auth service) signs with the shared JWT_SECRET and the
       claims {userId, email, role}.
Who:   Route dependencies `get_current_actor` and `require_admin`.

Token claims:
    {
        "userId": "5f0c...uuid",
        "email": "ada@example.com",
        "role": "user" | "admin",
        "iss": "travel-app",
        "aud": "travel-app-users",
        "exp": 1718000000
    }
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from app.config import settings
from app.exceptions import AuthenticationError, PermissionDeniedError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a booking operation."""

    user_id: uuid.UUID
    email: str = ""
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def create_access_token(
    user_id: uuid.UUID,
    email: str,
    role: str = "user",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Sign an access token the way the auth service does.

    Used by local tooling and the test suite; production tokens come from
    the external issuer.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expires_minutes))
    payload: Dict[str, Any] = {
        "userId": str(user_id),
        "email": email,
        "role": role,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Actor:
    """
    Verify `token` and build the Actor it names.

    Raises:
        AuthenticationError: bad signature, expired, wrong issuer/audience,
            or a userId claim that is not a UUID
    """
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except ExpiredSignatureError:
        raise AuthenticationError("Access token has expired")
    except JWTError as e:
        logger.info("Rejected access token: %s", e)
        raise AuthenticationError("Invalid access token")

    try:
        user_id = uuid.UUID(str(claims.get("userId")))
    except ValueError:
        raise AuthenticationError("Invalid access token")

    return Actor(
        user_id=user_id,
        email=claims.get("email", ""),
        role=claims.get("role", "user"),
    )


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    return decode_access_token(credentials.credentials)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise PermissionDeniedError("Admin access required")
    return actor
