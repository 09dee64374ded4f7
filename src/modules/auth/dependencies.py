"""JWT authentication dependency for FastAPI.

Validates Bearer tokens from the Authorization header, resolves the token
subject to an active ``users`` row and returns it as an ``Actor``.
"""

import logging
import uuid

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database.session import get_db
from src.exceptions import UnauthorizedException
from src.models.user import User
from src.modules.auth.actor import Actor

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def _decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises UnauthorizedException on failure."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise UnauthorizedException("Invalid or expired token") from exc


async def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """FastAPI dependency resolving the bearer token to an Actor.

    The token ``sub`` claim is the identity-provider user id, matched against
    ``users.auth_user_id``. Contacts without a login can never authenticate.
    """
    if credentials is None:
        raise UnauthorizedException("Authentication required")

    payload = _decode_token(credentials.credentials)
    try:
        auth_user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError) as exc:
        raise UnauthorizedException("Token is missing required claims") from exc

    result = await db.execute(
        select(User).where(User.auth_user_id == auth_user_id, User.is_active.is_(True))
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise UnauthorizedException("Unknown or inactive user")

    actor = Actor.from_user(user)
    request.state.actor = actor
    return actor
