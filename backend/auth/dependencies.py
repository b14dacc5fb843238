"""
FastAPI dependencies for authentication.

Resolves the actor for every core operation from a JWT carried either as
an `Authorization: Bearer <token>` header or an `x-auth-token` header.
Missing or invalid credentials produce a 401 here, before any core
operation runs; authorization is left to auth.permissions.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from models import User
from auth.security import verify_token

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def resolve_user(token: str, db: Session) -> User:
    """
    Decode a token and load the user it names.

    Raises:
        HTTPException: 401 if the token is invalid, of the wrong type,
            malformed, or names a user that no longer exists
    """
    payload = verify_token(token)
    if payload is None:
        raise _unauthorized("Invalid or expired token")

    token_type = payload.get("type")
    if token_type != "access":
        logger.info(f"Invalid token type: {token_type}")
        raise _unauthorized("Invalid token type. Use access token for API requests.")

    user_id = payload.get("sub")
    if user_id is None:
        logger.info("Token payload missing 'sub' claim")
        raise _unauthorized("Invalid token payload")

    # Malformed tokens should return 401, not 500
    try:
        user_id_int = int(user_id)
    except (TypeError, ValueError):
        logger.info(f"Invalid user_id format in token: {user_id}")
        raise _unauthorized("Invalid token format")

    user = db.query(User).filter(User.id == user_id_int).first()
    if user is None:
        logger.info(f"User not found for id: {user_id}")
        raise _unauthorized("User not found")

    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_auth_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    """
    Extract and validate the current user.

    The Bearer header wins when both are present.

    Example:
        @app.get("/api/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}
    """
    if credentials and credentials.credentials:
        token = credentials.credentials
    elif x_auth_token:
        token = x_auth_token
    else:
        logger.info("No authentication credentials provided")
        raise _unauthorized("Not authenticated")

    user = resolve_user(token, db)
    logger.debug(f"User authenticated: {user.email}")
    return user
