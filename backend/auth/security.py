"""
Credentials for the tracker: Argon2id password hashes and signed access tokens.

Tokens are HS-family JWTs whose `sub` is the user id. They carry
`"type": "access"` so dependencies can refuse anything else presented as
a bearer credential.
"""

import logging
import secrets
import os
from datetime import timedelta
from typing import Optional, Dict, Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from time_utils import utc_now

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")
DEFAULT_EXPIRE_MINUTES = 60
MAX_EXPIRE_MINUTES = 24 * 60


def is_production_like() -> bool:
    """True when ENVIRONMENT is production or staging."""
    return os.environ.get("ENVIRONMENT", "development").lower() in ("production", "staging")


def _load_secret_key() -> str:
    key = os.environ.get("JWT_SECRET_KEY")
    if key:
        return key
    if is_production_like():
        raise ValueError(
            "JWT_SECRET_KEY must be set when ENVIRONMENT is production or staging"
        )
    logger.warning("JWT_SECRET_KEY not set; signing with a per-process key, tokens die with the process")
    return "dev-" + secrets.token_urlsafe(32)


def _load_algorithm() -> str:
    algorithm = os.environ.get("JWT_ALGORITHM", "HS256")
    if algorithm not in SUPPORTED_ALGORITHMS:
        logger.warning(f"JWT_ALGORITHM={algorithm} not one of {', '.join(SUPPORTED_ALGORITHMS)}; using HS256")
        return "HS256"
    return algorithm


def _load_expire_minutes() -> int:
    raw = os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(DEFAULT_EXPIRE_MINUTES))
    try:
        minutes = int(raw)
    except ValueError:
        logger.warning(f"ACCESS_TOKEN_EXPIRE_MINUTES={raw!r} is not an integer; using {DEFAULT_EXPIRE_MINUTES}")
        return DEFAULT_EXPIRE_MINUTES
    if not 1 <= minutes <= MAX_EXPIRE_MINUTES:
        logger.warning(
            f"ACCESS_TOKEN_EXPIRE_MINUTES={minutes} outside 1-{MAX_EXPIRE_MINUTES}; using {DEFAULT_EXPIRE_MINUTES}"
        )
        return DEFAULT_EXPIRE_MINUTES
    return minutes


pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

SECRET_KEY = _load_secret_key()
ALGORITHM = _load_algorithm()
ACCESS_TOKEN_EXPIRE_MINUTES = _load_expire_minutes()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign an access token.

    Args:
        data: claims to embed; `sub` must be the user id as a string
        expires_delta: lifetime, ACCESS_TOKEN_EXPIRE_MINUTES when omitted

    Example:
        >>> token = create_access_token({"sub": "1", "role": "admin"})
    """
    lifetime = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = dict(data, exp=utc_now() + lifetime, type="access")
    logger.debug(f"Issuing access token for user {data.get('sub')}")
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def create_token_for_user(user) -> str:
    """Issue an access token carrying the user's id, role and email."""
    role = user.role.value if hasattr(user.role, "value") else user.role
    return create_access_token({"sub": str(user.id), "role": role, "email": user.email})


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Decoded claims of a valid, unexpired token; None otherwise."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected token: {e}")
        return None
