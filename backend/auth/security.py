"""
Password hashing and access tokens.

This is the identity side of the application: it proves who is calling and
hands the user id to the core. Whether that user may do something is decided
in ``auth.permissions``.
"""

import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")
DEFAULT_TOKEN_MINUTES = 60

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def is_production_like() -> bool:
    return os.environ.get("ENVIRONMENT", "development").lower() in ("production", "staging")


def _load_secret_key() -> str:
    key = os.environ.get("JWT_SECRET_KEY")
    if key:
        return key
    if is_production_like():
        raise ValueError("JWT_SECRET_KEY must be set when ENVIRONMENT is production or staging")
    logger.warning("JWT_SECRET_KEY not set; tokens are signed with a throwaway key and die on restart")
    return "dev-" + secrets.token_urlsafe(32)


def _load_algorithm() -> str:
    algorithm = os.environ.get("JWT_ALGORITHM", "HS256")
    if algorithm not in SUPPORTED_ALGORITHMS:
        logger.warning(f"JWT_ALGORITHM={algorithm} not in {SUPPORTED_ALGORITHMS}, falling back to HS256")
        return "HS256"
    return algorithm


def _load_token_minutes() -> int:
    raw = os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(DEFAULT_TOKEN_MINUTES))
    try:
        minutes = int(raw)
    except ValueError:
        logger.warning(f"ACCESS_TOKEN_EXPIRE_MINUTES='{raw}' is not a number, using {DEFAULT_TOKEN_MINUTES}")
        return DEFAULT_TOKEN_MINUTES
    if not 1 <= minutes <= 1440:
        logger.warning(f"ACCESS_TOKEN_EXPIRE_MINUTES={minutes} outside 1-1440, using {DEFAULT_TOKEN_MINUTES}")
        return DEFAULT_TOKEN_MINUTES
    return minutes


SECRET_KEY = _load_secret_key()
ALGORITHM = _load_algorithm()
ACCESS_TOKEN_EXPIRE_MINUTES = _load_token_minutes()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign an access token for ``data`` (which carries the user id as ``sub``).

    The token is stamped with ``type="access"`` and expires after
    ``expires_delta`` or ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {**data, "exp": expire, "type": "access"}
    logger.debug(f"Issuing access token for sub={data.get('sub')} until {expire}")
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the token's claims, or None when the signature or expiry check fails."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected token: {e}")
        return None
