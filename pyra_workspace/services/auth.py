"""Bearer JWT verification for the admin API.

Tokens are issued elsewhere (the dashboard login); this module only signs
tokens for tooling and tests and verifies the ones it receives.
"""

import logging
import os
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from authlib.jose import JoseError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

# HTTP Bearer token
security = HTTPBearer(auto_error=False)

JWT_SECRET_ENV = "PYRA_JWT_SECRET"
JWT_ALGORITHM = "HS256"
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = 24 * 60  # 24 hours
ADMIN_ROLE = "admin"


def _load_secret_key() -> str:
    """Shared secret from the environment, else a per-process random key.

    A generated key does not survive restarts, so every issued token
    becomes invalid when the process exits.
    """
    secret_key = os.getenv(JWT_SECRET_ENV, "").strip()
    if secret_key:
        return secret_key
    logger.warning(f"{JWT_SECRET_ENV} not set, using a temporary in-memory signing key")
    return secrets.token_urlsafe(32)


_SECRET_KEY = _load_secret_key()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode.update({"exp": int(expire.timestamp()), "iat": int(now.timestamp())})
    header = {"alg": JWT_ALGORITHM}
    encoded_jwt = jwt.encode(header, to_encode, _SECRET_KEY)
    return encoded_jwt.decode("utf-8") if isinstance(encoded_jwt, bytes) else encoded_jwt


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token.

    Returns:
        Decoded token payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="غير مصرح",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, _SECRET_KEY)
    except (JoseError, ValueError) as e:
        logger.warning(f"JWT decode error: {e}")
        raise credentials_exception

    # authlib does not check expiry on decode
    exp = payload.get("exp")
    if exp is not None and exp < time.time():
        logger.warning("JWT token has expired")
        raise credentials_exception

    return dict(payload)


async def require_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """Authenticated admin for the current request.

    Returns:
        ``{"username", "display_name", "role"}``

    Raises:
        HTTPException 401: Missing, invalid or expired token
        HTTPException 403: Token does not carry the admin role
    """
    if not credentials or not credentials.credentials:
        logger.warning(f"No credentials provided - {request.method} {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="غير مصرح",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    username = payload.get("username") or payload.get("sub")
    if not username:
        logger.warning("Token missing username")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="غير مصرح",
            headers={"WWW-Authenticate": "Bearer"},
        )

    role = payload.get("role")
    if role != ADMIN_ROLE:
        logger.warning(f"User {username} with role {role} denied admin access")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="هذه العملية للمسؤولين فقط")

    return {
        "username": username,
        "display_name": payload.get("display_name") or username,
        "role": role,
    }
