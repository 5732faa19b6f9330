import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from config import (
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES,
    JWT_ALGORITHM,
    JWT_AUDIENCE,
    JWT_ISSUER,
    JWT_SECRET_KEY,
)
from errors import AuthenticationError, InvalidTokenError, TokenExpiredError

logger = logging.getLogger("maapaap_api.auth")

BEARER_PREFIX = "Bearer "


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str  # user id
    email: str | None = None
    phone: str | None = None
    iat: datetime | None = None  # issued at
    exp: datetime | None = None  # expiration time
    jti: str | None = None


class AuthenticatedUser(BaseModel):
    """Identity attached to a request that passed the session check."""

    id: str
    email: str | None = None
    phone: str | None = None
    token: str


# Raw header; the "Bearer " prefix is matched case-sensitively below
authorization_header = APIKeyHeader(
    name="Authorization",
    auto_error=False,
    description="Bearer <token>",
)


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store and look up sessions."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_access_token(
    user_id: str,
    email: str | None,
    phone: str | None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: The user's id
        email: The user's email address, if any
        phone: The user's phone number, if any
        expires_delta: Custom expiration time (optional)

    Returns:
        Encoded JWT token string
    """
    now = datetime.now(timezone.utc)

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": user_id,
        "email": email,
        "phone": phone,
        "exp": expire,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "jti": str(uuid.uuid4()),
    }

    encoded_jwt = jwt.encode(to_encode, str(JWT_SECRET_KEY), algorithm=JWT_ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> TokenPayload:
    """
    Decode and validate a JWT token.

    Args:
        token: The JWT token string

    Returns:
        TokenPayload object with decoded claims

    Raises:
        TokenExpiredError: If the token is well formed but expired
        InvalidTokenError: If the token is malformed or the signature is wrong
    """
    try:
        payload = jwt.decode(
            token,
            str(JWT_SECRET_KEY),
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected bearer token: expired")
        raise TokenExpiredError("Invalid token")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise InvalidTokenError("Invalid token")
    return TokenPayload(**payload)


def extract_bearer_token(header_value: str | None) -> str | None:
    """Return the token from an exact ``Bearer <token>`` header, else None."""
    if not header_value or not header_value.startswith(BEARER_PREFIX):
        return None
    token = header_value[len(BEARER_PREFIX):]
    return token or None


async def require_session(
    request: Request,
    authorization: str | None = Depends(authorization_header),
) -> AuthenticatedUser:
    """
    Dependency that requires a validly signed token with a live session.

    The session is looked up by the digest of this exact token, so a revoked
    token is rejected even though its signature still verifies.

    Raises:
        AuthenticationError: If the header, token or session is not valid
    """
    token = extract_bearer_token(authorization)
    if token is None:
        raise AuthenticationError("No token provided")

    payload = decode_token(token)

    sessions = request.app.state.sessions
    if not await run_in_threadpool(sessions.is_live, payload.sub, token):
        logger.warning(f"Rejected bearer token: no live session for user_id={payload.sub}")
        raise AuthenticationError("Invalid or expired session")

    return AuthenticatedUser(
        id=payload.sub,
        email=payload.email,
        phone=payload.phone,
        token=token,
    )
