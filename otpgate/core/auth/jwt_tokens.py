"""JWT token creation and verification."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple, cast

import jwt
from jwt.exceptions import InvalidTokenError as JWTError
from loguru import logger

from otpgate.core.config.settings import get_settings
from otpgate.core.exceptions import AuthenticationError, ConfigurationError

# Supported JWT algorithms whitelist (shared-secret only)
SUPPORTED_JWT_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})


def _signing_params() -> Tuple[str, str, int]:
    settings = get_settings()
    algorithm = settings.jwt_algorithm
    if algorithm not in SUPPORTED_JWT_ALGORITHMS:
        raise ValueError(
            f"Unsupported JWT algorithm: {algorithm}. "
            f"Supported algorithms: {', '.join(sorted(SUPPORTED_JWT_ALGORITHMS))}"
        )
    if settings.api_secret_key is None:
        raise ConfigurationError("API_SECRET_KEY is not configured")
    return settings.api_secret_key.get_secret_value(), algorithm, settings.jwt_expiry_hours


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create JWT access token.

    Args:
        data: Claims to encode (tenant id as ``sub``, username, role)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token
    """
    secret_key, algorithm, expire_hours = _signing_params()

    to_encode = data.copy()
    iat = datetime.now(timezone.utc)
    expire = iat + (expires_delta or timedelta(hours=expire_hours))
    to_encode.update({"exp": expire, "iat": iat, "jti": str(uuid.uuid4()), "type": "access"})

    return str(jwt.encode(to_encode, secret_key, algorithm=algorithm))


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode JWT token.

    Args:
        token: JWT token to verify

    Returns:
        Decoded token payload

    Raises:
        AuthenticationError: If token is invalid, expired, or lacks a subject
    """
    secret_key, algorithm, _ = _signing_params()
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as e:
        logger.debug(f"Token verification failed: {e}")
        raise AuthenticationError("Could not validate credentials")

    if payload.get("type") != "access" or "sub" not in payload:
        raise AuthenticationError("Could not validate credentials")
    return cast(Dict[str, Any], payload)
