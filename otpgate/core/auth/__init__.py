"""JWT-based tenant authentication."""

from .jwt_tokens import SUPPORTED_JWT_ALGORITHMS, create_access_token, verify_token
from .password import (
    MAX_PASSWORD_BYTES,
    check_credentials,
    hash_password,
    pwd_context,
    validate_password_length,
    verify_password,
)

__all__ = [
    "SUPPORTED_JWT_ALGORITHMS",
    "create_access_token",
    "verify_token",
    "MAX_PASSWORD_BYTES",
    "check_credentials",
    "hash_password",
    "pwd_context",
    "validate_password_length",
    "verify_password",
]
