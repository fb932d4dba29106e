"""Password hashing and validation."""

from passlib.context import CryptContext

from otpgate.core.exceptions import AuthenticationError

# Bcrypt has a maximum password length of 72 bytes
MAX_PASSWORD_BYTES = 72

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def validate_password_length(password: str) -> None:
    """
    Validate password doesn't exceed bcrypt limit.

    Args:
        password: Password to validate

    Raises:
        ValueError: If password is empty or exceeds maximum byte length
    """
    if not password:
        raise ValueError("Password must not be empty")
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > MAX_PASSWORD_BYTES:
        raise ValueError(
            f"Password exceeds maximum length of {MAX_PASSWORD_BYTES} bytes. "
            f"Current length: {len(password_bytes)} bytes."
        )


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Hashed password
    """
    validate_password_length(password)
    return str(pwd_context.hash(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        True if password matches
    """
    if len(plain_password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bool(pwd_context.verify(plain_password, hashed_password))
    except ValueError:
        # Malformed stored hash
        return False


def check_credentials(plain_password: str, hashed_password: str) -> None:
    """
    Raise AuthenticationError unless the password matches.

    Args:
        plain_password: Submitted password
        hashed_password: Stored hash
    """
    if not verify_password(plain_password, hashed_password):
        raise AuthenticationError()
