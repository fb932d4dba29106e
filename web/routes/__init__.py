"""Routes package for the OTP Gateway web application."""

from .api import router as api_router
from .auth import router as auth_router
from .health import router as health_router
from .session import router as session_router

__all__ = [
    "api_router",
    "auth_router",
    "health_router",
    "session_router",
]
