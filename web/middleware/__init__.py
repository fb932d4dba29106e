"""Middleware package for the OTP Gateway web application."""

from .correlation import CorrelationMiddleware
from .security_headers import SecurityHeadersMiddleware

__all__ = ["CorrelationMiddleware", "SecurityHeadersMiddleware"]
