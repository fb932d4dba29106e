"""Security headers middleware for the OTP Gateway web application."""

from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

# JSON API only; nothing is ever rendered in a browser frame
_CSP = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    def __init__(self, app, strict_transport: Optional[bool] = None):
        super().__init__(app)
        if strict_transport is None:
            from otpgate.core.config.settings import get_settings

            strict_transport = get_settings().is_production()
        self.strict_transport = strict_transport

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Content-Security-Policy"] = _CSP
        if self.strict_transport:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
