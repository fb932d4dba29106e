"""Shared dependencies for the OTP Gateway web application."""

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request

from otpgate.core.auth import verify_token
from otpgate.core.enums import TenantRole
from otpgate.core.exceptions import AuthenticationError
from otpgate.repositories.tenant_repository import Tenant, TenantRepository
from otpgate.services.container import ServiceContainer
from otpgate.services.otp.service import OTPService
from otpgate.services.session.lifecycle import SessionLifecycleController


def extract_raw_token(request: Request) -> Optional[str]:
    """
    Extract raw JWT token from HttpOnly cookie or Authorization header.

    Args:
        request: FastAPI request object

    Returns:
        Optional[str]: Raw JWT token string, or None if not found
    """
    token = request.cookies.get("access_token")

    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]

    return token


def get_container(request: Request) -> ServiceContainer:
    """
    Get the service container built at startup.

    Raises:
        HTTPException: If the application has not finished starting
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return container


def get_controller(
    container: ServiceContainer = Depends(get_container),
) -> SessionLifecycleController:
    """Get the session lifecycle controller."""
    return container.controller


def get_otp_service(container: ServiceContainer = Depends(get_container)) -> OTPService:
    """Get the OTP service."""
    return container.otp_service


def get_tenant_repository(container: ServiceContainer = Depends(get_container)) -> TenantRepository:
    """Get TenantRepository instance."""
    return container.tenants


async def verify_jwt_token(request: Request) -> Dict[str, Any]:
    """
    Verify JWT token from HttpOnly cookie or Authorization header.

    Args:
        request: FastAPI request object

    Returns:
        Decoded token payload

    Raises:
        HTTPException: If token is missing
        AuthenticationError: If token is invalid
    """
    token = extract_raw_token(request)
    if not token:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return verify_token(token)


async def get_current_tenant(
    payload: Dict[str, Any] = Depends(verify_jwt_token),
    tenants: TenantRepository = Depends(get_tenant_repository),
) -> Tenant:
    """
    Resolve the tenant identified by the token subject.

    Raises:
        AuthenticationError: If the subject does not name an existing tenant
    """
    try:
        tenant_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise AuthenticationError("Could not validate credentials")

    tenant = await tenants.get_by_id(tenant_id)
    if tenant is None:
        raise AuthenticationError("Could not validate credentials")
    return tenant


async def require_superadmin(tenant: Tenant = Depends(get_current_tenant)) -> Tenant:
    """
    Resolve the current tenant and require the superadmin role.

    Raises:
        HTTPException: If the tenant is not a superadmin
    """
    if tenant.role != TenantRole.SUPERADMIN:
        raise HTTPException(status_code=403, detail="Superadmin access required")
    return tenant
