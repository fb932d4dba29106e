"""Authentication routes for the OTP Gateway web application."""

import asyncio
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from loguru import logger
from slowapi import Limiter
from slowapi.util import get_remote_address

from otpgate.core.auth import check_credentials, create_access_token, hash_password
from otpgate.core.config.settings import get_settings
from otpgate.core.exceptions import AuthenticationError
from otpgate.repositories.tenant_repository import Tenant, TenantRepository
from otpgate.services.session.lifecycle import SessionLifecycleController
from web.dependencies import (
    get_controller,
    get_current_tenant,
    get_tenant_repository,
    require_superadmin,
    verify_jwt_token,
)
from web.models.auth import (
    ChangePasswordRequest,
    CreateTenantRequest,
    LoginRequest,
    ResetPasswordRequest,
    TenantProfile,
    TokenResponse,
    UpdateTenantRequest,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])
limiter = Limiter(key_func=get_remote_address)


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    tenants: TenantRepository = Depends(get_tenant_repository),
) -> TokenResponse:
    """
    Login endpoint - returns JWT token and sets HttpOnly cookie.

    Args:
        request: FastAPI request object (required for rate limiter)
        response: FastAPI response object (for setting cookies)
        credentials: Username and password
        tenants: Tenant repository

    Returns:
        JWT access token

    Raises:
        AuthenticationError: If credentials are invalid
    """
    tenant = await tenants.get_by_username(credentials.username)
    if tenant is None:
        logger.warning(f"Login attempt for unknown tenant from {get_remote_address(request)}")
        raise AuthenticationError()

    # bcrypt is CPU-bound
    await asyncio.to_thread(check_credentials, credentials.password, tenant.password_hash)

    access_token = create_access_token(
        data={"sub": str(tenant.id), "username": tenant.username, "role": tenant.role.value}
    )

    settings = get_settings()
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=settings.is_production(),
        samesite="strict",
        max_age=settings.jwt_expiry_hours * 3600,
        path="/",
    )
    logger.info(f"Tenant {tenant.username} logged in")
    return TokenResponse(access_token=access_token)


@router.get("/profile", response_model=TenantProfile)
async def profile(tenant: Tenant = Depends(get_current_tenant)) -> TenantProfile:
    """Get the authenticated tenant's profile."""
    return TenantProfile(**tenant.to_dict())


@router.post("/logout")
async def logout(
    response: Response, _: Dict[str, Any] = Depends(verify_jwt_token)
) -> Dict[str, str]:
    """
    Logout endpoint - clears the HttpOnly cookie.

    Args:
        response: FastAPI response object (for clearing cookies)
        _: JWT token payload (dependency for authentication)

    Returns:
        Success message
    """
    response.delete_cookie(key="access_token", path="/")
    return {"message": "Logged out successfully"}


async def _hash(password: str) -> str:
    try:
        # bcrypt is CPU-bound
        return await asyncio.to_thread(hash_password, password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


async def _get_or_404(tenants: TenantRepository, tenant_id: int) -> Tenant:
    tenant = await tenants.get_by_id(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Tenant not found")
    return tenant


@router.put("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    tenant: Tenant = Depends(get_current_tenant),
    tenants: TenantRepository = Depends(get_tenant_repository),
) -> Dict[str, str]:
    """
    Change the authenticated tenant's password.

    Raises:
        HTTPException: 400 if the current password is wrong
    """
    try:
        await asyncio.to_thread(check_credentials, body.current_password, tenant.password_hash)
    except AuthenticationError:
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    await tenants.update(tenant.id, {"password_hash": await _hash(body.new_password)})
    logger.info(f"Tenant {tenant.username} changed password")
    return {"message": "Password changed successfully"}


@router.get("/users", response_model=List[TenantProfile])
async def list_tenants(
    _: Tenant = Depends(require_superadmin),
    tenants: TenantRepository = Depends(get_tenant_repository),
) -> List[TenantProfile]:
    """List all tenant accounts, newest first (superadmin only)."""
    return [TenantProfile(**t.to_dict()) for t in await tenants.list_all()]


@router.post("/users", response_model=TenantProfile, status_code=201)
async def create_tenant(
    body: CreateTenantRequest,
    admin: Tenant = Depends(require_superadmin),
    tenants: TenantRepository = Depends(get_tenant_repository),
) -> TenantProfile:
    """
    Create a tenant account (superadmin only).

    Raises:
        HTTPException: 409 if the username is taken
    """
    if await tenants.get_by_username(body.username) is not None:
        raise HTTPException(status_code=409, detail="Username already exists")

    tenant_id = await tenants.create(
        {
            "username": body.username,
            "password_hash": await _hash(body.password),
            "role": body.role,
        }
    )
    logger.info(f"Tenant {body.username} created by {admin.username}")
    return TenantProfile(**(await _get_or_404(tenants, tenant_id)).to_dict())


@router.put("/users/{tenant_id}", response_model=TenantProfile)
async def update_tenant(
    tenant_id: int,
    body: UpdateTenantRequest,
    admin: Tenant = Depends(require_superadmin),
    tenants: TenantRepository = Depends(get_tenant_repository),
) -> TenantProfile:
    """
    Rename a tenant or change its role (superadmin only).

    Raises:
        HTTPException: 404 if the tenant is unknown, 409 if the new username is taken
    """
    tenant = await _get_or_404(tenants, tenant_id)
    changes: Dict[str, Any] = body.model_dump(exclude_none=True)
    if "username" in changes and changes["username"] != tenant.username:
        if await tenants.get_by_username(changes["username"]) is not None:
            raise HTTPException(status_code=409, detail="Username already exists")

    if changes:
        await tenants.update(tenant_id, changes)
        logger.info(f"Tenant {tenant_id} updated by {admin.username}: {sorted(changes)}")
    return TenantProfile(**(await _get_or_404(tenants, tenant_id)).to_dict())


@router.put("/users/{tenant_id}/reset-password")
async def reset_tenant_password(
    tenant_id: int,
    body: ResetPasswordRequest,
    admin: Tenant = Depends(require_superadmin),
    tenants: TenantRepository = Depends(get_tenant_repository),
) -> Dict[str, str]:
    """Set a new password for another tenant (superadmin only)."""
    await _get_or_404(tenants, tenant_id)
    await tenants.update(tenant_id, {"password_hash": await _hash(body.new_password)})
    logger.info(f"Password of tenant {tenant_id} reset by {admin.username}")
    return {"message": "Password reset successfully"}


@router.delete("/users/{tenant_id}")
async def delete_tenant(
    tenant_id: int,
    admin: Tenant = Depends(require_superadmin),
    tenants: TenantRepository = Depends(get_tenant_repository),
    controller: SessionLifecycleController = Depends(get_controller),
) -> Dict[str, str]:
    """
    Delete a tenant account and tear down its messaging session (superadmin only).

    Raises:
        HTTPException: 400 when deleting oneself, 404 if the tenant is unknown
    """
    if tenant_id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    await _get_or_404(tenants, tenant_id)

    await controller.close_tenant(tenant_id)
    await tenants.delete(tenant_id)
    logger.info(f"Tenant {tenant_id} deleted by {admin.username}")
    return {"message": "Tenant deleted successfully"}
