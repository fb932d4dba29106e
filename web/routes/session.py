"""Tenant messaging session routes."""

from fastapi import APIRouter, Depends, HTTPException, Response
from loguru import logger

from otpgate.core.config.settings import get_settings
from otpgate.core.enums import PairingOutcome
from otpgate.core.exceptions import SessionNotFoundError
from otpgate.repositories.tenant_repository import Tenant
from otpgate.services.otp.service import OTPService
from otpgate.services.session.lifecycle import SessionLifecycleController
from web.dependencies import get_controller, get_current_tenant, get_otp_service
from web.models.otp import SendOTPRequest, SendOTPResponse
from web.models.session import GenerateResponse, SessionEnvelope, SessionInfo

router = APIRouter(prefix="/api/session", tags=["session"])


@router.get("", response_model=SessionEnvelope)
async def get_session(
    tenant: Tenant = Depends(get_current_tenant),
    controller: SessionLifecycleController = Depends(get_controller),
) -> SessionEnvelope:
    """
    Get the tenant's messaging session.

    Returns:
        Envelope with the session, or ``session: null`` when none exists
    """
    view = await controller.get_session_for_tenant(tenant.id)
    if view is None:
        return SessionEnvelope(session=None)

    data = view.to_dict()
    return SessionEnvelope(
        session=SessionInfo(
            session_id=data["session_id"],
            status=data["status"],
            qr_code=data["qr_code"],
            last_activity=data["last_activity"],
        )
    )


@router.post("/generate", response_model=GenerateResponse)
async def generate_session(
    response: Response,
    tenant: Tenant = Depends(get_current_tenant),
    controller: SessionLifecycleController = Depends(get_controller),
) -> GenerateResponse:
    """
    Create or regenerate the tenant's session and return the first pairing outcome.

    A ``timeout`` outcome is not an error: the session keeps running and the
    pairing code shows up on the next ``GET /api/session``.
    """
    result = await controller.generate(tenant.id)
    if result.status == PairingOutcome.ERROR:
        response.status_code = 502
    return GenerateResponse(**result.to_dict())


@router.post("/send-otp", response_model=SendOTPResponse)
async def send_otp(
    body: SendOTPRequest,
    response: Response,
    tenant: Tenant = Depends(get_current_tenant),
    controller: SessionLifecycleController = Depends(get_controller),
    otp_service: OTPService = Depends(get_otp_service),
) -> SendOTPResponse:
    """
    Issue a code and send it through the tenant's session.

    Raises:
        SessionNotFoundError: If the tenant has no session
        SessionNotReadyError: If the session is not ready
        HTTPException: 400 if the phone number is malformed
    """
    view = await controller.get_session_for_tenant(tenant.id)
    if view is None:
        raise SessionNotFoundError("No messaging session found. Generate a pairing code first.")

    try:
        result = await otp_service.issue_and_send(tenant.id, body.phone_number, view.session_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.delivered:
        logger.warning(f"OTP delivery failed for tenant {tenant.id}")
        response.status_code = 502

    return SendOTPResponse(
        success=result.delivered,
        message="OTP sent successfully" if result.delivered else "Failed to send OTP",
        session_id=result.session_id,
        phone_number=result.address,
        expires_at=result.expires_at.isoformat() if result.expires_at else None,
        otp_code=result.code if get_settings().is_development() else None,
    )
