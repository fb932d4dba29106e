"""Public API routes authenticated by session identifier."""

from fastapi import APIRouter, Depends, HTTPException, Response

from otpgate.core.config.settings import get_settings
from otpgate.core.exceptions import SessionNotFoundError
from otpgate.services.otp.service import OTPService
from otpgate.services.session.lifecycle import SessionLifecycleController
from web.dependencies import get_controller, get_otp_service
from web.models.otp import (
    PublicSendOTPRequest,
    SendOTPResponse,
    VerifyOTPRequest,
    VerifyOTPResponse,
)
from web.models.session import SessionStatusRequest, SessionStatusResponse

router = APIRouter(prefix="/api", tags=["api"])


@router.post("/send-otp", response_model=SendOTPResponse)
async def send_otp(
    body: PublicSendOTPRequest,
    response: Response,
    controller: SessionLifecycleController = Depends(get_controller),
    otp_service: OTPService = Depends(get_otp_service),
) -> SendOTPResponse:
    """
    Send a code through the session named by ``session_id``.

    A caller-supplied ``otp`` is sent as-is and cannot be verified later; a
    caller-supplied ``message`` replaces the default template.

    Raises:
        SessionNotFoundError: If no session exists with that identifier
        SessionNotReadyError: If the session is not ready
        HTTPException: 400 if the phone number is malformed
    """
    view = await controller.get_session_by_id(body.session_id)
    if view is None:
        raise SessionNotFoundError(
            "Session not found with provided session_id", session_id=body.session_id
        )

    try:
        result = await otp_service.send_custom(
            view.tenant_id,
            body.phone_number,
            body.session_id,
            code=body.otp,
            message=body.message,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.delivered:
        response.status_code = 502

    return SendOTPResponse(
        success=result.delivered,
        message="OTP sent successfully" if result.delivered else "Failed to send OTP",
        session_id=result.session_id,
        phone_number=result.address,
        expires_at=result.expires_at.isoformat() if result.expires_at else None,
        otp_code=result.code if get_settings().is_development() else None,
    )


@router.post("/status", response_model=SessionStatusResponse)
async def session_status(
    body: SessionStatusRequest,
    controller: SessionLifecycleController = Depends(get_controller),
) -> SessionStatusResponse:
    """Report whether a session exists and whether it can send."""
    view = await controller.get_session_by_id(body.session_id)
    if view is None:
        return SessionStatusResponse(exists=False, status="not_found")

    data = view.to_dict()
    return SessionStatusResponse(
        exists=True,
        session_id=view.session_id,
        status=data["status"],
        is_connected=view.is_connected,
        last_activity=data["last_activity"],
        tenant_id=view.tenant_id,
    )


@router.post("/verify-otp", response_model=VerifyOTPResponse)
async def verify_otp(
    body: VerifyOTPRequest,
    otp_service: OTPService = Depends(get_otp_service),
) -> VerifyOTPResponse:
    """
    Consume a code for (phone number, code, session).

    Raises:
        InvalidCodeError: No unused matching code
        OTPExpiredError: The matching code has expired
    """
    await otp_service.verify(body.phone_number, body.otp_code, body.session_id)
    return VerifyOTPResponse()
