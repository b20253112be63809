import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.deps import get_orchestrator
from app.schemas.otp import (
    DiscardSessionResponse,
    SendCodeRequest,
    SendCodeResponse,
    SessionResponse,
    StartSessionRequest,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from app.services.otp_store import Channel
from app.services.verification import (
    VerificationError,
    VerificationOrchestrator,
    VerificationResult,
    VerificationSession,
    normalize_identifier,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "message": message})


def _raise_for_result(result: VerificationResult) -> None:
    if result.ok:
        return
    status_code = 502 if result.error == VerificationError.delivery_error else 400
    raise _error(status_code, result.error.value, result.message)


def _session_for(
    orchestrator: VerificationOrchestrator,
    session_id: Optional[str],
    identifier: str,
    channel: Channel,
) -> Optional[VerificationSession]:
    """Resolve the session (if any) and check the identifier belongs to it."""
    if not session_id:
        return None
    session = orchestrator.get_session(session_id)
    if session is None:
        raise _error(404, "session_not_found", "Verification session not found. Please start again.")
    if normalize_identifier(identifier, channel) != session.identifier_for(channel):
        raise _error(
            400,
            "identifier_mismatch",
            f"This {'email' if channel == Channel.email else 'mobile number'} does not belong to the verification session.",
        )
    return session


def _store_unavailable(e: SQLAlchemyError) -> HTTPException:
    logger.error("OTP store unavailable: %s", e)
    return _error(503, "store_unavailable", "Database connection issue. Please try again in a moment.")


@router.post("/sessions", response_model=SessionResponse, status_code=201)
def start_session(
    body: StartSessionRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Public: start verifying an email and mobile number pair (verification screen mounted)."""
    session = orchestrator.start_session(body.email, body.mobile_number)
    return SessionResponse.from_session(session, orchestrator)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Public: current state of both channels. The UI renders this rather than tracking its own flags."""
    session = orchestrator.get_session(session_id)
    if session is None:
        raise _error(404, "session_not_found", "Verification session not found. Please start again.")
    return SessionResponse.from_session(session, orchestrator)


@router.delete("/sessions/{session_id}", response_model=DiscardSessionResponse)
def discard_session(
    session_id: str,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Public: drop the session once the caller has moved past verification."""
    return DiscardSessionResponse(discarded=orchestrator.discard_session(session_id))


@router.post("/send", response_model=SendCodeResponse)
def send_code(
    body: SendCodeRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """
    Public: issue a new 6-digit code for the channel and deliver it.
    A resend supersedes the previous code. Delivery failure returns 502; the user can resend.
    """
    session = _session_for(orchestrator, body.session_id, body.identifier, body.channel)
    try:
        result = orchestrator.send_code(body.identifier, body.channel, session)
    except SQLAlchemyError as e:
        raise _store_unavailable(e) from e
    _raise_for_result(result)
    return SendCodeResponse(
        channel=result.channel,
        message=result.message,
        expires_in_minutes=int(orchestrator.ttl.total_seconds() // 60),
    )


@router.post("/verify", response_model=VerifyCodeResponse)
def verify_code(
    body: VerifyCodeRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """
    Public: check a submitted code. When this verification completes both channels of the
    session, the response carries completed=true and the next step (payment).
    """
    session = _session_for(orchestrator, body.session_id, body.identifier, body.channel)
    try:
        result = orchestrator.verify_code(body.identifier, body.channel, body.code, session)
    except SQLAlchemyError as e:
        raise _store_unavailable(e) from e
    _raise_for_result(result)
    return VerifyCodeResponse(
        channel=result.channel,
        message=result.message,
        completed=result.completed,
        next_step=settings.OTP_NEXT_STEP if result.completed else None,
        session=SessionResponse.from_session(session, orchestrator) if session else None,
    )
