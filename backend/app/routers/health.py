from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text

from app.core.deps import get_db, get_orchestrator
from app.services.verification import VerificationOrchestrator

router = APIRouter()


@router.get("")
def health_check(
    db: Session = Depends(get_db),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Health check; includes DB connectivity and OTP store backend."""
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        db_ok = False
    return {
        "status": "ok",
        "database": "connected" if db_ok else "disconnected",
        "otp_store": type(orchestrator.store).__name__,
        "active_sessions": orchestrator.session_count(),
    }
