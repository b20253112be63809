from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.services.verification import VerificationOrchestrator


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_orchestrator(request: Request) -> VerificationOrchestrator:
    """The orchestrator built at startup (see app.main)."""
    return request.app.state.orchestrator
