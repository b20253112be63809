import asyncio
import logging
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.models import Base  # noqa: F401 - register models
from app.routers import health, otp
from app.services.email import EmailGateway
from app.services.otp_store import Channel, build_store
from app.services.sms import SmsGateway
from app.services.verification import VerificationOrchestrator, VerificationSession

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Stock Laabh API",
    description="Contact verification for the Stock Laabh paper stock marketplace",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/health")
app.include_router(otp.router, prefix="/otp")


def build_orchestrator() -> VerificationOrchestrator:
    store = build_store(settings.OTP_STORE_BACKEND)
    return VerificationOrchestrator(
        store=store,
        gateways={
            Channel.email: EmailGateway(expire_minutes=settings.OTP_EXPIRE_MINUTES),
            Channel.sms: SmsGateway(),
        },
        ttl=timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
        session_ttl=timedelta(minutes=settings.OTP_SESSION_EXPIRE_MINUTES),
    )


def _log_verification_complete(session: VerificationSession) -> None:
    logger.info(
        "Contact verification complete for %s / %s; next step: %s",
        session.email,
        session.mobile_number,
        settings.OTP_NEXT_STEP,
    )


async def _sweep_periodically(orchestrator: VerificationOrchestrator, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(orchestrator.sweep_expired)
        except Exception:
            logger.exception("OTP sweep failed")


@app.on_event("startup")
async def startup():
    orchestrator = build_orchestrator()
    orchestrator.add_completion_listener(_log_verification_complete)
    app.state.orchestrator = orchestrator
    app.state.sweep_task = None
    if settings.OTP_CLEANUP_INTERVAL_SECONDS > 0:
        app.state.sweep_task = asyncio.create_task(
            _sweep_periodically(orchestrator, settings.OTP_CLEANUP_INTERVAL_SECONDS)
        )
    logger.info("OTP store backend: %s", settings.OTP_STORE_BACKEND)


@app.on_event("shutdown")
async def shutdown():
    task = getattr(app.state, "sweep_task", None)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
