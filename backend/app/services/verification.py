"""
Dual-channel (email + SMS) contact verification.

The orchestrator issues codes, checks submissions against the OTP store and
owns the per-flow VerificationSession state. Once both channels of a session
are verified it notifies completion listeners exactly once.
"""
import enum
import logging
import secrets
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from app.services.otp_store import Channel, ConsumeOutcome, OtpStore, utcnow
from app.services.sms import normalize_phone

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


class ChannelState(str, enum.Enum):
    not_sent = "not_sent"
    sent = "sent"
    verified = "verified"


class VerificationError(str, enum.Enum):
    malformed_code = "malformed_code"
    code_mismatch = "code_mismatch"
    code_expired = "code_expired"
    no_pending_code = "no_pending_code"
    delivery_error = "delivery_error"
    invalid_identifier = "invalid_identifier"

    @property
    def message(self) -> str:
        return _ERROR_MESSAGES[self]


_ERROR_MESSAGES = {
    VerificationError.malformed_code: "Please enter the 6-digit code.",
    VerificationError.code_mismatch: "Invalid OTP code. Please check and try again.",
    VerificationError.code_expired: "OTP has expired. Please request a new one.",
    VerificationError.no_pending_code: "No valid OTP found. Please request a new one.",
    VerificationError.delivery_error: "Failed to send OTP. Please try again.",
    VerificationError.invalid_identifier: "Please enter a valid email address or mobile number.",
}

_OUTCOME_ERRORS = {
    ConsumeOutcome.invalid_code: VerificationError.code_mismatch,
    ConsumeOutcome.expired: VerificationError.code_expired,
    ConsumeOutcome.not_found: VerificationError.no_pending_code,
}


@dataclass
class VerificationResult:
    ok: bool
    channel: Channel
    error: Optional[VerificationError] = None
    message: str = ""
    # True only on the call that completed a session's second channel
    completed: bool = False

    @classmethod
    def failure(cls, channel: Channel, error: VerificationError) -> "VerificationResult":
        return cls(ok=False, channel=channel, error=error, message=error.message)


@dataclass
class VerificationSession:
    email: str
    mobile_number: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    email_state: ChannelState = ChannelState.not_sent
    sms_state: ChannelState = ChannelState.not_sent
    created_at: datetime = field(default_factory=utcnow)
    completion_notified: bool = False

    def identifier_for(self, channel: Channel) -> str:
        return self.email if channel == Channel.email else self.mobile_number

    def state(self, channel: Channel) -> ChannelState:
        return self.email_state if channel == Channel.email else self.sms_state

    def _set_state(self, channel: Channel, state: ChannelState) -> None:
        if channel == Channel.email:
            self.email_state = state
        else:
            self.sms_state = state

    @property
    def is_complete(self) -> bool:
        return self.email_state == ChannelState.verified and self.sms_state == ChannelState.verified


CompletionListener = Callable[[VerificationSession], None]


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def is_well_formed(code: str) -> bool:
    return len(code) == CODE_LENGTH and all("0" <= c <= "9" for c in code)


def normalize_identifier(identifier: str, channel: Channel) -> str:
    if channel == Channel.email:
        return (identifier or "").strip().lower()
    return normalize_phone(identifier)


class VerificationOrchestrator:
    """
    Issues and checks OTP codes and tracks dual-channel completion.

    gateways maps each channel to an object with send(identifier, code) -> bool.
    """

    def __init__(
        self,
        store: OtpStore,
        gateways: Dict[Channel, object],
        ttl: timedelta = timedelta(minutes=10),
        session_ttl: timedelta = timedelta(minutes=60),
        code_factory: Callable[[], str] = generate_code,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.gateways = gateways
        self.ttl = ttl
        self.session_ttl = session_ttl
        self._code_factory = code_factory
        self._clock = clock
        self._sessions: Dict[str, VerificationSession] = {}
        self._listeners: List[CompletionListener] = []
        self._lock = threading.Lock()

    # Sessions

    def start_session(self, email: str, mobile_number: str) -> VerificationSession:
        session = VerificationSession(
            email=normalize_identifier(email, Channel.email),
            mobile_number=normalize_identifier(mobile_number, Channel.sms),
            created_at=self._clock(),
        )
        cutoff = session.created_at - self.session_ttl
        with self._lock:
            # lazy sweep so abandoned sessions do not pile up without the periodic task
            for sid in [sid for sid, s in self._sessions.items() if s.created_at < cutoff]:
                del self._sessions[sid]
            self._sessions[session.id] = session
        logger.info("Verification session %s started", session.id)
        return session

    def get_session(self, session_id: str) -> Optional[VerificationSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def discard_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def add_completion_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    def has_pending(self, session: VerificationSession, channel: Channel) -> bool:
        """True while an unexpired code issued for this channel awaits verification."""
        return self.store.has_pending(session.identifier_for(channel), channel)

    @staticmethod
    def is_complete(session: VerificationSession) -> bool:
        return session.is_complete

    # Codes

    def send_code(
        self,
        identifier: str,
        channel: Channel,
        session: Optional[VerificationSession] = None,
    ) -> VerificationResult:
        key = normalize_identifier(identifier, channel)
        if not key:
            return VerificationResult.failure(channel, VerificationError.invalid_identifier)
        code = self._code_factory()
        self.store.put(key, channel, code, self.ttl)
        if session is not None:
            with self._lock:
                if session.state(channel) != ChannelState.verified:
                    session._set_state(channel, ChannelState.sent)

        gateway = self.gateways.get(channel)
        try:
            delivered = bool(gateway and gateway.send(key, code))
        except Exception:
            logger.exception("%s gateway raised while sending to %s", channel.value, key)
            delivered = False

        if not delivered:
            logger.warning("Delivery of %s code to %s failed; code stays valid for resend", channel.value, key)
            return VerificationResult.failure(channel, VerificationError.delivery_error)
        logger.info("Sent %s code to %s (expires in %s)", channel.value, key, self.ttl)
        return VerificationResult(
            ok=True,
            channel=channel,
            message=f"Verification code sent to your {'email' if channel == Channel.email else 'mobile number'}.",
        )

    def verify_code(
        self,
        identifier: str,
        channel: Channel,
        submitted_code: str,
        session: Optional[VerificationSession] = None,
    ) -> VerificationResult:
        code = (submitted_code or "").strip()
        if not is_well_formed(code):
            return VerificationResult.failure(channel, VerificationError.malformed_code)

        key = normalize_identifier(identifier, channel)
        if not key:
            return VerificationResult.failure(channel, VerificationError.invalid_identifier)
        outcome = self.store.consume(key, channel, code)
        if outcome != ConsumeOutcome.valid:
            logger.info("Verification of %s code for %s failed: %s", channel.value, key, outcome.value)
            return VerificationResult.failure(channel, _OUTCOME_ERRORS[outcome])

        logger.info("Verified %s for %s", channel.value, key)
        result = VerificationResult(
            ok=True,
            channel=channel,
            message="Email verified." if channel == Channel.email else "Mobile number verified.",
        )
        if session is not None and self._mark_verified(session, channel):
            result.completed = True
            self._notify(session)
        return result

    def _mark_verified(self, session: VerificationSession, channel: Channel) -> bool:
        """Set the channel verified; True if this call completed the session."""
        with self._lock:
            session._set_state(channel, ChannelState.verified)
            if session.is_complete and not session.completion_notified:
                session.completion_notified = True
                return True
        return False

    def _notify(self, session: VerificationSession) -> None:
        logger.info("Verification session %s complete", session.id)
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Completion listener failed for session %s", session.id)

    # Housekeeping

    def sweep_expired(self) -> Tuple[int, int]:
        """Drop expired codes and stale sessions; returns (codes, sessions) removed."""
        codes = self.store.sweep_expired()
        cutoff = self._clock() - self.session_ttl
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.created_at < cutoff]
            for sid in stale:
                del self._sessions[sid]
        if codes or stale:
            logger.info("Swept %d expired codes and %d stale sessions", codes, len(stale))
        return codes, len(stale)

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)
