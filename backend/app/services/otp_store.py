"""
Storage of outstanding OTP codes, keyed by (identifier, channel).

Issuing a code for a key replaces whatever was outstanding for it. A code is
single use: a successful consume removes it from further lookups. Expired
codes are reported as expired until they are swept or replaced.
"""
import enum
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from app.models.verification_code import VerificationCode

logger = logging.getLogger(__name__)


class Channel(str, enum.Enum):
    email = "email"
    sms = "sms"


class ConsumeOutcome(str, enum.Enum):
    valid = "valid"
    invalid_code = "invalid_code"
    expired = "expired"
    not_found = "not_found"


@dataclass(frozen=True)
class VerificationRequest:
    identifier: str
    channel: Channel
    code: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        # still valid at the expiry instant itself
        return now > self.expires_at


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OtpStore(ABC):
    """Keyed storage of active verification codes."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    @abstractmethod
    def put(self, identifier: str, channel: Channel, code: str, ttl: timedelta) -> VerificationRequest:
        """Store a code, superseding any outstanding one for the same key."""

    @abstractmethod
    def get(self, identifier: str, channel: Channel) -> Optional[VerificationRequest]:
        """Return the outstanding request for the key, or None."""

    @abstractmethod
    def consume(self, identifier: str, channel: Channel, submitted_code: str) -> ConsumeOutcome:
        """Check a submitted code; on a match the request is consumed and removed."""

    @abstractmethod
    def sweep_expired(self) -> int:
        """Remove expired entries; returns how many were removed."""

    def has_pending(self, identifier: str, channel: Channel) -> bool:
        request = self.get(identifier, channel)
        return request is not None and not request.is_expired(self.now())


class InMemoryOtpStore(OtpStore):
    """Process-local store. All access goes through one lock."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        super().__init__(clock)
        self._entries: Dict[Tuple[str, Channel], VerificationRequest] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def put(self, identifier: str, channel: Channel, code: str, ttl: timedelta) -> VerificationRequest:
        issued_at = self.now()
        request = VerificationRequest(
            identifier=identifier,
            channel=channel,
            code=code,
            issued_at=issued_at,
            expires_at=issued_at + ttl,
        )
        with self._lock:
            self._entries[(identifier, channel)] = request
            # lazy sweep so the map stays bounded without the periodic task
            stale = [key for key, entry in self._entries.items() if entry.is_expired(issued_at)]
            for key in stale:
                del self._entries[key]
        return request

    def get(self, identifier: str, channel: Channel) -> Optional[VerificationRequest]:
        with self._lock:
            return self._entries.get((identifier, channel))

    def consume(self, identifier: str, channel: Channel, submitted_code: str) -> ConsumeOutcome:
        key = (identifier, channel)
        with self._lock:
            request = self._entries.get(key)
            if request is None:
                return ConsumeOutcome.not_found
            if request.is_expired(self.now()):
                return ConsumeOutcome.expired
            if request.code != submitted_code:
                return ConsumeOutcome.invalid_code
            del self._entries[key]
        logger.debug("Consumed %s code for %s", channel.value, identifier)
        return ConsumeOutcome.valid

    def sweep_expired(self) -> int:
        now = self.now()
        with self._lock:
            stale = [key for key, request in self._entries.items() if request.is_expired(now)]
            for key in stale:
                del self._entries[key]
        return len(stale)


class SqlOtpStore(OtpStore):
    """Store backed by the verification_codes table."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(clock)
        self._session_factory = session_factory

    @staticmethod
    def _to_request(row: VerificationCode) -> VerificationRequest:
        return VerificationRequest(
            identifier=row.contact,
            channel=Channel(row.channel),
            code=row.code,
            issued_at=_as_utc(row.created_at) if row.created_at else _as_utc(row.expires_at),
            expires_at=_as_utc(row.expires_at),
            consumed=row.used_at is not None,
        )

    @staticmethod
    def _latest_unused(db: Session, identifier: str, channel: Channel) -> Optional[VerificationCode]:
        return (
            db.query(VerificationCode)
            .filter(
                VerificationCode.channel == channel.value,
                VerificationCode.contact == identifier,
                VerificationCode.used_at.is_(None),
            )
            .order_by(VerificationCode.created_at.desc())
            .first()
        )

    def put(self, identifier: str, channel: Channel, code: str, ttl: timedelta) -> VerificationRequest:
        issued_at = self.now()
        db = self._session_factory()
        try:
            db.execute(
                delete(VerificationCode).where(
                    VerificationCode.channel == channel.value,
                    VerificationCode.contact == identifier,
                )
            )
            db.execute(delete(VerificationCode).where(VerificationCode.expires_at < issued_at))
            row = VerificationCode(
                id=str(uuid.uuid4()),
                channel=channel.value,
                contact=identifier,
                code=code,
                expires_at=issued_at + ttl,
                created_at=issued_at,
            )
            db.add(row)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return VerificationRequest(
            identifier=identifier,
            channel=channel,
            code=code,
            issued_at=issued_at,
            expires_at=issued_at + ttl,
        )

    def get(self, identifier: str, channel: Channel) -> Optional[VerificationRequest]:
        db = self._session_factory()
        try:
            row = self._latest_unused(db, identifier, channel)
            return self._to_request(row) if row else None
        finally:
            db.close()

    def consume(self, identifier: str, channel: Channel, submitted_code: str) -> ConsumeOutcome:
        now = self.now()
        db = self._session_factory()
        try:
            row = self._latest_unused(db, identifier, channel)
            if row is None:
                return ConsumeOutcome.not_found
            if now > _as_utc(row.expires_at):
                return ConsumeOutcome.expired
            if row.code != submitted_code:
                return ConsumeOutcome.invalid_code
            # Only one concurrent consumer can flip used_at
            result = db.execute(
                update(VerificationCode)
                .where(VerificationCode.id == row.id, VerificationCode.used_at.is_(None))
                .values(used_at=now)
            )
            db.commit()
            if result.rowcount != 1:
                return ConsumeOutcome.not_found
            return ConsumeOutcome.valid
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def sweep_expired(self) -> int:
        now = self.now()
        db = self._session_factory()
        try:
            result = db.execute(
                delete(VerificationCode).where(
                    (VerificationCode.expires_at < now) | VerificationCode.used_at.isnot(None)
                )
            )
            db.commit()
            return result.rowcount or 0
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def build_store(backend: str, session_factory: Optional[Callable[[], Session]] = None) -> OtpStore:
    """Store for the configured backend ("memory" or "database")."""
    if backend == "database":
        if session_factory is None:
            from app.core.database import SessionLocal
            session_factory = SessionLocal
        return SqlOtpStore(session_factory)
    return InMemoryOtpStore()
