from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator, model_validator

from app.services.otp_store import Channel
from app.services.verification import (
    ChannelState,
    VerificationOrchestrator,
    VerificationSession,
    normalize_identifier,
)


def _check_identifier(identifier: str, channel: Channel) -> None:
    # "abc" as a phone or "   " as an email would all collapse onto one empty store key
    if not normalize_identifier(identifier, channel):
        kind = "email address" if channel == Channel.email else "mobile number"
        raise ValueError(f"Identifier is not a valid {kind}")


class StartSessionRequest(BaseModel):
    email: EmailStr
    mobile_number: str = Field(validation_alias=AliasChoices("mobile_number", "mobileNumber"))

    @field_validator("mobile_number")
    @classmethod
    def mobile_number_has_digits(cls, v: str) -> str:
        digits = "".join(c for c in v if c.isdigit())
        if not 10 <= len(digits) <= 15:
            raise ValueError("Mobile number must have 10 to 15 digits")
        return v


class SessionResponse(BaseModel):
    session_id: str
    email: str
    mobile_number: str
    email_state: ChannelState
    sms_state: ChannelState
    # an unexpired code is waiting to be entered
    email_pending: bool = False
    sms_pending: bool = False
    complete: bool

    @classmethod
    def from_session(
        cls,
        session: VerificationSession,
        orchestrator: Optional[VerificationOrchestrator] = None,
    ) -> "SessionResponse":
        return cls(
            session_id=session.id,
            email=session.email,
            mobile_number=session.mobile_number,
            email_state=session.email_state,
            sms_state=session.sms_state,
            email_pending=bool(orchestrator and orchestrator.has_pending(session, Channel.email)),
            sms_pending=bool(orchestrator and orchestrator.has_pending(session, Channel.sms)),
            complete=session.is_complete,
        )


class DiscardSessionResponse(BaseModel):
    discarded: bool


class SendCodeRequest(BaseModel):
    identifier: str = Field(min_length=1)
    channel: Channel = Field(validation_alias=AliasChoices("channel", "type"))
    session_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("session_id", "sessionId"))

    @model_validator(mode="before")
    @classmethod
    def legacy_payload(cls, data: Any) -> Any:
        # Older frontend sends {email, type} or {mobileNumber, type}
        if isinstance(data, dict) and not data.get("identifier"):
            data = dict(data)
            data["identifier"] = data.get("email") or data.get("mobileNumber") or ""
        return data

    @model_validator(mode="after")
    def identifier_usable(self) -> "SendCodeRequest":
        _check_identifier(self.identifier, self.channel)
        return self


class SendCodeResponse(BaseModel):
    ok: bool = True
    channel: Channel
    message: str
    expires_in_minutes: int


class VerifyCodeRequest(BaseModel):
    identifier: str = Field(min_length=1)
    code: str = Field(validation_alias=AliasChoices("code", "otp"))
    channel: Channel = Field(validation_alias=AliasChoices("channel", "type"))
    session_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("session_id", "sessionId"))

    @field_validator("code", mode="before")
    @classmethod
    def code_as_text(cls, v: Any) -> Any:
        # Numeric JSON codes are checked like typed ones (leading zeros are already lost)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def identifier_usable(self) -> "VerifyCodeRequest":
        _check_identifier(self.identifier, self.channel)
        return self


class VerifyCodeResponse(BaseModel):
    ok: bool = True
    channel: Channel
    message: str
    completed: bool = False
    next_step: Optional[str] = None
    session: Optional[SessionResponse] = None
