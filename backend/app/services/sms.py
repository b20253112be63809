"""Send OTP codes by SMS through the Fast2SMS bulk API (DLT route)."""

import logging
import re
from typing import Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


def normalize_phone(phone: str) -> str:
    """Digits only, e.g. '+91 98765-43210' -> '919876543210'."""
    return re.sub(r"\D", "", phone or "")


class SmsGateway:
    """
    One-way OTP delivery to a phone number.

    send() returns True only when the provider acknowledges the message with
    {"return": true}. Any other response, invalid JSON, or a transport error is
    logged and reported as False. No retries; the user resends instead.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = settings.FAST2SMS_API_KEY if api_key is None else api_key
        self.url = url or settings.FAST2SMS_URL
        self._transport = transport

    def _params(self, phone: str, code: str) -> dict:
        return {
            "authorization": self.api_key,
            "route": settings.SMS_ROUTE,
            "sender_id": settings.SMS_SENDER_ID,
            "message": settings.SMS_TEMPLATE_ID,
            "variables_values": code,
            "flash": "0",
            "numbers": phone,
        }

    def send(self, phone: str, code: str) -> bool:
        if not self.api_key:
            logger.warning("SMS not configured (FAST2SMS_API_KEY). Skipping send.")
            return False
        clean_phone = normalize_phone(phone)
        if not clean_phone:
            logger.warning("Refusing to send SMS: no digits in phone number %r", phone)
            return False

        logger.info("Sending SMS OTP to %s", clean_phone)
        try:
            with httpx.Client(timeout=settings.SMS_TIMEOUT_SECONDS, transport=self._transport) as client:
                resp = client.get(self.url, params=self._params(clean_phone, code))
        except httpx.HTTPError as e:
            logger.error("SMS request to %s failed: %s", clean_phone, e)
            return False

        try:
            data = resp.json()
        except ValueError:
            logger.error("Fast2SMS returned %s with invalid JSON: %s", resp.status_code, resp.text[:200])
            return False

        if isinstance(data, dict) and data.get("return") is True:
            logger.info("SMS sent successfully to %s", clean_phone)
            return True
        logger.error("Fast2SMS API error (%s): %s", resp.status_code, data)
        return False
