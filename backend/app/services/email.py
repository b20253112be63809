"""Send OTP emails via SMTP. From SMTP_FROM_EMAIL when configured."""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.core.config import settings

logger = logging.getLogger(__name__)

# Avoid blocking the request forever if SMTP is slow or unreachable
SMTP_TIMEOUT_SECONDS = 15


def _logo_url() -> str:
    if settings.EMAIL_LOGO_URL:
        return settings.EMAIL_LOGO_URL
    base = settings.FRONTEND_BASE_URL.rstrip("/")
    return f"{base}/logo.png"


def send_otp_email(to_email: str, code: str, expire_minutes: int = 10) -> bool:
    """
    Send 6-digit verification code email. From SMTP_FROM_EMAIL.
    Returns True if sent, False if SMTP not configured or send failed.
    """
    if not settings.SMTP_HOST or not settings.SMTP_USER:
        logger.warning("SMTP not configured (SMTP_HOST/SMTP_USER). Skipping send.")
        return False

    logo_url = _logo_url()
    subject = "Stock Laabh Verification Code"
    html = f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 24px;">
  <p style="margin-bottom: 24px;">
    <img src="{logo_url}" alt="Stock Laabh" width="140" height="48" style="display: block;" />
  </p>
  <p style="font-size: 16px; color: #1f2937; line-height: 1.5;">
    Welcome to Stock Laabh! Use the code below to verify your email address.
  </p>
  <p style="margin: 24px 0; font-size: 28px; font-weight: 600; letter-spacing: 0.2em; color: #1e40af;">
    {code}
  </p>
  <p style="font-size: 14px; color: #6b7280;">
    Enter this code on the verification screen. It expires in {expire_minutes} minutes.
  </p>
  <p style="font-size: 14px; color: #6b7280;">
    If you didn't request this, you can ignore this email.
  </p>
  <p style="font-size: 12px; color: #9ca3af; margin-top: 32px;">
    Stock Laabh - Professional Trading Platform
  </p>
</body>
</html>
"""
    text = (
        f"Your Stock Laabh verification code is: {code}\n\n"
        f"This code will expire in {expire_minutes} minutes.\n\n"
        "If you didn't request this, you can ignore this email.\n"
    )

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
    msg["To"] = to_email
    msg.attach(MIMEText(text, "plain"))
    msg.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(
            settings.SMTP_HOST, settings.SMTP_PORT, timeout=SMTP_TIMEOUT_SECONDS
        ) as server:
            server.starttls()
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            server.sendmail(settings.SMTP_FROM_EMAIL, [to_email], msg.as_string())
        logger.info("Verification code email sent to %s", to_email)
        return True
    except smtplib.SMTPAuthenticationError as e:
        logger.exception("SMTP login failed for %s: %s", to_email, e)
        return False
    except (OSError, TimeoutError) as e:
        logger.exception("SMTP connection error (timeout or network) for %s: %s", to_email, e)
        return False
    except smtplib.SMTPException as e:
        logger.exception("Failed to send verification email to %s: %s", to_email, e)
        return False


class EmailGateway:
    """Delivers OTP codes to an email address."""

    def __init__(self, expire_minutes: int = 10):
        self.expire_minutes = expire_minutes

    def send(self, email: str, code: str) -> bool:
        return send_otp_email(email, code, self.expire_minutes)
