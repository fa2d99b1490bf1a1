# tracker/emailer.py
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .logger import get_logger

logger = get_logger(__name__)

EMAIL_FROM = os.getenv("EMAIL_FROM", "").strip()
SMTP_HOST = os.getenv("SMTP_HOST", "").strip()
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "").strip()
SMTP_PASS = os.getenv("SMTP_PASS", "").strip()
SMTP_USE_SSL = os.getenv("SMTP_USE_SSL", "false").lower() == "true"
SMTP_TIMEOUT = int(os.getenv("SMTP_TIMEOUT", "30"))


def is_configured() -> bool:
    return bool(EMAIL_FROM and SMTP_HOST)


def send_email(
    subject: str,
    html_body: str | None,
    text_body: str,
    recipients: list[str],
) -> bool:
    """
    Send a multipart email. Returns False when sending was skipped because
    there is nobody to send to or SMTP is not configured; SMTP failures raise.
    """
    if not recipients:
        logger.warning("No recipients provided for email '%s'; skipping send.", subject)
        return False

    if not is_configured():
        logger.warning(
            "Email not fully configured (EMAIL_FROM/SMTP_HOST); skipping email: %s",
            subject,
        )
        return False

    msg = MIMEMultipart("alternative")
    msg["From"] = EMAIL_FROM
    msg["To"] = ", ".join(recipients)
    msg["Subject"] = subject

    msg.attach(MIMEText(text_body, "plain", "utf-8"))
    if html_body:
        msg.attach(MIMEText(html_body, "html", "utf-8"))

    if SMTP_USE_SSL:
        server = smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT)
    else:
        server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT)

    try:
        if not SMTP_USE_SSL:
            server.starttls()
        if SMTP_USER:
            server.login(SMTP_USER, SMTP_PASS)
        server.sendmail(EMAIL_FROM, recipients, msg.as_string())
        logger.info("Email sent to %s: %s", recipients, subject)
    finally:
        try:
            server.quit()
        except smtplib.SMTPException:
            pass
    return True
