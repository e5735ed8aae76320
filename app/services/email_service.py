import logging
import smtplib
from contextlib import contextmanager
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class EmailNotConfigured(RuntimeError):
    pass


@contextmanager
def _connection():
    settings = get_settings()
    if settings.SMTP_USE_SSL:
        server = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS)
    else:
        server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS)
        server.starttls()
    try:
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        yield server
    finally:
        try:
            server.quit()
        except smtplib.SMTPException as exc:
            logger.warning("error closing SMTP connection: %s", exc)


def build_message(recipient: str, subject: str, text_body: str, html_body: str | None = None) -> MIMEMultipart:
    settings = get_settings()
    msg = MIMEMultipart("alternative")
    msg["From"] = settings.EMAIL_FROM
    msg["To"] = recipient
    msg["Subject"] = subject
    msg.attach(MIMEText(text_body or "", "plain"))
    if html_body:
        msg.attach(MIMEText(html_body, "html"))
    return msg


def send_email(recipient: str, subject: str, text_body: str, html_body: str | None = None) -> None:
    """Send one message. Raises on any failure; callers decide whether it matters."""
    settings = get_settings()
    if not settings.email_configured:
        raise EmailNotConfigured("SMTP_HOST is not configured")

    msg = build_message(recipient, subject, text_body, html_body)
    with _connection() as server:
        server.sendmail(settings.EMAIL_FROM, [recipient], msg.as_string())
    logger.info("email sent subject=%r recipient=%s", subject, recipient)
