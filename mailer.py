import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)


class EmailError(Exception):
    pass


def is_configured() -> bool:
    return bool(settings.EMAIL and settings.EMAIL_APP_PASSWORD)


def send_email(to: str, subject: str, html: Optional[str] = None, text: Optional[str] = None) -> dict:
    if not to or not subject or not (html or text):
        raise EmailError("Missing required email fields: to, subject, and text or html")
    if not is_configured():
        raise EmailError("EMAIL and EMAIL_APP_PASSWORD must be set")

    msg = EmailMessage()
    msg["From"] = formataddr(("BEST WISHES", settings.EMAIL))
    msg["To"] = to
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid(domain=settings.EMAIL.split("@")[-1])
    msg.set_content(text or "This message requires an HTML capable mail client.")
    if html:
        msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=60) as smtp:
            smtp.starttls()
            smtp.login(settings.EMAIL, settings.EMAIL_APP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailError(f"Failed to send email: {e}") from e

    logger.info("Email sent to %s (%s)", to, subject)
    return {"success": True, "message_id": msg["Message-ID"]}


def send_quietly(to: str, subject: str, html: Optional[str] = None, text: Optional[str] = None) -> bool:
    """Send a side-channel email; failures are logged, not raised."""
    try:
        send_email(to, subject, html=html, text=text)
        return True
    except EmailError as e:
        logger.warning("Email to %s not sent: %s", to, e)
        return False


def layout(heading: str, body: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
      <h2 style="color: #822be2;">{heading}</h2>
      {body}
      <p style="color: #666; font-size: 14px; margin-top: 30px;">
        Best Wishes Team<br>
        <a href="{settings.FRONTEND_URL}" style="color: #822be2;">Visit Our Website</a>
      </p>
      <p style="color: #999; font-size: 12px;">&copy; {datetime.utcnow().year} Best Wishes. All rights reserved.</p>
    </div>
    """
