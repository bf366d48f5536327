import logging
import smtplib
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

from flask import current_app

logger = logging.getLogger(__name__)


def _smtp_settings():
    cfg = current_app.config
    username = cfg.get("SMTP_USERNAME")
    return {
        "host": cfg.get("SMTP_HOST"),
        "port": cfg.get("SMTP_PORT", 587),
        "username": username,
        "password": cfg.get("SMTP_PASSWORD"),
        "sender": cfg.get("SMTP_FROM_EMAIL") or username,
        "use_tls": cfg.get("SMTP_USE_TLS", True),
    }


def build_message(sender: str, to_email: str, subject: str, body: str, language: str = "fr") -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to_email
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=False)
    msg["Message-ID"] = make_msgid(domain=sender.split("@")[-1])
    msg.set_content(body)
    # set_content drops Content-* headers; add the language afterwards
    msg["Content-Language"] = language
    return msg


def send_email(to_email: str, subject: str, body: str, language: str = "fr"):
    """
    Deliver one plain-text mail over SMTP. Returns (sent, error); transport
    problems are reported, not raised, so callers can record them.
    """
    smtp = _smtp_settings()
    if not smtp["host"] or not smtp["sender"]:
        return False, "Email not configured"
    if not to_email:
        return False, "No recipient"

    msg = build_message(smtp["sender"], to_email, subject, body, language)
    try:
        with smtplib.SMTP(smtp["host"], smtp["port"], timeout=10) as server:
            if smtp["use_tls"]:
                server.starttls()
            if smtp["username"] and smtp["password"]:
                server.login(smtp["username"], smtp["password"])
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("SMTP delivery to %s failed: %s", to_email, exc)
        return False, str(exc)
    return True, None
