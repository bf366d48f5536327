import logging
import re

from flask import current_app
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

logger = logging.getLogger(__name__)

MOROCCO_PREFIX = "212"


def _twilio_settings():
    cfg = current_app.config
    return {
        "account_sid": cfg.get("TWILIO_ACCOUNT_SID"),
        "auth_token": cfg.get("TWILIO_AUTH_TOKEN"),
        "sender": cfg.get("TWILIO_FROM_NUMBER"),
    }


def format_phone_number(raw: str) -> str:
    """E.164 for Moroccan numbers: 06..., 6... (9 digits) and 212... all become +212..."""
    digits = re.sub(r"\D", "", raw or "")
    if digits.startswith(MOROCCO_PREFIX):
        return f"+{digits}"
    if digits.startswith("0"):
        return f"+{MOROCCO_PREFIX}{digits[1:]}"
    if len(digits) == 9:
        return f"+{MOROCCO_PREFIX}{digits}"
    return f"+{digits}"


def send_sms(to_number: str, body: str):
    """Send one text message through Twilio. Returns (sent, error) like send_email."""
    settings = _twilio_settings()
    if not settings["account_sid"] or not settings["auth_token"] or not settings["sender"]:
        return False, "SMS not configured"
    if not to_number:
        return False, "No phone number"

    recipient = format_phone_number(to_number)
    try:
        client = Client(settings["account_sid"], settings["auth_token"])
        message = client.messages.create(body=body, from_=settings["sender"], to=recipient)
    except (TwilioException, OSError) as exc:
        logger.warning("SMS delivery to %s failed: %s", recipient, exc)
        return False, str(exc)

    logger.info("SMS %s sent to %s", message.sid, recipient)
    return True, None
