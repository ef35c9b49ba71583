import os
import requests
import logging

logger = logging.getLogger(__name__)

BREVO_API_KEY = os.getenv("BREVO_API_KEY")
BREVO_SMS_URL = "https://api.brevo.com/v3/transactionalSMS/sms"
NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10"))


def send_sms(recipient_number: str, message: str, sender: str = None) -> bool:
    """
    Send a transactional SMS through Brevo.
    Returns True if Brevo accepted it, False otherwise. Never raises.
    """
    if not BREVO_API_KEY:
        logger.error("Brevo API key is missing. Set BREVO_API_KEY env var.")
        return False

    if not recipient_number:
        logger.warning("SMS skipped: no recipient number")
        return False

    if not sender:
        sender = os.getenv("BREVO_SMS_SENDER", "Billing")

    payload = {
        "sender": sender,
        "recipient": recipient_number,
        "content": message,
        "type": "transactional",
    }

    headers = {
        "api-key": BREVO_API_KEY,
        "accept": "application/json",
        "content-type": "application/json",
    }

    try:
        response = requests.post(BREVO_SMS_URL, json=payload, headers=headers, timeout=NOTIFY_TIMEOUT_SECONDS)
        response.raise_for_status()
        logger.info(f"SMS sent to {recipient_number}")
        return True

    except requests.exceptions.RequestException as e:
        error_detail = str(e)
        if getattr(e, "response", None) is not None:
            try:
                error_detail = e.response.json()
            except ValueError:
                pass

        logger.error(f"Error sending SMS to {recipient_number}: {error_detail}")
        return False
