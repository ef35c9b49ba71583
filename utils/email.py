import os
import requests
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Brevo transactional email
BREVO_API_KEY = os.getenv("BREVO_API_KEY", "")
BREVO_FROM_EMAIL = os.getenv("BREVO_FROM_EMAIL", "")
BREVO_FROM_NAME = os.getenv("BREVO_FROM_NAME", "Advertiser Billing")
BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10"))


def send_email(
    to_email: str,
    subject: str,
    body: str,
    is_html: bool = False,
) -> tuple[bool, Optional[str]]:
    """
    Send a single email using Brevo API.
    Returns (success: bool, error_message: Optional[str])
    """
    if not BREVO_API_KEY:
        error_msg = "Brevo API key is missing. Set BREVO_API_KEY env var."
        logger.error(error_msg)
        return False, error_msg

    payload = {
        "sender": {
            "name": BREVO_FROM_NAME,
            "email": BREVO_FROM_EMAIL
        },
        "to": [{"email": to_email}],
        "subject": subject
    }
    if is_html:
        payload["htmlContent"] = body
    else:
        payload["textContent"] = body

    headers = {
        "accept": "application/json",
        "api-key": BREVO_API_KEY,
        "content-type": "application/json"
    }

    try:
        response = requests.post(
            BREVO_API_URL,
            json=payload,
            headers=headers,
            timeout=NOTIFY_TIMEOUT_SECONDS
        )

        if response.status_code == 201:
            logger.info(f"Email sent to {to_email}")
            return True, None

        error_data = response.json() if response.content else {}
        error_msg = f"Brevo API error for {to_email}: {response.status_code} - {error_data.get('message', response.text)}"
        logger.error(error_msg)
        return False, error_msg

    except requests.exceptions.RequestException as e:
        error_msg = f"Network error sending to {to_email}: {str(e)}"
        logger.error(error_msg)
        return False, error_msg
