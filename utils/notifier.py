"""
Advertiser notifications.

Thin dispatch over the Brevo adapters. Delivery is best-effort: a failed
send is logged and reported as False, never raised to the caller.
"""
import logging

from sqlalchemy.orm import Session

from models.advertiser import Advertiser
from utils.email import send_email
from utils.sms import send_sms

logger = logging.getLogger(__name__)

CHANNELS = ("sms", "whatsapp", "email")


class Notifier:
    def __init__(self, db: Session):
        self.db = db

    def send(self, advertiser_id: int, channel: str, message: str, subject: str = "Subscription update") -> bool:
        if channel not in CHANNELS:
            logger.warning(f"Unknown notification channel {channel!r}, advertiser {advertiser_id} not notified")
            return False

        advertiser = self.db.query(Advertiser).get(advertiser_id)
        if not advertiser:
            logger.warning(f"Advertiser {advertiser_id} not found, notification dropped")
            return False

        if channel == "sms":
            return send_sms(advertiser.phone, message)
        if channel == "whatsapp":
            return send_sms(advertiser.whatsapp or advertiser.phone, message)

        if not advertiser.email:
            logger.warning(f"Advertiser {advertiser_id} has no email address")
            return False
        sent, _ = send_email(advertiser.email, subject, message)
        return sent


def notify_safely(notifier, advertiser_id: int, message: str, channel: str = "sms") -> bool:
    if notifier is None:
        return False
    try:
        return notifier.send(advertiser_id, channel, message)
    except Exception as e:
        logger.error(f"Notification to advertiser {advertiser_id} failed: {e}")
        return False
