import unittest
from unittest.mock import MagicMock, patch

import requests

from helpers import BillingTestCase

from utils import email, sms
from utils.notifier import Notifier, notify_safely
from utils.security import create_access_token, decode_token


class TestNotifier(BillingTestCase):
    def setUp(self):
        super().setUp()
        self.advertiser = self.make_advertiser(whatsapp="+966511111111")
        self.notifier = Notifier(self.db)

    @patch("utils.notifier.send_sms", return_value=True)
    def test_sms_uses_phone(self, mock_sms):
        self.assertTrue(self.notifier.send(self.advertiser.id, "sms", "hello"))
        mock_sms.assert_called_once_with("+966500000001", "hello")

    @patch("utils.notifier.send_sms", return_value=True)
    def test_whatsapp_uses_whatsapp_number(self, mock_sms):
        self.notifier.send(self.advertiser.id, "whatsapp", "hello")
        mock_sms.assert_called_once_with("+966511111111", "hello")

    @patch("utils.notifier.send_email", return_value=(True, None))
    def test_email(self, mock_email):
        self.assertTrue(self.notifier.send(self.advertiser.id, "email", "hello", subject="Renewal"))
        mock_email.assert_called_once_with("owner@alnoor.example", "Renewal", "hello")

    def test_unknown_channel_or_advertiser(self):
        self.assertFalse(self.notifier.send(self.advertiser.id, "pigeon", "hello"))
        self.assertFalse(self.notifier.send(999, "sms", "hello"))

    def test_notify_safely(self):
        broken = MagicMock()
        broken.send.side_effect = RuntimeError("boom")
        self.assertFalse(notify_safely(broken, self.advertiser.id, "hello"))
        self.assertFalse(notify_safely(None, self.advertiser.id, "hello"))


class TestBrevoAdapters(unittest.TestCase):
    @patch("utils.sms.BREVO_API_KEY", "key")
    @patch("utils.sms.requests.post")
    def test_sms_sent_with_timeout(self, mock_post):
        mock_post.return_value = MagicMock(status_code=201)
        self.assertTrue(sms.send_sms("+966500000001", "hi"))
        self.assertEqual(mock_post.call_args.kwargs["timeout"], sms.NOTIFY_TIMEOUT_SECONDS)
        self.assertEqual(mock_post.call_args.kwargs["json"]["recipient"], "+966500000001")

    @patch("utils.sms.BREVO_API_KEY", "key")
    @patch("utils.sms.requests.post", side_effect=requests.exceptions.Timeout("slow"))
    def test_sms_network_error(self, mock_post):
        self.assertFalse(sms.send_sms("+966500000001", "hi"))

    @patch("utils.sms.BREVO_API_KEY", None)
    def test_sms_without_key(self):
        self.assertFalse(sms.send_sms("+966500000001", "hi"))

    @patch("utils.email.BREVO_API_KEY", "key")
    @patch("utils.email.requests.post")
    def test_email_rejected(self, mock_post):
        mock_post.return_value = MagicMock(status_code=400, content=b"{}", text="bad")
        mock_post.return_value.json.return_value = {"message": "invalid sender"}
        sent, error = email.send_email("a@b.example", "s", "body")
        self.assertFalse(sent)
        self.assertIn("invalid sender", error)


class TestSecurity(unittest.TestCase):
    def test_round_trip(self):
        token = create_access_token({"sub": "admin-1", "role": "admins"})
        self.assertEqual(decode_token(token)["sub"], "admin-1")

    def test_garbage_token(self):
        self.assertIsNone(decode_token("not-a-token"))


if __name__ == "__main__":
    unittest.main()
