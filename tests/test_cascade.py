import unittest
from unittest.mock import patch

from helpers import BillingTestCase

from models.advertiser import Advertiser
from models.invoice import Invoice
from models.payment import Payment
from models.refund import Refund
from models.subscription import Subscription
from models.subscription_status_history import SubscriptionStatusHistory
from services import cascade
from services.lifecycle import stop_subscription
from services.refunds import create_refund
from utils.errors import NotFound, InvalidTransition


def failing_step(db, advertiser_id):
    raise RuntimeError("database went away")


class TestDeleteAdvertiser(BillingTestCase):
    def setUp(self):
        super().setUp()
        self.advertiser = self.make_advertiser(status="pending")
        self.advertiser_id = self.advertiser.id
        created = self.subscribe(advertiser=self.advertiser, initial_payment=400)
        self.sub_id = created.subscription_id
        stop_subscription(self.db, self.sub_id, "admin-1", reason="Closing account", clock=self.clock)
        create_refund(
            self.db,
            subscription_id=self.sub_id,
            refund_amount=100,
            refund_reason="Unused days",
            payment_id=created.payment_id,
            clock=self.clock,
        )

    def test_full_deletion(self):
        result = cascade.delete_advertiser(self.db, self.advertiser_id, actor_id="admin-1")

        self.assertEqual(result.status, "completed")
        self.assertEqual(result.completed_steps, list(cascade.STEPS))
        self.assertEqual(result.step_counts["payments"], 1)
        self.assertEqual(result.step_counts["refunds"], 1)
        self.assertEqual(result.step_counts["subscriptions"], 1)

        self.db.expire_all()
        self.assertIsNone(self.db.query(Advertiser).get(self.advertiser_id))
        self.assertEqual(self.db.query(Subscription).count(), 0)
        self.assertEqual(self.db.query(Payment).count(), 0)
        self.assertEqual(self.db.query(Invoice).count(), 0)
        self.assertEqual(self.db.query(Refund).count(), 0)
        # audit trail survives
        self.assertEqual(
            self.db.query(SubscriptionStatusHistory).filter(SubscriptionStatusHistory.subscription_id == self.sub_id).count(),
            1,
        )

    def test_failure_before_anything_destructive_is_compensated(self):
        with patch.dict(cascade.STEP_HANDLERS, {"refunds": failing_step}):
            result = cascade.delete_advertiser(self.db, self.advertiser_id, actor_id="admin-1")

        self.assertEqual(result.status, "compensated")
        self.assertEqual(result.failed_step, "refunds")
        self.assertIn("database went away", result.error)
        self.assertEqual(self.reload(Advertiser, self.advertiser_id).status, "pending")

    def test_failure_midway_then_resume(self):
        with patch.dict(cascade.STEP_HANDLERS, {"invoices": failing_step}):
            failed = cascade.delete_advertiser(self.db, self.advertiser_id, actor_id="admin-1")

        self.assertEqual(failed.status, "failed")
        self.assertEqual(failed.failed_step, "invoices")
        self.assertEqual(failed.completed_steps, ["deactivate_advertiser", "refunds", "payments"])
        self.assertEqual(self.reload(Advertiser, self.advertiser_id).status, "inactive")
        self.assertEqual(self.db.query(Invoice).count(), 1)

        resumed = cascade.resume_cascade(self.db, failed.id)
        self.assertEqual(resumed.status, "completed")
        self.assertIsNone(resumed.failed_step)
        self.assertEqual(self.db.query(Invoice).count(), 0)
        self.assertIsNone(self.reload(Advertiser, self.advertiser_id))

    def test_resume_only_failed(self):
        done = cascade.delete_advertiser(self.db, self.advertiser_id)
        with self.assertRaises(InvalidTransition):
            cascade.resume_cascade(self.db, done.id)
        with self.assertRaises(NotFound):
            cascade.resume_cascade(self.db, 999)

    def test_unknown_advertiser(self):
        with self.assertRaises(NotFound):
            cascade.delete_advertiser(self.db, 999)

    def test_report(self):
        result = cascade.delete_advertiser(self.db, self.advertiser_id)
        report = cascade.cascade_report(result)
        self.assertEqual(report["status"], "completed")
        self.assertEqual(report["advertiser_id"], self.advertiser_id)
        self.assertEqual(report["step_counts"]["advertiser"], 1)


if __name__ == "__main__":
    unittest.main()
