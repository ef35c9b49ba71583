import unittest
from datetime import timedelta

from helpers import BillingTestCase, START

from models.advertiser import Advertiser
from models.subscription import Subscription
from services import lifecycle
from utils.errors import InvalidTransition, ValidationError, NotFound


class TestPauseResume(BillingTestCase):
    def setUp(self):
        super().setUp()
        self.created = self.subscribe(initial_payment=1000)
        self.sub_id = self.created.subscription_id

    def test_pause_on_day_10_resume_5_days_later(self):
        self.clock.advance(days=10)
        paused = lifecycle.pause_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)

        self.assertEqual(paused.status, "paused")
        self.assertEqual(paused.details["days_remaining"], 20)
        self.assertEqual(paused.details["active_days"], 10)

        self.clock.advance(days=5)
        resumed = lifecycle.resume_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)

        self.assertEqual(resumed.status, "active")
        self.assertEqual(resumed.details["pause_duration_days"], 5)
        self.assertEqual(resumed.end_date, self.clock.localize(START) + timedelta(days=35))

        sub = self.reload(Subscription, self.sub_id)
        self.assertEqual(sub.remaining_active_days, 20)
        self.assertEqual(sub.total_paused_days, 5)
        self.assertIsNone(sub.paused_at)
        self.assertEqual(self.clock.localize(sub.original_end_date), self.clock.localize(START) + timedelta(days=30))

        history = lifecycle.get_status_history(self.db, self.sub_id)
        self.assertEqual([h.action_type for h in history[:2]], ["resume", "pause"])
        self.assertEqual(history[0].pause_duration_days, 5)
        self.assertEqual(history[1].days_before_change, 20)

    def test_fresh_subscription_keeps_remaining_days_across_pause(self):
        before = self.reload(Subscription, self.sub_id)
        self.assertEqual(before.remaining_active_days, 30)
        self.assertEqual(before.active_days, 0)

        lifecycle.pause_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)
        self.clock.advance(days=5)
        resumed = lifecycle.resume_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)

        self.assertEqual(resumed.details["days_remaining"], 30)
        self.assertEqual(self.reload(Subscription, self.sub_id).remaining_active_days, 30)

    def test_paused_subscription_drops_out_of_coverage(self):
        sub = self.reload(Subscription, self.sub_id)
        lifecycle.pause_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)

        advertiser = self.reload(Advertiser, sub.advertiser_id)
        self.assertIsNone(advertiser.coverage_type)
        self.assertEqual(advertiser.coverage_cities, [])

    def test_pause_twice(self):
        lifecycle.pause_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)
        with self.assertRaises(InvalidTransition):
            lifecycle.pause_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)

    def test_resume_active(self):
        with self.assertRaises(InvalidTransition):
            lifecycle.resume_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)

    def test_pause_after_end(self):
        self.clock.advance(days=31)
        with self.assertRaises(InvalidTransition):
            lifecycle.pause_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)

    def test_pause_pending_payment(self):
        pending = self.subscribe()
        with self.assertRaises(InvalidTransition):
            lifecycle.pause_subscription(self.db, pending.subscription_id, "admin-1", clock=self.clock)

    def test_unknown_subscription(self):
        with self.assertRaises(NotFound):
            lifecycle.pause_subscription(self.db, 999, "admin-1", clock=self.clock)


class TestStopReactivate(BillingTestCase):
    def setUp(self):
        super().setUp()
        self.created = self.subscribe(initial_payment=1000)
        self.sub_id = self.created.subscription_id

    def test_stop_requires_reason(self):
        with self.assertRaises(ValidationError):
            lifecycle.stop_subscription(self.db, self.sub_id, "admin-1", reason="  ", clock=self.clock)
        self.assertEqual(self.reload(Subscription, self.sub_id).status, "active")

    def test_stop_active(self):
        self.clock.advance(days=10)
        stopped = lifecycle.stop_subscription(self.db, self.sub_id, "admin-1", reason="Shop closed", clock=self.clock)

        self.assertEqual(stopped.status, "stopped")
        self.assertEqual(stopped.details["days_used"], 10)
        self.assertEqual(stopped.details["days_wasted"], 20)

        sub = self.reload(Subscription, self.sub_id)
        self.assertEqual(sub.stop_reason, "Shop closed")
        self.assertEqual(self.clock.localize(sub.actual_end_date), self.clock.now())

    def test_stop_paused_uses_pause_snapshot(self):
        self.clock.advance(days=12)
        lifecycle.pause_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)
        self.clock.advance(days=3)

        stopped = lifecycle.stop_subscription(self.db, self.sub_id, "admin-1", reason="Moving", clock=self.clock)
        self.assertEqual(stopped.details["days_used"], 12)
        self.assertEqual(stopped.details["days_wasted"], 18)

    def test_stop_stopped(self):
        lifecycle.stop_subscription(self.db, self.sub_id, "admin-1", reason="x", clock=self.clock)
        with self.assertRaises(InvalidTransition):
            lifecycle.stop_subscription(self.db, self.sub_id, "admin-1", reason="x", clock=self.clock)

    def test_reactivate_uses_planned_days(self):
        # pause/resume stretches the current run to 35 days; reactivation goes back to 30
        self.clock.advance(days=5)
        lifecycle.pause_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)
        self.clock.advance(days=5)
        lifecycle.resume_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)
        self.clock.advance(days=2)
        lifecycle.stop_subscription(self.db, self.sub_id, "admin-1", reason="Paused campaign", clock=self.clock)

        self.clock.advance(days=7)
        result = lifecycle.reactivate_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)

        self.assertEqual(result.status, "active")
        self.assertEqual(result.start_date, self.clock.now())
        self.assertEqual(result.end_date, self.clock.now() + timedelta(days=30))

        sub = self.reload(Subscription, self.sub_id)
        self.assertEqual(sub.total_paused_days, 0)
        self.assertEqual(sub.total_grace_extensions, 0)
        self.assertFalse(sub.is_in_grace_period)
        self.assertIsNone(sub.stopped_at)

    def test_reactivate_with_explicit_start(self):
        lifecycle.stop_subscription(self.db, self.sub_id, "admin-1", reason="x", clock=self.clock)
        new_start = self.clock.now() + timedelta(days=3)

        result = lifecycle.reactivate_subscription(
            self.db, self.sub_id, "admin-1", new_start_date=new_start, clock=self.clock,
        )
        self.assertEqual(result.start_date, new_start)
        self.assertEqual(result.end_date, new_start + timedelta(days=30))

    def test_reactivate_active(self):
        with self.assertRaises(InvalidTransition):
            lifecycle.reactivate_subscription(self.db, self.sub_id, "admin-1", clock=self.clock)

    def test_reactivate_pending_payment(self):
        pending = self.subscribe()
        result = lifecycle.reactivate_subscription(self.db, pending.subscription_id, "admin-1", clock=self.clock)
        self.assertEqual(result.status, "active")

    def test_history_is_append_only_snapshot(self):
        self.clock.advance(days=1)
        lifecycle.stop_subscription(self.db, self.sub_id, "admin-7", reason="x", clock=self.clock)
        lifecycle.reactivate_subscription(self.db, self.sub_id, "admin-7", clock=self.clock)

        history = lifecycle.get_status_history(self.db, self.sub_id)
        self.assertEqual([h.action_type for h in history], ["reactivate", "stop"])
        for entry in history:
            self.assertEqual(entry.changed_by, "admin-7")
            self.assertEqual(entry.amount_paid, 1000)
            self.assertEqual(entry.amount_remaining, 0)


if __name__ == "__main__":
    unittest.main()
