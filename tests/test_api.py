import unittest
from datetime import timedelta

from helpers import BillingTestCase

from fastapi.testclient import TestClient

from db.init import get_db
from main import app
from utils.clock import get_clock
from utils.deps import get_current_user

ADMIN = {"sub": "admin-1", "role": "admins"}


class TestBillingApi(BillingTestCase):
    def setUp(self):
        super().setUp()
        self.user = ADMIN

        def override_db():
            yield self.db

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_clock] = lambda: self.clock
        app.dependency_overrides[get_current_user] = lambda: self.user
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        super().tearDown()

    def _setup_subscription(self, **overrides):
        advertiser = self.client.post("/advertisers/", json={
            "company_name": "Oasis Dates",
            "phone": "+966500000002",
            "customer_type": "vip",
        }).json()
        plan = self.client.post("/plans/", json={
            "name": "Kingdom Monthly",
            "duration_days": 30,
            "price": 1000,
            "plan_type": "kingdom",
        }).json()
        body = {
            "advertiser_id": advertiser["id"],
            "plan_id": plan["id"],
            "discount_type": "percentage",
            "discount_amount": 20,
            "initial_payment": 200,
        }
        body.update(overrides)
        response = self.client.post("/subscriptions/", json=body)
        self.assertEqual(response.status_code, 200, response.text)
        return advertiser, plan, response.json()

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_requires_admin(self):
        self.user = {"sub": "someone", "role": "customers"}
        self.assertEqual(self.client.get("/subscriptions/").status_code, 403)

        del app.dependency_overrides[get_current_user]
        self.assertEqual(self.client.get("/subscriptions/").status_code, 401)

    def test_create_and_pay(self):
        advertiser, _, created = self._setup_subscription()

        sub = self.client.get(f"/subscriptions/{created['subscription_id']}").json()
        self.assertEqual(float(sub["total_amount"]), 800)
        self.assertEqual(sub["status"], "active")

        response = self.client.post("/payments/", json={"subscription_id": sub["id"], "amount": 600})
        self.assertEqual(response.status_code, 200, response.text)
        self.assertIsNotNone(response.json()["payment_id"])

        response = self.client.post("/payments/", json={"subscription_id": sub["id"], "amount": 1})
        self.assertEqual(response.status_code, 400)

        payments = self.client.get("/payments/", params={"subscription_id": sub["id"]}).json()
        self.assertEqual(len(payments), 2)
        self.assertEqual(payments[0]["recorded_by"], "admin-1")

        summary = self.client.get(f"/advertisers/{advertiser['id']}/financial-summary").json()
        self.assertEqual(float(summary["total_paid"]), 800)
        self.assertEqual(summary["unpaid_invoices"], [])

        refreshed = self.client.get(f"/advertisers/{advertiser['id']}").json()
        self.assertEqual(refreshed["coverage_type"], "kingdom")

    def test_payment_finer_than_a_cent_is_400(self):
        _, _, created = self._setup_subscription()
        sub_id = created["subscription_id"]

        response = self.client.post("/payments/", json={"subscription_id": sub_id, "amount": "100.005"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(len(self.client.get("/payments/", params={"subscription_id": sub_id}).json()), 1)

    def test_overdue_invoices(self):
        _, _, created = self._setup_subscription(initial_payment=0)
        self._setup_subscription(initial_payment=0, start_date=(self.clock.now() + timedelta(days=10)).isoformat())

        self.assertEqual(self.client.get("/invoices/overdue").json(), [])

        self.clock.advance(days=1)
        overdue = self.client.get("/invoices/overdue")
        self.assertEqual(overdue.status_code, 200, overdue.text)
        self.assertEqual([i["id"] for i in overdue.json()], [created["invoice_id"]])
        self.assertEqual(overdue.json()[0]["status"], "unpaid")

        self.clock.advance(days=10)
        self.assertEqual(len(self.client.get("/invoices/overdue").json()), 2)

    def test_invalid_discount_is_400(self):
        advertiser = self.client.post("/advertisers/", json={"company_name": "A", "phone": "1"}).json()
        plan = self.client.post("/plans/", json={"name": "P", "duration_days": 30, "price": 100}).json()
        response = self.client.post("/subscriptions/", json={
            "advertiser_id": advertiser["id"],
            "plan_id": plan["id"],
            "discount_type": "percentage",
            "discount_amount": 120,
        })
        self.assertEqual(response.status_code, 400)

    def test_lifecycle_endpoints(self):
        _, _, created = self._setup_subscription()
        sub_id = created["subscription_id"]

        self.clock.advance(days=10)
        paused = self.client.post(f"/subscriptions/{sub_id}/pause", json={"reason": "Ramadan break"})
        self.assertEqual(paused.status_code, 200, paused.text)
        self.assertEqual(paused.json()["details"]["days_remaining"], 20)

        self.assertEqual(self.client.post(f"/subscriptions/{sub_id}/pause").status_code, 409)

        self.clock.advance(days=5)
        resumed = self.client.post(f"/subscriptions/{sub_id}/resume").json()
        self.assertEqual(resumed["details"]["pause_duration_days"], 5)

        self.assertEqual(self.client.post(f"/subscriptions/{sub_id}/stop", json={}).status_code, 400)
        stopped = self.client.post(f"/subscriptions/{sub_id}/stop", json={"reason": "Out of budget"})
        self.assertEqual(stopped.json()["status"], "stopped")

        history = self.client.get(f"/subscriptions/{sub_id}/status-history").json()
        self.assertEqual([h["action_type"] for h in history], ["stop", "resume", "pause"])

        self.assertEqual(self.client.post("/subscriptions/999/pause").status_code, 404)

    def test_grace_endpoints(self):
        _, _, created = self._setup_subscription()
        sub_id = created["subscription_id"]

        state = self.client.post(f"/subscriptions/{sub_id}/grace/activate", json={}).json()
        self.assertEqual(state["days_added"], 14)

        info = self.client.get(f"/subscriptions/{sub_id}/grace").json()
        self.assertTrue(info["is_in_grace_period"])
        self.assertEqual(len(info["extensions"]), 1)

        stats = self.client.get("/subscriptions/grace-period/stats").json()
        self.assertEqual(stats["total"], 1)

        ended = self.client.post(f"/subscriptions/{sub_id}/grace/end", json={"reason": "Done"}).json()
        self.assertEqual(ended["status"], "expired")
        self.assertEqual(self.client.post(f"/subscriptions/{sub_id}/grace/end").status_code, 409)

    def test_sweep_and_cancel(self):
        _, _, created = self._setup_subscription()
        sub_id = created["subscription_id"]

        cancelled = self.client.post(f"/subscriptions/{sub_id}/cancel", json={"reason": "Duplicate"}).json()
        self.assertEqual(float(cancelled["refund_amount"]), 800)

        self.clock.advance(days=31)
        swept = self.client.post("/subscriptions/sweep").json()
        self.assertEqual(swept["expired"], [])

    def test_calculate_discount(self):
        response = self.client.post("/subscriptions/calculate-discount", json={
            "base_price": 1000,
            "discount_type": "percentage",
            "discount_amount": 20,
            "vat_percentage": 15,
        })
        self.assertEqual(float(response.json()["total_amount"]), 920)

    def test_plan_locked_while_in_use(self):
        _, plan, _ = self._setup_subscription()

        self.assertEqual(self.client.put(f"/plans/{plan['id']}", json={"price": 1200}).status_code, 409)
        self.assertEqual(self.client.put(f"/plans/{plan['id']}", json={"name": "Renamed"}).status_code, 200)

        deleted = self.client.delete(f"/plans/{plan['id']}").json()
        self.assertEqual(deleted, {"deleted": False, "deactivated": True})

    def test_delete_advertiser_returns_report(self):
        advertiser, _, _ = self._setup_subscription()
        report = self.client.delete(f"/advertisers/{advertiser['id']}").json()
        self.assertEqual(report["status"], "completed")
        self.assertEqual(self.client.get(f"/advertisers/{advertiser['id']}").status_code, 404)

    def test_refund_flow(self):
        _, _, created = self._setup_subscription()
        response = self.client.post("/refunds/", json={
            "subscription_id": created["subscription_id"],
            "refund_amount": 50,
            "refund_reason": "Goodwill",
        })
        self.assertEqual(response.status_code, 200, response.text)
        refund_id = response.json()["id"]

        self.assertEqual(len(self.client.get("/refunds/pending").json()), 1)
        done = self.client.put(f"/refunds/{refund_id}/status", json={"status": "completed"}).json()
        self.assertEqual(done["status"], "completed")
        self.assertIsNotNone(done["completed_at"])


if __name__ == "__main__":
    unittest.main()
