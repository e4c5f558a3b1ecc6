"""Payments load test scenarios.

Two stateful SequentialTaskSet journeys: a customer paying for an order
(and retrying if the simulated gateway declines), and a customer asking for
a partial refund of a settled payment. Orders are seeded into the fake
Order service first, so the target must run outside production.
"""

from locust import HttpUser, SequentialTaskSet, between, task

from loadtests.data_generators import order_data, payment_data, refund_data, user_id
from loadtests.helpers.response import extract_error_detail
from loadtests.helpers.state import PaymentState

ADMIN_HEADERS = {"X-User-Id": "admin-lt", "X-User-Role": "ADMIN"}


class _PaymentJourney(SequentialTaskSet):
    def on_start(self):
        self.state = PaymentState(user_id=user_id())

    def seed_order(self):
        order = order_data(self.state.user_id)
        with self.client.post(
            "/api/payments/dev/orders",
            json=order,
            headers=ADMIN_HEADERS,
            catch_response=True,
            name="POST /api/payments/dev/orders",
        ) as resp:
            if resp.status_code == 201:
                self.state.order = order
            else:
                resp.failure(f"Order seeding failed: {resp.status_code} — {extract_error_detail(resp)}")
                self.interrupt()

    def create_payment(self, **overrides):
        with self.client.post(
            "/api/payments",
            json=payment_data(self.state.order, **overrides),
            headers=self.state.headers,
            catch_response=True,
            name="POST /api/payments",
        ) as resp:
            if resp.status_code == 201:
                body = resp.json()
                self.state.payment_id = body["id"]
                self.state.amount = body["amount"]
                self.state.current_status = body["status"]
            else:
                resp.failure(f"Create payment failed: {resp.status_code} — {extract_error_detail(resp)}")
                self.interrupt()

    def refresh_payment(self):
        with self.client.get(
            f"/api/payments/{self.state.payment_id}",
            headers=self.state.headers,
            catch_response=True,
            name="GET /api/payments/{id}",
        ) as resp:
            if resp.status_code == 200:
                self.state.current_status = resp.json()["status"]
            else:
                resp.failure(f"Get payment failed: {resp.status_code} — {extract_error_detail(resp)}")


class PaymentRetryJourney(_PaymentJourney):
    """Seed Order -> Create Payment -> Check Status -> Retry if FAILED."""

    @task
    def seed(self):
        self.seed_order()

    @task
    def pay(self):
        self.create_payment()

    @task
    def check(self):
        self.refresh_payment()

    @task
    def retry_if_failed(self):
        if self.state.current_status != "FAILED":
            return
        with self.client.post(
            f"/api/payments/{self.state.payment_id}/retry",
            headers=self.state.headers,
            catch_response=True,
            name="POST /api/payments/{id}/retry",
        ) as resp:
            if resp.status_code == 200:
                self.state.current_status = resp.json()["status"]
            else:
                resp.failure(f"Retry failed: {resp.status_code} — {extract_error_detail(resp)}")

    @task
    def done(self):
        self.interrupt()


class PartialRefundJourney(_PaymentJourney):
    """Seed Order -> Pay by Card -> Refund Half -> List Refunds."""

    @task
    def seed(self):
        self.seed_order()

    @task
    def pay(self):
        self.create_payment(method="CARD", gateway="STRIPE")

    @task
    def check(self):
        self.refresh_payment()

    @task
    def refund_half(self):
        if self.state.current_status != "COMPLETED":
            self.interrupt()
            return
        amount = round(self.state.amount / 2, 2)
        with self.client.post(
            "/api/refunds",
            json=refund_data(self.state.payment_id, amount),
            headers=self.state.headers,
            catch_response=True,
            name="POST /api/refunds",
        ) as resp:
            if resp.status_code == 201:
                self.state.refund_ids.append(resp.json()["id"])
            else:
                resp.failure(f"Refund failed: {resp.status_code} — {extract_error_detail(resp)}")

    @task
    def list_refunds(self):
        self.client.get(
            f"/api/refunds/payment/{self.state.payment_id}",
            headers=self.state.headers,
            name="GET /api/refunds/payment/{id}",
        )

    @task
    def done(self):
        self.interrupt()


class PaymentsUser(HttpUser):
    """Customers paying for bakery orders."""

    wait_time = between(0.5, 2.0)
    tasks = {PaymentRetryJourney: 3, PartialRefundJourney: 1}


class PaymentsAdminUser(HttpUser):
    """Back-office staff watching payment and refund statistics."""

    wait_time = between(2.0, 5.0)
    weight = 1

    @task(3)
    def payment_statistics(self):
        self.client.get("/api/payments/statistics", headers=ADMIN_HEADERS, name="GET /api/payments/statistics")

    @task(2)
    def pending_refunds(self):
        self.client.get("/api/refunds/pending", headers=ADMIN_HEADERS, name="GET /api/refunds/pending")

    @task(1)
    def failed_payments(self):
        self.client.get("/api/payments/status/FAILED", headers=ADMIN_HEADERS, name="GET /api/payments/status/FAILED")
