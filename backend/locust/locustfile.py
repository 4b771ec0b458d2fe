"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags replay       # Webhook replay storm
  locust -f locustfile.py --tags concurrency  # Racing status updates
  locust -f locustfile.py --tags throughput   # Test cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests

Tokens are minted locally with the service's SECRET_KEY, so run with the
same environment as the API.
"""

import random
import uuid
from locust import HttpUser, task, between, tag, events

from booking_core.core.security import create_access_token

# Shared state
BOOKING_IDS = []
REPLAY_BOOKING_ID = None
REPLAY_KEY = f"load-replay-{uuid.uuid4().hex[:8]}"
RACE_BOOKING_ID = None

DRIVER_ID = "driver-load"
ADMIN_ID = "admin-load"


def headers_for(actor_id: str, role: str) -> dict:
    token = create_access_token({"sub": actor_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


def booking_payload(category: str = "car", total: int = 238) -> dict:
    return {
        "driverId": DRIVER_ID,
        "vehicleCategory": category,
        "passengers": 2,
        "pricing": {"ratePerKm": "14.00", "totalAmount": str(total), "tripType": "one-way", "distance": "17"},
        "paymentMethod": "razorpay",
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "="*60)
    print(f"SETUP: webhook replay key {REPLAY_KEY}")
    print("="*60)


class WebhookReplayUser(HttpUser):
    """
    TEST 1: Duplicate gateway deliveries - 100 users replay one confirmation

    Run: locust -f locustfile.py --tags replay -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM payment_ledger_entries WHERE idempotency_key = '<key>';
    Should be exactly 1
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        if REPLAY_BOOKING_ID:
            return
        resp = self.client.post("/api/v1/bookings/", json=booking_payload(),
            headers=headers_for(f"rider-{uuid.uuid4().hex[:6]}", "user"))
        if resp.status_code == 201:
            globals()["REPLAY_BOOKING_ID"] = resp.json()["id"]
            print(f"\n✓ Created booking {REPLAY_BOOKING_ID} for replay storm\n")

    @tag("replay")
    @task
    def replay_confirmation(self):
        """Everyone delivers the same confirmation."""
        if not REPLAY_BOOKING_ID:
            return

        with self.client.post("/api/v1/webhooks/payment",
            json={
                "idempotencyKey": REPLAY_KEY,
                "transactionId": "pay_load_replay",
                "bookingId": REPLAY_BOOKING_ID,
                "outcome": "completed",
            },
            catch_response=True
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Lost every retry to a concurrent delivery
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class StatusRaceUser(HttpUser):
    """
    TEST 2: Concurrent transitions on one booking

    Run: locust -f locustfile.py --tags concurrency -u 50 -r 25 --run-time 30s

    Each user reads the version and tries the next driver step. Losers must
    get 409, never a silent overwrite; the history table must show each
    status at most once.
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.driver_headers = headers_for(DRIVER_ID, "driver")
        if RACE_BOOKING_ID:
            return
        resp = self.client.post("/api/v1/bookings/", json=booking_payload("bus", 1200),
            headers=headers_for(f"rider-{uuid.uuid4().hex[:6]}", "user"))
        if resp.status_code == 201:
            globals()["RACE_BOOKING_ID"] = resp.json()["id"]

    @tag("concurrency")
    @task
    def advance_status(self):
        if not RACE_BOOKING_ID:
            return
        current = self.client.get(f"/api/v1/bookings/{RACE_BOOKING_ID}",
            headers=self.driver_headers, name="/api/v1/bookings/{id}")
        if current.status_code != 200:
            return
        booking = current.json()
        next_status = {"pending": "accepted", "accepted": "started", "started": "completed"}.get(booking["status"])
        if not next_status:
            return

        with self.client.post(f"/api/v1/bookings/{RACE_BOOKING_ID}/status",
            json={"targetStatus": next_status, "version": booking["version"]},
            headers=self.driver_headers,
            name="/api/v1/bookings/{id}/status",
            catch_response=True
        ) as resp:
            if resp.status_code in [200, 409]:
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 3: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.admin_headers = headers_for(ADMIN_ID, "admin")

    @tag("throughput", "read")
    @task(10)
    def list_bookings_cached(self):
        page = random.randint(1, 5)
        resp = self.client.get(f"/api/v1/bookings/?page={page}&limit=20",
            headers=self.admin_headers, name="/api/v1/bookings/ [cached]")
        if resp.status_code == 200:
            for booking in resp.json().get("bookings", []):
                if booking["id"] not in BOOKING_IDS:
                    BOOKING_IDS.append(booking["id"])

    @tag("throughput", "read")
    @task(3)
    def get_history(self):
        if BOOKING_IDS:
            self.client.get(f"/api/v1/bookings/{random.choice(BOOKING_IDS)}/history",
                headers=self.admin_headers, name="/api/v1/bookings/{id}/history")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = headers_for(f"rider-{uuid.uuid4().hex[:6]}", "user")

    @tag("edge")
    @task
    def bad_split(self):
        """Split that does not add up to the total."""
        payload = booking_payload()
        payload["split"] = {"online": "100", "cash": "100"}
        with self.client.post("/api/v1/bookings/", json=payload,
            headers=self.headers, catch_response=True) as resp:
            if resp.status_code == 400:
                resp.success()
            else:
                resp.failure(f"Expected 400, got {resp.status_code}")

    @tag("edge")
    @task
    def illegal_edge(self):
        """pending -> completed is not in the table."""
        resp = self.client.post("/api/v1/bookings/", json=booking_payload(), headers=self.headers)
        if resp.status_code != 201:
            return
        booking = resp.json()
        with self.client.post(f"/api/v1/bookings/{booking['id']}/status",
            json={"targetStatus": "completed", "version": booking["version"]},
            headers=headers_for(DRIVER_ID, "driver"),
            name="/api/v1/bookings/{id}/status",
            catch_response=True) as resp:
            if resp.status_code == 409:
                resp.success()
            else:
                resp.failure(f"Expected 409, got {resp.status_code}")

    @tag("edge")
    @task
    def nonexistent_booking(self):
        with self.client.get("/api/v1/bookings/999999", headers=self.headers,
            catch_response=True) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/", data="not json at all",
            headers=self.headers, catch_response=True) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/bookings/", json=booking_payload(),
            catch_response=True) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")
