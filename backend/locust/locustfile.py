"""
Locust Load Test Suite

Needs a seeded database: one vendor, one operator, one event and one
vehicle. Point the suite at them with environment variables:

  LOAD_VENDOR_ID, LOAD_OPERATOR_ID, LOAD_EVENT_ID, LOAD_VEHICLE_ID
  SECRET_KEY, STRIPE_WEBHOOK_SECRET   (same values as the API)

Run scenarios:
  locust -f locustfile.py --tags redelivery   # Duplicate webhook storm
  locust -f locustfile.py --tags gate         # Many devices, same passes
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import hashlib
import hmac
import json
import os
import random
import time
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from locust import HttpUser, task, between, tag, events

SECRET_KEY = os.environ.get("SECRET_KEY", "super-secret-key-change-in-production")
WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
VENDOR_ID = int(os.environ.get("LOAD_VENDOR_ID", "1"))
OPERATOR_ID = int(os.environ.get("LOAD_OPERATOR_ID", "2"))
EVENT_ID = int(os.environ.get("LOAD_EVENT_ID", "1"))
VEHICLE_ID = int(os.environ.get("LOAD_VEHICLE_ID", "1"))

# Shared state
SESSION_IDS = [f"cs_load_{uuid.uuid4().hex[:12]}" for _ in range(20)]
REGISTRATION_IDS = []
CREDENTIALS = []


def bearer(user_id: int) -> dict:
    token = jwt.encode(
        {"sub": str(user_id), "exp": datetime.now(timezone.utc) + timedelta(hours=2)},
        SECRET_KEY,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


def completion_event(session_id: str) -> bytes:
    return json.dumps({
        "id": f"evt_{uuid.uuid4().hex}",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": session_id,
            "object": "checkout.session",
            "payment_status": "paid",
            "metadata": {"userId": str(VENDOR_ID), "eventId": str(EVENT_ID), "vehicleId": str(VEHICLE_ID)},
        }},
    }).encode()


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "="*60)
    print(f"SETUP: {len(SESSION_IDS)} payment sessions for event {EVENT_ID}")
    print("="*60)


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    print("\n" + "="*60)
    print("VERIFY: each payment session must have exactly one row")
    print("  SELECT payment_session_id, COUNT(*) FROM registrations")
    print("  WHERE payment_session_id LIKE 'cs_load_%' GROUP BY 1 HAVING COUNT(*) > 1;")
    print("Should return no rows")
    print("="*60)


class RedeliveryUser(HttpUser):
    """
    TEST 1: Redelivery - many workers receive copies of the same events

    Run: locust -f locustfile.py --tags redelivery -u 100 -r 50 --run-time 30s

    Every response must be 200 (created or duplicate); never 500.
    """
    wait_time = between(0, 0.1)

    @tag("redelivery")
    @task
    def deliver_completion(self):
        payload = completion_event(random.choice(SESSION_IDS))
        with self.client.post("/api/v1/webhooks/stripe",
            data=payload,
            headers={"stripe-signature": sign(payload), "content-type": "application/json"},
            name="/api/v1/webhooks/stripe [completed]",
            catch_response=True
        ) as resp:
            if resp.status_code == 200 and resp.json().get("outcome") in ("created", "duplicate"):
                resp.success()
            elif resp.status_code == 503:
                resp.success()  # Retryable, Stripe would redeliver
            else:
                resp.failure(f"Unexpected: {resp.status_code} {resp.text[:100]}")


class GateUser(HttpUser):
    """
    TEST 2: Gate - several devices scanning the same small set of passes

    Run: locust -f locustfile.py --tags gate -u 50 -r 25 --run-time 60s

    After test, verify in the roster that checked_in <= total, and in the
    metrics that checkin_admits_total{result="admitted"} equals the number
    of registrations scanned.
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.headers = bearer(OPERATOR_ID)
        if not REGISTRATION_IDS:
            resp = self.client.get(f"/api/v1/events/{EVENT_ID}/registrations", headers=self.headers)
            if resp.status_code == 200:
                for registration in resp.json()["registrations"]:
                    REGISTRATION_IDS.append(registration["id"])
                    CREDENTIALS.append(registration["credential"])

    @tag("gate")
    @task(3)
    def validate_pass(self):
        if not CREDENTIALS:
            return
        self.client.post("/api/v1/checkin/validate",
            json={"credential": random.choice(CREDENTIALS)},
            headers=self.headers,
            name="/api/v1/checkin/validate")

    @tag("gate")
    @task(2)
    def admit(self):
        if not REGISTRATION_IDS:
            return
        with self.client.post(f"/api/v1/checkin/{random.choice(REGISTRATION_IDS)}",
            headers=self.headers,
            name="/api/v1/checkin/{id}",
            catch_response=True
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("gate")
    @task(1)
    def roster(self):
        self.client.get(f"/api/v1/events/{EVENT_ID}/registrations",
            headers=self.headers,
            name="/api/v1/events/{id}/registrations [cached]")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = bearer(OPERATOR_ID)

    @tag("edge")
    @task
    def unsigned_webhook(self):
        with self.client.post("/api/v1/webhooks/stripe",
            data=completion_event("cs_load_unsigned"),
            catch_response=True
        ) as resp:
            if resp.status_code == 400:
                resp.success()
            else:
                resp.failure(f"Expected 400, got {resp.status_code}")

    @tag("edge")
    @task
    def wrongly_signed_webhook(self):
        payload = completion_event("cs_load_forged")
        with self.client.post("/api/v1/webhooks/stripe",
            data=payload,
            headers={"stripe-signature": sign(payload, secret="whsec_wrong")},
            catch_response=True
        ) as resp:
            if resp.status_code == 400:
                resp.success()
            else:
                resp.failure(f"Expected 400, got {resp.status_code}")

    @tag("edge")
    @task
    def forged_pass(self):
        with self.client.post("/api/v1/checkin/validate",
            json={"credential": f"{VENDOR_ID}-{EVENT_ID}-{VEHICLE_ID}-{int(time.time() * 1000)}.{'0' * 32}"},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def garbage_pass(self):
        with self.client.post("/api/v1/checkin/validate",
            json={"credential": "not a pass at all"},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_registration(self):
        with self.client.post("/api/v1/checkin/999999",
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/checkin/1",
            catch_response=True
        ) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")
