"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Race for the last seats
  locust -f locustfile.py --tags throughput   # Context cache and reads
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import random
import uuid
from locust import HttpUser, task, between, tag, events
from datetime import datetime, timezone, timedelta

# Shared state
SLOT_IDS = []
BOOKED_EMAILS = []
CONCURRENCY_SLOT_ID = None
CONCURRENCY_CAPACITY = 10


def random_email():
    return f"load_{uuid.uuid4().hex[:12]}@test.com"


def future_window(days: int):
    start = datetime.now(timezone.utc) + timedelta(days=days)
    return start.isoformat(), (start + timedelta(minutes=30)).isoformat()


def create_slot(client, capacity: int, days: int = 30):
    resp = client.post("/api/v1/events/", json={
        "name": f"Office Hours {random.randint(1, 10000)}",
        "host_email": "host@test.com",
    })
    if resp.status_code != 201:
        return None
    start, end = future_window(days)
    resp = client.post("/api/v1/slots/", json={
        "event_id": resp.json()["id"],
        "start_time": start,
        "end_time": end,
        "capacity": capacity,
    })
    if resp.status_code != 201:
        return None
    return resp.json()["id"]


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "="*60)
    print("SETUP: slots are created by the first user of each class")
    print("="*60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 attendees -> 10 seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      GET /api/v1/slots/{id}  ->  confirmed_count == 10
      SELECT COUNT(*) FROM bookings
        WHERE slot_id = X AND NOT is_waitlisted AND cancelled_at IS NULL;
    Must never exceed 10; everyone else is on the waitlist at 1..n.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        global CONCURRENCY_SLOT_ID
        if not CONCURRENCY_SLOT_ID:
            CONCURRENCY_SLOT_ID = create_slot(self.client, CONCURRENCY_CAPACITY)
            if CONCURRENCY_SLOT_ID:
                print(f"\nCreated slot {CONCURRENCY_SLOT_ID} with {CONCURRENCY_CAPACITY} seats\n")

    @tag("concurrency")
    @task
    def race_for_seat(self):
        """Every attendee fights for the same 10 seats."""
        if not CONCURRENCY_SLOT_ID:
            return

        with self.client.post("/api/v1/bookings/",
            json={"slot_id": CONCURRENCY_SLOT_ID, "first_name": "Load", "email": random_email()},
            name="/api/v1/bookings/ [race]",
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409 and resp.json().get("error") == "slot_conflict":
                resp.success()  # Expected under heavy contention: lost every retry
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("concurrency")
    @task
    def check_capacity(self):
        if not CONCURRENCY_SLOT_ID:
            return
        with self.client.get(f"/api/v1/slots/{CONCURRENCY_SLOT_ID}",
            name="/api/v1/slots/{id}",
            catch_response=True
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Unexpected: {resp.status_code}")
            elif resp.json()["confirmed_count"] > CONCURRENCY_CAPACITY:
                resp.failure("Overbooked")
            else:
                resp.success()


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - attendee context cache effectiveness

    Run: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s

    Compare the first and later batches of the same emails:
      - Avg response time
      - attendee_context_cache_total{result="hit"} at /metrics
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def batch_context(self):
        """Hammer the cached endpoint."""
        emails = random.sample(BOOKED_EMAILS, min(len(BOOKED_EMAILS), 20)) or [random_email()]
        self.client.post("/api/v1/attendees/context", json={"emails": emails},
            name="/api/v1/attendees/context [cached]")

    @tag("throughput", "read")
    @task(3)
    def slot_summary(self):
        if SLOT_IDS:
            self.client.get(f"/api/v1/slots/{random.choice(SLOT_IDS)}",
                name="/api/v1/slots/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    @tag("edge")
    @task
    def invalid_slot_id(self):
        with self.client.post("/api/v1/bookings/",
            json={"slot_id": 999999, "first_name": "Edge", "email": random_email()},
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_email(self):
        with self.client.post("/api/v1/bookings/",
            json={"slot_id": 1, "first_name": "Edge", "email": "not-an-email"},
            catch_response=True
        ) as resp:
            if resp.status_code == 422:
                resp.success()
            else:
                resp.failure(f"Expected 422, got {resp.status_code}")

    @tag("edge")
    @task
    def negative_capacity(self):
        with self.client.put("/api/v1/slots/1/capacity",
            json={"capacity": -5},
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 404, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/404/422, got {resp.status_code}")

    @tag("edge")
    @task
    def attendance_before_session_end(self):
        """Sessions in the load test are in the future; marking must be refused."""
        if not BOOKED_EMAILS:
            return
        with self.client.put("/api/v1/bookings/1/attendance",
            json={"status": "attended"},
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 404]:
                resp.success()
            else:
                resp.failure(f"Expected 400/404, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly dashboard reads
      - Some bookings and cancellations (cancellations drive promotion)
      - Rare slot creation
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.my_bookings = []

    @task(30)
    def view_slot(self):
        if SLOT_IDS:
            self.client.get(f"/api/v1/slots/{random.choice(SLOT_IDS)}", name="/api/v1/slots/{id}")

    @task(10)
    def list_bookings(self):
        if SLOT_IDS:
            self.client.get(f"/api/v1/slots/{random.choice(SLOT_IDS)}/bookings",
                name="/api/v1/slots/{id}/bookings")

    @task(10)
    def book(self):
        if not SLOT_IDS:
            return
        email = random_email()
        resp = self.client.post("/api/v1/bookings/",
            json={"slot_id": random.choice(SLOT_IDS), "first_name": "Real", "email": email})
        if resp.status_code == 201:
            self.my_bookings.append(resp.json()["booking_id"])
            BOOKED_EMAILS.append(email)

    @task(3)
    def cancel(self):
        if self.my_bookings:
            booking_id = self.my_bookings.pop(random.randrange(len(self.my_bookings)))
            self.client.delete(f"/api/v1/bookings/{booking_id}", name="/api/v1/bookings/{id}")

    @task(1)
    def create_slot(self):
        slot_id = create_slot(self.client, random.randint(1, 5), days=random.randint(1, 90))
        if slot_id:
            SLOT_IDS.append(slot_id)
