"""
Locust load testing for the job queue admin API.

Run with:
    locust -f tests/load/locustfile.py --host=http://localhost:8000

Or headless:
    locust -f tests/load/locustfile.py --host=http://localhost:8000 \
        --headless -u 100 -r 10 --run-time 5m

Start one or more workers (jobqueue-worker) alongside to measure
end-to-end throughput rather than enqueue rate alone.
"""

import random
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from locust import HttpUser, between, task


def _random_job() -> dict[str, Any]:
    kind = random.choice(["echo", "echo", "sleep", "fail"])
    job: dict[str, Any] = {"kind": kind, "priority": random.randint(0, 10)}

    if kind == "echo":
        job["data"] = {"message": f"Load test at {uuid.uuid4().hex[:8]}"}
    elif kind == "sleep":
        job["data"] = {"duration_seconds": random.uniform(0.1, 1.0)}
    else:
        job["data"] = {"reason": "load test failure"}

    return job


class JobQueueUser(HttpUser):
    """
    Simulated admin client.

    Traffic mix:
    - Enqueues (most common)
    - Job lookups
    - Listing
    - Stats queries
    """

    wait_time = between(0.5, 2)

    def on_start(self):
        """Called when a user starts."""
        self.created_job_ids: list[int] = []

    @task(10)
    def enqueue_job(self):
        """Enqueue a new job."""
        response = self.client.post(
            "/v1/jobs",
            json=_random_job(),
            name="/v1/jobs [POST]",
        )

        if response.status_code == 201:
            self.created_job_ids.append(response.json()["id"])
            # Keep only recent job IDs
            self.created_job_ids = self.created_job_ids[-100:]

    @task(2)
    def enqueue_scheduled_job(self):
        """Enqueue a job that becomes due later."""
        job = _random_job()
        job["run_at"] = (datetime.now(UTC) + timedelta(seconds=random.randint(5, 120))).isoformat()

        self.client.post("/v1/jobs", json=job, name="/v1/jobs [POST] (scheduled)")

    @task(5)
    def get_job(self):
        """Look up a previously created job; completed jobs return 404."""
        if not self.created_job_ids:
            return

        job_id = random.choice(self.created_job_ids)
        with self.client.get(
            f"/v1/jobs/{job_id}",
            name="/v1/jobs/{job_id} [GET]",
            catch_response=True,
        ) as response:
            if response.status_code in (200, 404):
                response.success()

    @task(3)
    def list_jobs(self):
        """List jobs, sometimes only failed ones."""
        params: dict[str, Any] = {"page": 1, "page_size": 20}
        if random.random() < 0.3:
            params["failed"] = True

        self.client.get("/v1/jobs", params=params, name="/v1/jobs [GET]")

    @task(2)
    def get_stats(self):
        """Get job statistics."""
        self.client.get("/v1/jobs/stats/summary", name="/v1/jobs/stats/summary [GET]")

    @task(1)
    def health_check(self):
        """Check API health."""
        self.client.get("/health", name="/health [GET]")


class BurstEnqueueUser(HttpUser):
    """User that enqueues jobs in bursts to build up a backlog for the workers."""

    wait_time = between(5, 10)

    @task
    def burst_enqueue(self):
        """Enqueue a burst of jobs."""
        for _ in range(random.randint(10, 50)):
            self.client.post(
                "/v1/jobs",
                json={"kind": "echo", "data": {"message": "burst"}},
                name="/v1/jobs [POST] (burst)",
            )
