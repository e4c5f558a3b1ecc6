"""Bakery Payments Load Testing — Locust entry point.

Discovers all user classes from the scenarios package.
Run specific scenarios with Locust's class selection.

Usage:
    # All scenarios (web UI):
    locust -f loadtests/locustfile.py --host http://localhost:8000

    # Customers only, headless (CI mode):
    locust -f loadtests/locustfile.py PaymentsUser --headless \
           -u 50 -r 5 -t 300s --csv=results/loadtest
"""

import logging
import time

import requests
from locust import events

# Import all user classes so Locust discovers them
from loadtests.helpers.response import extract_error_detail
from loadtests.scenarios.payments import PaymentsAdminUser, PaymentsUser  # noqa: F401

logger = logging.getLogger("loadtest")


@events.request.add_listener
def on_request(request_type, name, response, exception, **_kw):
    """Log error details for every failed request.

    Fires globally for all scenarios — no per-task wiring needed.
    Extracts the API error body so you see "RETRY_NOT_ALLOWED: Maximum retry
    attempts (3) exceeded" instead of just "400".
    """
    if exception:
        logger.error("[EXCEPTION] %s %s: %s", request_type, name, exception)
    elif response is not None and response.status_code >= 400:
        detail = extract_error_detail(response)
        logger.error("[%s] %s %s: %s", response.status_code, request_type, name, detail)


@events.test_start.add_listener
def on_test_start(environment, **_kwargs):
    """Log a marker when load test begins."""
    print(f"\n[LOADTEST] Started at {time.strftime('%H:%M:%S')}")
    print(f"[LOADTEST] Target host: {environment.host}")
    print()


@events.test_stop.add_listener
def on_test_stop(environment, **_kwargs):
    """Fetch and print payment statistics when the test ends."""
    print(f"\n[LOADTEST] Stopped at {time.strftime('%H:%M:%S')}")
    try:
        resp = requests.get(
            f"{environment.host}/api/payments/statistics",
            headers={"X-User-Role": "ADMIN"},
            timeout=5,
        )
        stats = resp.json()
        print("\n[LOADTEST] Final payment statistics:")
        for status, totals in stats.get("by_status", {}).items():
            print(f"  {status:<11} count={totals['count']:<6} amount={totals['amount']}")
        print()
    except Exception as e:
        print(f"[LOADTEST] Could not fetch payment statistics: {e}\n")
