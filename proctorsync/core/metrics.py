"""Prometheus metric inventory.

Every metric the service exports is declared here; the owning modules
import and update them at the point of action.

HTTP metrics label the endpoint by its ROUTE TEMPLATE
(``/v1/progress/{user_id}/overall``), never the raw path.  Paths here carry
user, course and video ids, and one label value per learner would blow up
the time-series count.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the middleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Progress sync
# ---------------------------------------------------------------------------

SYNC_OPERATIONS = Counter(
    "sync_operations_total",
    "Remote reconciliation attempts by kind and result",
    ["kind", "result"],  # kind: video|aggregate|pull  result: ok|failed
)

SYNC_OUTBOX_DEPTH = Gauge(
    "sync_outbox_depth",
    "Progress records waiting for an acknowledged remote write",
)

SYNC_DURATION = Histogram(
    "sync_tick_duration_seconds",
    "Wall time of one video sync tick",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ---------------------------------------------------------------------------
# Proctoring
# ---------------------------------------------------------------------------

ALERTS = Counter(
    "alerts_total",
    "Violation alerts by outcome",
    ["result"],  # written|failed|suppressed
)

FACE_POLLS = Counter(
    "face_polls_total",
    "Face presence polls by raw result",
    ["result"],  # present|absent|error
)

JOBS_SKIPPED = Counter(
    "scheduled_jobs_skipped_total",
    "Periodic job ticks skipped because the previous run was still busy",
    ["job"],
)

# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------

MIGRATIONS = Counter(
    "migrations_total",
    "Legacy progress migrations by result",
    ["result"],  # success|failed
)
