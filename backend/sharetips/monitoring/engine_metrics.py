"""
backend/sharetips/monitoring/engine_metrics.py

Purpose:
    Prometheus metrics for the settlement engine: scheduled job health,
    score provider quota/rate-limit signals, settlement outcomes, ledger
    postings and notification fan-out.

Dependencies:
    - prometheus_client
"""

from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import Counter, Gauge, Histogram

METRIC_JOB_RUNS = Counter(
    "engine_job_runs_total",
    "Scheduled job runs by outcome.",
    ["job", "outcome"],
)
METRIC_JOB_SKIPPED = Counter(
    "engine_job_skipped_total",
    "Job ticks skipped because the previous run was still active.",
    ["job"],
)
METRIC_JOB_DURATION = Histogram(
    "engine_job_duration_seconds",
    "Wall-clock duration of one job run.",
    ["job"],
)
METRIC_PROVIDER_REQUESTS = Counter(
    "score_provider_requests_total",
    "Score provider requests by outcome.",
    ["provider", "outcome"],
)
METRIC_PROVIDER_RATE_LIMITED = Counter(
    "score_provider_rate_limited_total",
    "Rate limit (429) responses from the score provider.",
    ["provider"],
)
METRIC_PROVIDER_QUOTA_REMAINING = Gauge(
    "score_provider_quota_remaining",
    "Requests remaining in the provider quota window.",
    ["provider"],
)
METRIC_PROVIDER_QUOTA_USED = Gauge(
    "score_provider_quota_used",
    "Requests used in the provider quota window.",
    ["provider"],
)
METRIC_MATCHES_UPDATED = Counter(
    "score_sync_matches_updated_total",
    "Match documents changed by score sync.",
    ["sport_key", "status"],
)
METRIC_TICKETS_LOCKED = Counter(
    "tickets_locked_total",
    "Tickets transitioned open -> locked.",
)
METRIC_TICKETS_SETTLED = Counter(
    "tickets_settled_total",
    "Tickets transitioned locked -> finished.",
    ["result"],
)
METRIC_TICKET_ERRORS = Counter(
    "settlement_ticket_errors_total",
    "Unexpected per-ticket failures during settlement.",
)
METRIC_WALLET_CREDITS = Counter(
    "wallet_win_credits_total",
    "Win credits applied to buyer wallets.",
    ["outcome"],  # posted | duplicate
)
METRIC_NOTIFICATIONS = Counter(
    "notifications_created_total",
    "In-app notifications persisted.",
    ["type"],
)
METRIC_EMAILS = Counter(
    "emails_sent_total",
    "Transactional emails by outcome.",
    ["template", "outcome"],  # sent | failed | disabled
)


@contextmanager
def observe_latency(metric):
    start = perf_counter()
    try:
        yield
    finally:
        metric.observe(perf_counter() - start)
