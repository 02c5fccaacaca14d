"""Prometheus metrics helpers for billing domain."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

WEBHOOK_RECEIVED_COUNT = Counter(
    "billing_webhook_received_total",
    "Inbound payment webhooks by provider, event type and outcome",
    labelnames=("integration", "event_type", "outcome"),
)

WEBHOOK_LATENCY = Histogram(
    "billing_webhook_duration_seconds",
    "Time spent processing a payment webhook",
    labelnames=("integration",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 20),
)

CREDIT_MUTATION_COUNT = Counter(
    "billing_credit_mutation_total",
    "Credit ledger mutations by direction and source",
    labelnames=("direction", "source"),
)

CREDIT_REJECTION_COUNT = Counter(
    "billing_credit_rejection_total",
    "Credit operations refused by the ledger",
    labelnames=("operation", "reason"),
)

PLAN_CHANGE_COUNT = Counter(
    "billing_plan_change_total",
    "Plan change requests by outcome",
    labelnames=("outcome",),
)

SUBSCRIPTION_TRANSITION_COUNT = Counter(
    "billing_subscription_transition_total",
    "Subscription state transitions applied by the reconciler",
    labelnames=("event_type", "status"),
)
