"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

# Analysis metrics
analyses_total = Counter(
    "promoguard_analyses_total",
    "Total bot analyses",
    ["action"],
)

analysis_duration = Histogram(
    "promoguard_analysis_duration_seconds",
    "Scoring and action resolution duration",
)

samples_rejected = Counter(
    "promoguard_samples_rejected_total",
    "Engagement samples rejected by validation",
)

# Alert metrics
alerts_emitted = Counter(
    "promoguard_alerts_emitted_total",
    "Alert events emitted",
    ["severity", "type"],
)

alerts_suppressed = Counter(
    "promoguard_alerts_suppressed_total",
    "Qualifying analyses that stayed below the alert count threshold",
    ["type"],
)

# Delivery metrics
channel_deliveries = Counter(
    "promoguard_channel_deliveries_total",
    "Notification channel delivery outcomes",
    ["channel", "status"],
)

# Ledger metrics
ledger_write_failures = Counter(
    "promoguard_ledger_write_failures_total",
    "Ledger writes that exhausted their retries",
)

# Sample store metrics
sample_store_failures = Counter(
    "promoguard_sample_store_failures_total",
    "Analyses scored from the submitted batch because the sample store failed",
)
