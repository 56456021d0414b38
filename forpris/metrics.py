"""Prometheus metrics for the compliance monitor."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("forpris_monitor", "Førpris compliance monitor application info")
app_info.info({"version": "0.1.0", "name": "forpris-monitor"})

# Fetch metrics
variant_fetches_total = Counter(
    "variant_fetches_total",
    "Total number of variant price fetches from the commerce platform",
    ["status"],
)

# Evaluation metrics
evaluations_total = Counter(
    "compliance_evaluations_total",
    "Total number of compliance evaluations",
    ["outcome"],
)

compliance_issues_total = Counter(
    "compliance_issues_total",
    "Total number of compliance issues raised",
    ["rule"],
)

variants_skipped_total = Counter(
    "variants_skipped_total",
    "Variants skipped during a scan",
    ["reason"],
)

# Scan metrics
scan_runs_total = Counter(
    "scan_runs_total",
    "Total number of shop scans",
    ["trigger", "status"],
)

scan_duration_seconds = Histogram(
    "scan_duration_seconds",
    "Time spent scanning a shop",
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

scan_last_run_timestamp = Gauge(
    "scan_last_run_timestamp",
    "Timestamp of the last completed scan",
    ["shop"],
)


def record_fetch(success: bool):
    """Record a variant fetch."""
    variant_fetches_total.labels(status="success" if success else "error").inc()


def record_evaluation(compliant: bool, rules: list[str]):
    """Record an evaluation outcome and the rules it flagged."""
    evaluations_total.labels(outcome="compliant" if compliant else "non_compliant").inc()
    for rule in rules:
        compliance_issues_total.labels(rule=rule).inc()


def record_variant_skipped(reason: str):
    """Record a variant skipped during a scan."""
    variants_skipped_total.labels(reason=reason).inc()


def record_scan(shop: str, trigger: str, success: bool, duration: float):
    """Record a completed or failed scan."""
    scan_runs_total.labels(trigger=trigger, status="success" if success else "error").inc()
    scan_duration_seconds.observe(duration)
    if success:
        scan_last_run_timestamp.labels(shop=shop).set(time.time())
