"""
Prometheus metrics for the delivery pipeline.

Registered on the prometheus_client global REGISTRY at import time.
"""

from prometheus_client import Counter, Gauge, Histogram

EVENTS_ENQUEUED_TOTAL = Counter(
    "identro_events_enqueued_total",
    "Total number of events accepted into the local queue",
)

EVENTS_DROPPED_TOTAL = Counter(
    "identro_events_dropped_total",
    "Events removed from the queue without being accepted by the collector",
    ["reason"],  # evicted | permanent_error
)

BATCHES_TOTAL = Counter(
    "identro_batches_total",
    "Delivery attempts by outcome",
    ["outcome"],  # success | partial | transient_error | permanent_error
)

BATCH_SEND_LATENCY_MS = Histogram(
    "identro_batch_send_latency_ms",
    "Batch delivery latency (including retries) in milliseconds",
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

RETRIES_TOTAL = Counter(
    "identro_retries_total",
    "Retry attempts scheduled by the retry executor",
)

QUEUE_DEPTH = Gauge(
    "identro_queue_depth",
    "Events currently waiting in the local queue",
)

