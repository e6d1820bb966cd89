# seqcast/metrics.py
from prometheus_client import Counter, Gauge, Histogram

PUSH_COUNT           = Counter("seqcast_pushes_total", "Total sequence values pushed")
LAGGED_VALUES        = Counter("seqcast_lagged_values_total", "Values skipped by lagging subscriptions")
ACTIVE_SUBSCRIPTIONS = Gauge(  "seqcast_active_subscriptions", "Currently open subscriptions")
LAST_VALUE           = Gauge(  "seqcast_last_value", "Most recently pushed sequence value")
PUSH_LATENCY         = Histogram("seqcast_push_duration_seconds", "Push request duration")
