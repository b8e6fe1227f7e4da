from prometheus_client import Counter, Histogram, Gauge, REGISTRY


# we check if they are already registered to avoid errors during hot reloads or test runs
def get_or_create_metric(name, documentation, metric_type, **kwargs):
    try:
        return metric_type(name, documentation, **kwargs)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


REQUESTS_TOTAL = get_or_create_metric(
    "callback_requests_total",
    "Total requests",
    Counter,
    labelnames=["endpoint", "status"],
)

REQUEST_LATENCY_SECONDS = get_or_create_metric(
    "callback_request_latency_seconds",
    "Request latency",
    Histogram,
    labelnames=["endpoint"],
)

CALLBACKS_CREATED_TOTAL = get_or_create_metric(
    "callbacks_created_total",
    "Callbacks created, by origin (wrap_up or manual)",
    Counter,
    labelnames=["source"],
)

CALLBACKS_RESCHEDULED_TOTAL = get_or_create_metric(
    "callbacks_rescheduled_total",
    "Drag-and-drop reschedules by target column",
    Counter,
    labelnames=["target"],
)

OVERDUE_ALERTS_TOTAL = get_or_create_metric(
    "overdue_alerts_total", "Overdue alerts raised", Counter
)

BOARD_SIZE = get_or_create_metric(
    "callback_board_size",
    "Cards per column on the last rendered board",
    Gauge,
    labelnames=["bucket"],
)
