from prometheus_client import Counter

# Session lifecycle transitions by kind (start, end, observed_start, observed_end)
session_events_total = Counter(
    "trippy_session_events_total",
    "Live session lifecycle events",
    ["event"],
)

# Remote document writes by kind (debounced, structural, generated) and outcome
document_writes_total = Counter(
    "trippy_document_writes_total",
    "Document writes issued by owner clients",
    ["kind", "status"],
)

# Reader refreshes by trigger (push, poll, online, initial, manual) and outcome
sync_refresh_total = Counter(
    "trippy_sync_refresh_total",
    "Synchronization loop refreshes",
    ["trigger", "status"],
)

generation_total = Counter(
    "trippy_generation_total",
    "AI plan generation requests",
    ["status"],
)
