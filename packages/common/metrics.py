"""
Prometheus metrics for document processing and mapping reconciliation.
"""
from prometheus_client import Counter, Histogram


# ── Documents ────────────────────────────────────────────────
documents_uploaded_total = Counter(
    "documents_uploaded_total",
    "Total documents uploaded",
    ["mime_type"],
)

documents_processed_total = Counter(
    "documents_processed_total",
    "Total documents that reached awaiting_validation",
    ["document_type"],
)

documents_failed_total = Counter(
    "documents_failed_total",
    "Total documents moved to error",
    ["reason"],
)

ocr_duration_seconds = Histogram(
    "ocr_duration_seconds",
    "Time spent waiting on the OCR collaborator",
    buckets=[0.5, 1, 5, 10, 30, 60, 120, 300],
)

# ── Classification ───────────────────────────────────────────
items_classified_total = Counter(
    "items_classified_total",
    "Line items classified",
    ["item_kind", "requires_review"],
)

# ── Reconciliation ───────────────────────────────────────────
confirmations_total = Counter(
    "confirmations_total",
    "User confirmations applied",
    ["record_kind", "adjusted"],
)

confirmation_conflicts_total = Counter(
    "confirmation_conflicts_total",
    "Confirmations rejected because another value was already committed",
    ["record_kind"],
)
