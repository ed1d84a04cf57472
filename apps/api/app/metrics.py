from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

expense_transitions_total = Counter(
    "expense_transitions_total",
    "Expense workflow transitions by action and resulting status",
    ["action", "status"],
)

tickets_created_total = Counter(
    "tickets_created_total",
    "Support tickets created by channel",
    ["channel"],
)

scheduler_bookings_total = Counter(
    "scheduler_bookings_total",
    "Public booking attempts by outcome",
    ["outcome"],
)

ledger_entries_posted_count = Counter(
    "ledger_entries_posted_count",
    "Total posted ledger entries by source",
    ["source_type"],
)

ledger_post_failures_count = Counter(
    "ledger_post_failures_count",
    "Total ledger post failures by reason",
    ["reason"],
)

emails_sent_total = Counter(
    "emails_sent_total",
    "Outgoing emails by template and delivery outcome",
    ["template", "outcome"],
)


# label by route template; unmatched paths collapse uuid and integer segments to {id}
_ID_SEGMENT_RE = re.compile(
    r"/(?:[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}|\d+)(?=/|$)"
)
_TEMPLATE_PARAM_RE = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    if isinstance(template, str) and template:
        return _TEMPLATE_PARAM_RE.sub("{id}", template)
    return _ID_SEGMENT_RE.sub("/{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_expense_transition(action: str, status: str) -> None:
    expense_transitions_total.labels(action=action, status=status).inc()


def observe_ticket_created(channel: str) -> None:
    tickets_created_total.labels(channel=channel).inc()


def observe_booking(outcome: str) -> None:
    scheduler_bookings_total.labels(outcome=outcome).inc()


def observe_ledger_entry_posted(source_type: str) -> None:
    ledger_entries_posted_count.labels(source_type=source_type).inc()


def observe_ledger_post_failure(reason: str) -> None:
    ledger_post_failures_count.labels(reason=reason).inc()


def observe_email(template: str, outcome: str) -> None:
    emails_sent_total.labels(template=template, outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
