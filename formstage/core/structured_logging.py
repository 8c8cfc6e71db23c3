"""Structured logging helpers for form and upload events."""

from typing import Any


def build_log_context(
    *,
    form_name: str | None = None,
    uniqueid: str | None = None,
    field: str | None = None,
    route: str | None = None,
    user: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict without submitted values or file contents."""
    context: dict[str, Any] = {}
    if form_name:
        context["form_name"] = form_name
    if uniqueid:
        context["uniqueid"] = uniqueid
    if field:
        context["field"] = field
    if route:
        context["route"] = route
    if user:
        context["user"] = user
    return context
