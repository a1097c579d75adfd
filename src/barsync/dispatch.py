"""Single entry point forwarding named actions to internal sync endpoints."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from barsync.config import settings
from barsync.errors import ConfigurationError, InvalidAction

logger = structlog.get_logger()

ACTION_ROUTES = {
    "pos": "/sync/pos",
    "contahub": "/sync/pos",
    "ticketing": "/sync/ticketing",
    "sympla": "/sync/ticketing",
    "accounting": "/sync/accounting",
    "nibo": "/sync/accounting",
    "reviews": "/sync/reviews",
    "google_reviews": "/sync/reviews",
    "sheets": "/sync/sheets",
    "google_sheets": "/sync/sheets",
    "process": "/process",
    "recompute": "/recompute",
}


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def resolve_action(body: dict[str, Any]) -> tuple[str, str]:
    action = body.get("action")
    if not isinstance(action, str) or action not in ACTION_ROUTES:
        raise InvalidAction(
            f"Invalid action: {action}. Use: {', '.join(sorted(ACTION_ROUTES))}",
            details={"action": action},
        )
    return action, ACTION_ROUTES[action]


def _authorization(authorization: str | None) -> str:
    if authorization:
        return authorization
    if settings.service_key is None or not settings.service_key.get_secret_value():
        raise ConfigurationError("Service key not configured")
    return f"Bearer {settings.service_key.get_secret_value()}"


def dispatch(
    body: dict[str, Any],
    authorization: str | None = None,
    *,
    transport: httpx.BaseTransport | None = None,
) -> tuple[int, dict[str, Any]]:
    """Forward ``body`` (minus ``action``) to the endpoint mapped to its action.

    Returns the downstream status code and the response envelope. Unknown
    actions raise InvalidAction before any network call. Never retries.
    """
    action, path = resolve_action(body)
    if not settings.dispatch_base_url:
        raise ConfigurationError("Dispatch base URL not configured")
    url = f"{settings.dispatch_base_url.rstrip('/')}{path}"
    params = {key: value for key, value in body.items() if key != "action"}
    headers = {"Authorization": _authorization(authorization), "Content-Type": "application/json"}

    logger.info("Dispatching action", action=action, target=path)
    try:
        with httpx.Client(timeout=settings.http_timeout_seconds, transport=transport) as client:
            response = client.post(url, json=params, headers=headers)
        result = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Dispatch failed", action=action, target=path, error=str(exc))
        return 500, {"success": False, "error": str(exc), "timestamp": _timestamp()}

    if not response.is_success:
        logger.warning("Downstream returned error", action=action, status=response.status_code)
    return response.status_code, {
        "success": response.is_success,
        "action": action,
        "dispatched_to": path,
        "result": result,
        "timestamp": _timestamp(),
    }
