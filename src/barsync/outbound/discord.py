"""Discord webhook notifications."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from barsync.config import settings

logger = structlog.get_logger()

MAX_CONTENT_LENGTH = 2000


def send_discord_message(
    content: str,
    *,
    webhook_url: str | None = None,
    transport: httpx.BaseTransport | None = None,
) -> dict[str, str | bool | None]:
    """Post a message to the configured webhook. Never raises."""
    url = webhook_url or settings.discord_webhook_url
    if not url:
        return {"ok": False, "error": "discord_config_missing"}

    payload = {"content": content[:MAX_CONTENT_LENGTH]}
    try:
        with httpx.Client(timeout=10.0, transport=transport) as client:
            response = client.post(url, json=payload)
        if response.status_code >= 300:
            logger.warning("Discord webhook rejected message", status=response.status_code)
            return {"ok": False, "error": f"discord_http_{response.status_code}"}
        return {"ok": True, "error": None}
    except httpx.HTTPError as exc:
        logger.warning("Discord send failed", error=str(exc))
        return {"ok": False, "error": str(exc)}


def format_daily_summary(stats: dict[str, Any]) -> str:
    status = "OK" if stats.get("success") else "FAILED"
    lines = [f"**Daily sync {stats.get('window_start')} to {stats.get('window_end')}: {status}**"]
    steps = stats.get("steps") or {}
    for name, step in steps.items():
        lines.append(f"- {name}: {step.get('status')}")
    ingest = (steps.get("ingest") or {}).get("result") or {}
    for source in ingest.get("sources", []):
        if not source.get("success"):
            lines.append(f"  - bar {source.get('bar_id')} {source.get('source')}: {source.get('error')}")
    if stats.get("error"):
        lines.append(f"Error: {stats['error']}")
    return "\n".join(lines)
