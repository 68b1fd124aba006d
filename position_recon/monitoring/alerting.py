"""
Webhook alerts for reconciliation events.

Sends notifications via webhook (Telegram, Discord or generic JSON).
Configure via environment variables:
  ALERT_WEBHOOK_URL  - Telegram bot URL, Discord webhook URL or any JSON endpoint
  ALERT_CHAT_ID      - Telegram chat ID (required for Telegram, ignored otherwise)

If no webhook is configured, alerts are logged but not sent.
"""
import os
from datetime import datetime, timezone
from typing import Optional, Tuple

import aiohttp

from position_recon.monitoring.logger import get_logger
from position_recon.monitoring.notifier import NotificationEvent

logger = get_logger(__name__)

# Rate limit: max 1 alert per key per 5 minutes
_last_alert_times: dict[str, datetime] = {}
_RATE_LIMIT_SECONDS = 300


def _is_telegram(url: str) -> bool:
    return "api.telegram.org" in url


def _is_discord(url: str) -> bool:
    return "discord.com/api/webhooks" in url or "discordapp.com/api/webhooks" in url


def reset_rate_limits() -> None:
    _last_alert_times.clear()


def _webhook_request(webhook_url: str, event_type: str, message: str, urgent: bool, now: datetime) -> Tuple[str, dict, Tuple[int, ...]]:
    """Return (flavor, json body, accepted statuses) for the configured webhook."""
    prefix = "🚨" if urgent else "🧹"
    text = f"{prefix} [{event_type}] {now.strftime('%H:%M:%S UTC')}\n{message}"
    if _is_telegram(webhook_url):
        chat_id = os.environ.get("ALERT_CHAT_ID", "").strip()
        return "telegram", {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}, (200,)
    if _is_discord(webhook_url):
        return "discord", {"content": text}, (200, 204)
    body = {"event_type": event_type, "message": message, "timestamp": now.isoformat(), "urgent": urgent}
    return "generic", body, tuple(range(200, 400))


def _rate_limited(key: str, now: datetime) -> bool:
    last = _last_alert_times.get(key)
    return last is not None and (now - last).total_seconds() < _RATE_LIMIT_SECONDS


async def send_alert(
    event_type: str,
    message: str,
    urgent: bool = False,
    rate_limit_key: Optional[str] = None,
) -> bool:
    """
    Send an alert notification.

    Args:
        event_type: Type of event (e.g. "GHOSTS_CLEANED")
        message: Human-readable message
        urgent: If True, bypass rate limiting
        rate_limit_key: Rate-limit bucket; defaults to event_type

    Returns:
        True if a webhook request was attempted.
    """
    webhook_url = os.environ.get("ALERT_WEBHOOK_URL", "").strip()
    if not webhook_url:
        logger.info("ALERT_NOT_SENT", reason="no_webhook", event_type=event_type, message=message)
        return False

    now = datetime.now(timezone.utc)
    key = rate_limit_key or event_type
    if not urgent and _rate_limited(key, now):
        logger.debug("ALERT_RATE_LIMITED", event_type=event_type, key=key)
        return False
    _last_alert_times[key] = now

    flavor, body, accepted = _webhook_request(webhook_url, event_type, message, urgent, now)
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10)) as session:
            async with session.post(webhook_url, json=body) as resp:
                if resp.status not in accepted:
                    text = await resp.text()
                    logger.warning("ALERT_REJECTED", webhook=flavor, status=resp.status, body=text[:200])
    except Exception as e:
        # Alert failures never reach the reconciliation pass
        logger.warning("ALERT_SEND_FAILED", webhook=flavor, event_type=event_type, error=str(e))
    return True


def format_cleanup_message(payload: dict) -> str:
    lines = [
        f"Wallet {payload.get('wallet_id')} ({payload.get('trading_mode')})",
        f"Ghosts found: {payload.get('ghosts_found', 0)}, cleaned: {payload.get('ghosts_cleaned', 0)}",
    ]
    if payload.get("errors"):
        lines.append(f"Cleanup errors: {payload['errors']}")
    if payload.get("snapshot_label"):
        lines.append(f"Backup: {payload['snapshot_label']}")
    else:
        lines.append("Backup: NOT WRITTEN")
    return "\n".join(lines)


async def alert_on_ghosts_cleaned(event: NotificationEvent) -> None:
    """NotificationBus subscriber for "ghosts-cleaned"."""
    payload = event.payload
    await send_alert(
        "GHOSTS_CLEANED",
        format_cleanup_message(payload),
        urgent=bool(payload.get("errors")),
        rate_limit_key=f"GHOSTS_CLEANED:{payload.get('wallet_id')}:{payload.get('trading_mode')}",
    )
