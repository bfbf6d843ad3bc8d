"""
Operator notifications.

The engines talk to a ``Notifier``: ``send(kind, payload)`` returns a
``NotifyResult`` and never raises. Results are only ever logged; no engine
decision depends on whether a message was delivered.
"""

from __future__ import annotations

import html
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Protocol
from zoneinfo import ZoneInfo

import requests
from django.utils import timezone

from .conf import EngineConfig

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"

STOCK_ALERT = "stock_alert"
PRODUCTS_MOVED = "products_moved"
PRODUCTS_DELETED = "products_deleted"
PRODUCTS_SOLD = "products_sold"
PRODUCTS_ADDED = "products_added"
TEST = "test"


@dataclass(frozen=True)
class NotifyResult:
    success: bool
    error: str | None = None


class Notifier(Protocol):
    """
    Delivery channel for operator messages.

    Implementations must catch their own failures and report them through
    the returned ``NotifyResult``.
    """
    def send(self, kind: str, payload: Mapping[str, Any]) -> NotifyResult: ...


class NullNotifier:
    """Used when no channel is configured."""

    def send(self, kind: str, payload: Mapping[str, Any]) -> NotifyResult:
        logger.debug("Notifications disabled, dropping %s", kind)
        return NotifyResult(False, "disabled")


class TelegramNotifier:
    """
    Posts HTML messages to a Telegram chat through the Bot API.
    """

    def __init__(
        self,
        config: EngineConfig,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.clock = clock
        self._tz = ZoneInfo(config.display_timezone)

    def _url(self, method: str) -> str:
        return f"{TELEGRAM_API}/bot{self.config.telegram_bot_token}/{method}"

    def _timestamp(self) -> str:
        local = self.clock().astimezone(self._tz)
        return f"{local:%Y-%m-%d %H:%M:%S} (UTC{local:%z})"

    def format_message(self, kind: str, payload: Mapping[str, Any]) -> str:
        """Render the message body for ``kind``, wrapped in header and footer."""
        if kind == STOCK_ALERT:
            body = self._stock_alert(payload["available"], payload["threshold"])
        elif kind == PRODUCTS_MOVED:
            body = (
                "📦 <b>Products Moved</b>\n\n"
                f"🔄 Quantity Moved: <b>{int(payload['quantity'])}</b>\n"
                f"📤 From: {html.escape(str(payload['source']))}\n"
                f"📥 To: {html.escape(str(payload['destination']))}\n"
                f"⏰ Time: {self._timestamp()}"
            )
        elif kind == PRODUCTS_DELETED:
            body = (
                "🗑️ <b>Products Deleted</b>\n\n"
                f"❌ Quantity Deleted: <b>{int(payload['quantity'])}</b>\n"
                f"📦 From: {html.escape(str(payload['source']))}\n"
                f"❓ Reason: {html.escape(str(payload['reason']))}\n"
                f"⏰ Time: {self._timestamp()}"
            )
        elif kind == PRODUCTS_SOLD:
            body = (
                "💰 <b>Products Sold</b>\n\n"
                f"📤 Quantity Sold: <b>{int(payload['quantity'])}</b>\n"
                f"🆔 Order ID: <code>{html.escape(str(payload['order_id']))}</code>\n"
                f"⏰ Time: {self._timestamp()}"
            )
        elif kind == PRODUCTS_ADDED:
            body = (
                "📦 <b>Products Added</b>\n\n"
                f"➕ New Products: <b>{int(payload['quantity'])}</b>\n"
                f"⏰ Time: {self._timestamp()}"
            )
        elif kind == TEST:
            body = (
                "✅ <b>Test Message</b>\n\nTelegram notifications are working!\n\n"
                f"⏰ {self._timestamp()}"
            )
        else:
            raise ValueError(f"Unknown notification kind: {kind!r}")

        parts = [self.config.telegram_header, body, self.config.telegram_footer]
        return "\n\n".join(p for p in parts if p)

    def _stock_alert(self, available: int, threshold: int) -> str:
        if available == 0:
            emoji, status = "🚨", "🚨 <b>OUT OF STOCK!</b>\nPlease upload more products immediately."
        elif available <= threshold:
            emoji, status = "⚠️", f"⚠️ <b>LOW STOCK WARNING</b>\nStock is below threshold ({threshold})"
        else:
            emoji, status = "📊", ""

        lines = [
            f"{emoji} <b>Stock Alert</b>",
            "",
            f"📦 Available Products: <b>{available}</b>",
        ]
        if status:
            lines += ["", status]
        lines += ["", f"⏰ Time: {self._timestamp()}"]
        return "\n".join(lines)

    def send(self, kind: str, payload: Mapping[str, Any]) -> NotifyResult:
        if not self.config.telegram_configured:
            logger.info("Telegram not configured, skipping %s notification", kind)
            return NotifyResult(False, "not configured")

        try:
            text = self.format_message(kind, payload)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Cannot format %s notification: %s", kind, exc)
            return NotifyResult(False, f"bad payload: {exc}")

        return self.send_text(text)

    def send_text(self, text: str) -> NotifyResult:
        try:
            resp = self.session.post(
                self._url("sendMessage"),
                json={
                    "chat_id": self.config.telegram_chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                },
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Failed to send Telegram notification: %s", exc)
            return NotifyResult(False, str(exc))

        if resp.status_code >= 400:
            error = _telegram_error(resp)
            logger.warning("Telegram rejected notification (%s): %s", resp.status_code, error)
            return NotifyResult(False, error)

        logger.debug("Telegram notification sent")
        return NotifyResult(True)

    def test_connection(self) -> NotifyResult:
        """Check the bot token with ``getMe``."""
        if not self.config.telegram_bot_token:
            return NotifyResult(False, "Bot token not configured")
        try:
            resp = self.session.get(self._url("getMe"), timeout=self.config.request_timeout)
        except requests.RequestException as exc:
            return NotifyResult(False, str(exc))
        if resp.status_code >= 400:
            return NotifyResult(False, _telegram_error(resp))
        return NotifyResult(True)


def _telegram_error(resp: requests.Response) -> str:
    try:
        return resp.json().get("description") or resp.text
    except ValueError:
        return resp.text


def safe_send(notifier: Notifier, kind: str, payload: Mapping[str, Any]) -> NotifyResult:
    """Call ``notifier.send`` and turn anything it raises into a failed result."""
    try:
        return notifier.send(kind, payload)
    except Exception as exc:
        logger.exception("Notifier raised while sending %s", kind)
        return NotifyResult(False, str(exc))


def build_notifier(config: EngineConfig) -> Notifier:
    if config.telegram_enabled:
        return TelegramNotifier(config)
    return NullNotifier()


class ActivityMonitor:
    """
    Fire-and-forget "products sold" / "products added" notifications.

    Delivery happens on a small thread pool so the caller (usually an
    allocation that has just committed) never waits on the network.
    """

    def __init__(
        self,
        config: EngineConfig,
        notifier: Notifier,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.config = config
        self.notifier = notifier
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="stockkeeper-notify"
        )

    def notify_sold(self, quantity: int, order_id: str) -> Future | None:
        if not self.config.notify_on_sold:
            return None
        return self._dispatch(PRODUCTS_SOLD, {"quantity": quantity, "order_id": order_id})

    def notify_added(self, quantity: int) -> Future | None:
        if not self.config.notify_on_add:
            return None
        return self._dispatch(PRODUCTS_ADDED, {"quantity": quantity})

    def _dispatch(self, kind: str, payload: dict[str, Any]) -> Future | None:
        try:
            return self._executor.submit(self._deliver, kind, payload)
        except RuntimeError:
            # Executor already shut down.
            logger.warning("Dropping %s notification during shutdown", kind)
            return None

    def _deliver(self, kind: str, payload: dict[str, Any]) -> NotifyResult:
        result = safe_send(self.notifier, kind, payload)
        if result.success:
            logger.info("Sent %s notification: %s", kind, payload)
        else:
            logger.info("%s notification not delivered: %s", kind, result.error)
        return result

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
