"""
Ticket Rush - Telegram Notifier
Success alerts with rate limiting
"""

import html
import time
import logging
import threading
from typing import Callable, Optional

import requests

from .config import Config
from .models import GrabTicketResult

logger = logging.getLogger("TicketRush.Notifier")

ORDER_DETAIL_URL = "https://mall.bilibili.com/neul-next/ticket/orderDetail.html?order_id={}"


def order_detail_url(order_id: str) -> str:
    return ORDER_DETAIL_URL.format(order_id)


class TelegramNotifier:
    """Sends order alerts through the Telegram Bot API. Safe to share across jobs."""

    def __init__(
        self,
        token: Optional[str] = None,
        chat_id: Optional[str] = None,
        min_interval: float = Config.NOTIFY_MIN_INTERVAL,
        timeout: float = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.token = token if token is not None else Config.TELEGRAM_TOKEN
        self.chat_id = chat_id if chat_id is not None else Config.TELEGRAM_CHAT_ID
        self.min_interval = min_interval
        self.timeout = timeout
        self.sleep = sleep
        self._last_message_time = 0.0
        self._lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.token and self.chat_id)

    def _check_rate_limit(self) -> bool:
        """Check if we can send a message (rate limiting)"""
        with self._lock:
            now = time.time()
            if now - self._last_message_time < self.min_interval:
                return False
            self._last_message_time = now
            return True

    def _reserve_slot(self) -> float:
        """Claim the next free send slot and return how long to wait for it"""
        with self._lock:
            now = time.time()
            start = max(now, self._last_message_time + self.min_interval)
            self._last_message_time = start
            return start - now

    def send_alert(self, message: str, parse_mode: str = "HTML", wait: bool = False) -> bool:
        """
        Send text message to Telegram

        Args:
            message: Message text
            parse_mode: "HTML" or "Markdown"
            wait: Hold the message until the rate limit allows it instead of dropping it

        Returns:
            Success status
        """
        if not self.configured:
            logger.warning("⚠️ Telegram not configured")
            return False

        if wait:
            delay = self._reserve_slot()
            if delay > 0:
                logger.info(f"[NOTIFY] Rate limited, sending in {delay:.1f}s")
                self.sleep(delay)
        elif not self._check_rate_limit():
            logger.warning("⚠️ Rate limited, message dropped")
            return False

        url = f"https://api.telegram.org/bot{self.token}/sendMessage"
        data = {"chat_id": self.chat_id, "text": message, "parse_mode": parse_mode}

        try:
            response = requests.post(url, data=data, timeout=self.timeout)
            if response.status_code == 200:
                logger.debug("📤 Message sent to Telegram")
                return True
            logger.warning(f"⚠️ Telegram error: {response.status_code}")
            return False
        except requests.RequestException as e:
            logger.error(f"❌ Telegram send error: {e}")
            return False

    def notify_order_success(self, result: GrabTicketResult) -> bool:
        confirm = result.confirm_result
        project = confirm.project_name if confirm else ""
        screen = confirm.screen_name if confirm else ""
        ticket = confirm.ticket_info.name if confirm else ""
        status = "Please pay promptly!" if result.pay_result else "Payment details unavailable, pay from the order center"
        lines = [
            f"🎫 <b>Ticket secured: {html.escape(project)}</b>",
            f"Screen: {html.escape(screen)}",
            f"Ticket: {html.escape(ticket)}",
            f"Order: {html.escape(result.order_id or '-')}",
            f"Status: {status}",
        ]
        if result.order_id:
            lines.append(f'<a href="{order_detail_url(result.order_id)}">Order details</a>')
        sent = self.send_alert("\n".join(lines), wait=True)
        logger.info(f"[NOTIFY] Success alert for {result.task_id}: {'sent' if sent else 'not sent'}")
        return sent
