"""Notification channel senders.

The dispatcher only relies on ``deliver(channel, payload) -> bool`` and on each
sender raising ``ChannelDeliveryError`` when it fails.
"""

import hashlib
import hmac
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Iterable, Optional

import httpx
import redis

from promoguard_engine.errors import ChannelDeliveryError
from promoguard_engine.schemas.alerts import Channel, NotificationPayload

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    channel: Channel

    @abstractmethod
    def send(self, payload: NotificationPayload) -> None:
        """Deliver one payload.

        Raises:
            ChannelDeliveryError: delivery failed.
        """

    def close(self) -> None:
        """Release sender resources."""


class DashboardChannel(NotificationChannel):
    """Bounded in-process feed read by the operator dashboard."""

    channel = Channel.DASHBOARD

    def __init__(self, max_items: int = 500):
        self._feed: deque[NotificationPayload] = deque(maxlen=max_items)
        self._lock = threading.Lock()

    def send(self, payload: NotificationPayload) -> None:
        with self._lock:
            self._feed.appendleft(payload)

    def recent(self, limit: int = 50) -> list[NotificationPayload]:
        """Newest first."""
        with self._lock:
            return list(self._feed)[:limit]


class RedisDashboardChannel(NotificationChannel):
    """Dashboard feed kept in a capped Redis list."""

    channel = Channel.DASHBOARD

    def __init__(self, client: redis.Redis, max_items: int = 500, key: str = "promoguard:dashboard"):
        self.client = client
        self.max_items = max_items
        self.key = key

    def send(self, payload: NotificationPayload) -> None:
        try:
            pipe = self.client.pipeline()
            pipe.lpush(self.key, payload.model_dump_json())
            pipe.ltrim(self.key, 0, self.max_items - 1)
            pipe.execute()
        except redis.RedisError as e:
            raise ChannelDeliveryError(self.channel.value, str(e)) from e

    def recent(self, limit: int = 50) -> list[NotificationPayload]:
        return [NotificationPayload.model_validate_json(item) for item in self.client.lrange(self.key, 0, limit - 1)]


class WebhookChannel(NotificationChannel):
    """Signed JSON POST to an operator-configured endpoint."""

    channel = Channel.WEBHOOK

    def __init__(
        self,
        url: str,
        secret: Optional[str] = None,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.secret = secret
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _compute_signature(self, body: bytes, timestamp: str) -> str:
        # Sign: timestamp + "." + body
        message = f"{timestamp}.{body.decode()}"
        return hmac.new(self.secret.encode(), message.encode(), hashlib.sha256).hexdigest()

    def send(self, payload: NotificationPayload) -> None:
        body = payload.model_dump_json().encode()
        timestamp = str(int(time.time()))
        headers = {
            "Content-Type": "application/json",
            "X-Promoguard-Event": f"alert.{payload.type.value}",
            "X-Promoguard-Alert-Id": payload.alert_id,
            "X-Promoguard-Timestamp": timestamp,
        }
        if self.secret:
            headers["X-Promoguard-Signature"] = f"sha256={self._compute_signature(body, timestamp)}"

        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.post(self.url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise ChannelDeliveryError(self.channel.value, str(e)) from e

        if not 200 <= response.status_code < 300:
            raise ChannelDeliveryError(
                self.channel.value,
                f"HTTP {response.status_code}: {response.text[:200]}",
            )


class CallbackChannel(NotificationChannel):
    """Adapter for host-provided senders such as email or SMS gateways.

    The callback returns a truthy value on success; a falsy return, an
    exception or a call running past ``timeout_seconds`` counts as a failed
    delivery. Callbacks run on the channel's own small pool, so a sender that
    never returns only ties up that pool.
    """

    def __init__(
        self,
        channel: Channel,
        callback: Callable[[NotificationPayload], object],
        timeout_seconds: float = 10.0,
        max_workers: int = 2,
    ):
        self.channel = channel
        self.callback = callback
        self.timeout_seconds = timeout_seconds
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"{channel.value}-sender")

    def send(self, payload: NotificationPayload) -> None:
        future = self._pool.submit(self.callback, payload)
        done, _ = wait([future], timeout=self.timeout_seconds)
        if not done:
            future.cancel()
            raise ChannelDeliveryError(self.channel.value, f"timed out after {self.timeout_seconds:g}s")
        try:
            ok = future.result()
        except ChannelDeliveryError:
            raise
        except Exception as e:
            raise ChannelDeliveryError(self.channel.value, str(e)) from e
        if not ok:
            raise ChannelDeliveryError(self.channel.value, "sender reported failure")

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)


class ChannelRegistry:
    """Configured senders, one per channel."""

    def __init__(self, channels: Iterable[NotificationChannel] = ()):
        self._channels: dict[Channel, NotificationChannel] = {}
        for channel in channels:
            self.register(channel)

    def register(self, sender: NotificationChannel) -> None:
        self._channels[sender.channel] = sender

    def get(self, channel: Channel) -> Optional[NotificationChannel]:
        return self._channels.get(channel)

    def __contains__(self, channel: Channel) -> bool:
        return channel in self._channels

    def close(self) -> None:
        for sender in self._channels.values():
            sender.close()

    def deliver(self, channel: Channel, payload: NotificationPayload) -> bool:
        """Single delivery attempt. Never raises."""
        sender = self._channels.get(channel)
        if sender is None:
            logger.warning(f"No sender configured for channel {channel.value}")
            return False
        try:
            sender.send(payload)
            return True
        except Exception as e:
            logger.warning(f"Delivery failed: {e}", extra={"alert_id": payload.alert_id})
            return False
