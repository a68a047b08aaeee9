"""Redis publish/subscribe channel used to relay messages between servers."""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any, Callable

import redis

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 6379

NotifyHandler = Callable[[int, str], None]


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class Redis:
    """Publishes to per-user channels and reports subscribed messages to a handler."""

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        self.host = host
        self.port = port
        self._publish_client: Any = None
        self._subscribe_client: Any = None
        self._pubsub: Any = None
        self._notify_message_handler: NotifyHandler | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def connect(self) -> bool:
        """Open the publish and subscribe connections and start the listener thread."""
        try:
            self._publish_client = redis.Redis(
                host=self.host, port=self.port, decode_responses=True
            )
            self._publish_client.ping()
            self._subscribe_client = redis.Redis(
                host=self.host, port=self.port, decode_responses=True
            )
            self._subscribe_client.ping()
            self._pubsub = self._subscribe_client.pubsub()
        except redis.RedisError as exc:
            print(f"connect redis failed! {exc}", file=sys.stderr)
            self._publish_client = None
            self._subscribe_client = None
            self._pubsub = None
            return False

        self._stop.clear()
        self._thread = threading.Thread(
            target=self.observer_channel_message, name="redis-observer", daemon=True
        )
        self._thread.start()
        print("connect redis-server success!")
        return True

    def publish(self, channel: int, message: str) -> bool:
        """Publish ``message`` on the channel named after ``channel``."""
        if self._publish_client is None:
            print("publish command failed!", file=sys.stderr)
            return False
        try:
            self._publish_client.publish(str(channel), message)
        except redis.RedisError as exc:
            print(f"publish command failed! {exc}", file=sys.stderr)
            return False
        return True

    def subscribe(self, channel: int) -> bool:
        """Start receiving messages published on ``channel``."""
        if self._pubsub is None:
            print("subscribe command failed!", file=sys.stderr)
            return False
        try:
            self._pubsub.subscribe(str(channel))
        except redis.RedisError as exc:
            print(f"subscribe command failed! {exc}", file=sys.stderr)
            return False
        return True

    def unsubscribe(self, channel: int) -> bool:
        """Stop receiving messages published on ``channel``."""
        if self._pubsub is None:
            print("unsubscribe command failed!", file=sys.stderr)
            return False
        try:
            self._pubsub.unsubscribe(str(channel))
        except redis.RedisError as exc:
            print(f"unsubscribe command failed! {exc}", file=sys.stderr)
            return False
        return True

    def observer_channel_message(self) -> None:
        """Deliver subscribed messages to the handler until stopped or disconnected."""
        while not self._stop.is_set() and self._pubsub is not None:
            try:
                message = self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=0.2
                )
            except (redis.RedisError, OSError, ValueError) as exc:
                log.debug("subscription reader stopped: %s", exc)
                break
            if not message or message.get("type") != "message":
                continue
            data = message.get("data")
            if data is None:
                continue
            handler = self._notify_message_handler
            if handler is not None:
                handler(int(_text(message["channel"])), _text(data))
        print(">>>>>>>>>>>>> observer_channel_message quit <<<<<<<<<<<<<", file=sys.stderr)

    def init_notify_handler(self, fn: NotifyHandler) -> None:
        """Set the callback receiving ``(channel, message)`` for subscribed messages."""
        self._notify_message_handler = fn

    def close(self) -> None:
        """Stop the listener thread and release both connections."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        for resource in (self._pubsub, self._subscribe_client, self._publish_client):
            if resource is not None:
                try:
                    resource.close()
                except redis.RedisError:
                    pass
        self._pubsub = None
        self._subscribe_client = None
        self._publish_client = None