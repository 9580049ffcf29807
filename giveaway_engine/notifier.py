"""Best-effort fan-out of giveaway entry counts to realtime observers."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Mapping, Optional, Protocol
from urllib.parse import urljoin

import requests

logger = logging.getLogger(__name__)

COUNT_EVENT = "count"

Subscriber = Callable[[str, Mapping[str, Any]], None]
"""Callback receiving ``(event, payload)`` for one room."""


def giveaway_room(giveaway_id: int) -> str:
    """Logical channel observers of ``giveaway_id`` subscribe to."""
    return f"giveaway:{giveaway_id}"


class Publisher(Protocol):
    def publish(self, room: str, event: str, payload: Mapping[str, Any]) -> None:
        ...


class InMemoryHub:
    """Process-local publish/subscribe keyed by room name."""

    def __init__(self) -> None:
        self._rooms: dict[str, list[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, room: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``room`` and return an unsubscribe handle."""
        with self._lock:
            self._rooms.setdefault(room, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._rooms.get(room)
                if callbacks and callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._rooms.pop(room, None)

        return unsubscribe

    def subscriber_count(self, room: str) -> int:
        with self._lock:
            return len(self._rooms.get(room, ()))

    def publish(self, room: str, event: str, payload: Mapping[str, Any]) -> None:
        with self._lock:
            callbacks = list(self._rooms.get(room, ()))
        if not callbacks:
            logger.debug(f"No subscribers in {room} for {event}")
            return
        for callback in callbacks:
            # One broken observer must not starve the others.
            try:
                callback(event, payload)
            except Exception as exc:
                logger.warning(f"Subscriber in {room} failed on {event}: {exc}")


class HttpRelayPublisher:
    """Forward events to an external realtime relay over HTTP.

    The relay owns the socket connections; this publisher only POSTs
    ``{"room", "event", "payload"}`` to ``<base_url>/emit``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 2.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must not be empty")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def publish(self, room: str, event: str, payload: Mapping[str, Any]) -> None:
        url = urljoin(self.base_url + "/", "emit")
        r = self.session.post(
            url,
            json={"room": room, "event": event, "payload": dict(payload)},
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        r.raise_for_status()


class FanoutPublisher:
    """Publish the same event through several publishers."""

    def __init__(self, *publishers: Publisher) -> None:
        self.publishers = publishers

    def publish(self, room: str, event: str, payload: Mapping[str, Any]) -> None:
        for publisher in self.publishers:
            try:
                publisher.publish(room, event, payload)
            except Exception as exc:
                logger.warning(
                    f"{type(publisher).__name__} failed to publish {event} to {room}: {exc}"
                )


class CountNotifier:
    """Broadcast the current entry count of a giveaway.

    Delivery is best effort and happens on a background worker, so a slow
    relay never delays the join that triggered it. Every failure is logged
    and swallowed; no retry is attempted because the next join re-publishes
    the total. A single worker keeps counts of one notifier in order.
    """

    def __init__(
        self,
        publisher: Optional[Publisher] = None,
        *,
        executor: Optional[Executor] = None,
    ) -> None:
        self.publisher = publisher
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="count-notifier"
        )

    def publish_count(self, giveaway_id: int, count: int) -> None:
        if self.publisher is None:
            return
        try:
            self._executor.submit(self._deliver, giveaway_id, int(count))
        except RuntimeError as exc:
            # Raised once the executor has been shut down.
            logger.warning(f"Dropped entry count for giveaway {giveaway_id}: {exc}")

    def _deliver(self, giveaway_id: int, count: int) -> None:
        room = giveaway_room(giveaway_id)
        try:
            self.publisher.publish(room, COUNT_EVENT, {"count": count})
        except Exception as exc:
            logger.warning(f"Failed to publish entry count for {room}: {exc}")

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker; with ``wait`` pending deliveries finish first."""
        self._executor.shutdown(wait=wait)


__all__ = [
    "COUNT_EVENT",
    "Publisher",
    "InMemoryHub",
    "HttpRelayPublisher",
    "FanoutPublisher",
    "CountNotifier",
    "giveaway_room",
]
