"""Push channel adaptor: turns server-initiated messages into route updates.

Messages follow the realtime service envelope ``{"type": ..., "data": {...}}``.
Route messages carry ``routeId`` (or ``route_id``) plus optional
``coordinates`` and ``stats``/``routeStats`` partials; territory messages
only signal that claimable areas may have changed.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Mapping, Protocol

from ..models import PushUpdate
from .stats import coerce_partial_stats
from .validation import coordinates_from_payload

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[Mapping[str, Any]], None]

ROUTE_MESSAGE_TYPES = frozenset(
    {"route_path_updated", "route_stats_updated", "route_update", "route_progress"}
)
TERRITORY_MESSAGE_TYPES = frozenset(
    {"territory_update", "territory_claimed", "territory_lost", "territories_changed"}
)


class PushChannel(Protocol):
    """Source of push messages. ``subscribe`` returns an unsubscribe function."""

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]: ...


class LocalPushChannel:
    """In-process channel; the transport layer (or a test) calls ``publish``."""

    def __init__(self) -> None:
        self._handlers: List[MessageHandler] = []
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, message: Mapping[str, Any]) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler(message)


def parse_route_message(message: Mapping[str, Any]) -> PushUpdate | None:
    """Return the route partial carried by ``message`` or None if it has none."""

    if message.get("type") not in ROUTE_MESSAGE_TYPES:
        return None
    data = message.get("data")
    if not isinstance(data, Mapping):
        return None
    route_id = data.get("routeId") or data.get("route_id")
    if not route_id:
        LOGGER.debug("Push message without route id: %s", message.get("type"))
        return None
    raw_stats = data.get("stats")
    if raw_stats is None:
        raw_stats = data.get("routeStats")
    stats = coerce_partial_stats(raw_stats if isinstance(raw_stats, Mapping) else None)
    coordinates = coordinates_from_payload(data.get("coordinates"))
    return PushUpdate(
        route_id=str(route_id),
        coordinates=coordinates or None,
        stats=stats or None,
    )


def is_territory_change(message: Mapping[str, Any]) -> bool:
    return message.get("type") in TERRITORY_MESSAGE_TYPES


__all__ = [
    "LocalPushChannel",
    "MessageHandler",
    "PushChannel",
    "ROUTE_MESSAGE_TYPES",
    "TERRITORY_MESSAGE_TYPES",
    "is_territory_change",
    "parse_route_message",
]
