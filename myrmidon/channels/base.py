"""
Base class for broadcast buses.

A bus delivers text messages on named topics.  Every agent in the swarm
publishes and subscribes on the same bus; topics are either shared
(``poses``, ``messages``) or scoped to one rover (``<name>/velocity``).
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

logger = logging.getLogger("Myrmidon.Channels")

#: Callback signature: ``callback(topic, text)``.  ``topic`` is unprefixed.
MessageCallback = Callable[[str, str], None]


class BaseBus(ABC):
    """Abstract publish/subscribe bus.

    Subscriptions are tracked here; subclasses only move bytes.  Callbacks
    may be invoked from a transport thread, so they must hand work off to
    their own event loop rather than touching agent state directly.
    """

    name: str = "base"

    def __init__(self, config: Optional[dict] = None):
        """
        Args:
            config: Bus configuration dict.  Accepts ``topic_prefix``
                    (str, default ``""``) to namespace every topic, e.g.
                    for several swarms on one broker.
        """
        self.config = config or {}
        self.logger = logging.getLogger(f"Myrmidon.Channel.{self.name}")
        prefix = str(self.config.get("topic_prefix", "")).strip("/")
        self._prefix = f"{prefix}/" if prefix else ""
        self._lock = threading.RLock()
        # topic → {sub_id → callback}
        self._subscribers: Dict[str, Dict[str, MessageCallback]] = {}

    # ------------------------------------------------------------------
    # Topic naming
    # ------------------------------------------------------------------

    def full_topic(self, topic: str) -> str:
        return f"{self._prefix}{topic}"

    def relative_topic(self, full: str) -> Optional[str]:
        """Strip the prefix; ``None`` if *full* is outside this bus's namespace."""
        if not self._prefix:
            return full
        if full.startswith(self._prefix):
            return full[len(self._prefix) :]
        return None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, callback: MessageCallback) -> str:
        """Register *callback* for *topic*.  Returns a subscription ID."""
        sub_id = str(uuid.uuid4())
        with self._lock:
            first = topic not in self._subscribers
            self._subscribers.setdefault(topic, {})[sub_id] = callback
        if first:
            self._on_first_subscriber(topic)
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        """Remove a subscription by ID.  Unknown IDs are ignored."""
        with self._lock:
            for key_subs in self._subscribers.values():
                if sub_id in key_subs:
                    del key_subs[sub_id]
                    return

    def topics(self) -> List[str]:
        with self._lock:
            return [t for t, subs in self._subscribers.items() if subs]

    def _on_first_subscriber(self, topic: str) -> None:
        """Hook for transports that must subscribe upstream."""

    def _dispatch(self, topic: str, text: str) -> int:
        """Invoke every callback registered for *topic*.  Returns the count."""
        with self._lock:
            callbacks = list(self._subscribers.get(topic, {}).values())
        for cb in callbacks:
            try:
                cb(topic, text)
            except Exception as exc:
                self.logger.warning(f"Subscriber callback error on '{topic}': {exc}")
        return len(callbacks)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @abstractmethod
    async def start(self):
        """Connect the transport."""

    @abstractmethod
    async def stop(self):
        """Disconnect gracefully."""

    @abstractmethod
    def publish(self, topic: str, text: str) -> None:
        """Broadcast *text* on *topic*.  Never blocks on the network."""
