"""In-process bus: every agent sharing the instance sees every message.

Used for single-host simulation and for tests.  Delivery is synchronous;
the receiving agent queues the message onto its own loop.
"""

from collections import deque
from typing import Deque, List, Optional, Tuple

from myrmidon.channels.base import BaseBus


class InProcessBus(BaseBus):
    """Loopback bus with a bounded publish history."""

    name = "memory"

    def __init__(self, config: Optional[dict] = None):
        super().__init__(config)
        self._history: Deque[Tuple[str, str]] = deque(
            maxlen=int(self.config.get("history", 1000))
        )
        self._running = False

    async def start(self):
        self._running = True
        self.logger.debug("In-process bus started")

    async def stop(self):
        self._running = False
        self.logger.debug("In-process bus stopped")

    def publish(self, topic: str, text: str) -> None:
        self._history.append((topic, text))
        self._dispatch(topic, text)

    # ── Introspection (simulation, tests) ─────────────────────────────────────

    def history(self, topic: Optional[str] = None) -> List[str]:
        """Payloads published so far, optionally filtered to one topic."""
        return [text for t, text in self._history if topic is None or t == topic]

    def clear_history(self) -> None:
        self._history.clear()
