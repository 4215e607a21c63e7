"""
Myrmidon Watchdog -- force a stop if velocity commands stop flowing.

Every emitted velocity command refreshes the watchdog.  If no refresh
arrives within the timeout, the watchdog fires once: it calls ``stop_fn``
(which emits a zero-velocity command) and re-arms itself, so a rover that
keeps losing its command stream is stopped again every period.

Config format::

    watchdog:
      enabled: true
      timeout_s: 10.0            # Max time without a velocity command

The countdown is an asyncio timer handle on the agent's event loop.  The
fire callback and ``refresh()`` therefore never interleave; a refresh that
lands after the deadline but before the loop got to run the callback fires
the overdue stop first, so a late refresh can neither swallow a due stop
nor cause a second one.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger("Myrmidon.Watchdog")


class MotionWatchdog:
    """Restartable countdown that forces a stop on timeout."""

    def __init__(self, config: dict, stop_fn: Optional[Callable[[], None]] = None):
        """Initialize the watchdog.

        Args:
            config: Swarm config dict (reads the ``watchdog`` section).
            stop_fn: Callable invoked when the watchdog fires.  It must not
                     call :meth:`refresh`; the watchdog re-arms itself.
        """
        wd_cfg = config.get("watchdog", {})
        self.enabled = wd_cfg.get("enabled", True)
        self.timeout = float(wd_cfg.get("timeout_s", 10.0))

        self._stop_fn = stop_fn
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._deadline = 0.0
        self._last_refresh = 0.0
        self._triggered = False
        self._running = False
        self.fire_count = 0

        if self.enabled:
            logger.info(f"Watchdog active: {self.timeout}s timeout")

    def start(self):
        """Arm the countdown on the running event loop."""
        if not self.enabled:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._last_refresh = self._loop.time()
        self._arm()

    def stop(self):
        """Disarm.  No further firings until :meth:`start` is called again."""
        self._running = False
        self._cancel()

    def refresh(self):
        """Restart the countdown.  Call after every emitted velocity command."""
        if not self._running:
            return
        now = self._loop.time()
        if self._handle is not None and now >= self._deadline:
            # Overdue but not yet dispatched by the loop.
            self._fire()
        self._last_refresh = now
        if self._triggered:
            self._triggered = False
            logger.info("Watchdog: velocity commands flowing again")
        self._arm()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self):
        self._cancel()
        self._deadline = self._loop.time() + self.timeout
        self._handle = self._loop.call_at(self._deadline, self._fire)

    def _fire(self):
        self._cancel()
        if not self._running:
            return
        self.fire_count += 1
        self._triggered = True
        elapsed = self._loop.time() - self._last_refresh
        logger.critical(
            f"WATCHDOG: no velocity command for {elapsed:.1f}s "
            f"(timeout: {self.timeout}s) -- stopping motors!"
        )
        if self._stop_fn:
            try:
                self._stop_fn()
            except Exception as exc:
                logger.error(f"Watchdog stop failed: {exc}")
        self._arm()

    @property
    def is_triggered(self) -> bool:
        """True if the watchdog fired and no refresh has arrived since."""
        return self._triggered

    @property
    def is_armed(self) -> bool:
        return self._handle is not None

    def get_status(self) -> dict:
        """Return watchdog status for telemetry."""
        elapsed = (self._loop.time() - self._last_refresh) if self._loop else 0.0
        return {
            "enabled": self.enabled,
            "timeout_s": self.timeout,
            "last_refresh_s_ago": round(elapsed, 1),
            "triggered": self._triggered,
            "fire_count": self.fire_count,
        }
