"""SwarmAgent -- the local control loop of one rover.

Wires the swarm building blocks to a broadcast bus:

- inbound ``poses`` → decode → roster → neighborhood → consensus headings
- inbound ``<name>/mode``, ``<name>/joystick``, ``<name>/odom``
- a control tick that runs the motion controller and broadcasts own pose
- a status tick that announces the rover and reports ``online``
- a watchdog that forces a stop when velocity commands stop flowing

All agent state lives in one :class:`AgentContext`.  Every inbound message
class has its own queue and dispatcher task, every periodic activity has
its own task, and all handlers are plain synchronous functions.  On a
single event loop a handler therefore always runs to completion before
the next one starts, and the context needs no locks.
"""

import asyncio
import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from myrmidon.channels.base import BaseBus
from myrmidon.config import ConfigError, SwarmConfig
from myrmidon.controller import STOP, MotionController, VelocityCommand
from myrmidon.swarm.codec import decode, encode
from myrmidon.swarm.consensus import ConsensusHeading, compute_consensus
from myrmidon.swarm.errors import ParseError, UnknownAgentError
from myrmidon.swarm.membership import SwarmMembership
from myrmidon.swarm.neighborhood import Neighborhood, compute_neighborhood
from myrmidon.swarm.pose import ZERO_POSE, Pose
from myrmidon.swarm.roster import Roster
from myrmidon.telemetry import AgentSnapshot
from myrmidon.watchdog import MotionWatchdog

logger = logging.getLogger("Myrmidon.Agent")

# ---- Shared topics ----
POSES_TOPIC = "poses"
MESSAGES_TOPIC = "messages"
DEBUG_TOPIC = "debug"

# ---- Per-agent topic leaves ----
MODE = "mode"
JOYSTICK = "joystick"
ODOMETRY = "odom"
OBSTACLE = "obstacle"
TARGETS = "targets"
VELOCITY = "velocity"
STATUS = "status"
STATE_MACHINE = "state_machine"
GLOBAL_HEADING = "global_average_heading"
LOCAL_HEADING = "local_average_heading"

MAX_RECORDED_ERRORS = 20
# Per message class; the oldest pending message is dropped when full.
MAX_QUEUE_DEPTH = 100


def agent_topic(agent_id: str, leaf: str) -> str:
    return f"{agent_id}/{leaf}"


@dataclass
class AgentContext:
    """Everything one agent knows.  Owned by the agent's event loop."""

    agent_id: str
    roster: Roster
    neighborhood: Neighborhood
    current_pose: Pose = ZERO_POSE
    consensus: ConsensusHeading = field(default_factory=ConsensusHeading)
    mode: int = 0
    last_command: Optional[VelocityCommand] = None
    state_text: str = ""
    parse_failures: int = 0
    unknown_agents: Counter = field(default_factory=Counter)
    dropped_messages: int = 0
    announced: bool = False


class SwarmAgent:
    """One rover's heading-consensus and motion-control loop.

    Example::

        bus = InProcessBus()
        agent = SwarmAgent("ajax", SwarmConfig(), bus)
        await bus.start()
        await agent.start()
        ...
        await agent.stop()
    """

    def __init__(self, agent_id: str, config: SwarmConfig, bus: BaseBus) -> None:
        self.config = config
        self.bus = bus
        self.membership = SwarmMembership(config.members)
        if agent_id not in self.membership:
            raise ConfigError([f"agent {agent_id!r} is not listed in 'swarm.members'"])

        roster = Roster(self.membership)
        self.ctx = AgentContext(
            agent_id=agent_id,
            roster=roster,
            neighborhood=Neighborhood(self_id=agent_id),
        )
        self.controller = MotionController(config.control)
        self.watchdog = MotionWatchdog(config.to_dict(), stop_fn=self._on_watchdog_elapsed)

        self._tasks: List[asyncio.Task] = []
        self._sub_ids: List[str] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._errors: List[str] = []
        self._logger = logging.getLogger(f"Myrmidon.Agent.{agent_id}")

    @property
    def agent_id(self) -> str:
        return self.ctx.agent_id

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to the bus and launch dispatchers, ticks and watchdog.

        Idempotent: calling start on a running agent is a no-op.
        """
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True

        inbound: Dict[str, Callable[[str], bool]] = {
            POSES_TOPIC: self.handle_pose,
            agent_topic(self.agent_id, MODE): self.handle_mode,
            agent_topic(self.agent_id, JOYSTICK): self.handle_manual,
            agent_topic(self.agent_id, ODOMETRY): self.handle_odometry,
        }
        for topic, handler in inbound.items():
            queue: asyncio.Queue = asyncio.Queue(maxsize=MAX_QUEUE_DEPTH)
            self._sub_ids.append(self.bus.subscribe(topic, self._enqueue_to(queue)))
            self._spawn(self._drain(queue, handler), f"{self.agent_id}:{topic}")

        self._sub_ids.append(self.bus.subscribe(MESSAGES_TOPIC, self._log_inbound))
        self._sub_ids.append(
            self.bus.subscribe(agent_topic(self.agent_id, OBSTACLE), self._log_inbound)
        )
        self._sub_ids.append(
            self.bus.subscribe(agent_topic(self.agent_id, TARGETS), self._log_inbound)
        )

        control = self.config.control
        self._spawn(
            self._periodic(control.tick_period_s, self.control_tick),
            f"{self.agent_id}:control",
        )
        self._spawn(
            self._periodic(control.status_period_s, self.status_tick),
            f"{self.agent_id}:status",
        )
        self.watchdog.start()
        self._logger.info(f"Agent '{self.agent_id}' started (swarm of {len(self.membership)})")

    async def stop(self) -> None:
        """Stop timers, unsubscribe and cancel every task.  Publishes nothing after."""
        if not self._running:
            return
        self._running = False
        self.watchdog.stop()
        for sub_id in self._sub_ids:
            self.bus.unsubscribe(sub_id)
        self._sub_ids.clear()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._logger.info(f"Agent '{self.agent_id}' stopped")

    def _spawn(self, coro: Awaitable, name: str) -> None:
        self._tasks.append(asyncio.ensure_future(coro))
        self._logger.debug(f"Task {name} started")

    def _enqueue_to(self, queue: asyncio.Queue) -> Callable[[str, str], None]:
        """Bus callback that hands the payload to this agent's loop.

        Safe to call from a transport thread.
        """
        loop = self._loop

        def _callback(topic: str, text: str) -> None:
            if self._running and not loop.is_closed():
                loop.call_soon_threadsafe(self._offer, queue, topic, text)

        return _callback

    def _offer(self, queue: asyncio.Queue, topic: str, text: str) -> None:
        if queue.full():
            queue.get_nowait()
            self.ctx.dropped_messages += 1
            self._logger.warning(
                f"Inbound queue for '{topic}' full, dropped oldest message "
                f"({self.ctx.dropped_messages} dropped so far)"
            )
        queue.put_nowait(text)

    async def _drain(self, queue: asyncio.Queue, handler: Callable[[str], bool]) -> None:
        while True:
            text = await queue.get()
            if not self._running:
                return
            try:
                handler(text)
            except Exception as exc:
                self._record_error(f"{handler.__name__} failed on {text!r}: {exc}")

    async def _periodic(self, period: float, tick: Callable[[], None]) -> None:
        """Call *tick* every *period* seconds on a fixed schedule."""
        loop = asyncio.get_running_loop()
        next_at = loop.time() + period
        while True:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            if not self._running:
                return
            try:
                tick()
            except Exception as exc:
                self._record_error(f"{tick.__name__} failed: {exc}")
            next_at += period
            if next_at < loop.time():
                # Overran one or more periods; skip them rather than burst.
                next_at = loop.time() + period

    def _record_error(self, msg: str) -> None:
        self._errors.append(msg)
        del self._errors[:-MAX_RECORDED_ERRORS]
        self._logger.error(msg)

    def _log_inbound(self, topic: str, text: str) -> None:
        # Messages, obstacles and targets are observed but not acted on.
        self._logger.debug(f"[{topic}] {text[:80]}")

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _publish(self, topic: str, text: str) -> None:
        self.bus.publish(topic, text)

    def emit(self, command: VelocityCommand) -> None:
        """Send *command* to the actuation channel and refresh the watchdog."""
        self._publish(agent_topic(self.agent_id, VELOCITY), command.to_json())
        self.ctx.last_command = command
        self.watchdog.refresh()

    def _on_watchdog_elapsed(self) -> None:
        # Does not refresh; the watchdog re-arms itself.
        self._publish(agent_topic(self.agent_id, VELOCITY), STOP.to_json())
        self.ctx.last_command = STOP

    # ------------------------------------------------------------------
    # Inbound handlers
    # ------------------------------------------------------------------

    def handle_pose(self, text: str) -> bool:
        """Apply one pose broadcast.  Returns False if it was rejected."""
        ctx = self.ctx
        try:
            agent_id, pose = decode(text, self.membership)
        except UnknownAgentError as exc:
            ctx.parse_failures += 1
            ctx.unknown_agents[exc.name] += 1
            self._logger.warning(
                f"Pose from unknown agent {exc.name!r} dropped "
                f"(seen {ctx.unknown_agents[exc.name]}x): {text!r}"
            )
            return False
        except ParseError as exc:
            ctx.parse_failures += 1
            self._logger.warning(f"Malformed pose broadcast dropped ({exc}): {text!r}")
            return False

        ctx.roster.update(agent_id, pose)
        ctx.neighborhood = compute_neighborhood(
            ctx.roster, ctx.agent_id, self.config.proximity_threshold
        )
        ctx.consensus = compute_consensus(ctx.roster, ctx.neighborhood)

        gah = ctx.consensus.global_heading
        lah = ctx.consensus.local_heading
        self._publish(agent_topic(ctx.agent_id, GLOBAL_HEADING), repr(gah))
        self._publish(agent_topic(ctx.agent_id, LOCAL_HEADING), repr(lah))
        thetas = ", ".join(f"{p.theta:.4f}" for _, p in ctx.roster.all_poses())
        self._publish(DEBUG_TOPIC, f"{text}, {ctx.agent_id}, {gah:.4f}, {lah:.4f}, {thetas}")
        return True

    def handle_mode(self, text: str) -> bool:
        """Switch operating mode and stop immediately."""
        try:
            mode = int(text.strip())
        except ValueError:
            self._logger.warning(f"Invalid mode code dropped: {text!r}")
            return False
        if mode != self.ctx.mode:
            kind = "autonomous" if self.controller.is_autonomous(mode) else "manual"
            self._logger.info(f"Mode {self.ctx.mode} -> {mode} ({kind})")
        self.ctx.mode = mode
        self.emit(STOP)
        return True

    def handle_manual(self, text: str) -> bool:
        """Pass the operator's command straight through unless autonomous.

        Sent once, as it arrives; the watchdog stops the rover if no further
        commands follow.
        """
        try:
            command = VelocityCommand.from_json(text)
        except ValueError as exc:
            self._logger.warning(f"Invalid manual command dropped ({exc}): {text!r}")
            return False
        if self.controller.is_autonomous(self.ctx.mode):
            self._logger.debug(f"Manual command ignored in autonomous mode {self.ctx.mode}")
            return True
        self.emit(command)
        return True

    def handle_odometry(self, text: str) -> bool:
        """Update the agent's own pose from odometry JSON."""
        try:
            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError("odometry must be a JSON object")
            pose = Pose.from_dict(data)
        except (ValueError, KeyError, TypeError) as exc:
            self._logger.warning(f"Invalid odometry dropped ({exc}): {text!r}")
            return False
        self.ctx.current_pose = pose
        return True

    # ------------------------------------------------------------------
    # Periodic ticks
    # ------------------------------------------------------------------

    def control_tick(self) -> None:
        """Run the motion controller and broadcast own pose and state."""
        ctx = self.ctx
        out = self.controller.tick(
            pose=ctx.current_pose,
            bearing=ctx.neighborhood.bearing,
            mode=ctx.mode,
            now=time.monotonic(),
        )
        if out.command is not None:
            self.emit(out.command)
        ctx.state_text = out.state_text
        self._publish(POSES_TOPIC, encode(ctx.agent_id, ctx.current_pose))
        self._publish(agent_topic(ctx.agent_id, STATE_MACHINE), out.state_text)

    def status_tick(self) -> None:
        """Announce once on ``messages``, then report ``online``."""
        if not self.ctx.announced:
            self._publish(MESSAGES_TOPIC, f"I {self.agent_id}")
            self.ctx.announced = True
        self._publish(agent_topic(self.agent_id, STATUS), "online")

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def snapshot(self) -> AgentSnapshot:
        ctx = self.ctx
        return AgentSnapshot(
            agent_id=ctx.agent_id,
            mode=ctx.mode,
            autonomous=self.controller.is_autonomous(ctx.mode),
            state=ctx.state_text,
            pose=ctx.current_pose.to_dict(),
            neighbors=list(ctx.neighborhood.ordered_members),
            bearing=ctx.neighborhood.bearing,
            global_heading=ctx.consensus.global_heading,
            local_heading=ctx.consensus.local_heading,
            last_command=ctx.last_command.to_dict() if ctx.last_command else None,
            parse_failures=ctx.parse_failures,
            unknown_agents=dict(ctx.unknown_agents),
            dropped_messages=ctx.dropped_messages,
            observed_agents=ctx.roster.observed_count(),
            watchdog=self.watchdog.get_status(),
            errors=list(self._errors),
        )
