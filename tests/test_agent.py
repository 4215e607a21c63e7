"""Tests for myrmidon.agent -- the per-rover control loop."""

import asyncio
import json
import math

import pytest

from myrmidon.agent import MAX_QUEUE_DEPTH, SwarmAgent
from myrmidon.channels.memory import InProcessBus
from myrmidon.config import ConfigError, SwarmConfig
from myrmidon.controller import STOP
from myrmidon.swarm.pose import ZERO_POSE, Pose


# Unheard members sit at the origin and count as neighbors of a rover
# there, so most tests run a two-rover swarm.
PAIR = ["ajax", "aeneas"]


def _config(members=None, **sections) -> SwarmConfig:
    sections.setdefault("swarm", {"members": members or PAIR})
    return SwarmConfig.from_dict(sections)


def _agent(name: str = "ajax", config: SwarmConfig | None = None) -> tuple[SwarmAgent, InProcessBus]:
    bus = InProcessBus()
    return SwarmAgent(name, config or _config(), bus), bus


def _last_velocity(bus: InProcessBus, name: str = "ajax") -> dict:
    return json.loads(bus.history(f"{name}/velocity")[-1])


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_unknown_self_rejected(self):
        with pytest.raises(ConfigError, match="odysseus"):
            SwarmAgent("odysseus", _config(), InProcessBus())

    def test_initial_context(self):
        agent, _ = _agent()
        assert agent.ctx.current_pose == ZERO_POSE
        assert agent.ctx.mode == 0
        assert agent.ctx.neighborhood.bearing == 0.0


# ---------------------------------------------------------------------------
# Pose broadcasts
# ---------------------------------------------------------------------------


class TestHandlePose:
    def test_neighbor_and_local_heading(self):
        agent, bus = _agent()
        assert agent.handle_pose(f"aeneas, 1, 0, {math.pi / 2!r}") is True

        assert agent.ctx.neighborhood.members == frozenset({"aeneas"})
        assert agent.ctx.consensus.local_heading == pytest.approx(math.pi / 2)
        assert float(bus.history("ajax/local_average_heading")[-1]) == pytest.approx(math.pi / 2)
        assert bus.history("ajax/global_average_heading")
        assert bus.history("debug")[-1].startswith("aeneas, 1, 0")

    def test_too_few_fields_rejected(self):
        agent, bus = _agent()
        assert agent.handle_pose("foo,1,2") is False
        assert agent.ctx.parse_failures == 1
        assert agent.ctx.roster.observed_count() == 0
        assert bus.history() == []

    def test_non_numeric_rejected(self):
        agent, _ = _agent()
        assert agent.handle_pose("ajax,1,notanumber,3") is False
        assert agent.ctx.roster.get("ajax") == ZERO_POSE

    def test_unknown_agent_counted_not_aliased(self):
        agent, _ = _agent()
        agent.handle_pose("odysseus, 1, 1, 1")
        agent.handle_pose("odysseus, 2, 2, 2")
        assert agent.ctx.unknown_agents == {"odysseus": 2}
        assert agent.ctx.parse_failures == 2
        assert agent.ctx.roster.get("ajax") == ZERO_POSE
        assert agent.ctx.roster.observed_count() == 0

    def test_bad_broadcast_does_not_block_next(self):
        agent, _ = _agent()
        agent.handle_pose("garbage")
        assert agent.handle_pose("aeneas, 0.5, 0.5, 1.0") is True
        assert agent.ctx.roster.get("aeneas") == Pose(0.5, 0.5, 1.0)

    def test_out_of_order_duplicate_overwrites(self):
        agent, _ = _agent()
        agent.handle_pose("aeneas, 1, 1, 0")
        agent.handle_pose("aeneas, 5, 5, 0")
        agent.handle_pose("aeneas, 1, 1, 0")  # stale duplicate wins until the next broadcast
        assert agent.ctx.roster.get("aeneas") == Pose(1.0, 1.0, 0.0)


# ---------------------------------------------------------------------------
# Mode, manual command, odometry
# ---------------------------------------------------------------------------


class TestInboundControl:
    def test_mode_change_emits_stop(self):
        agent, bus = _agent()
        assert agent.handle_mode("2") is True
        assert agent.ctx.mode == 2
        assert _last_velocity(bus) == {"linear": 0.0, "angular": 0.0}

    def test_invalid_mode_dropped(self):
        agent, bus = _agent()
        assert agent.handle_mode("auto") is False
        assert agent.ctx.mode == 0
        assert bus.history("ajax/velocity") == []

    def test_mode_change_stops_manual_motion(self):
        agent, bus = _agent()
        agent.handle_manual('{"linear": 0.2, "angular": 0.1}')
        agent.handle_mode("1")
        assert _last_velocity(bus) == {"linear": 0.0, "angular": 0.0}

    def test_manual_passed_through_in_manual_mode(self):
        agent, bus = _agent()
        agent.handle_manual('{"linear": 0.3, "angular": -0.2}')
        assert _last_velocity(bus) == {"linear": 0.3, "angular": -0.2}

    def test_manual_ignored_in_autonomous_mode(self):
        agent, bus = _agent()
        agent.handle_mode("2")
        bus.clear_history()
        agent.handle_manual('{"linear": 0.3, "angular": -0.2}')
        assert bus.history("ajax/velocity") == []

    def test_invalid_manual_dropped(self):
        agent, bus = _agent()
        assert agent.handle_manual("forward!") is False
        assert bus.history("ajax/velocity") == []

    def test_odometry_theta(self):
        agent, _ = _agent()
        agent.handle_odometry('{"x": 1.0, "y": 2.0, "theta": 0.5}')
        assert agent.ctx.current_pose == Pose(1.0, 2.0, 0.5)

    def test_odometry_quaternion(self):
        agent, _ = _agent()
        s = math.sin(math.pi / 4)
        agent.handle_odometry(json.dumps({"x": 0.0, "y": 0.0, "qx": 0.0, "qy": 0.0, "qz": s, "qw": s}))
        assert agent.ctx.current_pose.theta == pytest.approx(math.pi / 2)

    @pytest.mark.asyncio
    async def test_full_inbound_queue_drops_oldest(self):
        agent, _ = _agent()
        queue = asyncio.Queue(maxsize=MAX_QUEUE_DEPTH)
        for i in range(MAX_QUEUE_DEPTH + 2):
            agent._offer(queue, "poses", str(i))
        assert queue.qsize() == MAX_QUEUE_DEPTH
        assert queue.get_nowait() == "2"
        assert agent.ctx.dropped_messages == 2
        assert agent.snapshot().dropped_messages == 2

    @pytest.mark.parametrize("text", ["{}", "[]", "nope", '{"x": "a", "y": 0}'])
    def test_invalid_odometry_dropped(self, text):
        agent, _ = _agent()
        assert agent.handle_odometry(text) is False
        assert agent.ctx.current_pose == ZERO_POSE


# ---------------------------------------------------------------------------
# Control and status ticks
# ---------------------------------------------------------------------------


class TestTicks:
    def test_autonomous_tick_steers_to_bearing(self):
        config = _config(control={"linear_scale": 1.0, "angular_scale": 1.0})
        agent, bus = _agent(config=config)
        agent.handle_mode("2")
        agent.handle_odometry('{"x": 0.0, "y": 0.0, "theta": 0.0}')
        agent.handle_pose("ajax, 0, 0, 0")
        agent.handle_pose("aeneas, 0, 1, 0")
        assert agent.ctx.neighborhood.bearing == pytest.approx(math.pi / 2)

        agent.control_tick()
        cmd = _last_velocity(bus)
        assert cmd["angular"] == pytest.approx(0.785, abs=1e-3)
        assert cmd["linear"] == pytest.approx(0.05)
        assert bus.history("ajax/state_machine")[-1] == "TRANSLATING"

    def test_autonomous_tick_applies_scale(self):
        agent, bus = _agent()
        agent.handle_mode("3")
        agent.handle_pose("aeneas, 0, 1, 0")
        agent.control_tick()
        cmd = _last_velocity(bus)
        assert cmd["angular"] == pytest.approx(0.5 * (math.pi / 2) * 8.0)
        assert cmd["linear"] == pytest.approx(0.05 * 1.3)

    def test_manual_tick_does_not_repeat_command(self):
        agent, bus = _agent()
        agent.handle_pose(f"aeneas, 1, 0, {math.pi / 2!r}")
        agent.handle_manual('{"linear": 0.25, "angular": 0.5}')
        assert bus.history("ajax/velocity") == ['{"linear": 0.25, "angular": 0.5}']

        agent.control_tick()
        agent.control_tick()
        assert len(bus.history("ajax/velocity")) == 1
        assert agent.ctx.consensus.local_heading == pytest.approx(math.pi / 2)
        assert bus.history("ajax/state_machine")[-1] == "WAITING, CURRENT MODE: 0"

    def test_manual_tick_without_command_emits_nothing(self):
        agent, bus = _agent()
        agent.control_tick()
        assert bus.history("ajax/velocity") == []

    def test_tick_broadcasts_own_pose(self):
        agent, bus = _agent()
        agent.handle_odometry('{"x": 1.5, "y": -2.0, "theta": 0.25}')
        agent.control_tick()
        assert bus.history("poses")[-1] == "ajax, 1.5, -2.0, 0.25"

    def test_status_announces_once(self):
        agent, bus = _agent()
        agent.status_tick()
        agent.status_tick()
        assert bus.history("messages") == ["I ajax"]
        assert bus.history("ajax/status") == ["online", "online"]

    def test_snapshot(self):
        agent, _ = _agent()
        agent.handle_pose("aeneas, 1, 0, 0")
        agent.handle_pose("nobody, 1, 0, 0")
        snap = agent.snapshot()
        assert snap.agent_id == "ajax"
        assert snap.neighbors == ["aeneas"]
        assert snap.parse_failures == 1
        assert snap.unknown_agents == {"nobody": 1}
        assert snap.to_dict()["observed_agents"] == 1


# ---------------------------------------------------------------------------
# Running agents on a shared bus
# ---------------------------------------------------------------------------

_FAST = {
    "control": {"tick_period_s": 0.01, "status_period_s": 0.02},
    "watchdog": {"timeout_s": 1.0},
}


class TestRunningAgents:
    @pytest.mark.asyncio
    async def test_two_agents_see_each_other(self):
        bus = InProcessBus()
        config = _config(members=["ajax", "hector"], **_FAST)
        ajax = SwarmAgent("ajax", config, bus)
        hector = SwarmAgent("hector", config, bus)
        await ajax.start()
        await hector.start()
        try:
            bus.publish("ajax/odom", '{"x": 0.0, "y": 0.0, "theta": 0.0}')
            bus.publish("hector/odom", '{"x": 1.0, "y": 0.0, "theta": 1.0}')
            await asyncio.sleep(0.08)
            assert ajax.ctx.roster.get("hector") == Pose(1.0, 0.0, 1.0)
            assert "hector" in ajax.ctx.neighborhood
            assert "ajax" in hector.ctx.neighborhood
            assert bus.history("messages")
        finally:
            await ajax.stop()
            await hector.stop()

    @pytest.mark.asyncio
    async def test_bad_message_does_not_stop_dispatcher(self):
        bus = InProcessBus()
        agent = SwarmAgent("ajax", _config(**_FAST), bus)
        await agent.start()
        try:
            bus.publish("poses", "foo,1,2")
            bus.publish("poses", "aeneas, 0.5, 0.0, 0.0")
            await asyncio.sleep(0.03)
            assert agent.ctx.parse_failures >= 1
            assert agent.ctx.roster.get("aeneas") == Pose(0.5, 0.0, 0.0)
        finally:
            await agent.stop()

    @pytest.mark.asyncio
    async def test_watchdog_stops_rover_after_last_joystick_command(self):
        config = _config(
            control={"tick_period_s": 0.01, "status_period_s": 1.0},
            watchdog={"timeout_s": 0.05},
        )
        agent, bus = _agent(config=config)
        await agent.start()
        try:
            bus.publish("ajax/joystick", '{"linear": 0.4, "angular": 0.0}')
            await asyncio.sleep(0.02)
            assert agent.ctx.last_command.linear == pytest.approx(0.4)
            # Operator link goes quiet; nothing else may keep the rover moving.
            await asyncio.sleep(0.2)
            assert agent.watchdog.fire_count >= 1
            assert _last_velocity(bus) == {"linear": 0.0, "angular": 0.0}
            assert agent.ctx.last_command == STOP
        finally:
            await agent.stop()

    @pytest.mark.asyncio
    async def test_steady_joystick_keeps_watchdog_quiet(self):
        config = _config(
            control={"tick_period_s": 0.01, "status_period_s": 1.0},
            watchdog={"timeout_s": 0.1},
        )
        agent, bus = _agent(config=config)
        await agent.start()
        try:
            for _ in range(10):
                bus.publish("ajax/joystick", '{"linear": 0.4, "angular": 0.0}')
                await asyncio.sleep(0.02)
            assert agent.watchdog.fire_count == 0
            assert agent.ctx.last_command.linear == pytest.approx(0.4)
        finally:
            await agent.stop()

    @pytest.mark.asyncio
    async def test_autonomous_ticks_keep_watchdog_quiet(self):
        config = _config(
            control={"tick_period_s": 0.01, "status_period_s": 1.0},
            watchdog={"timeout_s": 0.08},
        )
        agent, bus = _agent(config=config)
        await agent.start()
        try:
            bus.publish("ajax/mode", "2")
            await asyncio.sleep(0.2)
            assert agent.watchdog.fire_count == 0
        finally:
            await agent.stop()

    @pytest.mark.asyncio
    async def test_nothing_published_after_stop(self):
        agent, bus = _agent(config=_config(**_FAST))
        await agent.start()
        await asyncio.sleep(0.03)
        await agent.stop()
        count = len(bus.history())
        bus.publish("ajax/mode", "2")
        await asyncio.sleep(0.05)
        # Only the mode message itself was added.
        assert len(bus.history()) == count + 1
        assert agent.running is False
        assert agent.watchdog.is_armed is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        agent, bus = _agent(config=_config(**_FAST))
        await agent.start()
        await agent.start()
        try:
            assert len(bus.topics()) == 7
        finally:
            await agent.stop()
        assert bus.topics() == []
