"""Motion controller -- turns the neighborhood bearing into a velocity command.

A finite-state machine over :class:`ControllerState`.  Only ``TRANSLATE`` is
implemented: steer toward the bearing with a proportional law while cruising
at a fixed speed.  Each state maps to exactly one handler in
``_STATE_HANDLERS``; a state without a handler fails at import, never at run
time.

Outside autonomous mode the controller only reports that it is waiting; the
operator's manual commands go straight to actuation as they arrive.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from myrmidon.config import ControlConfig
from myrmidon.swarm.pose import Pose

logger = logging.getLogger("Myrmidon.Controller")


class InvalidStateError(RuntimeError):
    """The state machine has a state with no handler.  A programming defect."""


class ControllerState(Enum):
    """Motion-controller states.  The value is the published state text."""

    TRANSLATE = "TRANSLATING"


@dataclass(frozen=True)
class VelocityCommand:
    """Linear / angular velocity pair sent to the actuation channel."""

    linear: float = 0.0
    angular: float = 0.0

    def scaled(self, linear_scale: float, angular_scale: float) -> VelocityCommand:
        return VelocityCommand(self.linear * linear_scale, self.angular * angular_scale)

    def to_dict(self) -> dict:
        return {"linear": self.linear, "angular": self.angular}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> VelocityCommand:
        return cls(linear=float(d.get("linear", 0.0)), angular=float(d.get("angular", 0.0)))

    @classmethod
    def from_json(cls, text: str) -> VelocityCommand:
        """Parse ``{"linear": f, "angular": f}``.

        Raises:
            ValueError: malformed JSON, a non-object, or non-numeric fields.
        """
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"velocity command must be a JSON object: {text!r}")
        try:
            cmd = cls.from_dict(data)
        except TypeError:
            raise ValueError(f"velocity command fields must be numbers: {text!r}") from None
        if not (math.isfinite(cmd.linear) and math.isfinite(cmd.angular)):
            raise ValueError(f"velocity command must be finite: {text!r}")
        return cmd


STOP = VelocityCommand(0.0, 0.0)


@dataclass(frozen=True)
class ControlOutput:
    """Result of one control tick.

    ``command`` is ``None`` outside autonomous mode.
    """

    command: Optional[VelocityCommand]
    state_text: str
    autonomous: bool


class MotionController:
    """Proportional heading controller with a closed state enumeration.

    Args:
        control: Gains, cruise speed, actuation scales and autonomous modes.
    """

    def __init__(self, control: Optional[ControlConfig] = None) -> None:
        self.control = control or ControlConfig()
        self.state: ControllerState = ControllerState.TRANSLATE
        self.transitions_to_auto = 0
        self.first_auto_time: Optional[float] = None

    def is_autonomous(self, mode: int) -> bool:
        return mode in self.control.autonomous_modes

    def tick(
        self,
        pose: Pose,
        bearing: float,
        mode: int,
        now: float = 0.0,
    ) -> ControlOutput:
        """Run one control step.

        Args:
            pose: The agent's current pose.
            bearing: Target heading (neighborhood bearing) in radians.
            mode: Operating mode code from the mode channel.
            now: Loop time, recorded on the first switch to autonomous.
        """
        if not self.is_autonomous(mode):
            return ControlOutput(
                command=None,
                state_text=f"WAITING, CURRENT MODE: {mode}",
                autonomous=False,
            )

        if self.transitions_to_auto == 0:
            self.transitions_to_auto += 1
            self.first_auto_time = now
            logger.info(f"First switch to autonomous mode {mode} at t={now:.2f}")

        handler = _STATE_HANDLERS[self.state]
        raw, next_state = handler(self, pose, bearing)
        if next_state is not self.state:
            logger.info(f"Controller state {self.state.name} -> {next_state.name}")
            self.state = next_state
        command = raw.scaled(self.control.linear_scale, self.control.angular_scale)
        return ControlOutput(command=command, state_text=self.state.value, autonomous=True)

    # ------------------------------------------------------------------
    # State handlers: (pose, bearing) -> (unscaled command, next state)
    # ------------------------------------------------------------------

    def _translate(self, pose: Pose, bearing: float) -> Tuple[VelocityCommand, ControllerState]:
        command = VelocityCommand(
            linear=self.control.cruise_speed,
            angular=self.control.kp * (bearing - pose.theta),
        )
        return command, ControllerState.TRANSLATE


_StateHandler = Callable[
    [MotionController, Pose, float], Tuple[VelocityCommand, ControllerState]
]

_STATE_HANDLERS: Dict[ControllerState, _StateHandler] = {
    ControllerState.TRANSLATE: MotionController._translate,
}

_missing = set(ControllerState) - set(_STATE_HANDLERS)
if _missing:
    raise InvalidStateError(
        f"controller states without a handler: {sorted(s.name for s in _missing)}"
    )
