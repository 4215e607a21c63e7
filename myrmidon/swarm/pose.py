"""Pose -- 2D position and heading of one agent."""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Pose:
    """Planar pose.  ``theta`` is in radians.

    Frozen: a roster entry is only ever replaced whole.
    """

    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0

    def distance_to(self, other: Pose) -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "theta": self.theta}

    @classmethod
    def from_dict(cls, d: dict) -> Pose:
        """Build a pose from ``x``/``y`` plus either ``theta`` or a quaternion.

        Quaternion keys are ``qx``, ``qy``, ``qz``, ``qw`` (odometry style).
        """
        if "theta" in d:
            theta = float(d["theta"])
        elif "qw" in d:
            theta = yaw_from_quaternion(
                float(d.get("qx", 0.0)),
                float(d.get("qy", 0.0)),
                float(d.get("qz", 0.0)),
                float(d["qw"]),
            )
        else:
            theta = 0.0
        return cls(x=float(d["x"]), y=float(d["y"]), theta=theta)


ZERO_POSE = Pose()


def yaw_from_quaternion(qx: float, qy: float, qz: float, qw: float) -> float:
    """Yaw (rotation about z) of a unit quaternion, in (-pi, pi]."""
    siny_cosp = 2.0 * (qw * qz + qx * qy)
    cosy_cosp = 1.0 - 2.0 * (qy * qy + qz * qz)
    return math.atan2(siny_cosp, cosy_cosp)


# Resultants shorter than this have no meaningful direction.
ZERO_RESULTANT = 1e-9


def resultant_direction(sum_y: float, sum_x: float) -> float:
    """``atan2(sum_y, sum_x)``, defined as 0.0 for a (near-)zero vector."""
    if math.hypot(sum_x, sum_y) < ZERO_RESULTANT:
        return 0.0
    return math.atan2(sum_y, sum_x)
