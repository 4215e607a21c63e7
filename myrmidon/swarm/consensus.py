"""Heading consensus -- circular means over the roster and the neighborhood.

The circular mean is the direction of the resultant vector
``(sum cos(theta), sum sin(theta))``.  A plain arithmetic mean of angles is
wrong across the +/-pi wrap; e.g. the mean of 179 deg and -179 deg is 180 deg,
not 0 deg.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

from myrmidon.swarm.neighborhood import Neighborhood
from myrmidon.swarm.pose import Pose, resultant_direction
from myrmidon.swarm.roster import Roster


def circular_mean_with_spread(angles: Iterable[float]) -> Tuple[float, float]:
    """Return ``(mean, concentration)`` for *angles* in radians.

    ``concentration`` is the mean resultant length in [0, 1]: 1 when all
    angles agree, 0 when they cancel out.  An empty input or a cancelled
    resultant gives a mean of 0.0.
    """
    sum_cos = 0.0
    sum_sin = 0.0
    count = 0
    for theta in angles:
        sum_cos += math.cos(theta)
        sum_sin += math.sin(theta)
        count += 1
    if count == 0:
        return 0.0, 0.0
    concentration = min(1.0, math.hypot(sum_cos, sum_sin) / count)
    return resultant_direction(sum_sin, sum_cos), concentration


def circular_mean(poses: Iterable[Pose]) -> float:
    """Circular mean heading of *poses*, in radians."""
    mean, _ = circular_mean_with_spread(p.theta for p in poses)
    return mean


@dataclass(frozen=True)
class ConsensusHeading:
    """Global (whole roster) and local (neighborhood) mean headings."""

    global_heading: float = 0.0
    local_heading: float = 0.0
    global_concentration: float = 0.0
    local_concentration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "global_heading": self.global_heading,
            "local_heading": self.local_heading,
            "global_concentration": self.global_concentration,
            "local_concentration": self.local_concentration,
        }


def compute_consensus(roster: Roster, neighborhood: Neighborhood) -> ConsensusHeading:
    """Global heading over every roster entry, local over the neighbors only."""
    global_mean, global_r = circular_mean_with_spread(
        pose.theta for _, pose in roster.all_poses()
    )
    local_mean, local_r = circular_mean_with_spread(
        roster.get(agent_id).theta for agent_id in neighborhood.ordered_members
    )
    return ConsensusHeading(
        global_heading=global_mean,
        local_heading=local_mean,
        global_concentration=global_r,
        local_concentration=local_r,
    )
