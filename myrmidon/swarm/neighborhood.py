"""Neighborhood tracker -- which peers are close, and which way they lie."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Tuple

from myrmidon.swarm.pose import resultant_direction
from myrmidon.swarm.roster import Roster

DEFAULT_PROXIMITY_THRESHOLD = 2.0


@dataclass(frozen=True)
class Neighborhood:
    """Peers of ``self_id`` strictly inside the proximity threshold.

    ``sum_dx`` / ``sum_dy`` accumulate the offsets from self toward each
    neighbor; their direction is the attraction bearing the motion
    controller steers to.
    """

    self_id: str
    ordered_members: Tuple[str, ...] = ()
    sum_dx: float = 0.0
    sum_dy: float = 0.0
    members: FrozenSet[str] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "members", frozenset(self.ordered_members))

    @property
    def bearing(self) -> float:
        """Direction toward the neighbors in radians; 0.0 with no neighbors."""
        return resultant_direction(self.sum_dy, self.sum_dx)

    def __len__(self) -> int:
        return len(self.ordered_members)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self.members

    def to_dict(self) -> dict:
        return {
            "self_id": self.self_id,
            "members": list(self.ordered_members),
            "sum_dx": self.sum_dx,
            "sum_dy": self.sum_dy,
            "bearing": self.bearing,
        }


def compute_neighborhood(
    roster: Roster,
    self_id: str,
    threshold: float = DEFAULT_PROXIMITY_THRESHOLD,
) -> Neighborhood:
    """Neighbors of *self_id* from current roster poses.

    A peer is included iff its distance to self is strictly less than
    *threshold*.  Self is never its own neighbor.

    Raises:
        UnknownAgentError: *self_id* is not a swarm member.
    """
    me = roster.get(self_id)
    members = []
    sum_dx = 0.0
    sum_dy = 0.0
    for agent_id, pose in roster.all_poses():
        if agent_id == self_id:
            continue
        if me.distance_to(pose) < threshold:
            members.append(agent_id)
            sum_dx += pose.x - me.x
            sum_dy += pose.y - me.y
    return Neighborhood(
        self_id=self_id,
        ordered_members=tuple(members),
        sum_dx=sum_dx,
        sum_dy=sum_dy,
    )
