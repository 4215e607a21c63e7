"""Roster -- last-known pose of every swarm member, self included."""

from __future__ import annotations

from typing import List, Tuple

from myrmidon.swarm.membership import SwarmMembership
from myrmidon.swarm.pose import ZERO_POSE, Pose


class Roster:
    """Fixed table of one pose per member, in membership order.

    Entries start at the zero pose and are overwritten, never removed.
    There is no staleness tracking and no sequence numbers, so an
    out-of-order duplicate broadcast can briefly replace a newer pose
    until the peer's next broadcast arrives.
    """

    def __init__(self, membership: SwarmMembership) -> None:
        self.membership = membership
        self._poses: List[Pose] = [ZERO_POSE] * len(membership)
        self._observed: List[bool] = [False] * len(membership)

    def update(self, agent_id: str, pose: Pose) -> None:
        """Replace the stored pose for *agent_id*.

        Raises:
            UnknownAgentError: *agent_id* is not a member.
        """
        slot = self.membership.slot(agent_id)
        self._poses[slot] = pose
        self._observed[slot] = True

    def get(self, agent_id: str) -> Pose:
        """Last-known pose, or the zero pose if never observed."""
        return self._poses[self.membership.slot(agent_id)]

    def all_poses(self) -> List[Tuple[str, Pose]]:
        """``(agent_id, pose)`` for every member, in membership order."""
        return list(zip(self.membership.names, self._poses))

    def has_observed(self, agent_id: str) -> bool:
        return self._observed[self.membership.slot(agent_id)]

    def observed_count(self) -> int:
        return sum(self._observed)

    def to_dict(self) -> dict:
        return {name: pose.to_dict() for name, pose in self.all_poses()}
