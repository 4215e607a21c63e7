"""myrmidon.swarm -- the per-agent view of the swarm.

Pure, lock-free building blocks; the owning :class:`~myrmidon.agent.SwarmAgent`
serialises all access through its event loop.

Key pieces:

- :class:`SwarmMembership` -- the static name → slot table.
- :func:`encode` / :func:`decode` -- the ``<name>, <x>, <y>, <theta>`` wire text.
- :class:`Roster` -- last-known pose of every member.
- :func:`compute_neighborhood` -- peers inside the proximity threshold and the
  bearing toward them.
- :func:`compute_consensus` -- global and local circular-mean headings.
"""

from myrmidon.swarm.codec import decode, encode
from myrmidon.swarm.consensus import (
    ConsensusHeading,
    circular_mean,
    circular_mean_with_spread,
    compute_consensus,
)
from myrmidon.swarm.errors import ParseError, UnknownAgentError
from myrmidon.swarm.membership import DEFAULT_MEMBERS, SwarmMembership
from myrmidon.swarm.neighborhood import Neighborhood, compute_neighborhood
from myrmidon.swarm.pose import ZERO_POSE, Pose
from myrmidon.swarm.roster import Roster

__all__ = [
    "DEFAULT_MEMBERS",
    "ZERO_POSE",
    "ConsensusHeading",
    "Neighborhood",
    "ParseError",
    "Pose",
    "Roster",
    "SwarmMembership",
    "UnknownAgentError",
    "circular_mean",
    "circular_mean_with_spread",
    "compute_consensus",
    "compute_neighborhood",
    "decode",
    "encode",
]
