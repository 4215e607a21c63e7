"""Tests for circular-mean heading consensus."""

from __future__ import annotations

import math

import pytest

from myrmidon.swarm.consensus import (
    ConsensusHeading,
    circular_mean,
    circular_mean_with_spread,
    compute_consensus,
)
from myrmidon.swarm.membership import SwarmMembership
from myrmidon.swarm.neighborhood import compute_neighborhood
from myrmidon.swarm.pose import Pose
from myrmidon.swarm.roster import Roster


def _headings(*thetas: float) -> list[Pose]:
    return [Pose(0.0, 0.0, t) for t in thetas]


# ---------------------------------------------------------------------------
# circular_mean
# ---------------------------------------------------------------------------


class TestCircularMean:
    @pytest.mark.parametrize("theta", [0.0, 0.3, -1.2, math.pi / 2, 3.0, -3.0])
    def test_identical_headings(self, theta):
        assert circular_mean(_headings(theta, theta)) == pytest.approx(theta)

    def test_opposite_headings_defined_as_zero(self):
        assert circular_mean(_headings(0.0, math.pi)) == 0.0

    def test_empty_is_zero(self):
        assert circular_mean([]) == 0.0

    def test_wraparound(self):
        a = math.radians(179)
        b = math.radians(-179)
        mean = circular_mean(_headings(a, b))
        # Mean is +/-pi, not the arithmetic 0.
        assert abs(mean) == pytest.approx(math.pi)

    def test_quarter_turns(self):
        assert circular_mean(_headings(0.0, math.pi / 2)) == pytest.approx(math.pi / 4)

    def test_concentration(self):
        _, aligned = circular_mean_with_spread([0.5, 0.5, 0.5])
        _, opposed = circular_mean_with_spread([0.0, math.pi])
        assert aligned == pytest.approx(1.0)
        assert opposed == pytest.approx(0.0, abs=1e-12)

    def test_spread_of_empty(self):
        assert circular_mean_with_spread([]) == (0.0, 0.0)


# ---------------------------------------------------------------------------
# compute_consensus
# ---------------------------------------------------------------------------


class TestComputeConsensus:
    def test_two_agent_scenario(self):
        roster = Roster(SwarmMembership(["A", "B"]))
        roster.update("A", Pose(0.0, 0.0, 0.0))
        roster.update("B", Pose(1.0, 0.0, math.pi / 2))
        hood = compute_neighborhood(roster, "A", threshold=2.0)
        consensus = compute_consensus(roster, hood)

        assert hood.members == frozenset({"B"})
        assert consensus.local_heading == pytest.approx(
            math.atan2(math.sin(math.pi / 2), math.cos(math.pi / 2))
        )
        assert consensus.global_heading == pytest.approx(math.pi / 4)

    def test_global_includes_unobserved_zero_entries(self):
        roster = Roster(SwarmMembership(["A", "B", "C"]))
        roster.update("B", Pose(0.0, 0.0, math.pi / 2))
        hood = compute_neighborhood(roster, "A", threshold=2.0)
        consensus = compute_consensus(roster, hood)
        # Resultant of (0, pi/2, 0): (2, 1)
        assert consensus.global_heading == pytest.approx(math.atan2(1.0, 2.0))

    def test_local_excludes_self(self):
        roster = Roster(SwarmMembership(["A", "B"]))
        roster.update("A", Pose(0.0, 0.0, 2.0))
        roster.update("B", Pose(0.5, 0.0, -1.0))
        hood = compute_neighborhood(roster, "A", threshold=2.0)
        assert compute_consensus(roster, hood).local_heading == pytest.approx(-1.0)

    def test_empty_neighborhood_local_is_zero(self):
        roster = Roster(SwarmMembership(["A", "B"]))
        roster.update("A", Pose(0.0, 0.0, 1.0))
        roster.update("B", Pose(10.0, 0.0, 1.0))
        hood = compute_neighborhood(roster, "A", threshold=2.0)
        consensus = compute_consensus(roster, hood)
        assert consensus.local_heading == 0.0
        assert consensus.global_heading == pytest.approx(1.0)

    def test_default_consensus(self):
        assert ConsensusHeading().to_dict()["local_heading"] == 0.0
