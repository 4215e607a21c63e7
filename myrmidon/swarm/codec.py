"""Pose codec -- the wire text format for pose broadcasts.

Format::

    <agentName>, <x>, <y>, <theta>

Decoding is all-or-nothing: any malformed field, wrong field count, or
unknown agent name raises :class:`ParseError` and nothing is returned.
"""

from __future__ import annotations

import math
from typing import Tuple

from myrmidon.swarm.errors import ParseError, UnknownAgentError
from myrmidon.swarm.membership import SwarmMembership
from myrmidon.swarm.pose import Pose

__all__ = ["FIELD_COUNT", "ParseError", "UnknownAgentError", "decode", "encode"]

FIELD_SEPARATOR = ","
FIELD_COUNT = 4


def encode(agent_id: str, pose: Pose) -> str:
    """Render a pose broadcast.

    ``repr`` of a float round-trips exactly, so ``decode(encode(...))``
    reproduces the pose bit for bit.
    """
    if FIELD_SEPARATOR in agent_id:
        raise ValueError(f"agent name may not contain {FIELD_SEPARATOR!r}: {agent_id!r}")
    return f"{agent_id}, {pose.x!r}, {pose.y!r}, {pose.theta!r}"


def _parse_float(label: str, raw: str, payload: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ParseError(f"field {label!r} is not a number: {raw.strip()!r}", payload) from None
    if math.isnan(value) or math.isinf(value):
        raise ParseError(f"field {label!r} is not finite: {raw.strip()!r}", payload)
    return value


def decode(text: str, membership: SwarmMembership) -> Tuple[str, Pose]:
    """Parse a pose broadcast into ``(agent_id, pose)``.

    Raises:
        ParseError: wrong field count or a non-numeric / non-finite field.
        UnknownAgentError: the name is not in *membership*.
    """
    fields = text.split(FIELD_SEPARATOR)
    if len(fields) != FIELD_COUNT:
        raise ParseError(f"expected {FIELD_COUNT} fields, got {len(fields)}", text)

    name = fields[0].strip()
    x = _parse_float("x", fields[1], text)
    y = _parse_float("y", fields[2], text)
    theta = _parse_float("theta", fields[3], text)

    try:
        agent_id = membership.resolve(name)
    except UnknownAgentError as exc:
        raise UnknownAgentError(exc.name, text) from None
    return agent_id, Pose(x=x, y=y, theta=theta)
