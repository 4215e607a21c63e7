"""Error types shared by the swarm subpackage."""

from __future__ import annotations


class ParseError(ValueError):
    """A broadcast could not be decoded.  The roster is left untouched."""

    def __init__(self, message: str, payload: str = "") -> None:
        super().__init__(message)
        self.payload = payload


class UnknownAgentError(ParseError):
    """A name that is not in the swarm membership.

    Never aliased to self or to any default slot.
    """

    def __init__(self, name: str, payload: str = "") -> None:
        super().__init__(f"unknown agent {name!r}", payload)
        self.name = name
