"""SwarmMembership -- the static enumeration of agent identities.

Every pose in the roster is keyed by exactly one member name.  The
name → slot table is built once from config, so adding a rover is a
one-line edit to ``swarm.members``.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from myrmidon.swarm.errors import UnknownAgentError

DEFAULT_MEMBERS: tuple[str, ...] = (
    "ajax",
    "aeneas",
    "achilles",
    "diomedes",
    "hector",
    "paris",
)


class SwarmMembership:
    """Closed, ordered set of agent names with O(1) slot lookup."""

    def __init__(self, members: Iterable[str] = DEFAULT_MEMBERS) -> None:
        names = tuple(members)
        if not names:
            raise ValueError("swarm membership must not be empty")
        self._slots: dict[str, int] = {}
        for slot, name in enumerate(names):
            if name in self._slots:
                raise ValueError(f"duplicate swarm member: {name!r}")
            self._slots[name] = slot
        self._names = names

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def slot(self, name: str) -> int:
        """Return the slot index for *name*; raise UnknownAgentError otherwise."""
        try:
            return self._slots[name]
        except KeyError:
            raise UnknownAgentError(name) from None

    def resolve(self, name: str) -> str:
        """Return *name* if it is a member; raise UnknownAgentError otherwise."""
        self.slot(name)
        return name

    def __contains__(self, name: object) -> bool:
        return name in self._slots

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"SwarmMembership({list(self._names)!r})"
