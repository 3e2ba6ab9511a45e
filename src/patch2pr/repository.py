"""Repository identifiers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Repository:
    """A hosted repository, identified by owner and name."""

    owner: str
    name: str

    def __str__(self) -> str:
        if not self.owner and not self.name:
            return ""
        return f"{self.owner}/{self.name}"


def parse_repository(value: str) -> Repository:
    """Parse a :class:`Repository` from ``"owner/name"``.

    Raises:
        ValueError: If the slash, the owner, or the name is missing.
    """
    owner, sep, name = value.partition("/")
    if not sep:
        raise ValueError(f"parse {value!r}: missing slash")
    if not owner or not name:
        raise ValueError(f"parse {value!r}: missing owner or name")
    if "/" in name:
        raise ValueError(f"parse {value!r}: too many slashes")
    return Repository(owner, name)
