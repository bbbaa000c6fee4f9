"""Go language version parsing and comparison."""

from __future__ import annotations

import re
from dataclasses import dataclass

_VERSION_RE = re.compile(r"^(?:go)?(\d+)\.(\d+)(?:\.(\d+))?(?:(?:rc|beta)\d+)?$")


@dataclass(frozen=True, order=True)
class GoVersion:
    major: int
    minor: int
    patch: int = 0

    def __str__(self) -> str:
        if self.patch:
            return f"{self.major}.{self.minor}.{self.patch}"
        return f"{self.major}.{self.minor}"


def parse_go_version(value: str | GoVersion) -> GoVersion:
    """Parse ``1.22``, ``1.21.3`` or ``go1.23rc1`` into a GoVersion.

    Raises ValueError for anything else.
    """
    if isinstance(value, GoVersion):
        return value
    match = _VERSION_RE.match(str(value).strip())
    if match is None:
        raise ValueError(f"invalid Go version: {value!r}")
    major, minor, patch = match.groups()
    return GoVersion(int(major), int(minor), int(patch or 0))


__all__ = ["GoVersion", "parse_go_version"]
