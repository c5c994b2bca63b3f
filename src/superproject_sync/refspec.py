"""
Ref pattern matching for subscribe rules (``src[:dst]`` with a single ``*``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

WILDCARD = "*"


def _is_wildcard(pattern: Optional[str]) -> bool:
    return pattern is not None and WILDCARD in pattern


def _match(pattern: str, ref: str) -> Optional[str]:
    """Return the part of ``ref`` matched by ``*``, or None when it doesn't match.

    A literal pattern matches only itself and yields an empty string.
    """
    if not _is_wildcard(pattern):
        return "" if pattern == ref else None
    prefix, _, suffix = pattern.partition(WILDCARD)
    if len(ref) < len(prefix) + len(suffix):
        return None
    if not ref.startswith(prefix) or not ref.endswith(suffix):
        return None
    return ref[len(prefix):len(ref) - len(suffix)]


@dataclass(frozen=True)
class RefPattern:
    source: str
    destination: Optional[str] = None

    def __post_init__(self) -> None:
        for side in (self.source, self.destination):
            if side is not None and side.count(WILDCARD) > 1:
                raise ValueError(f"Only one '*' is allowed in ref pattern '{side}'")
        if _is_wildcard(self.destination) and not _is_wildcard(self.source):
            raise ValueError(
                f"Wildcard destination '{self.destination}' needs a wildcard source"
            )

    @property
    def is_wildcard(self) -> bool:
        return _is_wildcard(self.source)

    def match_source(self, ref: str) -> bool:
        return _match(self.source, ref) is not None

    def expand_from_source(self, ref: str) -> str:
        """Map a matching source ref onto the destination side."""
        matched = _match(self.source, ref)
        if matched is None:
            raise ValueError(f"'{ref}' does not match '{self.source}'")
        if self.destination is None:
            raise ValueError(f"Pattern '{self.source}' has no destination")
        if not _is_wildcard(self.destination):
            return self.destination
        return self.destination.replace(WILDCARD, matched, 1)
