"""
Action and resource pattern grammar.

A pattern is a colon-delimited list of segments. Each segment is either a
literal or the wildcard ``*``:

- ``*`` on its own matches any value.
- A wildcard in the middle of a pattern matches exactly one segment
  (``projects:*:documents`` matches ``projects:123:documents``).
- A trailing wildcard matches one or more remaining segments
  (``doc:*`` matches ``doc:read`` and ``doc:read:draft`` but not ``read``).

Patterns are parsed once when a rule is created so that a malformed pattern
is rejected up front instead of silently never matching.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional, Tuple

WILDCARD = "*"
SEPARATOR = ":"


class PatternError(ValueError):
    """Raised for a pattern outside the grammar."""


@dataclass(frozen=True)
class Pattern:
    """Parsed action or resource pattern."""
    raw: str
    # None marks a wildcard segment
    segments: Tuple[Optional[str], ...]

    @property
    def is_wildcard(self) -> bool:
        return self.segments == (None,)

    @property
    def is_literal(self) -> bool:
        return None not in self.segments

    def matches(self, value: str) -> bool:
        """Check whether a concrete action or resource key satisfies the pattern."""
        if self.is_wildcard:
            return True
        if self.is_literal:
            return value == self.raw

        parts = value.split(SEPARATOR)
        # Pattern segments are never empty, so neither is a matching value segment
        if "" in parts:
            return False
        if self.segments[-1] is None:
            if len(parts) < len(self.segments):
                return False
            head = self.segments[:-1]
        else:
            if len(parts) != len(self.segments):
                return False
            head = self.segments

        return all(
            segment is None or segment == part
            for segment, part in zip(head, parts)
        )

    def __str__(self) -> str:
        return self.raw


@lru_cache(maxsize=2048)
def parse_pattern(raw: str) -> Pattern:
    """Parse a pattern string, raising PatternError when it is malformed."""
    if not isinstance(raw, str) or not raw.strip():
        raise PatternError("Pattern must be a non-empty string")
    if raw != raw.strip():
        raise PatternError(f"Pattern '{raw}' has surrounding whitespace")

    segments = []
    for segment in raw.split(SEPARATOR):
        if not segment:
            raise PatternError(f"Pattern '{raw}' has an empty segment")
        if segment == WILDCARD:
            segments.append(None)
        elif WILDCARD in segment:
            raise PatternError(
                f"Pattern '{raw}' mixes a wildcard with literal text in segment '{segment}'"
            )
        else:
            segments.append(segment)

    return Pattern(raw=raw, segments=tuple(segments))


def compile_patterns(raws: Optional[Iterable[str]]) -> Tuple[Pattern, ...]:
    """Parse a list of pattern strings."""
    if raws is None:
        return ()
    return tuple(parse_pattern(raw) for raw in raws)


def matches_any(patterns: Iterable[Pattern], value: str) -> bool:
    """Check whether any pattern matches the value."""
    return any(pattern.matches(value) for pattern in patterns)
