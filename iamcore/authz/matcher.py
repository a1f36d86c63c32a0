"""Wildcard matching for segmented action and resource identifiers.

Identifiers are split into segments by ``:`` or ``/``:

    service:verb
    arn:partition:service:organization:type/id

Pattern rules:
- ``*`` matches any run of characters inside one segment
- ``*`` as the last character of the pattern matches to the end of the
  candidate, across delimiters
- ``?`` matches exactly one non-delimiter character
- matching is case-sensitive and anchored at both ends
"""

import re
from functools import lru_cache
from typing import Iterable

DELIMITERS = ":/"

_SEGMENT_RUN = "[^:/]*"
_SEGMENT_CHAR = "[^:/]"


@lru_cache(maxsize=4096)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a wildcard pattern into an anchored regular expression."""
    parts: list[str] = []
    last = len(pattern) - 1
    for i, char in enumerate(pattern):
        if char == "*":
            parts.append(".*" if i == last else _SEGMENT_RUN)
        elif char == "?":
            parts.append(_SEGMENT_CHAR)
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts))


def matches(pattern: str, candidate: str) -> bool:
    """Check whether a candidate identifier matches a wildcard pattern.

    Examples:
        matches("svc:*", "svc:read")          -> True
        matches("*", "anything")              -> True
        matches("svc:Read", "svc:Write")      -> False
        matches("arn:*:iam", "arn:a:b:iam")   -> False
    """
    if not pattern or not candidate:
        return False
    if pattern == "*":
        return True
    if "*" not in pattern and "?" not in pattern:
        return pattern == candidate
    return compile_pattern(pattern).fullmatch(candidate) is not None


def matches_any(patterns: Iterable[str], candidate: str) -> bool:
    """Check a candidate against several patterns; an empty list never matches."""
    return any(matches(pattern, candidate) for pattern in patterns)
