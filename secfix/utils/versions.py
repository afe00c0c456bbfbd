"""
Version helpers
===============
Ordering for NuGet-style versions (``1.2.3``, ``4.0.0.1``, ``2.0.0-beta.1``).

Numeric parts compare numerically, missing parts count as zero, and a
pre-release sorts before the matching release.
"""
import re
from typing import Iterable, Optional, Tuple

_NUMERIC_RE = re.compile(r"^\d+$")


def version_key(version: str) -> Tuple:
    core, _, prerelease = version.strip().lstrip("vV").partition("-")
    core = core.split("+", 1)[0]
    numbers = []
    for part in core.split("."):
        numbers.append(int(part) if _NUMERIC_RE.match(part) else 0)
    while len(numbers) < 4:
        numbers.append(0)

    if not prerelease:
        # Releases sort after any pre-release of the same core version
        return (tuple(numbers), 1, ())
    tags = tuple(
        (0, int(p), "") if _NUMERIC_RE.match(p) else (1, 0, p.lower())
        for p in prerelease.split(".")
    )
    return (tuple(numbers), 0, tags)


def is_newer(candidate: str, current: str) -> bool:
    return version_key(candidate) > version_key(current)


def smallest_newer(candidates: Iterable[str], current: str) -> Optional[str]:
    """Lowest candidate strictly greater than ``current``, or None."""
    newer = [c for c in candidates if c and is_newer(c, current)]
    return min(newer, key=version_key) if newer else None
