"""Dotted version parsing and comparison."""

from __future__ import annotations

from itertools import zip_longest
from typing import Iterable

from oneserver.core.models import Comparison, Version


def parse_version(text: str) -> Version:
    """Parse ``"8.3"`` into ``Version((8, 3))``.

    Parsing is permissive and never raises: a component that is not a plain
    non-negative integer (``"3-rc1"``, ``"x"``, ``""``) is read as ``0``.
    """
    parts = []
    for piece in text.strip().split("."):
        piece = piece.strip()
        parts.append(int(piece) if piece.isascii() and piece.isdigit() else 0)
    return Version(tuple(parts))


def compare(a: Version, b: Version) -> Comparison:
    """Positional comparison; the shorter version is padded with zeros."""
    for left, right in zip_longest(a.parts, b.parts, fillvalue=0):
        if left > right:
            return Comparison.GREATER
        if left < right:
            return Comparison.LESS
    return Comparison.EQUAL


def sort_versions(versions: Iterable[Version]) -> list[Version]:
    """Ascending order, duplicates (by comparison) dropped."""
    result: list[Version] = []
    for version in versions:
        if any(compare(version, seen) is Comparison.EQUAL for seen in result):
            continue
        result.append(version)
    result.sort(key=_sort_key(result))
    return result


def _sort_key(versions: list[Version]):
    width = max((len(v.parts) for v in versions), default=0)

    def key(version: Version) -> tuple[int, ...]:
        return version.parts + (0,) * (width - len(version.parts))

    return key
