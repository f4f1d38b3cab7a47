"""Three-component numeric version parsing and comparison."""

from __future__ import annotations

import re

_LEADING_DIGITS = re.compile(r"\s*([+-]?\d+)")


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse ``major.minor.patch``; missing components default to ``0``.

    Components after the third are ignored. Each component uses its leading digits
    (``"3rc1"`` parses as ``3``).
    """

    parts = version.split(".")[:3]
    parts.extend("0" for _ in range(3 - len(parts)))
    numbers = [_parse_component(part, version) for part in parts]
    return numbers[0], numbers[1], numbers[2]


def compare_versions(left: str, right: str) -> int:
    """Return ``-1``, ``0`` or ``1`` comparing versions component by component."""

    for left_part, right_part in zip(parse_version(left), parse_version(right), strict=True):
        if left_part > right_part:
            return 1
        if left_part < right_part:
            return -1
    return 0


def _parse_component(part: str, version: str) -> int:
    match = _LEADING_DIGITS.match(part)
    if match is None:
        raise ValueError(f"Invalid version component {part!r} in {version!r}")
    return int(match.group(1))
