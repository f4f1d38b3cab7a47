"""Redaction of sensitive values in parameter bags before they are logged."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

SENSITIVE_FIELD_NAMES: frozenset[str] = frozenset(
    {"password", "psswd", "pwd", "passwd", "uri", "url"},
)
MASK = "*******"
MAX_MASK_LEVEL = 4


def mask_sensitive_info(target: Any, level: int = 0) -> Any:
    """Return a copy of ``target`` with sensitive string fields replaced by ``MASK``.

    Mappings and lists/tuples are descended into; ``level`` counts nesting from the root
    (0). Containers deeper than ``MAX_MASK_LEVEL`` are returned as they are.
    """

    if level < 0:
        raise ValueError(f"Mask level cannot be negative, got {level}")
    if level > MAX_MASK_LEVEL:
        return target
    if isinstance(target, Mapping):
        return {key: _mask_field(key, value, level) for key, value in target.items()}
    if isinstance(target, (list, tuple)):
        masked = [_mask_nested(item, level) for item in target]
        return tuple(masked) if isinstance(target, tuple) else masked
    return target


def _mask_field(key: object, value: Any, level: int) -> Any:
    if isinstance(value, str):
        return MASK if key in SENSITIVE_FIELD_NAMES else value
    return _mask_nested(value, level)


def _mask_nested(value: Any, level: int) -> Any:
    if isinstance(value, (Mapping, list, tuple)):
        return mask_sensitive_info(value, level + 1)
    return value
