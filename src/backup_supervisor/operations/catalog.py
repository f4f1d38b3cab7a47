"""Service plan catalog lookup."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Protocol

from backup_supervisor.errors import PlanNotFound


@dataclass(frozen=True, slots=True)
class Plan:
    """Service plan attributes the orchestrator relies on."""

    id: str
    name: str
    supports_backup: bool = True
    backup_interval: str | None = None


class Catalog(Protocol):
    """Read-only plan lookup."""

    def get_plan(self, plan_id: str) -> Plan:
        """Return the plan or raise ``PlanNotFound``."""


class StaticCatalog:
    """In-memory catalog, optionally loaded from a JSON file."""

    def __init__(self, plans: Iterable[Plan]) -> None:
        self._plans = {plan.id: plan for plan in plans}

    def get_plan(self, plan_id: str) -> Plan:
        try:
            return self._plans[plan_id]
        except KeyError as error:
            raise PlanNotFound(f"Plan not found: {plan_id}") from error

    @classmethod
    def from_json(cls, path: Path) -> StaticCatalog:
        """Load ``{"plans": [{"id": ..., "name": ..., ...}]}``."""

        payload = json.loads(path.read_text("utf-8"))
        if not isinstance(payload, dict) or not isinstance(payload.get("plans"), list):
            raise ValueError(f"Catalog file {path} must contain a 'plans' list.")
        known = {item.name for item in fields(Plan)}
        plans: list[Plan] = []
        for entry in payload["plans"]:
            if not isinstance(entry, dict):
                raise ValueError(f"Catalog plan entry must be an object: {entry!r}")
            unknown = sorted(set(entry) - known)
            if unknown:
                raise ValueError(f"Unknown plan fields in {path}: {', '.join(unknown)}")
            plans.append(Plan(**entry))
        return cls(plans)
