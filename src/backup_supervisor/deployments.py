"""Deployment naming grammar: ``<prefix>[_<subnet>]-<network segment>-<guid>``."""

from __future__ import annotations

import re
from dataclasses import dataclass

from backup_supervisor.config import DeploymentSettings

_GUID_PATTERN = r"[0-9a-f]{8}(?:-[0-9a-f]{4}){3}-[0-9a-f]{12}"


@dataclass(frozen=True, slots=True)
class DeploymentName:
    """Parsed deployment name parts."""

    prefix: str
    subnet: str | None
    network_segment: int
    guid: str


def deployment_names_pattern(settings: DeploymentSettings | None = None) -> re.Pattern[str]:
    """Pattern matching deployment names in any subnet."""

    resolved = settings or DeploymentSettings()
    return re.compile(
        rf"^({re.escape(resolved.prefix)}(?:_([a-z]*))?)"
        rf"-([0-9]{{{resolved.network_segment_length}}})"
        rf"-({_GUID_PATTERN})$",
    )


def deployment_name_pattern(
    subnet: str | None = None,
    settings: DeploymentSettings | None = None,
) -> re.Pattern[str]:
    """Pattern matching deployment names of one subnet (no subnet when ``None``)."""

    resolved = settings or DeploymentSettings()
    suffix = f"_{re.escape(subnet)}" if subnet else ""
    return re.compile(
        rf"^({re.escape(resolved.prefix)}{suffix})"
        rf"-([0-9]{{{resolved.network_segment_length}}})"
        rf"-({_GUID_PATTERN})$",
    )


def parse_deployment_name(
    name: str,
    settings: DeploymentSettings | None = None,
) -> DeploymentName | None:
    """Split a deployment name into its parts, or ``None`` if it does not match."""

    resolved = settings or DeploymentSettings()
    match = deployment_names_pattern(resolved).match(name)
    if match is None:
        return None
    return DeploymentName(
        prefix=resolved.prefix,
        subnet=match.group(2) or None,
        network_segment=int(match.group(3)),
        guid=match.group(4),
    )


def validate_deployment_name(
    name: str,
    settings: DeploymentSettings | None = None,
) -> DeploymentName:
    """Parse ``name`` or raise ``ValueError`` describing the expected grammar."""

    resolved = settings or DeploymentSettings()
    parsed = parse_deployment_name(name, resolved)
    if parsed is None:
        raise ValueError(
            f"Invalid deployment name {name!r}. Expected "
            f"'{resolved.prefix}[_<subnet>]-<{resolved.network_segment_length} digits>-<guid>'.",
        )
    return parsed


def build_deployment_name(
    guid: str,
    network_index: int,
    *,
    subnet: str | None = None,
    settings: DeploymentSettings | None = None,
) -> str:
    """Compose a deployment name, zero-padding the network segment."""

    resolved = settings or DeploymentSettings()
    if network_index < 0:
        raise ValueError(f"network_index must be >= 0, got {network_index}")
    segment = str(network_index).zfill(resolved.network_segment_length)
    if len(segment) > resolved.network_segment_length:
        raise ValueError(
            f"network_index {network_index} does not fit in "
            f"{resolved.network_segment_length} digits",
        )
    prefix = f"{resolved.prefix}_{subnet}" if subnet else resolved.prefix
    name = f"{prefix}-{segment}-{guid}"
    validate_deployment_name(name, resolved)
    return name
