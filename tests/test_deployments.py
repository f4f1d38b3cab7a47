from __future__ import annotations

import allure
import pytest

from backup_supervisor.config import DeploymentSettings
from backup_supervisor.deployments import (
    build_deployment_name,
    deployment_name_pattern,
    parse_deployment_name,
    validate_deployment_name,
)

pytestmark = [
    allure.epic("Operation Supervision"),
    allure.feature("Deployment Names"),
]

GUID = "b4719e7c-e8d3-4f7f-c515-769ad1c3ebfa"


def test_valid_deployment_name_is_parsed() -> None:
    parsed = parse_deployment_name(f"service-fabrik-0021-{GUID}")

    assert parsed is not None
    assert parsed.prefix == "service-fabrik"
    assert parsed.subnet is None
    assert parsed.network_segment == 21
    assert parsed.guid == GUID


def test_subnet_deployment_name_is_parsed() -> None:
    parsed = parse_deployment_name(f"service-fabrik_blue-0003-{GUID}")

    assert parsed is not None
    assert parsed.subnet == "blue"
    assert parsed.network_segment == 3


@pytest.mark.parametrize(
    "name",
    [
        f"service-fabrik-abcd-{GUID}",
        f"service-fabrik-021-{GUID}",
        f"other-prefix-0021-{GUID}",
        "service-fabrik-0021-not-a-guid",
        f"service-fabrik-0021-{GUID.upper()}",
    ],
)
def test_invalid_deployment_names(name: str) -> None:
    assert parse_deployment_name(name) is None
    with pytest.raises(ValueError, match="Invalid deployment name"):
        validate_deployment_name(name)


def test_subnet_pattern_only_matches_its_subnet() -> None:
    pattern = deployment_name_pattern("blue")

    assert pattern.match(f"service-fabrik_blue-0001-{GUID}")
    assert not pattern.match(f"service-fabrik-0001-{GUID}")
    assert not deployment_name_pattern().match(f"service-fabrik_blue-0001-{GUID}")


def test_build_deployment_name_pads_network_segment() -> None:
    assert build_deployment_name(GUID, 21) == f"service-fabrik-0021-{GUID}"
    assert build_deployment_name(GUID, 7, subnet="blue") == f"service-fabrik_blue-0007-{GUID}"
    with pytest.raises(ValueError):
        build_deployment_name(GUID, 10_000)
    with pytest.raises(ValueError):
        build_deployment_name(GUID, -1)


def test_custom_prefix_and_segment_length() -> None:
    settings = DeploymentSettings(prefix="sf", network_segment_length=2)

    assert build_deployment_name(GUID, 5, settings=settings) == f"sf-05-{GUID}"
    assert parse_deployment_name(f"service-fabrik-0021-{GUID}", settings) is None
