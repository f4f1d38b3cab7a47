from __future__ import annotations

import allure
import pytest

from backup_supervisor.config import SchedulerSettings
from backup_supervisor.features import FeatureName, is_feature_enabled

pytestmark = [
    allure.epic("Operation Supervision"),
    allure.feature("Feature Flags"),
]


def test_scheduled_backup_requires_store_and_job_type() -> None:
    assert not is_feature_enabled(FeatureName.SCHEDULED_BACKUP, SchedulerSettings())
    assert not is_feature_enabled(
        "ScheduledBackup",
        SchedulerSettings(job_types=("ScheduledBackup",)),
    )
    assert not is_feature_enabled(
        "ScheduledBackup",
        SchedulerSettings(mongodb_url="mongodb://localhost/backups"),
    )
    assert is_feature_enabled(
        "ScheduledBackup",
        SchedulerSettings(job_types=("ScheduledBackup",), mongodb_plan_id="plan-mongo"),
    )


def test_scheduled_oob_backup_requires_job_type_only() -> None:
    settings = SchedulerSettings(job_types=("ScheduledOobDeploymentBackup",))

    assert is_feature_enabled(FeatureName.SCHEDULED_OOB_DEPLOYMENT_BACKUP, settings)
    assert not is_feature_enabled(FeatureName.SCHEDULED_BACKUP, settings)


def test_unknown_feature_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown feature"):
        is_feature_enabled("TimeTravel", SchedulerSettings())
