"""Feature flags derived from scheduler configuration."""

from __future__ import annotations

from enum import Enum

from backup_supervisor.config import SchedulerSettings


class FeatureName(str, Enum):
    """Features that can be switched on through configuration."""

    SCHEDULED_BACKUP = "ScheduledBackup"
    SCHEDULED_OOB_DEPLOYMENT_BACKUP = "ScheduledOobDeploymentBackup"


class JobType(str, Enum):
    """Scheduler job types recognized in ``job_types`` configuration."""

    SCHEDULED_BACKUP = "ScheduledBackup"
    SCHEDULED_OOB_DEPLOYMENT_BACKUP = "ScheduledOobDeploymentBackup"


def is_feature_enabled(name: FeatureName | str, settings: SchedulerSettings) -> bool:
    """Resolve whether ``name`` is enabled; unknown names raise ``ValueError``."""

    try:
        feature = FeatureName(name)
    except ValueError as error:
        raise ValueError(f"Unknown feature: {name!r}") from error

    if feature == FeatureName.SCHEDULED_BACKUP:
        has_store = settings.mongodb_url is not None or settings.mongodb_plan_id is not None
        return has_store and JobType.SCHEDULED_BACKUP.value in settings.job_types
    return JobType.SCHEDULED_OOB_DEPLOYMENT_BACKUP.value in settings.job_types
