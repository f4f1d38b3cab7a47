"""Runtime configuration for operation supervision."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class RetrySettings:
    """Immediate-retry budget for agent calls made while starting an operation."""

    max_attempts: int = 3
    base_seconds: float = 1.0
    max_seconds: float = 10.0
    jitter: bool = True


@dataclass(slots=True)
class PollSettings:
    """Defaults for polling agent state until an operation reaches a terminal state."""

    interval_seconds: float = 5.0
    timeout_seconds: float = 0.0
    max_workers: int = 4


@dataclass(slots=True)
class LogSettings:
    """Log capture retention."""

    tail_lines: int | None = 1_000


@dataclass(slots=True)
class DeploymentSettings:
    """Deployment naming grammar constants."""

    prefix: str = "service-fabrik"
    network_segment_length: int = 4


@dataclass(slots=True)
class SchedulerSettings:
    """Recurring job scheduling settings used by feature flags."""

    job_types: tuple[str, ...] = ()
    mongodb_url: str | None = None
    mongodb_plan_id: str | None = None
    default_backup_interval: str = "daily"


@dataclass(slots=True)
class AgentSettings:
    """HTTP agent client settings."""

    protocol: str = "http"
    port: int = 2718
    username: str = "admin"
    password: str = ""
    request_timeout_seconds: float = 30.0
    address_template: str = "{deployment}"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".backup_supervisor.db")
    sqlite_busy_timeout_ms: int = 5_000
    catalog_path: Path | None = None
    retry: RetrySettings = field(default_factory=RetrySettings)
    poll: PollSettings = field(default_factory=PollSettings)
    logs: LogSettings = field(default_factory=LogSettings)
    deployments: DeploymentSettings = field(default_factory=DeploymentSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults suitable for local runs."""

        catalog_path = os.getenv("BACKUP_SUPERVISOR_CATALOG_PATH", "").strip()
        return cls(
            db_path=db_path
            or Path(os.getenv("BACKUP_SUPERVISOR_DB_PATH", ".backup_supervisor.db")),
            sqlite_busy_timeout_ms=int(
                os.getenv("BACKUP_SUPERVISOR_SQLITE_BUSY_TIMEOUT_MS", "5000"),
            ),
            catalog_path=Path(catalog_path) if catalog_path else None,
            retry=RetrySettings(
                max_attempts=int(os.getenv("BACKUP_SUPERVISOR_RETRY_MAX_ATTEMPTS", "3")),
                base_seconds=float(os.getenv("BACKUP_SUPERVISOR_RETRY_BASE_SECONDS", "1.0")),
                max_seconds=float(os.getenv("BACKUP_SUPERVISOR_RETRY_MAX_SECONDS", "10.0")),
                jitter=_env_bool("BACKUP_SUPERVISOR_RETRY_JITTER", default=True),
            ),
            poll=PollSettings(
                interval_seconds=float(os.getenv("BACKUP_SUPERVISOR_POLL_INTERVAL_SECONDS", "5.0")),
                timeout_seconds=float(os.getenv("BACKUP_SUPERVISOR_POLL_TIMEOUT_SECONDS", "0.0")),
                max_workers=int(os.getenv("BACKUP_SUPERVISOR_POLL_MAX_WORKERS", "4")),
            ),
            logs=LogSettings(
                tail_lines=_env_optional_int("BACKUP_SUPERVISOR_LOG_TAIL_LINES", default=1_000),
            ),
            deployments=DeploymentSettings(
                prefix=os.getenv("BACKUP_SUPERVISOR_DEPLOYMENT_PREFIX", "service-fabrik"),
                network_segment_length=int(
                    os.getenv("BACKUP_SUPERVISOR_NETWORK_SEGMENT_LENGTH", "4"),
                ),
            ),
            scheduler=SchedulerSettings(
                job_types=_collect_job_types(),
                mongodb_url=os.getenv("BACKUP_SUPERVISOR_MONGODB_URL") or None,
                mongodb_plan_id=os.getenv("BACKUP_SUPERVISOR_MONGODB_PLAN_ID") or None,
                default_backup_interval=os.getenv(
                    "BACKUP_SUPERVISOR_DEFAULT_BACKUP_INTERVAL",
                    "daily",
                ),
            ),
            agent=AgentSettings(
                protocol=os.getenv("BACKUP_SUPERVISOR_AGENT_PROTOCOL", "http"),
                port=int(os.getenv("BACKUP_SUPERVISOR_AGENT_PORT", "2718")),
                username=os.getenv("BACKUP_SUPERVISOR_AGENT_USERNAME", "admin"),
                password=os.getenv("BACKUP_SUPERVISOR_AGENT_PASSWORD", ""),
                request_timeout_seconds=float(
                    os.getenv("BACKUP_SUPERVISOR_AGENT_TIMEOUT_SECONDS", "30.0"),
                ),
                address_template=os.getenv(
                    "BACKUP_SUPERVISOR_AGENT_ADDRESS_TEMPLATE",
                    "{deployment}",
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the supervisor cannot work with."""

        if self.retry.max_attempts <= 0:
            raise ValueError("BACKUP_SUPERVISOR_RETRY_MAX_ATTEMPTS must be > 0.")
        if self.retry.base_seconds < 0 or self.retry.max_seconds < 0:
            raise ValueError("Retry intervals must be >= 0.")
        if self.poll.interval_seconds < 0:
            raise ValueError("BACKUP_SUPERVISOR_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.poll.timeout_seconds < 0:
            raise ValueError("BACKUP_SUPERVISOR_POLL_TIMEOUT_SECONDS must be >= 0.")
        if self.poll.max_workers <= 0:
            raise ValueError("BACKUP_SUPERVISOR_POLL_MAX_WORKERS must be > 0.")
        if self.logs.tail_lines is not None and self.logs.tail_lines < 0:
            raise ValueError("BACKUP_SUPERVISOR_LOG_TAIL_LINES must be >= 0.")
        if not self.deployments.prefix:
            raise ValueError("BACKUP_SUPERVISOR_DEPLOYMENT_PREFIX must not be empty.")
        if self.deployments.network_segment_length <= 0:
            raise ValueError("BACKUP_SUPERVISOR_NETWORK_SEGMENT_LENGTH must be > 0.")
        if self.agent.protocol not in {"http", "https"}:
            raise ValueError(
                f"Invalid agent protocol: {self.agent.protocol!r}. Expected http or https.",
            )
        if "{deployment}" not in self.agent.address_template:
            raise ValueError(
                "BACKUP_SUPERVISOR_AGENT_ADDRESS_TEMPLATE must include {deployment}.",
            )
        if self.scheduler.mongodb_url is not None:
            _validate_mongodb_url(self.scheduler.mongodb_url)


def _collect_job_types() -> tuple[str, ...]:
    raw = os.getenv("BACKUP_SUPERVISOR_SCHEDULER_JOB_TYPES", "")
    values: list[str] = []
    for part in raw.split(","):
        normalized = "".join(part.split())
        if normalized and normalized not in values:
            values.append(normalized)
    return tuple(values)


def _validate_mongodb_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"mongodb", "mongodb+srv"} or not parsed.netloc:
        raise ValueError(
            "Invalid MongoDB URL: expected an absolute URL "
            "with mongodb:// or mongodb+srv:// scheme.",
        )


def _env_optional_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"", "none", "unbounded"}:
        return None
    try:
        return int(normalized)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
