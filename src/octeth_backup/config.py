"""
Configuration loading for Octeth Backup.

The tool is configured through a flat KEY=value file (the same format the
shell tooling used) with process environment variables taking precedence.
The file is parsed once into an immutable Settings value that is passed
explicitly to every component.
"""

import logging
import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from octeth_backup.core.exceptions import ConfigurationError
from octeth_backup.core.models import RetentionPolicy, Tier

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "OCTETH_BACKUP_CONFIG"
DEFAULT_CONFIG_PATHS = (
    Path("config/backup.conf"),
    Path("/etc/octeth-backup/backup.conf"),
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class CloudProvider(Enum):
    """Remote object stores an artifact can be replicated to."""

    NONE = "none"
    S3 = "s3"
    GCS = "gcs"
    R2 = "r2"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class PathSettings(_Frozen):
    """Filesystem locations used by every flow."""

    backup_dir: Path = Path("/var/backups/octeth")
    temp_dir: Path = Path("/var/backups/octeth/tmp")
    lock_file: Path = Path("/var/run/octeth-backup.lock")
    log_file: Path = Path("/var/log/octeth-backup/backup.log")
    tier_dirs: dict[Tier, Path] = Field(default_factory=dict)

    def tier_dir(self, tier: Tier) -> Path:
        """Return the local directory holding artifacts of a tier."""
        return self.tier_dirs.get(tier, self.backup_dir / tier.value)


class MySQLSettings(_Frozen):
    """The database service being backed up."""

    service: str = "oempro_mysql"
    port: int = Field(default=3306, ge=1, le=65535)
    user: str = "root"
    password: str = ""
    database: str = "oempro"
    data_dir: Path | None = None
    data_owner: str = "999:999"


class EngineSettings(_Frozen):
    """How the hot-backup engine and container runtime are invoked."""

    binary: str = "xtrabackup"
    extra_opts: str = ""
    parallel_threads: int = Field(default=4, ge=1)
    verify_backup: bool = True
    timeout_seconds: int = Field(default=14400, ge=1)
    docker_cmd: str = "docker"


class CompressionSettings(_Frozen):
    tool: str = "auto"
    level: int = Field(default=6, ge=1, le=9)

    @field_validator("tool")
    @classmethod
    def validate_tool(cls, v: str) -> str:
        v = v.lower()
        if v not in ("auto", "pigz", "gzip"):
            raise ValueError(f"unsupported compression tool: {v}")
        return v


class CapacitySettings(_Frozen):
    max_disk_usage: int = Field(default=85, ge=1, le=100)
    min_free_space_gb: float = Field(default=10.0, ge=0)


class ScheduleSettings(_Frozen):
    """Naming and tier anchors. weekly_day uses 0 = Sunday."""

    prefix: str = "octeth-backup"
    date_format: str = "%Y-%m-%d_%H-%M-%S"
    monthly_day: int = Field(default=1, ge=1, le=31)
    weekly_day: int = Field(default=0, ge=0, le=6)


class S3Settings(_Frozen):
    bucket: str = ""
    prefix: str = "mysql-backups"
    region: str = "us-east-1"
    storage_class: str = "STANDARD"
    access_key_id: str | None = None
    secret_access_key: str | None = None


class GCSSettings(_Frozen):
    bucket: str = ""
    prefix: str = "mysql-backups"
    project_id: str | None = None
    storage_class: str = "STANDARD"
    credentials_file: Path | None = None


class R2Settings(_Frozen):
    account_id: str = ""
    bucket: str = ""
    prefix: str = "mysql-backups"
    access_key_id: str | None = None
    secret_access_key: str | None = None


class CloudSettings(_Frozen):
    provider: CloudProvider = CloudProvider.NONE
    s3: S3Settings = Field(default_factory=S3Settings)
    gcs: GCSSettings = Field(default_factory=GCSSettings)
    r2: R2Settings = Field(default_factory=R2Settings)

    @property
    def enabled(self) -> bool:
        return self.provider != CloudProvider.NONE


class NotificationSettings(_Frozen):
    """Email and webhook reporting."""

    failure_only: bool = False

    email_enabled: bool = False
    email_to: list[str] = Field(default_factory=list)
    email_from: str = "octeth-backup@localhost"
    subject_success: str = "Octeth Backup Success"
    subject_failure: str = "Octeth Backup FAILED"
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_use_tls: bool = False
    smtp_username: str | None = None
    smtp_password: str | None = None

    webhook_enabled: bool = False
    webhook_url: str = ""
    payload_success: str = (
        '{"status": "success", "name": "%NAME%", "tier": "%TIER%", '
        '"size": "%SIZE%", "timestamp": "%TIMESTAMP%"}'
    )
    payload_failure: str = (
        '{"status": "failure", "name": "%NAME%", "tier": "%TIER%", '
        '"error": "%ERROR%", "timestamp": "%TIMESTAMP%"}'
    )


class RestoreSettings(_Frozen):
    ready_retries: int = Field(default=30, ge=1)
    ready_interval_seconds: float = Field(default=2.0, ge=0)


class Settings(_Frozen):
    """Complete, immutable configuration for one invocation."""

    paths: PathSettings = Field(default_factory=PathSettings)
    mysql: MySQLSettings = Field(default_factory=MySQLSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    capacity: CapacitySettings = Field(default_factory=CapacitySettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    log_retention_days: int = Field(default=30, ge=1)
    cloud: CloudSettings = Field(default_factory=CloudSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    restore: RestoreSettings = Field(default_factory=RestoreSettings)
    source: Path | None = None


class _Values:
    """Typed accessors over the merged key/value mapping."""

    def __init__(self, values: Mapping[str, str], source: Path | None):
        self._values = values
        self._source = str(source) if source else None

    def has(self, key: str) -> bool:
        return self._values.get(key) not in (None, "")

    def text(self, key: str, default: str | None = None) -> str | None:
        value = self._values.get(key)
        if value is None or value == "":
            return default
        return value

    def path(self, key: str, default: Path | None = None) -> Path | None:
        value = self.text(key)
        return Path(value) if value else default

    def integer(self, key: str, default: int) -> int:
        value = self.text(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(
                f"{key} must be an integer, got {value!r}",
                config_file=self._source,
                config_key=key,
            ) from None

    def number(self, key: str, default: float) -> float:
        value = self.text(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(
                f"{key} must be a number, got {value!r}",
                config_file=self._source,
                config_key=key,
            ) from None

    def flag(self, key: str, default: bool) -> bool:
        value = self._values.get(key)
        if value is None:
            return default
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConfigurationError(
            f"{key} must be true or false, got {value!r}",
            config_file=self._source,
            config_key=key,
        )

    def items(self, key: str) -> list[str]:
        value = self.text(key, "") or ""
        return [item.strip() for item in value.replace(";", ",").split(",") if item.strip()]


_KNOWN_KEYS = frozenset(
    {
        "BACKUP_DIR", "DAILY_DIR", "WEEKLY_DIR", "MONTHLY_DIR", "TEMP_DIR",
        "LOCK_FILE", "LOG_FILE", "BACKUP_PREFIX", "DATE_FORMAT",
        "MYSQL_HOST", "MYSQL_PORT", "MYSQL_USER", "MYSQL_ROOT_PASSWORD",
        "MYSQL_DATABASE", "MYSQL_DATA_DIR", "MYSQL_DATA_OWNER",
        "XTRABACKUP_BIN", "XTRABACKUP_EXTRA_OPTS", "PARALLEL_THREADS",
        "VERIFY_BACKUP", "BACKUP_TIMEOUT", "DOCKER_CMD",
        "COMPRESSION_TOOL", "COMPRESSION_LEVEL",
        "MAX_DISK_USAGE", "MIN_FREE_SPACE_GB",
        "MONTHLY_DAY", "WEEKLY_DAY",
        "RETENTION_DAILY", "RETENTION_WEEKLY", "RETENTION_MONTHLY", "LOG_RETENTION_DAYS",
        "CLOUD_STORAGE_PROVIDER",
        "S3_BUCKET", "S3_PREFIX", "S3_REGION", "S3_STORAGE_CLASS",
        "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY",
        "GCS_BUCKET", "GCS_PREFIX", "GCS_PROJECT_ID", "GCS_STORAGE_CLASS",
        "GOOGLE_APPLICATION_CREDENTIALS",
        "R2_ACCOUNT_ID", "R2_BUCKET", "R2_PREFIX", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY",
        "NOTIFY_ON_FAILURE_ONLY", "EMAIL_NOTIFICATIONS", "EMAIL_TO", "EMAIL_FROM",
        "EMAIL_SUBJECT_SUCCESS", "EMAIL_SUBJECT_FAILURE",
        "SMTP_HOST", "SMTP_PORT", "SMTP_USE_TLS", "SMTP_USERNAME", "SMTP_PASSWORD",
        "WEBHOOK_ENABLED", "WEBHOOK_URL", "WEBHOOK_PAYLOAD_SUCCESS", "WEBHOOK_PAYLOAD_FAILURE",
        "READY_RETRIES", "READY_INTERVAL",
    }
)


def find_config_file(explicit: Path | None = None) -> Path | None:
    """
    Locate the configuration file.

    Order: explicit argument, $OCTETH_BACKUP_CONFIG, then the default paths.
    An explicit path that does not exist is an error; missing defaults are not.
    """
    if explicit is not None:
        if not explicit.is_file():
            raise ConfigurationError(
                f"Configuration file not found: {explicit}",
                config_file=str(explicit),
            )
        return explicit

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return find_config_file(Path(env_path))

    for candidate in DEFAULT_CONFIG_PATHS:
        if candidate.is_file():
            return candidate
    return None


def _parallel_threads(v: _Values) -> int:
    value = v.text("PARALLEL_THREADS", "auto")
    if value == "auto":
        return os.cpu_count() or 1
    return v.integer("PARALLEL_THREADS", 4)


def _require(v: _Values, source: Path | None, *keys: str) -> None:
    for key in keys:
        if not v.has(key):
            raise ConfigurationError(
                f"{key} is required for the selected cloud provider",
                config_file=str(source) if source else None,
                config_key=key,
            )


def settings_from_values(values: Mapping[str, str], source: Path | None = None) -> Settings:
    """
    Build Settings from a flat key/value mapping.

    Raises:
        ConfigurationError: If a value cannot be parsed or fails validation
    """
    v = _Values(values, source)

    backup_dir = v.path("BACKUP_DIR", Path("/var/backups/octeth"))
    tier_dirs = {}
    for tier in Tier:
        override = v.path(f"{tier.value.upper()}_DIR")
        if override is not None:
            tier_dirs[tier] = override

    provider_name = (v.text("CLOUD_STORAGE_PROVIDER", "none") or "none").lower()
    try:
        provider = CloudProvider(provider_name)
    except ValueError:
        raise ConfigurationError(
            f"Unknown cloud storage provider: {provider_name}",
            config_file=str(source) if source else None,
            config_key="CLOUD_STORAGE_PROVIDER",
        ) from None

    match provider:
        case CloudProvider.S3:
            _require(v, source, "S3_BUCKET")
        case CloudProvider.GCS:
            _require(v, source, "GCS_BUCKET")
        case CloudProvider.R2:
            _require(v, source, "R2_ACCOUNT_ID", "R2_BUCKET")

    try:
        return Settings(
            paths=PathSettings(
                backup_dir=backup_dir,
                temp_dir=v.path("TEMP_DIR", backup_dir / "tmp"),
                lock_file=v.path("LOCK_FILE", Path("/var/run/octeth-backup.lock")),
                log_file=v.path("LOG_FILE", Path("/var/log/octeth-backup/backup.log")),
                tier_dirs=tier_dirs,
            ),
            mysql=MySQLSettings(
                service=v.text("MYSQL_HOST", "oempro_mysql"),
                port=v.integer("MYSQL_PORT", 3306),
                user=v.text("MYSQL_USER", "root"),
                password=v.text("MYSQL_ROOT_PASSWORD", ""),
                database=v.text("MYSQL_DATABASE", "oempro"),
                data_dir=v.path("MYSQL_DATA_DIR"),
                data_owner=values.get("MYSQL_DATA_OWNER", "999:999"),
            ),
            engine=EngineSettings(
                binary=v.text("XTRABACKUP_BIN", "xtrabackup"),
                extra_opts=v.text("XTRABACKUP_EXTRA_OPTS", ""),
                parallel_threads=_parallel_threads(v),
                verify_backup=v.flag("VERIFY_BACKUP", True),
                timeout_seconds=v.integer("BACKUP_TIMEOUT", 14400),
                docker_cmd=v.text("DOCKER_CMD", "docker"),
            ),
            compression=CompressionSettings(
                tool=v.text("COMPRESSION_TOOL", "auto"),
                level=v.integer("COMPRESSION_LEVEL", 6),
            ),
            capacity=CapacitySettings(
                max_disk_usage=v.integer("MAX_DISK_USAGE", 85),
                min_free_space_gb=v.number("MIN_FREE_SPACE_GB", 10.0),
            ),
            schedule=ScheduleSettings(
                prefix=v.text("BACKUP_PREFIX", "octeth-backup"),
                date_format=v.text("DATE_FORMAT", "%Y-%m-%d_%H-%M-%S"),
                monthly_day=v.integer("MONTHLY_DAY", 1),
                weekly_day=v.integer("WEEKLY_DAY", 0),
            ),
            retention=RetentionPolicy(
                daily=v.integer("RETENTION_DAILY", 7),
                weekly=v.integer("RETENTION_WEEKLY", 4),
                monthly=v.integer("RETENTION_MONTHLY", 6),
            ),
            log_retention_days=v.integer("LOG_RETENTION_DAYS", 30),
            cloud=CloudSettings(
                provider=provider,
                s3=S3Settings(
                    bucket=v.text("S3_BUCKET", ""),
                    prefix=v.text("S3_PREFIX", "mysql-backups"),
                    region=v.text("S3_REGION", "us-east-1"),
                    storage_class=v.text("S3_STORAGE_CLASS", "STANDARD"),
                    access_key_id=v.text("AWS_ACCESS_KEY_ID"),
                    secret_access_key=v.text("AWS_SECRET_ACCESS_KEY"),
                ),
                gcs=GCSSettings(
                    bucket=v.text("GCS_BUCKET", ""),
                    prefix=v.text("GCS_PREFIX", "mysql-backups"),
                    project_id=v.text("GCS_PROJECT_ID"),
                    storage_class=v.text("GCS_STORAGE_CLASS", "STANDARD"),
                    credentials_file=v.path("GOOGLE_APPLICATION_CREDENTIALS"),
                ),
                r2=R2Settings(
                    account_id=v.text("R2_ACCOUNT_ID", ""),
                    bucket=v.text("R2_BUCKET", ""),
                    prefix=v.text("R2_PREFIX", "mysql-backups"),
                    access_key_id=v.text("R2_ACCESS_KEY_ID"),
                    secret_access_key=v.text("R2_SECRET_ACCESS_KEY"),
                ),
            ),
            notifications=NotificationSettings(
                failure_only=v.flag("NOTIFY_ON_FAILURE_ONLY", False),
                email_enabled=v.flag("EMAIL_NOTIFICATIONS", False),
                email_to=v.items("EMAIL_TO"),
                email_from=v.text("EMAIL_FROM", "octeth-backup@localhost"),
                subject_success=v.text("EMAIL_SUBJECT_SUCCESS", "Octeth Backup Success"),
                subject_failure=v.text("EMAIL_SUBJECT_FAILURE", "Octeth Backup FAILED"),
                smtp_host=v.text("SMTP_HOST", "localhost"),
                smtp_port=v.integer("SMTP_PORT", 25),
                smtp_use_tls=v.flag("SMTP_USE_TLS", False),
                smtp_username=v.text("SMTP_USERNAME"),
                smtp_password=v.text("SMTP_PASSWORD"),
                webhook_enabled=v.flag("WEBHOOK_ENABLED", False),
                webhook_url=v.text("WEBHOOK_URL", ""),
                payload_success=v.text(
                    "WEBHOOK_PAYLOAD_SUCCESS", NotificationSettings().payload_success
                ),
                payload_failure=v.text(
                    "WEBHOOK_PAYLOAD_FAILURE", NotificationSettings().payload_failure
                ),
            ),
            restore=RestoreSettings(
                ready_retries=v.integer("READY_RETRIES", 30),
                ready_interval_seconds=v.number("READY_INTERVAL", 2.0),
            ),
            source=source,
        )
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid configuration",
            config_file=str(source) if source else None,
            details={"errors": "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )},
        ) from e


def load_settings(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Load settings from the configuration file and the environment.

    Args:
        config_file: Explicit configuration file, otherwise searched for
        environ: Environment overrides (defaults to os.environ)

    Returns:
        Immutable Settings

    Raises:
        ConfigurationError: If the file is missing or a value is invalid
    """
    source = find_config_file(config_file)
    values: dict[str, str] = {}

    if source is not None:
        logger.debug(f"Loading configuration from {source}")
        values.update({k: v for k, v in dotenv_values(source).items() if v is not None})

    env = os.environ if environ is None else environ
    values.update({k: v for k, v in env.items() if k in values or k in _KNOWN_KEYS})

    return settings_from_values(values, source)

